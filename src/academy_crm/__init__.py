"""Academy CRM lead import service."""
