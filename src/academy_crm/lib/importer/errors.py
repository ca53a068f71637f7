"""Lead import error taxonomy.

Structural errors raise; row-level problems are recorded on the row and never
escalate to the job.
"""

from enum import StrEnum


class LeadImportError(Exception):
    """Base class for request-level import failures.

    Args:
        message: Human-readable error description.
    """

    status_code: int = 400

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class UnsupportedFormat(LeadImportError):
    """Upload is not a readable CSV/XLSX spreadsheet. No job is created."""

    status_code = 415


class JobNotFound(LeadImportError):
    """No import job exists with the requested id."""

    status_code = 404


class NotValidated(LeadImportError):
    """Commit was requested for a job that has not been validated."""

    status_code = 409


class InvalidJobState(LeadImportError):
    """The job's status does not permit the requested operation."""

    status_code = 409


class CommitInProgress(LeadImportError):
    """Another worker holds the commit claim on this job."""

    status_code = 409


class RowError(StrEnum):
    """Per-row reasons recorded on validation and commit."""

    MISSING_NAME = "missing name"
    INVALID_EMAIL = "invalid email"
    INVALID_PHONE = "invalid phone"
    DUPLICATE_CONTACT = "duplicate contact"
    LOOKUP_FAILED = "duplicate check failed"
    LEAD_CREATE_FAILED = "lead create failed"


class WarningCode(StrEnum):
    """Non-fatal conditions reported alongside preview and validation results."""

    MAPPING_INCOMPLETE = "MAPPING_INCOMPLETE"
    UNKNOWN_COLUMN = "UNKNOWN_COLUMN"
    ROWS_TRUNCATED = "ROWS_TRUNCATED"
