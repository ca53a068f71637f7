"""ORM model registry — import all models so Alembic autogenerate discovers them."""

from academy_crm.models.audit_log import AuditLog
from academy_crm.models.crm_lead import CrmActivity, CrmLead
from academy_crm.models.import_job import ImportJob, ImportRow

__all__ = [
    "AuditLog",
    "CrmActivity",
    "CrmLead",
    "ImportJob",
    "ImportRow",
]
