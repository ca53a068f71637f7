"""Audit trail response schemas."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from academy_crm.schemas.common import PaginationMeta


class AuditLogResponse(BaseModel):
    """One recorded state change."""

    id: UUID
    occurred_at: datetime
    actor_type: str
    actor_id: str | None = None
    action: str
    entity_type: str
    entity_id: str
    before: dict[str, Any] | None = None
    after: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = Field(default=None, validation_alias="audit_metadata")

    model_config = {"from_attributes": True}


class PaginatedAuditLogResponse(BaseModel):
    """Paginated audit records, newest first."""

    items: list[AuditLogResponse]
    pagination: PaginationMeta
