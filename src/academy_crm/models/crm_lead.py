"""CrmLead and CrmActivity models — the CRM records an import commits into."""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from academy_crm.models.base import Base, JSONType, UUIDMixin, utcnow


class CrmLead(Base, UUIDMixin):
    """A prospective student or fan in the CRM funnel.

    ``phone`` is stored as digits only and ``email`` lower-cased so duplicate
    checks can compare them directly.
    """

    __tablename__ = "crm_leads"

    source_type: Mapped[str] = mapped_column(String(20), nullable=False, default="IMPORT", server_default="IMPORT")
    primary_name: Mapped[str] = mapped_column(String(200), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    preferred_centre: Mapped[str | None] = mapped_column(String(200), nullable=True)
    programme_interest: Mapped[str | None] = mapped_column(String(200), nullable=True)
    stage: Mapped[str] = mapped_column(String(40), nullable=False, default="NEW", server_default="NEW", index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="OPEN", server_default="OPEN")

    import_job_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("import_jobs.id", ondelete="SET NULL"), nullable=True, index=True
    )
    import_row_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    raw: Mapped[dict | None] = mapped_column(JSONType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )


class CrmActivity(Base, UUIDMixin):
    """Timeline entry on a lead (e.g. IMPORTED)."""

    __tablename__ = "crm_activities"

    lead_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("crm_leads.id", ondelete="CASCADE"), nullable=False, index=True
    )
    type: Mapped[str] = mapped_column(String(40), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    body: Mapped[str | None] = mapped_column(Text, nullable=True)
    activity_metadata: Mapped[dict | None] = mapped_column("metadata", JSONType, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
