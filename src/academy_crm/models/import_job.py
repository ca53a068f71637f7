"""ImportJob and ImportRow models — a lead import job and its row snapshot."""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from academy_crm.models.base import Base, JSONType, UUIDMixin, utcnow


class ImportJob(Base, UUIDMixin):
    """A staged lead import.  Owns its rows, which are addressed by (job_id, row_number)."""

    __tablename__ = "import_jobs"

    source: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    filename: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="PREVIEW", server_default="PREVIEW", index=True
    )
    mapping: Mapped[dict | None] = mapped_column(JSONType, nullable=True)

    # Summary counts
    preview_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    valid_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    invalid_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    created_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    skipped_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    # Commit-time skip notes: [{"row_number": int, "reason": str}]
    error_log: Mapped[list[dict] | None] = mapped_column(JSONType, nullable=True)

    # Cross-worker commit claim; cleared when the commit finishes or aborts
    commit_owner: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    commit_claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    validated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    committed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    @property
    def summary(self) -> dict[str, int]:
        return {
            "preview_count": self.preview_count,
            "valid_count": self.valid_count,
            "invalid_count": self.invalid_count,
            "created_count": self.created_count,
            "skipped_count": self.skipped_count,
        }


class ImportRow(Base, UUIDMixin):
    """One spreadsheet row of an import job.  ``raw`` is never modified after creation."""

    __tablename__ = "import_rows"
    __table_args__ = (UniqueConstraint("job_id", "row_number", name="uq_import_rows_job_row"),)

    job_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("import_jobs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    row_number: Mapped[int] = mapped_column(Integer, nullable=False)
    raw: Mapped[dict] = mapped_column(JSONType, nullable=False)
    validation_state: Mapped[str] = mapped_column(
        String(10), nullable=False, default="PENDING", server_default="PENDING"
    )
    validation_errors: Mapped[list[str] | None] = mapped_column(JSONType, nullable=True)
    committed_lead_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    commit_note: Mapped[str | None] = mapped_column(Text, nullable=True)
