"""Add import_jobs, import_rows, crm_leads and crm_activities tables.

Revision ID: 001
Revises:
Create Date: 2026-10-17
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB, UUID

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "import_jobs",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("source", sa.String(20), nullable=False),
        sa.Column("filename", sa.String(255), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="PREVIEW"),
        sa.Column("mapping", JSONB, nullable=True),
        sa.Column("preview_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("valid_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("invalid_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("skipped_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("error_log", JSONB, nullable=True),
        sa.Column("validated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("committed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_import_jobs_source", "import_jobs", ["source"])
    op.create_index("ix_import_jobs_status", "import_jobs", ["status"])
    op.create_index("ix_import_jobs_created_at", "import_jobs", ["created_at"])

    op.create_table(
        "import_rows",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("job_id", UUID(as_uuid=True), sa.ForeignKey("import_jobs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("row_number", sa.Integer, nullable=False),
        sa.Column("raw", JSONB, nullable=False),
        sa.Column("validation_state", sa.String(10), nullable=False, server_default="PENDING"),
        sa.Column("validation_errors", JSONB, nullable=True),
        sa.Column("committed_lead_id", UUID(as_uuid=True), nullable=True),
        sa.Column("commit_note", sa.Text, nullable=True),
        sa.UniqueConstraint("job_id", "row_number", name="uq_import_rows_job_row"),
    )
    op.create_index("ix_import_rows_job_id", "import_rows", ["job_id"])

    op.create_table(
        "crm_leads",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("source_type", sa.String(20), nullable=False, server_default="IMPORT"),
        sa.Column("primary_name", sa.String(200), nullable=False),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("preferred_centre", sa.String(200), nullable=True),
        sa.Column("programme_interest", sa.String(200), nullable=True),
        sa.Column("stage", sa.String(40), nullable=False, server_default="NEW"),
        sa.Column("status", sa.String(20), nullable=False, server_default="OPEN"),
        sa.Column(
            "import_job_id",
            UUID(as_uuid=True),
            sa.ForeignKey("import_jobs.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("import_row_number", sa.Integer, nullable=True),
        sa.Column("raw", JSONB, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_crm_leads_phone", "crm_leads", ["phone"])
    op.create_index("ix_crm_leads_email", "crm_leads", ["email"])
    op.create_index("ix_crm_leads_stage", "crm_leads", ["stage"])
    op.create_index("ix_crm_leads_import_job_id", "crm_leads", ["import_job_id"])
    op.create_index("ix_crm_leads_created_at", "crm_leads", ["created_at"])

    op.create_table(
        "crm_activities",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("lead_id", UUID(as_uuid=True), sa.ForeignKey("crm_leads.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", sa.String(40), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("body", sa.Text, nullable=True),
        sa.Column("metadata", JSONB, nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_crm_activities_lead_id", "crm_activities", ["lead_id"])


def downgrade() -> None:
    op.drop_table("crm_activities")
    op.drop_table("crm_leads")
    op.drop_table("import_rows")
    op.drop_table("import_jobs")
