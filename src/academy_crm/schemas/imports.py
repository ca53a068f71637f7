"""Lead import Pydantic v2 request/response schemas."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import AliasChoices, BaseModel, Field

from academy_crm.lib.importer import ColumnMapping, ImportSource, ImportStatus, RowState
from academy_crm.schemas.common import PaginationMeta


class ColumnMappingSchema(BaseModel):
    """Canonical field → spreadsheet header.  camelCase keys are accepted on input."""

    primary_name: str = Field(default="", validation_alias=AliasChoices("primary_name", "primaryName"))
    phone: str = ""
    email: str = ""
    preferred_centre: str = Field(default="", validation_alias=AliasChoices("preferred_centre", "preferredCentre"))
    programme_interest: str = Field(
        default="", validation_alias=AliasChoices("programme_interest", "programmeInterest")
    )

    def to_mapping(self) -> ColumnMapping:
        return ColumnMapping.from_dict(self.model_dump())

    @classmethod
    def from_mapping(cls, mapping: ColumnMapping) -> "ColumnMappingSchema":
        return cls.model_validate(mapping.to_dict())


class ImportWarning(BaseModel):
    """Non-fatal condition surfaced to the operator."""

    code: str
    message: str


class ImportSummary(BaseModel):
    """Progressively populated job counts."""

    preview_count: int = 0
    valid_count: int = 0
    invalid_count: int = 0
    created_count: int = 0
    skipped_count: int = 0


class ImportJobResponse(BaseModel):
    """Import job status and metadata."""

    id: UUID
    source: ImportSource
    filename: str | None = None
    status: ImportStatus
    mapping: ColumnMappingSchema | None = None
    summary: ImportSummary
    error_log: list[dict] | None = None
    validated_at: datetime | None = None
    committed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class PaginatedImportJobResponse(BaseModel):
    """Paginated list of import jobs."""

    items: list[ImportJobResponse]
    pagination: PaginationMeta


class ImportRowResponse(BaseModel):
    """A stored row with its validation and commit annotations."""

    id: UUID
    row_number: int
    raw: dict[str, Any]
    validation_state: RowState
    validation_errors: list[str] | None = None
    committed_lead_id: UUID | None = None
    commit_note: str | None = None

    model_config = {"from_attributes": True}


class PaginatedImportRowResponse(BaseModel):
    """Paginated per-row breakdown of an import job."""

    items: list[ImportRowResponse]
    pagination: PaginationMeta


class PreviewRequest(BaseModel):
    """Rows already decoded by the client, plus the operator's mapping."""

    source: ImportSource
    filename: str | None = Field(default=None, max_length=255)
    rows: list[dict[str, Any]]
    mapping: ColumnMappingSchema | None = None


class PreviewResponse(BaseModel):
    """A newly created PREVIEW job and the first rows for display."""

    job: ImportJobResponse
    preview_rows: list[ImportRowResponse]
    warnings: list[ImportWarning] = Field(default_factory=list)


class UploadPreviewResponse(PreviewResponse):
    """Preview created from a server-side decoded upload."""

    headers: list[str]
    proposed_mapping: ColumnMappingSchema


class MappingProposalRequest(BaseModel):
    """Spreadsheet headers to propose a mapping for."""

    headers: list[str]


class ValidateRequest(BaseModel):
    """Optional replacement mapping; the stored mapping is used when omitted."""

    mapping: ColumnMappingSchema | None = None


class ValidateResponse(BaseModel):
    """Validation outcome counts."""

    job: ImportJobResponse
    valid_count: int
    invalid_count: int
    warnings: list[ImportWarning] = Field(default_factory=list)


class CommitResponse(BaseModel):
    """Commit outcome counts."""

    job: ImportJobResponse
    created_count: int
    skipped_count: int
