"""Lead import API endpoints.

POST /imports/leads/upload (multipart file upload), POST /imports/leads/mapping,
POST /imports/leads/preview, POST /imports/leads/{job_id}/validate,
POST /imports/leads/{job_id}/commit, GET /imports/leads/jobs (list jobs),
GET /imports/leads/{job_id} (status), GET /imports/leads/{job_id}/rows (per-row breakdown),
GET /imports/leads/{job_id}/history (audit trail).
"""

import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Form, HTTPException, UploadFile, status
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from academy_crm.core.config import Settings, get_settings
from academy_crm.core.dependencies import get_async_session
from academy_crm.lib.importer import (
    ImportSource,
    ImportStatus,
    LeadImportError,
    RowState,
    decode,
    detect_source,
    headers_of,
    propose_mapping,
)
from academy_crm.schemas.audit import AuditLogResponse, PaginatedAuditLogResponse
from academy_crm.schemas.common import ErrorResponse, PaginationMeta, PaginationParams
from academy_crm.schemas.imports import (
    ColumnMappingSchema,
    CommitResponse,
    ImportJobResponse,
    ImportRowResponse,
    MappingProposalRequest,
    PaginatedImportJobResponse,
    PaginatedImportRowResponse,
    PreviewRequest,
    PreviewResponse,
    UploadPreviewResponse,
    ValidateRequest,
    ValidateResponse,
)
from academy_crm.services import audit_service, import_service

router = APIRouter(prefix="/imports/leads", tags=["imports"])

_NO_FILE_DETAIL = "No file provided"
_FAILED_DETAIL = "Import failed unexpectedly; check the job status before retrying"
_ACTOR_TYPE = "CRM"

_JOB_ERRORS: dict[int | str, dict[str, Any]] = {
    404: {"model": ErrorResponse, "description": "Import job not found"},
    409: {"model": ErrorResponse, "description": "Job status does not allow this operation, or a commit is running"},
}


@contextmanager
def _import_errors(action: str) -> Iterator[None]:
    """Translate import errors into HTTP responses."""
    try:
        yield
    except LeadImportError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc
    except HTTPException:
        raise
    except Exception as exc:
        logger.error(f"Lead import {action} failed: {exc!r}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=_FAILED_DETAIL) from exc


@router.post(
    "/upload",
    response_model=UploadPreviewResponse,
    status_code=201,
    responses={413: {"model": ErrorResponse}, 415: {"model": ErrorResponse}},
)
async def upload_leads(
    file: UploadFile,
    session: Annotated[AsyncSession, Depends(get_async_session)],
    settings: Annotated[Settings, Depends(get_settings)],
    name_column: Annotated[str | None, Form()] = None,
    phone_column: Annotated[str | None, Form()] = None,
    email_column: Annotated[str | None, Form()] = None,
    centre_column: Annotated[str | None, Form()] = None,
    programme_column: Annotated[str | None, Form()] = None,
) -> UploadPreviewResponse:
    """Decode an uploaded CSV/XLSX file and create a PREVIEW job from it."""
    if not file.filename:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=_NO_FILE_DETAIL)

    content = await file.read()
    if len(content) > settings.import_max_file_size_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File exceeds maximum size of {settings.import_max_file_size_mb} MB",
        )

    with _import_errors("upload"):
        source = detect_source(file.filename)
        rows = decode(content, source)
        headers = headers_of(rows)
        proposed = propose_mapping(headers)
        mapping = proposed.merged(
            {
                "primary_name": name_column,
                "phone": phone_column,
                "email": email_column,
                "preferred_centre": centre_column,
                "programme_interest": programme_column,
            }
        )
        result = await import_service.create_preview(
            session,
            source=source,
            filename=file.filename,
            rows=rows,
            mapping=mapping,
            max_rows=settings.import_max_rows,
            preview_size=settings.import_preview_size,
        )

    return UploadPreviewResponse(
        job=ImportJobResponse.model_validate(result.job),
        preview_rows=[ImportRowResponse.model_validate(r) for r in result.preview_rows],
        warnings=result.warnings,
        headers=headers,
        proposed_mapping=ColumnMappingSchema.from_mapping(proposed),
    )


@router.post("/mapping", response_model=ColumnMappingSchema)
async def propose_lead_mapping(request: MappingProposalRequest) -> ColumnMappingSchema:
    """Propose a column mapping for a list of spreadsheet headers."""
    return ColumnMappingSchema.from_mapping(propose_mapping(request.headers))


@router.post("/preview", response_model=PreviewResponse, status_code=201)
async def preview_leads(
    request: PreviewRequest,
    session: Annotated[AsyncSession, Depends(get_async_session)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> PreviewResponse:
    """Create a PREVIEW job from rows the client has already decoded."""
    with _import_errors("preview"):
        result = await import_service.create_preview(
            session,
            source=request.source,
            filename=request.filename,
            rows=request.rows,
            mapping=request.mapping.to_mapping() if request.mapping is not None else None,
            max_rows=settings.import_max_rows,
            preview_size=settings.import_preview_size,
        )

    return PreviewResponse(
        job=ImportJobResponse.model_validate(result.job),
        preview_rows=[ImportRowResponse.model_validate(r) for r in result.preview_rows],
        warnings=result.warnings,
    )


@router.post("/{job_id}/validate", response_model=ValidateResponse, responses=_JOB_ERRORS)
async def validate_leads(
    job_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(get_async_session)],
    settings: Annotated[Settings, Depends(get_settings)],
    request: ValidateRequest | None = None,
) -> ValidateResponse:
    """Validate every row of a job, optionally against a replacement mapping."""
    mapping = request.mapping.to_mapping() if request is not None and request.mapping is not None else None
    with _import_errors("validate"):
        result = await import_service.validate_job(
            session,
            job_id,
            mapping,
            actor_type=_ACTOR_TYPE,
            claim_ttl=settings.import_commit_claim_ttl,
        )

    return ValidateResponse(
        job=ImportJobResponse.model_validate(result.job),
        valid_count=result.valid_count,
        invalid_count=result.invalid_count,
        warnings=result.warnings,
    )


@router.post("/{job_id}/commit", response_model=CommitResponse, responses=_JOB_ERRORS)
async def commit_leads(
    job_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(get_async_session)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> CommitResponse:
    """Create leads for the VALID rows of a validated job."""
    with _import_errors("commit"):
        result = await import_service.commit_job(
            session,
            job_id,
            batch_size=settings.import_commit_batch_size,
            actor_type=_ACTOR_TYPE,
            claim_ttl=settings.import_commit_claim_ttl,
        )

    return CommitResponse(
        job=ImportJobResponse.model_validate(result.job),
        created_count=result.created_count,
        skipped_count=result.skipped_count,
    )


@router.get("/jobs", response_model=PaginatedImportJobResponse)
async def list_lead_imports(
    session: Annotated[AsyncSession, Depends(get_async_session)],
    settings: Annotated[Settings, Depends(get_settings)],
    pagination: Annotated[PaginationParams, Depends()],
    source: ImportSource | None = None,
    import_status: ImportStatus | None = None,
) -> PaginatedImportJobResponse:
    """List import jobs, newest first."""
    page_size = min(pagination.page_size, settings.import_list_max_page_size)
    jobs, total = await import_service.list_import_jobs(
        session, source=source, status=import_status, page=pagination.page, page_size=page_size
    )
    return PaginatedImportJobResponse(
        items=[ImportJobResponse.model_validate(j) for j in jobs],
        pagination=PaginationMeta(
            total=total,
            page=pagination.page,
            page_size=page_size,
            total_pages=import_service.total_pages(total, page_size),
        ),
    )


@router.get("/{job_id}", response_model=ImportJobResponse)
async def get_lead_import(
    job_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(get_async_session)],
) -> ImportJobResponse:
    """Get import job status by ID."""
    job = await import_service.get_import_job(session, job_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Import job not found")
    return ImportJobResponse.model_validate(job)


@router.get("/{job_id}/rows", response_model=PaginatedImportRowResponse)
async def list_lead_import_rows(
    job_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(get_async_session)],
    pagination: Annotated[PaginationParams, Depends()],
    state: RowState | None = None,
) -> PaginatedImportRowResponse:
    """List a job's rows with their validation and commit annotations."""
    with _import_errors("row listing"):
        rows, total = await import_service.list_import_rows(
            session, job_id, state=state, page=pagination.page, page_size=pagination.page_size
        )
    return PaginatedImportRowResponse(
        items=[ImportRowResponse.model_validate(r) for r in rows],
        pagination=PaginationMeta(
            total=total,
            page=pagination.page,
            page_size=pagination.page_size,
            total_pages=import_service.total_pages(total, pagination.page_size),
        ),
    )


@router.get("/{job_id}/history", response_model=PaginatedAuditLogResponse, responses={404: _JOB_ERRORS[404]})
async def list_lead_import_history(
    job_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(get_async_session)],
    pagination: Annotated[PaginationParams, Depends()],
) -> PaginatedAuditLogResponse:
    """List the recorded validations and commits of a job, newest first."""
    if await import_service.get_import_job(session, job_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Import job not found")
    logs, total = await audit_service.list_activities(
        session,
        entity_type=import_service.AUDIT_ENTITY,
        entity_id=job_id,
        page=pagination.page,
        page_size=pagination.page_size,
    )
    return PaginatedAuditLogResponse(
        items=[AuditLogResponse.model_validate(log) for log in logs],
        pagination=PaginationMeta(
            total=total,
            page=pagination.page,
            page_size=pagination.page_size,
            total_pages=import_service.total_pages(total, pagination.page_size),
        ),
    )
