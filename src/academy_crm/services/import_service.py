"""Import service — persists lead import jobs and drives preview, validation and commit.

Jobs move PREVIEW → VALIDATED → COMMITTED.  Rows are snapshotted at preview
time and only annotated afterwards; their count never changes.
"""

import asyncio
import math
import uuid
import weakref
from dataclasses import dataclass, field
from datetime import UTC, timedelta
from typing import Any

from loguru import logger
from sqlalchemy import func, insert, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from academy_crm.lib.importer import (
    ColumnMapping,
    CommitInProgress,
    ContactIndex,
    ImportSource,
    ImportStatus,
    JobNotFound,
    LeadImportError,
    LeadSink,
    NotValidated,
    RowState,
    WarningCode,
    check_transition,
    commit_rows,
    headers_of,
    mapping_warnings,
    propose_mapping,
    validate_rows,
)
from academy_crm.models.base import utcnow
from academy_crm.models.import_job import ImportJob, ImportRow
from academy_crm.services.audit_service import record_activity
from academy_crm.services.lead_service import SqlLeadSink

DEFAULT_MAX_ROWS = 5000
DEFAULT_PREVIEW_SIZE = 25
DEFAULT_COMMIT_BATCH_SIZE = 100
MAX_LIST_PAGE_SIZE = 50
DEFAULT_COMMIT_CLAIM_TTL = timedelta(minutes=10)

AUDIT_ENTITY = "ImportJob"
IMPORT_VALIDATED = "CRM_IMPORT_VALIDATED"
IMPORT_COMMITTED = "CRM_IMPORT_COMMITTED"

# One lock per job id while a commit holds it; entries vanish once unreferenced
_commit_locks: "weakref.WeakValueDictionary[uuid.UUID, asyncio.Lock]" = weakref.WeakValueDictionary()


@dataclass
class PreviewResult:
    job: ImportJob
    preview_rows: list[ImportRow]
    warnings: list[dict[str, str]] = field(default_factory=list)


@dataclass
class ValidationResult:
    job: ImportJob
    valid_count: int
    invalid_count: int
    warnings: list[dict[str, str]] = field(default_factory=list)


@dataclass
class CommitResult:
    job: ImportJob
    created_count: int
    skipped_count: int


def _commit_lock(job_id: uuid.UUID) -> asyncio.Lock:
    lock = _commit_locks.get(job_id)
    if lock is None:
        lock = asyncio.Lock()
        _commit_locks[job_id] = lock
    return lock


def _snapshot(record: dict[str, Any]) -> dict[str, str]:
    """Copy a row record with every key and value as a string."""
    return {str(k): "" if v is None else str(v) for k, v in record.items()}


async def _mark_failed(session: AsyncSession, job_id: uuid.UUID) -> None:
    """Move a non-terminal job to FAILED after an unrecoverable error."""
    await session.rollback()
    await session.execute(
        update(ImportJob)
        .where(
            ImportJob.id == job_id,
            ImportJob.status.in_([ImportStatus.PREVIEW, ImportStatus.VALIDATED]),
        )
        .values(status=ImportStatus.FAILED.value, commit_owner=None, commit_claimed_at=None, updated_at=utcnow())
    )
    await session.commit()
    logger.error(f"Import job {job_id} marked FAILED")


async def _abort_commit(session: AsyncSession, job_id: uuid.UUID, token: uuid.UUID) -> None:
    """Roll back the failed batch and leave the job retryable when possible.

    Leads from batches committed before the failure stay linked to their rows.
    A job with any such row stays VALIDATED, with its claim released, so a
    retry resumes after them; a job with none is marked FAILED.
    """
    await session.rollback()
    committed = (
        await session.execute(
            select(func.count(ImportRow.id)).where(
                ImportRow.job_id == job_id, ImportRow.committed_lead_id.is_not(None)
            )
        )
    ).scalar_one()
    if not committed:
        await _mark_failed(session, job_id)
        return

    await session.execute(
        update(ImportJob)
        .where(ImportJob.id == job_id, ImportJob.commit_owner == token)
        .values(commit_owner=None, commit_claimed_at=None, created_count=committed, updated_at=utcnow())
    )
    await session.commit()
    logger.warning(f"Import job {job_id} commit interrupted after {committed} leads; left VALIDATED for retry")


def _claim_active(job: ImportJob, ttl: timedelta) -> bool:
    """Whether some worker holds a commit claim on ``job`` refreshed within ``ttl``."""
    if job.commit_owner is None or job.commit_claimed_at is None:
        return False
    claimed_at = job.commit_claimed_at
    if claimed_at.tzinfo is None:
        # SQLite returns naive UTC timestamps
        claimed_at = claimed_at.replace(tzinfo=UTC)
    return utcnow() - claimed_at < ttl


async def _claim_commit(session: AsyncSession, job: ImportJob, token: uuid.UUID, ttl: timedelta) -> None:
    """Take the commit claim on a VALIDATED job for this worker.

    The conditional UPDATE only matches while no other worker holds a claim
    refreshed within ``ttl``, so at most one process commits a job at a time.

    Raises:
        CommitInProgress: If another worker holds a live claim.
    """
    now = utcnow()
    result = await session.execute(
        update(ImportJob)
        .where(
            ImportJob.id == job.id,
            ImportJob.status == ImportStatus.VALIDATED.value,
            or_(ImportJob.commit_owner.is_(None), ImportJob.commit_claimed_at < now - ttl),
        )
        .values(commit_owner=token, commit_claimed_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await session.rollback()
        msg = f"Import job {job.id} is already being committed"
        raise CommitInProgress(msg)
    await session.commit()
    await session.refresh(job)


def _job_state(job: ImportJob) -> dict[str, Any]:
    """Audit view of a job: status, mapping and counts."""
    return {"status": job.status, "mapping": job.mapping, **job.summary}


async def _load_job(session: AsyncSession, job_id: uuid.UUID, *, for_update: bool = False) -> ImportJob:
    query = select(ImportJob).where(ImportJob.id == job_id)
    if for_update:
        query = query.with_for_update()
    job = (await session.execute(query)).scalar_one_or_none()
    if job is None:
        msg = f"Import job {job_id} not found"
        raise JobNotFound(msg)
    return job


async def _load_rows(session: AsyncSession, job_id: uuid.UUID) -> list[ImportRow]:
    result = await session.execute(
        select(ImportRow).where(ImportRow.job_id == job_id).order_by(ImportRow.row_number)
    )
    return list(result.scalars().all())


async def create_preview(
    session: AsyncSession,
    *,
    source: ImportSource | str,
    filename: str | None,
    rows: list[dict[str, Any]],
    mapping: ColumnMapping | None = None,
    max_rows: int = DEFAULT_MAX_ROWS,
    preview_size: int = DEFAULT_PREVIEW_SIZE,
) -> PreviewResult:
    """Create a PREVIEW job holding a snapshot of every uploaded row.

    Args:
        session: Database session.
        source: Where the rows came from.
        filename: Original upload name (display only).
        rows: Decoded row records in file order.
        mapping: Operator mapping; proposed from the headers when omitted.
        max_rows: Rows beyond this limit are dropped before the job is created.
        preview_size: Number of leading rows returned for display.

    Returns:
        PreviewResult with the job, its first rows, and mapping warnings.
    """
    source = ImportSource(source)
    warnings: list[dict[str, str]] = []

    if len(rows) > max_rows:
        logger.warning(f"Upload {filename!r} has {len(rows)} rows; keeping the first {max_rows}")
        warnings.append(
            {
                "code": WarningCode.ROWS_TRUNCATED,
                "message": f"Only the first {max_rows} of {len(rows)} rows were imported",
            }
        )
        rows = rows[:max_rows]

    snapshots = [_snapshot(r) for r in rows]
    headers = headers_of(snapshots)
    if mapping is None:
        mapping = propose_mapping(headers)
    warnings.extend(mapping_warnings(mapping, headers if snapshots else None))

    now = utcnow()
    job = ImportJob(
        id=uuid.uuid4(),
        source=source.value,
        filename=filename,
        status=ImportStatus.PREVIEW.value,
        mapping=mapping.to_dict(),
        preview_count=len(snapshots),
        valid_count=0,
        invalid_count=0,
        created_count=0,
        skipped_count=0,
        created_at=now,
        updated_at=now,
    )
    session.add(job)
    await session.flush()

    if snapshots:
        await session.execute(
            insert(ImportRow),
            [
                {
                    "id": uuid.uuid4(),
                    "job_id": job.id,
                    "row_number": idx + 1,
                    "raw": raw,
                    "validation_state": RowState.PENDING.value,
                }
                for idx, raw in enumerate(snapshots)
            ],
        )
    await session.commit()

    result = await session.execute(
        select(ImportRow).where(ImportRow.job_id == job.id).order_by(ImportRow.row_number).limit(preview_size)
    )
    preview_rows = list(result.scalars().all())

    logger.info(f"Import job {job.id} created from {source} {filename!r}: {len(snapshots)} rows")
    return PreviewResult(job=job, preview_rows=preview_rows, warnings=warnings)


async def validate_job(
    session: AsyncSession,
    job_id: uuid.UUID,
    mapping: ColumnMapping | None = None,
    *,
    actor_type: str = "SYSTEM",
    actor_id: str | None = None,
    claim_ttl: timedelta = DEFAULT_COMMIT_CLAIM_TTL,
) -> ValidationResult:
    """Validate every row of a job against a mapping.

    Re-validating a VALIDATED job recomputes its rows in place, except rows
    that already carry a lead from an interrupted commit: those stay VALID.
    On a COMMITTED job only the counts are recomputed from the stored row
    states; rows, mapping and status are left untouched.

    Args:
        session: Database session.
        job_id: The import job ID.
        mapping: Replacement mapping; the stored mapping is used when omitted.
        actor_type: Who requested validation, for the audit trail.
        actor_id: Identifier of the requesting user, when known.
        claim_ttl: Age after which a commit claim no longer blocks validation.

    Returns:
        ValidationResult with counts and mapping warnings.

    Raises:
        JobNotFound: If the job does not exist.
        InvalidJobState: If the job has FAILED.
        CommitInProgress: If a commit of the job is running.
    """
    with logger.contextualize(import_job=str(job_id)):
        try:
            job = await _load_job(session, job_id)
            rows = await _load_rows(session, job_id)

            if job.status == ImportStatus.COMMITTED:
                valid = sum(1 for r in rows if r.validation_state == RowState.VALID)
                logger.info(f"Import job {job_id} already committed; validation counts recomputed only")
                return ValidationResult(job=job, valid_count=valid, invalid_count=len(rows) - valid)

            check_transition(job.status, ImportStatus.VALIDATED)
            if _claim_active(job, claim_ttl):
                msg = f"Import job {job_id} is being committed; validate it once the commit finishes"
                raise CommitInProgress(msg)

            before = _job_state(job)
            effective = mapping if mapping is not None else ColumnMapping.from_dict(job.mapping)
            pending = [r for r in rows if r.committed_lead_id is None]
            kept = len(rows) - len(pending)
            valid, invalid = validate_rows(pending, effective)
            valid += kept
            if kept:
                logger.info(f"{kept} rows already hold leads and stay VALID")

            now = utcnow()
            job.mapping = effective.to_dict()
            job.status = ImportStatus.VALIDATED.value
            job.valid_count = valid
            job.invalid_count = invalid
            job.validated_at = now
            job.updated_at = now
            await record_activity(
                session,
                action=IMPORT_VALIDATED,
                entity_type=AUDIT_ENTITY,
                entity_id=job.id,
                before=before,
                after=_job_state(job),
                metadata={"valid_count": valid, "invalid_count": invalid},
                actor_type=actor_type,
                actor_id=actor_id,
            )
            await session.commit()
        except LeadImportError:
            raise
        except Exception:
            logger.exception(f"Validation of import job {job_id} failed")
            await _mark_failed(session, job_id)
            raise

        logger.info(f"Import job {job_id} validated: {valid} valid, {invalid} invalid of {len(rows)} rows")
    warnings = mapping_warnings(effective, headers_of([r.raw for r in rows]) if rows else None)
    return ValidationResult(job=job, valid_count=valid, invalid_count=invalid, warnings=warnings)


async def commit_job(
    session: AsyncSession,
    job_id: uuid.UUID,
    *,
    sink: LeadSink | None = None,
    batch_size: int = DEFAULT_COMMIT_BATCH_SIZE,
    actor_type: str = "SYSTEM",
    actor_id: str | None = None,
    claim_ttl: timedelta = DEFAULT_COMMIT_CLAIM_TTL,
) -> CommitResult:
    """Create leads for every VALID row of a validated job.

    Committing an already COMMITTED job returns the recorded counts without
    touching the lead store.  Within one process commits of a job are
    serialised by a lock; across processes the job row carries a claim that
    only one worker can hold, refreshed after every batch.

    Progress is committed every ``batch_size`` rows.  When a later batch
    fails, the job stays VALIDATED if earlier batches created leads, so a
    retry resumes without duplicating them; otherwise it is marked FAILED.

    Args:
        session: Database session.
        job_id: The import job ID.
        sink: Lead store; defaults to the database-backed SqlLeadSink.
        batch_size: Rows per database transaction.
        actor_type: Who requested the commit, for the audit trail.
        actor_id: Identifier of the requesting user, when known.
        claim_ttl: Age after which another worker's claim may be taken over.

    Returns:
        CommitResult with created/skipped counts.

    Raises:
        JobNotFound: If the job does not exist.
        NotValidated: If the job is still in PREVIEW.
        InvalidJobState: If the job has FAILED.
        CommitInProgress: If another worker is committing the job.
    """
    token = uuid.uuid4()
    async with _commit_lock(job_id):
        with logger.contextualize(import_job=str(job_id)):
            try:
                job = await _load_job(session, job_id, for_update=True)

                if job.status == ImportStatus.COMMITTED:
                    logger.info(f"Import job {job_id} already committed; returning recorded counts")
                    return CommitResult(job=job, created_count=job.created_count, skipped_count=job.skipped_count)
                if job.status == ImportStatus.PREVIEW:
                    msg = f"Import job {job_id} must be validated before commit"
                    raise NotValidated(msg)
                check_transition(job.status, ImportStatus.COMMITTED)
                await _claim_commit(session, job, token, claim_ttl)

                before = _job_state(job)
                mapping = ColumnMapping.from_dict(job.mapping)
                sink = sink if sink is not None else SqlLeadSink(session, job)
                rows = await _load_rows(session, job_id)
                index = ContactIndex()

                for start in range(0, len(rows), batch_size):
                    batch = rows[start : start + batch_size]
                    tally = await commit_rows(batch, mapping, sink, index)
                    job.commit_claimed_at = utcnow()
                    await session.commit()
                    logger.debug(
                        f"Rows {start + 1}-{start + len(batch)}: {tally.created} created, "
                        f"{tally.skipped} skipped, {tally.already_committed} already committed"
                    )

                valid_rows = [r for r in rows if r.validation_state == RowState.VALID]
                created = sum(1 for r in valid_rows if r.committed_lead_id is not None)
                skipped = len(valid_rows) - created

                now = utcnow()
                job.status = ImportStatus.COMMITTED.value
                job.created_count = created
                job.skipped_count = skipped
                job.error_log = [
                    {"row_number": r.row_number, "reason": r.commit_note}
                    for r in valid_rows
                    if r.committed_lead_id is None and r.commit_note
                ] or None
                job.commit_owner = None
                job.commit_claimed_at = None
                job.committed_at = now
                job.updated_at = now
                await record_activity(
                    session,
                    action=IMPORT_COMMITTED,
                    entity_type=AUDIT_ENTITY,
                    entity_id=job.id,
                    before=before,
                    after=_job_state(job),
                    metadata={"created_count": created, "skipped_count": skipped},
                    actor_type=actor_type,
                    actor_id=actor_id,
                )
                await session.commit()
            except LeadImportError:
                raise
            except Exception:
                logger.exception(f"Commit of import job {job_id} failed")
                await _abort_commit(session, job_id, token)
                raise

            logger.info(f"Import job {job_id} committed: {created} created, {skipped} skipped")
    return CommitResult(job=job, created_count=created, skipped_count=skipped)


async def get_import_job(session: AsyncSession, job_id: uuid.UUID) -> ImportJob | None:
    """Get an import job by ID.

    Args:
        session: Database session.
        job_id: The import job ID.

    Returns:
        The ImportJob or None if not found.
    """
    result = await session.execute(select(ImportJob).where(ImportJob.id == job_id))
    return result.scalar_one_or_none()


async def list_import_jobs(
    session: AsyncSession,
    *,
    source: str | None = None,
    status: str | None = None,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[ImportJob], int]:
    """List import jobs newest first with optional filters.

    Args:
        session: Database session.
        source: Filter by import source.
        status: Filter by status.
        page: Page number.
        page_size: Items per page (capped at 50).

    Returns:
        Tuple of (jobs, total count).
    """
    page_size = min(page_size, MAX_LIST_PAGE_SIZE)
    query = select(ImportJob)
    count_query = select(func.count(ImportJob.id))

    if source:
        query = query.where(ImportJob.source == source)
        count_query = count_query.where(ImportJob.source == source)
    if status:
        query = query.where(ImportJob.status == status)
        count_query = count_query.where(ImportJob.status == status)

    total = (await session.execute(count_query)).scalar_one()
    offset = (page - 1) * page_size
    query = query.order_by(ImportJob.created_at.desc()).offset(offset).limit(page_size)
    result = await session.execute(query)
    jobs = list(result.scalars().all())

    return jobs, total


async def list_import_rows(
    session: AsyncSession,
    job_id: uuid.UUID,
    *,
    state: str | None = None,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[ImportRow], int]:
    """List a job's rows in row order, optionally by validation state.

    Args:
        session: Database session.
        job_id: The import job ID.
        state: Filter by validation state (PENDING, VALID, INVALID).
        page: Page number.
        page_size: Items per page.

    Returns:
        Tuple of (rows, total count).

    Raises:
        JobNotFound: If the job does not exist.
    """
    await _load_job(session, job_id)

    query = select(ImportRow).where(ImportRow.job_id == job_id)
    count_query = select(func.count(ImportRow.id)).where(ImportRow.job_id == job_id)
    if state:
        query = query.where(ImportRow.validation_state == state)
        count_query = count_query.where(ImportRow.validation_state == state)

    total = (await session.execute(count_query)).scalar_one()
    offset = (page - 1) * page_size
    result = await session.execute(query.order_by(ImportRow.row_number).offset(offset).limit(page_size))
    return list(result.scalars().all()), total


def total_pages(total: int, page_size: int) -> int:
    """Number of pages needed to show ``total`` items."""
    return max(1, math.ceil(total / page_size))


