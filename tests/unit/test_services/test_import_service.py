"""Unit tests for the lead import service against an in-memory database."""

import asyncio
import uuid
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from academy_crm.lib.importer import (
    ColumnMapping,
    CommitInProgress,
    ImportStatus,
    InvalidJobState,
    JobNotFound,
    NotValidated,
    RowState,
    WarningCode,
)
from academy_crm.models.base import utcnow
from academy_crm.models.crm_lead import CrmActivity, CrmLead
from academy_crm.models.import_job import ImportJob, ImportRow
from academy_crm.services import audit_service, import_service
from academy_crm.services.lead_service import SqlLeadSink, count_leads

SCENARIO_ROWS = [
    {"name": "Asha", "phone": "9999999999", "email": "asha@x.com"},
    {"name": "Bala", "phone": "", "email": "bad-email"},
]
SCENARIO_MAPPING = ColumnMapping(primary_name="name", phone="phone", email="email")
DISTINCT_ROWS = [{"name": name, "phone": "", "email": f"{name.lower()}@x.com"} for name in ("Asha", "Bala", "Chitra")]


async def _preview(session: AsyncSession, rows: list[dict], mapping: ColumnMapping | None = SCENARIO_MAPPING, **kw):
    return await import_service.create_preview(
        session, source="csv_upload", filename="leads.csv", rows=rows, mapping=mapping, **kw
    )


async def _stored_rows(session: AsyncSession, job_id: uuid.UUID) -> list[ImportRow]:
    result = await session.execute(select(ImportRow).where(ImportRow.job_id == job_id).order_by(ImportRow.row_number))
    return list(result.scalars().all())


async def _validated_job(session: AsyncSession, rows: list[dict] = SCENARIO_ROWS) -> uuid.UUID:
    preview = await _preview(session, rows)
    await import_service.validate_job(session, preview.job.id)
    return preview.job.id


async def _claim_by_other_worker(session: AsyncSession, job_id: uuid.UUID, *, age: timedelta) -> None:
    await session.execute(
        update(ImportJob)
        .where(ImportJob.id == job_id)
        .values(commit_owner=uuid.uuid4(), commit_claimed_at=utcnow() - age)
    )
    await session.commit()


def _failing_after(batches: int):
    """A commit_rows that processes ``batches`` batches normally, then fails mid-batch."""
    real_commit_rows = import_service.commit_rows
    calls = 0

    async def commit_rows(*args, **kwargs):
        nonlocal calls
        calls += 1
        tally = await real_commit_rows(*args, **kwargs)
        if calls > batches:
            msg = "connection reset by peer"
            raise ConnectionResetError(msg)
        return tally

    return commit_rows


class _TimeoutLookupSink(SqlLeadSink):
    """SqlLeadSink whose duplicate check times out for one email."""

    def __init__(self, session: AsyncSession, job: ImportJob, failing_email: str) -> None:
        super().__init__(session, job)
        self._failing_email = failing_email

    async def find_by_contact(self, *, phone: str | None = None, email: str | None = None) -> uuid.UUID | None:
        if email == self._failing_email:
            msg = "statement timeout"
            raise TimeoutError(msg)
        return await super().find_by_contact(phone=phone, email=email)


class TestCreatePreview:
    """Tests for create_preview."""

    async def test_snapshots_every_row(self, async_session: AsyncSession) -> None:
        result = await _preview(async_session, SCENARIO_ROWS)
        job = result.job

        assert job.status == ImportStatus.PREVIEW
        assert job.preview_count == 2
        assert (job.valid_count, job.invalid_count, job.created_count, job.skipped_count) == (0, 0, 0, 0)
        assert job.mapping == SCENARIO_MAPPING.to_dict()

        rows = await _stored_rows(async_session, job.id)
        assert [r.row_number for r in rows] == [1, 2]
        assert rows[1].raw == {"name": "Bala", "phone": "", "email": "bad-email"}
        assert all(r.validation_state == RowState.PENDING for r in rows)
        assert result.warnings == []

    async def test_preview_rows_limited(self, async_session: AsyncSession) -> None:
        rows = [{"name": f"Lead {i}"} for i in range(10)]
        result = await _preview(async_session, rows, preview_size=3)
        assert [r.row_number for r in result.preview_rows] == [1, 2, 3]
        assert result.job.preview_count == 10

    async def test_proposes_mapping_when_omitted(self, async_session: AsyncSession) -> None:
        result = await _preview(async_session, [{"Player Name": "Asha", "Mobile": "9999999999"}], mapping=None)
        assert result.job.mapping["primary_name"] == "Player Name"
        assert result.job.mapping["phone"] == "Mobile"

    async def test_cell_values_stored_as_strings(self, async_session: AsyncSession) -> None:
        result = await _preview(async_session, [{"name": "Asha", "phone": 9999999999, "email": None}])
        rows = await _stored_rows(async_session, result.job.id)
        assert rows[0].raw == {"name": "Asha", "phone": "9999999999", "email": ""}

    async def test_truncates_oversized_upload(self, async_session: AsyncSession) -> None:
        rows = [{"name": f"Lead {i}"} for i in range(7)]
        result = await _preview(async_session, rows, max_rows=5)
        assert result.job.preview_count == 5
        assert [w["code"] for w in result.warnings] == [WarningCode.ROWS_TRUNCATED]

    async def test_incomplete_mapping_warns(self, async_session: AsyncSession) -> None:
        result = await _preview(async_session, SCENARIO_ROWS, mapping=ColumnMapping(phone="phone"))
        assert result.job.status == ImportStatus.PREVIEW
        assert WarningCode.MAPPING_INCOMPLETE in [w["code"] for w in result.warnings]

    async def test_empty_upload(self, async_session: AsyncSession) -> None:
        result = await _preview(async_session, [])
        assert result.job.preview_count == 0
        assert result.preview_rows == []


class TestValidateJob:
    """Tests for validate_job."""

    async def test_scenario_counts(self, async_session: AsyncSession) -> None:
        preview = await _preview(async_session, SCENARIO_ROWS)
        result = await import_service.validate_job(async_session, preview.job.id)

        assert (result.valid_count, result.invalid_count) == (1, 1)
        assert result.job.status == ImportStatus.VALIDATED
        assert result.job.validated_at is not None

        rows = await _stored_rows(async_session, preview.job.id)
        assert rows[0].validation_state == RowState.VALID
        assert rows[1].validation_state == RowState.INVALID
        assert rows[1].validation_errors == ["invalid email"]

    async def test_supplied_mapping_replaces_stored(self, async_session: AsyncSession) -> None:
        preview = await _preview(async_session, SCENARIO_ROWS, mapping=ColumnMapping(phone="phone"))
        first = await import_service.validate_job(async_session, preview.job.id)
        assert (first.valid_count, first.invalid_count) == (0, 2)

        second = await import_service.validate_job(async_session, preview.job.id, SCENARIO_MAPPING)
        assert (second.valid_count, second.invalid_count) == (1, 1)
        assert second.job.mapping == SCENARIO_MAPPING.to_dict()
        assert second.job.status == ImportStatus.VALIDATED

    async def test_row_count_invariant(self, async_session: AsyncSession) -> None:
        rows = [{"name": "Asha"}, {"name": ""}, {"name": "Chitra", "phone": "12"}]
        preview = await _preview(async_session, rows)
        result = await import_service.validate_job(async_session, preview.job.id)
        assert result.valid_count + result.invalid_count == preview.job.preview_count == 3

    async def test_committed_job_only_recomputes_counts(self, async_session: AsyncSession) -> None:
        preview = await _preview(async_session, SCENARIO_ROWS)
        await import_service.validate_job(async_session, preview.job.id)
        await import_service.commit_job(async_session, preview.job.id)

        result = await import_service.validate_job(async_session, preview.job.id, ColumnMapping(phone="phone"))
        assert (result.valid_count, result.invalid_count) == (1, 1)
        assert result.job.status == ImportStatus.COMMITTED
        assert result.job.mapping == SCENARIO_MAPPING.to_dict()
        assert await count_leads(async_session) == 1

    async def test_unknown_job(self, async_session: AsyncSession) -> None:
        with pytest.raises(JobNotFound):
            await import_service.validate_job(async_session, uuid.uuid4())

    async def test_unexpected_error_marks_job_failed(self, async_session: AsyncSession) -> None:
        preview = await _preview(async_session, SCENARIO_ROWS)
        with (
            patch("academy_crm.services.import_service.validate_rows", side_effect=RuntimeError("boom")),
            pytest.raises(RuntimeError, match="boom"),
        ):
            await import_service.validate_job(async_session, preview.job.id)

        job = await import_service.get_import_job(async_session, preview.job.id)
        assert job is not None
        assert job.status == ImportStatus.FAILED

        with pytest.raises(InvalidJobState):
            await import_service.validate_job(async_session, preview.job.id)

    async def test_revalidation_keeps_rows_that_hold_leads(self, async_session: AsyncSession) -> None:
        """Rows committed before an interruption stay VALID under a new mapping."""
        job_id = await _validated_job(async_session, DISTINCT_ROWS)
        with (
            patch("academy_crm.services.import_service.commit_rows", new=_failing_after(1)),
            pytest.raises(ConnectionResetError),
        ):
            await import_service.commit_job(async_session, job_id, batch_size=1)

        result = await import_service.validate_job(async_session, job_id, ColumnMapping(email="email"))
        assert (result.valid_count, result.invalid_count) == (1, 2)

        rows = await _stored_rows(async_session, job_id)
        assert rows[0].committed_lead_id is not None
        assert rows[0].validation_state == RowState.VALID
        assert [r.validation_state for r in rows[1:]] == [RowState.INVALID, RowState.INVALID]

        committed = await import_service.commit_job(async_session, job_id)
        assert (committed.created_count, committed.skipped_count) == (1, 0)
        assert committed.created_count == await count_leads(async_session, import_job_id=job_id)

    async def test_refused_while_commit_claimed(self, async_session: AsyncSession) -> None:
        job_id = await _validated_job(async_session)
        await _claim_by_other_worker(async_session, job_id, age=timedelta(seconds=5))

        with pytest.raises(CommitInProgress):
            await import_service.validate_job(async_session, job_id, ColumnMapping(phone="phone"))

        rows = await _stored_rows(async_session, job_id)
        assert rows[0].validation_state == RowState.VALID

    async def test_stale_claim_does_not_block(self, async_session: AsyncSession) -> None:
        job_id = await _validated_job(async_session)
        await _claim_by_other_worker(async_session, job_id, age=timedelta(hours=1))

        result = await import_service.validate_job(async_session, job_id)
        assert result.job.status == ImportStatus.VALIDATED


class TestCommitJob:
    """Tests for commit_job."""

    async def test_scenario_commit(self, async_session: AsyncSession) -> None:
        preview = await _preview(async_session, SCENARIO_ROWS)
        await import_service.validate_job(async_session, preview.job.id)
        result = await import_service.commit_job(async_session, preview.job.id)

        assert (result.created_count, result.skipped_count) == (1, 0)
        assert result.job.status == ImportStatus.COMMITTED
        assert result.job.committed_at is not None

        lead = (await async_session.execute(select(CrmLead))).scalar_one()
        assert lead.primary_name == "Asha"
        assert lead.phone == "9999999999"
        assert lead.email == "asha@x.com"
        assert lead.stage == "NEW"
        assert lead.status == "OPEN"
        assert lead.import_job_id == preview.job.id
        assert lead.import_row_number == 1

        activity = (await async_session.execute(select(CrmActivity))).scalar_one()
        assert activity.lead_id == lead.id
        assert activity.type == "IMPORTED"
        assert activity.body == "Imported from csv_upload (leads.csv)"

        rows = await _stored_rows(async_session, preview.job.id)
        assert rows[0].committed_lead_id == lead.id
        assert rows[1].committed_lead_id is None

    async def test_duplicate_email_rows(self, async_session: AsyncSession) -> None:
        rows = [
            {"name": "Asha", "phone": "", "email": "dup@x.com"},
            {"name": "Bala", "phone": "", "email": "DUP@x.com"},
        ]
        preview = await _preview(async_session, rows)
        await import_service.validate_job(async_session, preview.job.id)
        result = await import_service.commit_job(async_session, preview.job.id)

        assert (result.created_count, result.skipped_count) == (1, 1)
        assert await count_leads(async_session) == 1
        assert result.job.error_log == [
            {"row_number": 2, "reason": "duplicate contact: same phone or email as row 1"},
        ]

    async def test_duplicate_of_lead_from_earlier_job(self, async_session: AsyncSession) -> None:
        first = await _preview(async_session, SCENARIO_ROWS)
        await import_service.validate_job(async_session, first.job.id)
        await import_service.commit_job(async_session, first.job.id)

        second = await _preview(async_session, [{"name": "Asha K", "phone": "99999 99999", "email": ""}])
        await import_service.validate_job(async_session, second.job.id)
        result = await import_service.commit_job(async_session, second.job.id)

        assert (result.created_count, result.skipped_count) == (0, 1)
        assert await count_leads(async_session) == 1

    async def test_commit_is_idempotent(self, async_session: AsyncSession) -> None:
        preview = await _preview(async_session, SCENARIO_ROWS)
        await import_service.validate_job(async_session, preview.job.id)

        first = await import_service.commit_job(async_session, preview.job.id)
        leads_after_first = await count_leads(async_session)
        second = await import_service.commit_job(async_session, preview.job.id)

        assert (second.created_count, second.skipped_count) == (first.created_count, first.skipped_count)
        assert await count_leads(async_session) == leads_after_first

    async def test_small_batches_give_same_counts(self, async_session: AsyncSession) -> None:
        rows = [{"name": f"Lead {i}", "phone": f"98765{i:05d}", "email": ""} for i in range(5)]
        rows.append({"name": "Copy", "phone": "9876500000", "email": ""})
        preview = await _preview(async_session, rows)
        await import_service.validate_job(async_session, preview.job.id)
        result = await import_service.commit_job(async_session, preview.job.id, batch_size=2)

        assert (result.created_count, result.skipped_count) == (5, 1)

    async def test_preview_job_not_validated(self, async_session: AsyncSession) -> None:
        preview = await _preview(async_session, SCENARIO_ROWS)
        with pytest.raises(NotValidated):
            await import_service.commit_job(async_session, preview.job.id)

        job = await import_service.get_import_job(async_session, preview.job.id)
        assert job is not None
        assert job.status == ImportStatus.PREVIEW
        assert await count_leads(async_session) == 0

    async def test_unknown_job(self, async_session: AsyncSession) -> None:
        with pytest.raises(JobNotFound):
            await import_service.commit_job(async_session, uuid.uuid4())

    async def test_uses_supplied_sink(self, async_session: AsyncSession) -> None:
        preview = await _preview(async_session, SCENARIO_ROWS)
        await import_service.validate_job(async_session, preview.job.id)

        lead_id = uuid.uuid4()
        sink = AsyncMock()
        sink.find_by_contact.return_value = None
        sink.create.return_value = lead_id

        result = await import_service.commit_job(async_session, preview.job.id, sink=sink)
        assert result.created_count == 1
        sink.create.assert_awaited_once()
        rows = await _stored_rows(async_session, preview.job.id)
        assert rows[0].committed_lead_id == lead_id

    async def test_unexpected_error_marks_job_failed(self, async_session: AsyncSession) -> None:
        preview = await _preview(async_session, SCENARIO_ROWS)
        await import_service.validate_job(async_session, preview.job.id)

        with (
            patch("academy_crm.services.import_service.commit_rows", side_effect=RuntimeError("db gone")),
            pytest.raises(RuntimeError),
        ):
            await import_service.commit_job(async_session, preview.job.id)

        job = await import_service.get_import_job(async_session, preview.job.id)
        assert job is not None
        assert job.status == ImportStatus.FAILED
        with pytest.raises(InvalidJobState):
            await import_service.commit_job(async_session, preview.job.id)

    async def test_lookup_failure_skips_row_and_finishes(self, async_session: AsyncSession) -> None:
        rows = [{"name": name, "phone": "", "email": f"{name.lower()}@x.com"} for name in ("A", "B", "C", "D", "E")]
        job_id = await _validated_job(async_session, rows)
        job = await import_service.get_import_job(async_session, job_id)
        assert job is not None

        sink = _TimeoutLookupSink(async_session, job, failing_email="c@x.com")
        result = await import_service.commit_job(async_session, job_id, sink=sink, batch_size=1)

        assert result.job.status == ImportStatus.COMMITTED
        assert (result.created_count, result.skipped_count) == (4, 1)
        assert await count_leads(async_session) == 4
        assert result.job.error_log == [{"row_number": 3, "reason": "duplicate check failed: statement timeout"}]

    async def test_interrupted_commit_stays_retryable(self, async_session: AsyncSession) -> None:
        """Leads from finished batches survive; the job stays VALIDATED and a retry completes it."""
        job_id = await _validated_job(async_session, DISTINCT_ROWS)

        with (
            patch("academy_crm.services.import_service.commit_rows", new=_failing_after(1)),
            pytest.raises(ConnectionResetError),
        ):
            await import_service.commit_job(async_session, job_id, batch_size=1)

        job = await import_service.get_import_job(async_session, job_id)
        assert job is not None
        assert job.status == ImportStatus.VALIDATED
        assert job.created_count == 1
        assert job.commit_owner is None
        assert await count_leads(async_session) == 1

        result = await import_service.commit_job(async_session, job_id, batch_size=1)
        assert result.job.status == ImportStatus.COMMITTED
        assert (result.created_count, result.skipped_count) == (3, 0)
        assert await count_leads(async_session) == 3


class TestListing:
    """Tests for job and row listing."""

    async def test_jobs_newest_first(self, async_session: AsyncSession) -> None:
        ids = [(await _preview(async_session, [{"name": str(i)}])).job.id for i in range(3)]
        jobs, total = await import_service.list_import_jobs(async_session)
        assert total == 3
        assert [j.id for j in jobs] == list(reversed(ids))

    async def test_jobs_filter_and_cap(self, async_session: AsyncSession) -> None:
        preview = await _preview(async_session, SCENARIO_ROWS)
        await _preview(async_session, SCENARIO_ROWS)
        await import_service.validate_job(async_session, preview.job.id)

        jobs, total = await import_service.list_import_jobs(async_session, status=ImportStatus.VALIDATED)
        assert total == 1
        assert jobs[0].id == preview.job.id

        jobs, _ = await import_service.list_import_jobs(async_session, page_size=500)
        assert len(jobs) == 2

    async def test_rows_by_state(self, async_session: AsyncSession) -> None:
        preview = await _preview(async_session, SCENARIO_ROWS)
        await import_service.validate_job(async_session, preview.job.id)

        rows, total = await import_service.list_import_rows(async_session, preview.job.id, state=RowState.INVALID)
        assert total == 1
        assert rows[0].row_number == 2

    async def test_rows_unknown_job(self, async_session: AsyncSession) -> None:
        with pytest.raises(JobNotFound):
            await import_service.list_import_rows(async_session, uuid.uuid4())

    async def test_get_missing_job(self, async_session: AsyncSession) -> None:
        assert await import_service.get_import_job(async_session, uuid.uuid4()) is None

    def test_total_pages(self) -> None:
        assert import_service.total_pages(0, 20) == 1
        assert import_service.total_pages(41, 20) == 3


class TestCommitLock:
    """Tests for the per-job commit lock registry."""

    def test_same_lock_per_job(self) -> None:
        job_id = uuid.uuid4()
        lock = import_service._commit_lock(job_id)
        assert import_service._commit_lock(job_id) is lock
        assert import_service._commit_lock(uuid.uuid4()) is not lock


def test_import_job_summary() -> None:
    job = ImportJob(preview_count=3, valid_count=2, invalid_count=1, created_count=1, skipped_count=1)
    assert job.summary == {
        "preview_count": 3,
        "valid_count": 2,
        "invalid_count": 1,
        "created_count": 1,
        "skipped_count": 1,
    }


class TestCommitClaim:
    """Tests for the cross-worker commit claim."""

    async def test_live_claim_refuses_commit(self, async_session: AsyncSession) -> None:
        job_id = await _validated_job(async_session)
        await _claim_by_other_worker(async_session, job_id, age=timedelta(seconds=5))

        with pytest.raises(CommitInProgress):
            await import_service.commit_job(async_session, job_id)

        job = await import_service.get_import_job(async_session, job_id)
        assert job is not None
        assert job.status == ImportStatus.VALIDATED
        assert await count_leads(async_session) == 0

    async def test_stale_claim_is_taken_over(self, async_session: AsyncSession) -> None:
        job_id = await _validated_job(async_session)
        await _claim_by_other_worker(async_session, job_id, age=timedelta(minutes=30))

        result = await import_service.commit_job(async_session, job_id)
        assert result.job.status == ImportStatus.COMMITTED
        assert result.created_count == 1

    async def test_claim_ttl_is_configurable(self, async_session: AsyncSession) -> None:
        job_id = await _validated_job(async_session)
        await _claim_by_other_worker(async_session, job_id, age=timedelta(seconds=90))

        result = await import_service.commit_job(async_session, job_id, claim_ttl=timedelta(minutes=1))
        assert result.job.status == ImportStatus.COMMITTED

    async def test_claim_released_after_commit(self, async_session: AsyncSession) -> None:
        job_id = await _validated_job(async_session)
        result = await import_service.commit_job(async_session, job_id)
        assert result.job.commit_owner is None
        assert result.job.commit_claimed_at is None

    async def test_concurrent_commits_create_each_lead_once(
        self, async_session: AsyncSession, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        job_id = await _validated_job(async_session, DISTINCT_ROWS)

        async with session_factory() as first, session_factory() as second:
            results = await asyncio.gather(
                import_service.commit_job(first, job_id),
                import_service.commit_job(second, job_id),
            )

        assert [(r.created_count, r.skipped_count) for r in results] == [(3, 0), (3, 0)]
        assert await count_leads(async_session) == 3


class TestAuditTrail:
    """Tests for the audit records written by validate and commit."""

    async def test_validation_recorded(self, async_session: AsyncSession) -> None:
        job_id = await _validated_job(async_session)

        logs, total = await audit_service.list_activities(async_session, entity_id=job_id)
        assert total == 1
        log = logs[0]
        assert log.action == import_service.IMPORT_VALIDATED
        assert log.entity_type == "ImportJob"
        assert log.actor_type == "SYSTEM"
        assert log.before["status"] == ImportStatus.PREVIEW
        assert log.after["status"] == ImportStatus.VALIDATED
        assert log.audit_metadata == {"valid_count": 1, "invalid_count": 1}

    async def test_commit_recorded_with_actor(self, async_session: AsyncSession) -> None:
        job_id = await _validated_job(async_session)
        await import_service.commit_job(async_session, job_id, actor_type="CRM", actor_id="coach-7")

        logs, total = await audit_service.list_activities(
            async_session, entity_id=job_id, action=import_service.IMPORT_COMMITTED
        )
        assert total == 1
        assert logs[0].actor_type == "CRM"
        assert logs[0].actor_id == "coach-7"
        assert logs[0].before["status"] == ImportStatus.VALIDATED
        assert logs[0].after["created_count"] == 1
        assert logs[0].audit_metadata == {"created_count": 1, "skipped_count": 0}

    async def test_repeated_commit_not_recorded_again(self, async_session: AsyncSession) -> None:
        job_id = await _validated_job(async_session)
        await import_service.commit_job(async_session, job_id)
        await import_service.commit_job(async_session, job_id)

        _, total = await audit_service.list_activities(
            async_session, entity_id=job_id, action=import_service.IMPORT_COMMITTED
        )
        assert total == 1

    async def test_failed_validation_leaves_no_record(self, async_session: AsyncSession) -> None:
        preview = await _preview(async_session, SCENARIO_ROWS)
        with (
            patch("academy_crm.services.import_service.validate_rows", side_effect=RuntimeError("boom")),
            pytest.raises(RuntimeError),
        ):
            await import_service.validate_job(async_session, preview.job.id)

        _, total = await audit_service.list_activities(async_session, entity_id=preview.job.id)
        assert total == 0
