"""CRM lead store backed by the application database.

Implements the importer's LeadSink on top of the ``crm_leads`` and
``crm_activities`` tables.
"""

import uuid

from loguru import logger
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from academy_crm.lib.importer import LeadFields, LeadSink
from academy_crm.models.crm_lead import CrmActivity, CrmLead
from academy_crm.models.import_job import ImportJob


class SqlLeadSink(LeadSink):
    """LeadSink writing CrmLead rows plus an IMPORTED activity per lead.

    Each lookup and each ``create`` runs in a SAVEPOINT so a rejected
    statement leaves the surrounding commit transaction usable.

    Args:
        session: Database session shared with the import job.
        job: The import job leads are attributed to.
    """

    def __init__(self, session: AsyncSession, job: ImportJob) -> None:
        self._session = session
        self._job = job

    async def find_by_contact(self, *, phone: str | None = None, email: str | None = None) -> uuid.UUID | None:
        conditions = []
        if phone:
            conditions.append(CrmLead.phone == phone)
        if email:
            conditions.append(func.lower(CrmLead.email) == email.lower())
        if not conditions:
            return None

        async with self._session.begin_nested():
            result = await self._session.execute(
                select(CrmLead.id).where(or_(*conditions)).order_by(CrmLead.created_at).limit(1)
            )
        return result.scalar_one_or_none()

    async def create(self, lead: LeadFields) -> uuid.UUID:
        job = self._job
        async with self._session.begin_nested():
            record = CrmLead(
                id=uuid.uuid4(),
                source_type="IMPORT",
                primary_name=lead.primary_name,
                phone=lead.phone,
                email=lead.email,
                preferred_centre=lead.preferred_centre,
                programme_interest=lead.programme_interest,
                import_job_id=job.id,
                import_row_number=lead.row_number,
                raw=lead.raw or None,
            )
            self._session.add(record)
            self._session.add(
                CrmActivity(
                    lead_id=record.id,
                    type="IMPORTED",
                    title="Imported",
                    body=f"Imported from {job.source}" + (f" ({job.filename})" if job.filename else ""),
                    activity_metadata={"import_job_id": str(job.id), "row_number": lead.row_number},
                )
            )
        logger.debug(f"Created lead {record.id} from import {job.id} row {lead.row_number}")
        return record.id


async def count_leads(session: AsyncSession, *, import_job_id: uuid.UUID | None = None) -> int:
    """Count CRM leads, optionally only those created by one import job.

    Args:
        session: Database session.
        import_job_id: Restrict to leads attributed to this job.

    Returns:
        Number of matching leads.
    """
    query = select(func.count(CrmLead.id))
    if import_job_id is not None:
        query = query.where(CrmLead.import_job_id == import_job_id)
    return (await session.execute(query)).scalar_one()
