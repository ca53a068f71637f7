"""Commit engine — turns validated rows into leads through a LeadSink.

Rows are processed in ascending row number, so when two rows share a contact
the lower-numbered one is created and the later one is skipped.
"""

import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Protocol

from loguru import logger

from academy_crm.lib.importer.errors import RowError
from academy_crm.lib.importer.mapper import ColumnMapping
from academy_crm.lib.importer.sink import LeadFields, LeadSink, build_lead_fields
from academy_crm.lib.importer.validator import RowState


class CommittableRow(Protocol):
    row_number: int
    raw: dict[str, str]
    validation_state: str
    committed_lead_id: uuid.UUID | None
    commit_note: str | None


@dataclass
class CommitTally:
    """Outcome counts for one pass of ``commit_rows``."""

    created: int = 0
    skipped: int = 0
    already_committed: int = 0


class ContactIndex:
    """Normalized contacts already claimed by earlier rows of the same job."""

    def __init__(self) -> None:
        self._emails: dict[str, int] = {}
        self._phones: dict[str, int] = {}

    def owner(self, lead: LeadFields) -> int | None:
        """Row number of the earlier row sharing this lead's email or phone."""
        if lead.email and lead.email in self._emails:
            return self._emails[lead.email]
        if lead.phone and lead.phone in self._phones:
            return self._phones[lead.phone]
        return None

    def claim(self, lead: LeadFields, row_number: int) -> None:
        if lead.email:
            self._emails.setdefault(lead.email, row_number)
        if lead.phone:
            self._phones.setdefault(lead.phone, row_number)


def _skip(row: CommittableRow, reason: RowError, detail: str) -> None:
    row.commit_note = f"{reason.value}: {detail}"
    logger.debug(f"Row {row.row_number} skipped: {row.commit_note}")


async def commit_rows(
    rows: Iterable[CommittableRow],
    mapping: ColumnMapping,
    sink: LeadSink,
    index: ContactIndex | None = None,
) -> CommitTally:
    """Create leads for the VALID rows in ``rows``.

    INVALID rows are ignored.  Rows that already carry a lead id (from an
    interrupted earlier pass) are counted and seed the contact index.  A
    failure creating one lead marks that row skipped and processing continues.

    Args:
        rows: Stored rows; processed in ascending ``row_number``.
        mapping: The mapping in effect.
        sink: Lead store to check and write.
        index: Contacts claimed by earlier batches of the same job.

    Returns:
        CommitTally for this pass.
    """
    index = index if index is not None else ContactIndex()
    tally = CommitTally()

    for row in sorted(rows, key=lambda r: r.row_number):
        if row.validation_state != RowState.VALID:
            continue

        lead = build_lead_fields(row.raw or {}, mapping, row.row_number)

        if row.committed_lead_id is not None:
            index.claim(lead, row.row_number)
            tally.already_committed += 1
            continue

        row.commit_note = None

        earlier_row = index.owner(lead)
        if earlier_row is not None:
            _skip(row, RowError.DUPLICATE_CONTACT, f"same phone or email as row {earlier_row}")
            tally.skipped += 1
            continue

        existing_id = None
        if lead.has_contact:
            try:
                existing_id = await sink.find_by_contact(phone=lead.phone, email=lead.email)
            except Exception as exc:
                logger.warning(f"Duplicate check failed for row {row.row_number}: {exc}")
                _skip(row, RowError.LOOKUP_FAILED, str(exc) or type(exc).__name__)
                tally.skipped += 1
                continue
        if existing_id is not None:
            _skip(row, RowError.DUPLICATE_CONTACT, f"matches existing lead {existing_id}")
            tally.skipped += 1
            continue

        try:
            lead_id = await sink.create(lead)
        except Exception as exc:
            logger.warning(f"Lead creation failed for row {row.row_number}: {exc}")
            _skip(row, RowError.LEAD_CREATE_FAILED, str(exc) or type(exc).__name__)
            tally.skipped += 1
            continue

        row.committed_lead_id = lead_id
        index.claim(lead, row.row_number)
        tally.created += 1

    return tally
