"""Lead sink interface — the CRM store the commit engine writes into."""

import uuid
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field

from academy_crm.lib.importer.mapper import CanonicalField, ColumnMapping
from academy_crm.lib.importer.validator import normalize_email, normalize_phone


@dataclass(frozen=True)
class LeadFields:
    """Canonical lead record built from one import row.

    ``phone`` holds digits only and ``email`` is lower-cased, so they can be
    compared directly for duplicate detection.
    """

    primary_name: str
    phone: str | None = None
    email: str | None = None
    preferred_centre: str | None = None
    programme_interest: str | None = None
    row_number: int | None = None
    raw: dict[str, str] = field(default_factory=dict)

    @property
    def has_contact(self) -> bool:
        return bool(self.phone or self.email)


def build_lead_fields(raw: Mapping[str, str], mapping: ColumnMapping, row_number: int | None = None) -> LeadFields:
    """Apply a column mapping to a raw row.

    Args:
        raw: Header → cell value.
        mapping: The mapping in effect.
        row_number: 1-based row position, carried for traceability.

    Returns:
        LeadFields with normalized contact values.
    """
    return LeadFields(
        primary_name=mapping.resolve(raw, CanonicalField.PRIMARY_NAME),
        phone=normalize_phone(mapping.resolve(raw, CanonicalField.PHONE)),
        email=normalize_email(mapping.resolve(raw, CanonicalField.EMAIL)),
        preferred_centre=mapping.resolve(raw, CanonicalField.PREFERRED_CENTRE) or None,
        programme_interest=mapping.resolve(raw, CanonicalField.PROGRAMME_INTEREST) or None,
        row_number=row_number,
        raw=dict(raw),
    )


class LeadSink(ABC):
    """Abstract CRM lead store. Implementations must be safe to call once per row."""

    @abstractmethod
    async def find_by_contact(self, *, phone: str | None = None, email: str | None = None) -> uuid.UUID | None:
        """Find an existing lead sharing the normalized phone or email.

        Args:
            phone: Digits-only phone number.
            email: Lower-cased email address.

        Returns:
            The id of a matching lead, or None.
        """

    @abstractmethod
    async def create(self, lead: LeadFields) -> uuid.UUID:
        """Create a lead record.

        Args:
            lead: The canonical lead fields.

        Returns:
            The new lead's id.
        """
