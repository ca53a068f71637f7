"""Column mapping between spreadsheet headers and canonical lead fields.

Proposals are a pure function of the header list: exact case-insensitive
candidate match first, then substring containment in header order.
"""

from collections.abc import Mapping
from dataclasses import asdict, dataclass, fields, replace
from enum import StrEnum

from academy_crm.lib.importer.errors import WarningCode


class CanonicalField(StrEnum):
    """Lead fields a spreadsheet column can be mapped onto."""

    PRIMARY_NAME = "primary_name"
    PHONE = "phone"
    EMAIL = "email"
    PREFERRED_CENTRE = "preferred_centre"
    PROGRAMME_INTEREST = "programme_interest"


# Header candidates per field, in priority order for exact matching
FIELD_CANDIDATES: dict[CanonicalField, tuple[str, ...]] = {
    CanonicalField.PRIMARY_NAME: ("name", "full name", "player name", "customer name"),
    CanonicalField.PHONE: ("phone", "mobile", "parent phone"),
    CanonicalField.EMAIL: ("email", "mail"),
    CanonicalField.PREFERRED_CENTRE: ("preferred centre", "centre", "center", "location"),
    CanonicalField.PROGRAMME_INTEREST: (
        "programme",
        "program",
        "interest",
        "programme interest",
        "program interest",
    ),
}

assert set(FIELD_CANDIDATES) == set(CanonicalField), "FIELD_CANDIDATES must cover every CanonicalField."

# camelCase spellings accepted from API clients and stored mappings
_CAMEL_ALIASES: dict[str, CanonicalField] = {
    "primaryName": CanonicalField.PRIMARY_NAME,
    "preferredCentre": CanonicalField.PREFERRED_CENTRE,
    "programmeInterest": CanonicalField.PROGRAMME_INTEREST,
}


@dataclass(frozen=True)
class ColumnMapping:
    """Canonical field → source header.  Unmapped fields hold an empty string."""

    primary_name: str = ""
    phone: str = ""
    email: str = ""
    preferred_centre: str = ""
    programme_interest: str = ""

    def header_for(self, field: CanonicalField) -> str:
        return getattr(self, field.value)

    def resolve(self, raw: Mapping[str, str], field: CanonicalField) -> str:
        """Return the trimmed cell value mapped to ``field``, or ``""``."""
        header = self.header_for(field)
        if not header:
            return ""
        value = raw.get(header)
        return "" if value is None else str(value).strip()

    def merged(self, overrides: Mapping[str, str | None] | None) -> "ColumnMapping":
        """Apply explicit user choices on top of this mapping.

        Keys whose value is ``None`` keep the current header; an empty string
        explicitly unmaps the field.
        """
        if not overrides:
            return self
        changes = {
            field.value: value.strip()
            for key, value in overrides.items()
            if value is not None and (field := _field_for_key(key)) is not None
        }
        return replace(self, **changes)

    def to_dict(self) -> dict[str, str]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, str | None] | None) -> "ColumnMapping":
        """Build a mapping from snake_case or camelCase keys, ignoring unknown keys."""
        return cls().merged(data)

    @property
    def is_complete(self) -> bool:
        """Whether the one required field, ``primary_name``, is mapped."""
        return bool(self.primary_name)


def _field_for_key(key: str) -> CanonicalField | None:
    if key in _CAMEL_ALIASES:
        return _CAMEL_ALIASES[key]
    try:
        return CanonicalField(key)
    except ValueError:
        return None


def guess_header(headers: list[str], candidates: tuple[str, ...]) -> str:
    """Pick the header best matching a field's candidate names.

    Args:
        headers: Spreadsheet headers in file order.
        candidates: Candidate names, highest priority first.

    Returns:
        The matching header as written in the file, or ``""`` if none match.
    """
    lowered = [h.strip().lower() for h in headers]
    for candidate in candidates:
        if candidate in lowered:
            return headers[lowered.index(candidate)]

    for header, low in zip(headers, lowered, strict=True):
        if any(candidate in low for candidate in candidates):
            return header
    return ""


def propose_mapping(headers: list[str]) -> ColumnMapping:
    """Propose a column mapping for an upload's headers.

    Args:
        headers: Spreadsheet headers in file order.

    Returns:
        ColumnMapping with every canonical field guessed or left empty.
    """
    return ColumnMapping(**{field.value: guess_header(headers, FIELD_CANDIDATES[field]) for field in CanonicalField})


def mapping_warnings(mapping: ColumnMapping, headers: list[str] | None = None) -> list[dict[str, str]]:
    """Report mapping problems that do not block job creation.

    Args:
        mapping: The mapping in effect.
        headers: Headers present in the upload, when known.

    Returns:
        List of ``{"code", "message"}`` warnings.
    """
    warnings: list[dict[str, str]] = []
    if not mapping.is_complete:
        warnings.append(
            {
                "code": WarningCode.MAPPING_INCOMPLETE,
                "message": "primary_name is not mapped; every row will be invalid until it is",
            }
        )

    if headers is not None:
        known = set(headers)
        for f in fields(mapping):
            header = getattr(mapping, f.name)
            if header and header not in known:
                warnings.append(
                    {
                        "code": WarningCode.UNKNOWN_COLUMN,
                        "message": f"{f.name} is mapped to {header!r}, which is not a column in the upload",
                    }
                )
    return warnings
