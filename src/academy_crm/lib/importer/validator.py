"""Lead row validation rules.

Rules run in a fixed order and stop at the first failure, so a row reports a
single reason.
"""

import re
from collections.abc import Iterable, Mapping
from enum import StrEnum
from typing import Protocol

from loguru import logger

from academy_crm.lib.importer.errors import RowError
from academy_crm.lib.importer.mapper import CanonicalField, ColumnMapping

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+$")

MIN_PHONE_DIGITS = 7


class RowState(StrEnum):
    """Validation state of a stored import row."""

    PENDING = "PENDING"
    VALID = "VALID"
    INVALID = "INVALID"


class ValidatableRow(Protocol):
    raw: dict[str, str]
    validation_state: str
    validation_errors: list[str] | None


def normalize_phone(value: str | None) -> str | None:
    """Strip everything but digits; ``None`` when no digits remain."""
    if not value:
        return None
    digits = re.sub(r"\D", "", value)
    return digits or None


def normalize_email(value: str | None) -> str | None:
    """Trim and lower-case an email address; ``None`` when blank."""
    if not value:
        return None
    email = value.strip().lower()
    return email or None


def validate_row(raw: Mapping[str, str], mapping: ColumnMapping) -> tuple[RowState, list[str]]:
    """Validate a single raw row against a column mapping.

    Args:
        raw: Header → cell value.
        mapping: The mapping in effect.

    Returns:
        Tuple of (state, errors); errors hold at most one reason.
    """
    if not mapping.resolve(raw, CanonicalField.PRIMARY_NAME):
        return RowState.INVALID, [RowError.MISSING_NAME.value]

    email = mapping.resolve(raw, CanonicalField.EMAIL)
    if email and not _EMAIL_RE.match(email):
        return RowState.INVALID, [RowError.INVALID_EMAIL.value]

    phone = mapping.resolve(raw, CanonicalField.PHONE)
    if phone and len(normalize_phone(phone) or "") < MIN_PHONE_DIGITS:
        return RowState.INVALID, [RowError.INVALID_PHONE.value]

    return RowState.VALID, []


def validate_rows(rows: Iterable[ValidatableRow], mapping: ColumnMapping) -> tuple[int, int]:
    """Validate rows in place, overwriting any earlier annotations.

    Args:
        rows: Stored rows exposing ``raw``, ``validation_state`` and ``validation_errors``.
        mapping: The mapping in effect.

    Returns:
        Tuple of (valid_count, invalid_count).
    """
    valid = 0
    invalid = 0
    for row in rows:
        state, errors = validate_row(row.raw or {}, mapping)
        row.validation_state = state.value
        row.validation_errors = errors or None
        if state is RowState.VALID:
            valid += 1
        else:
            invalid += 1

    logger.debug(f"Validated {valid + invalid} rows ({valid} valid, {invalid} invalid)")
    return valid, invalid
