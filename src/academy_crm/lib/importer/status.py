"""Import job status machine.

``PREVIEW → VALIDATED → COMMITTED`` with ``FAILED`` reachable from any
non-terminal state.  No backward transitions.
"""

from enum import StrEnum

from academy_crm.lib.importer.errors import InvalidJobState


class ImportStatus(StrEnum):
    """Lifecycle status of an import job."""

    PREVIEW = "PREVIEW"
    VALIDATED = "VALIDATED"
    COMMITTED = "COMMITTED"
    FAILED = "FAILED"


# Re-validating a VALIDATED job keeps it VALIDATED
ALLOWED_TRANSITIONS: dict[ImportStatus, frozenset[ImportStatus]] = {
    ImportStatus.PREVIEW: frozenset({ImportStatus.VALIDATED, ImportStatus.FAILED}),
    ImportStatus.VALIDATED: frozenset({ImportStatus.VALIDATED, ImportStatus.COMMITTED, ImportStatus.FAILED}),
    ImportStatus.COMMITTED: frozenset(),
    ImportStatus.FAILED: frozenset(),
}

assert set(ALLOWED_TRANSITIONS) == set(ImportStatus), "ALLOWED_TRANSITIONS must cover every ImportStatus."


def is_terminal(status: ImportStatus | str) -> bool:
    """Whether no further transition is possible from ``status``."""
    return not ALLOWED_TRANSITIONS[ImportStatus(status)]


def check_transition(current: ImportStatus | str, target: ImportStatus | str) -> ImportStatus:
    """Validate a status change.

    Args:
        current: The job's present status.
        target: The requested status.

    Returns:
        The target status.

    Raises:
        InvalidJobState: If the transition is not permitted.
    """
    current = ImportStatus(current)
    target = ImportStatus(target)
    if target not in ALLOWED_TRANSITIONS[current]:
        msg = f"Import job cannot move from {current} to {target}"
        raise InvalidJobState(msg)
    return target
