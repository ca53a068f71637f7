"""Importer library public API.

Provides spreadsheet decoding, column mapping, row validation and the
lead commit engine.
"""

from academy_crm.lib.importer.committer import CommitTally, ContactIndex, commit_rows
from academy_crm.lib.importer.decoder import ImportSource, decode, decode_csv, decode_xlsx, detect_source, headers_of
from academy_crm.lib.importer.errors import (
    CommitInProgress,
    InvalidJobState,
    JobNotFound,
    LeadImportError,
    NotValidated,
    RowError,
    UnsupportedFormat,
    WarningCode,
)
from academy_crm.lib.importer.mapper import CanonicalField, ColumnMapping, mapping_warnings, propose_mapping
from academy_crm.lib.importer.sink import LeadFields, LeadSink, build_lead_fields
from academy_crm.lib.importer.status import ALLOWED_TRANSITIONS, ImportStatus, check_transition, is_terminal
from academy_crm.lib.importer.validator import (
    RowState,
    normalize_email,
    normalize_phone,
    validate_row,
    validate_rows,
)

__all__ = [
    "ALLOWED_TRANSITIONS",
    "CanonicalField",
    "ColumnMapping",
    "CommitInProgress",
    "CommitTally",
    "ContactIndex",
    "ImportSource",
    "ImportStatus",
    "InvalidJobState",
    "JobNotFound",
    "LeadFields",
    "LeadImportError",
    "LeadSink",
    "NotValidated",
    "RowError",
    "RowState",
    "UnsupportedFormat",
    "WarningCode",
    "build_lead_fields",
    "check_transition",
    "commit_rows",
    "decode",
    "decode_csv",
    "decode_xlsx",
    "detect_source",
    "headers_of",
    "is_terminal",
    "mapping_warnings",
    "normalize_email",
    "normalize_phone",
    "propose_mapping",
    "validate_row",
    "validate_rows",
]
