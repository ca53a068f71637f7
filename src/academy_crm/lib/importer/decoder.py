"""Spreadsheet decoding for lead uploads.

Turns an uploaded CSV (text or bytes) or XLSX workbook into an ordered list of
raw row records keyed by header.  Every cell is returned as a string; no
numeric or date coercion happens at this stage.
"""

import io
import zipfile
from enum import StrEnum
from pathlib import PurePath

import pandas as pd
from loguru import logger

from academy_crm.lib.importer.errors import UnsupportedFormat

RawRow = dict[str, str]

# XLSX workbooks are ZIP containers
_XLSX_SIGNATURE = b"PK\x03\x04"


class ImportSource(StrEnum):
    """Where an import job's rows came from."""

    CSV_UPLOAD = "csv_upload"
    XLSX_UPLOAD = "xlsx_upload"


_EXTENSION_SOURCES: dict[str, ImportSource] = {
    ".csv": ImportSource.CSV_UPLOAD,
    ".xlsx": ImportSource.XLSX_UPLOAD,
}


def detect_source(filename: str) -> ImportSource:
    """Map an upload filename to its import source.

    Args:
        filename: Original upload filename.

    Returns:
        The matching ImportSource.

    Raises:
        UnsupportedFormat: If the extension is not .csv or .xlsx.
    """
    suffix = PurePath(filename).suffix.lower()
    try:
        return _EXTENSION_SOURCES[suffix]
    except KeyError:
        msg = f"Unsupported file type {suffix or '(none)'!r}; upload a .csv or .xlsx file"
        raise UnsupportedFormat(msg) from None


def _decode_text(content: bytes) -> str:
    for encoding in ("utf-8-sig", "latin-1"):
        try:
            text = content.decode(encoding)
        except UnicodeDecodeError:
            continue
        logger.debug(f"Decoded CSV upload as {encoding}")
        return text
    msg = "Cannot detect CSV text encoding"
    raise UnsupportedFormat(msg)


def _check_headers(headers: list[str]) -> None:
    seen: set[str] = set()
    for header in headers:
        if not header:
            continue
        if header in seen:
            msg = f"Duplicate column header {header!r}; rename one of the columns"
            raise UnsupportedFormat(msg)
        seen.add(header)


def _frame_to_rows(frame: pd.DataFrame) -> list[RawRow]:
    """Key each data row of a headerless frame by the first non-blank row.

    Blank rows are dropped.  A value under a column with a blank header would
    be lost, so it is rejected instead.

    Raises:
        UnsupportedFormat: On a duplicate header or a value without a header.
    """
    lines = [[str(v) for v in values] for values in frame.fillna("").to_numpy().tolist()]
    lines = [values for values in lines if any(v.strip() for v in values)]
    if not lines:
        return []

    headers = [h.strip() for h in lines[0]]
    _check_headers(headers)

    rows: list[RawRow] = []
    for values in lines[1:]:
        row: RawRow = {}
        for header, value in zip(headers, values, strict=True):
            if header:
                row[header] = value
            elif value.strip():
                msg = f"Row {len(rows) + 1} has a value in a column without a header"
                raise UnsupportedFormat(msg)
        rows.append(row)
    return rows


def decode_csv(content: str | bytes) -> list[RawRow]:
    """Decode CSV content into raw row records.

    Quoted fields may contain commas, newlines and doubled quotes; a record
    ends only once its quotes are balanced.  Blank lines are dropped and the
    first non-blank line is the header.  A record with more fields than the
    header is rejected rather than truncated.

    Args:
        content: CSV text, or raw bytes (UTF-8 with optional BOM, else Latin-1).

    Returns:
        Row records in file order.

    Raises:
        UnsupportedFormat: If the content cannot be parsed as CSV, has a
            record longer than its header, or repeats a header.
    """
    text = _decode_text(content) if isinstance(content, bytes) else content
    if not text.strip():
        return []

    try:
        frame = pd.read_csv(
            io.StringIO(text),
            sep=",",
            quotechar='"',
            doublequote=True,
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
            header=None,
        )
    except pd.errors.EmptyDataError:
        return []
    except pd.errors.ParserError as exc:
        msg = f"Could not parse CSV: {exc}"
        raise UnsupportedFormat(msg) from exc

    return _frame_to_rows(frame)


def decode_xlsx(content: bytes) -> list[RawRow]:
    """Decode the first worksheet of an XLSX workbook into raw row records.

    Args:
        content: Workbook bytes.

    Returns:
        Row records in sheet order; empty cells become empty strings.

    Raises:
        UnsupportedFormat: If the bytes are not a readable XLSX workbook, or
            the sheet repeats a header or has values under a blank header.
    """
    if not content.startswith(_XLSX_SIGNATURE):
        msg = "File is not an XLSX workbook"
        raise UnsupportedFormat(msg)

    try:
        frame = pd.read_excel(
            io.BytesIO(content),
            sheet_name=0,
            header=None,
            dtype=str,
            keep_default_na=False,
            engine="openpyxl",
        )
    except (ValueError, KeyError, OSError, zipfile.BadZipFile) as exc:
        msg = f"Could not read XLSX workbook: {exc}"
        raise UnsupportedFormat(msg) from exc

    return _frame_to_rows(frame)


def decode(content: str | bytes, source: ImportSource | str) -> list[RawRow]:
    """Decode an uploaded spreadsheet into ordered raw row records.

    Args:
        content: File contents (text is accepted for CSV only).
        source: The import source the content belongs to.

    Returns:
        Row records; record ``i`` is data row ``i + 1``.

    Raises:
        UnsupportedFormat: If the source is unknown or the content is unreadable.
    """
    try:
        source = ImportSource(source)
    except ValueError:
        msg = f"Unsupported import source: {source!r}"
        raise UnsupportedFormat(msg) from None

    if source is ImportSource.XLSX_UPLOAD:
        if isinstance(content, str):
            msg = "XLSX content must be binary"
            raise UnsupportedFormat(msg)
        rows = decode_xlsx(content)
    else:
        rows = decode_csv(content)

    logger.info(f"Decoded {len(rows)} rows from {source} upload")
    return rows


def headers_of(rows: list[RawRow]) -> list[str]:
    """Return the ordered header list of decoded rows."""
    headers: list[str] = []
    seen: set[str] = set()
    for row in rows:
        for key in row:
            if key not in seen:
                seen.add(key)
                headers.append(key)
    return headers
