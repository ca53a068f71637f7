"""Unit tests for the spreadsheet decoder module."""

import io

import pytest
from openpyxl import Workbook

from academy_crm.lib.importer.decoder import (
    ImportSource,
    decode,
    decode_csv,
    decode_xlsx,
    detect_source,
    headers_of,
)
from academy_crm.lib.importer.errors import UnsupportedFormat


def _workbook_bytes(rows: list[list[object]]) -> bytes:
    wb = Workbook()
    ws = wb.active
    for row in rows:
        ws.append(row)
    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


class TestDetectSource:
    """Tests for filename → import source detection."""

    def test_csv(self) -> None:
        assert detect_source("leads.csv") is ImportSource.CSV_UPLOAD

    def test_xlsx_case_insensitive(self) -> None:
        assert detect_source("Leads.XLSX") is ImportSource.XLSX_UPLOAD

    @pytest.mark.parametrize("filename", ["leads.xls", "leads.json", "leads"])
    def test_unsupported_extension(self, filename: str) -> None:
        with pytest.raises(UnsupportedFormat):
            detect_source(filename)


class TestDecodeCsv:
    """Tests for CSV decoding."""

    def test_basic_rows(self) -> None:
        rows = decode_csv("Name,Phone\nAsha,98765 43210\nBala,91234 56789\n")
        assert rows == [
            {"Name": "Asha", "Phone": "98765 43210"},
            {"Name": "Bala", "Phone": "91234 56789"},
        ]

    def test_quoted_comma_and_doubled_quote(self) -> None:
        """Doubled quotes inside a quoted field decode to a single quote."""
        rows = decode_csv('Name,Notes\nAsha,"He said, ""hi"""\n')
        assert rows[0]["Notes"] == 'He said, "hi"'

    def test_quoted_newline_stays_in_one_record(self) -> None:
        rows = decode_csv('Name,Notes\nAsha,"line one\nline two"\nBala,plain\n')
        assert len(rows) == 2
        assert rows[0]["Notes"] == "line one\nline two"
        assert rows[1]["Name"] == "Bala"

    def test_blank_lines_dropped(self) -> None:
        rows = decode_csv("\n\nName,Phone\n\nAsha,123\n\n,\nBala,456\n")
        assert [r["Name"] for r in rows] == ["Asha", "Bala"]

    def test_headers_trimmed(self) -> None:
        rows = decode_csv(" Name , Email \nAsha,a@x.com\n")
        assert list(rows[0]) == ["Name", "Email"]

    def test_values_stay_strings(self) -> None:
        """No numeric or NA coercion happens at decode time."""
        rows = decode_csv("Name,Phone,Centre\nAsha,0098765,NA\n")
        assert rows[0]["Phone"] == "0098765"
        assert rows[0]["Centre"] == "NA"

    def test_missing_trailing_cells_become_empty(self) -> None:
        rows = decode_csv("Name,Phone,Email\nAsha,123\n")
        assert rows[0]["Email"] == ""

    def test_bytes_with_bom(self) -> None:
        rows = decode_csv("\ufeffName\nAsha\n".encode())
        assert rows == [{"Name": "Asha"}]

    def test_latin1_bytes(self) -> None:
        rows = decode_csv("Name\nJosé\n".encode("latin-1"))
        assert rows == [{"Name": "José"}]

    def test_empty_content(self) -> None:
        assert decode_csv("") == []
        assert decode_csv("   \n\n") == []

    def test_record_longer_than_header_rejected(self) -> None:
        """An unquoted comma in a value must not silently drop the trailing cell."""
        with pytest.raises(UnsupportedFormat, match="Could not parse CSV"):
            decode_csv("Name,Phone\nAsha,98765,43210\nBala,91234\n")

    def test_duplicate_header_rejected(self) -> None:
        with pytest.raises(UnsupportedFormat, match="Duplicate column header 'Email'"):
            decode_csv("Name,Email,Email\nAsha,a@x.com,b@x.com\n")

    def test_duplicate_header_after_trimming_rejected(self) -> None:
        with pytest.raises(UnsupportedFormat, match="Duplicate column header"):
            decode_csv("Name, Phone,Phone \nAsha,1,2\n")

    def test_value_under_blank_header_rejected(self) -> None:
        with pytest.raises(UnsupportedFormat, match="Row 1 has a value in a column without a header"):
            decode_csv("Name,,Email\nAsha,extra,a@x.com\n")

    def test_trailing_blank_header_with_empty_cells(self) -> None:
        rows = decode_csv("Name,Email,\nAsha,a@x.com,\n")
        assert rows == [{"Name": "Asha", "Email": "a@x.com"}]


class TestDecodeXlsx:
    """Tests for XLSX decoding."""

    def test_first_sheet_rows(self) -> None:
        content = _workbook_bytes([["Name", "Phone"], ["Asha", "98765 43210"], ["Bala", None]])
        rows = decode_xlsx(content)
        assert rows == [
            {"Name": "Asha", "Phone": "98765 43210"},
            {"Name": "Bala", "Phone": ""},
        ]

    def test_not_a_workbook(self) -> None:
        with pytest.raises(UnsupportedFormat):
            decode_xlsx(b"Name,Phone\nAsha,123\n")

    def test_corrupt_zip(self) -> None:
        with pytest.raises(UnsupportedFormat):
            decode_xlsx(b"PK\x03\x04not really a zip")

    def test_cell_beyond_header_rejected(self) -> None:
        content = _workbook_bytes([["Name", "Phone"], ["Asha", "98765", "43210"]])
        with pytest.raises(UnsupportedFormat, match="without a header"):
            decode_xlsx(content)

    def test_duplicate_header_rejected(self) -> None:
        content = _workbook_bytes([["Name", "Email", "Email"], ["Asha", "a@x.com", "b@x.com"]])
        with pytest.raises(UnsupportedFormat, match="Duplicate column header 'Email'"):
            decode_xlsx(content)

    def test_leading_blank_rows_skipped(self) -> None:
        content = _workbook_bytes([[None, None], ["Name", "Phone"], ["Asha", "123"]])
        assert decode_xlsx(content) == [{"Name": "Asha", "Phone": "123"}]


class TestDecode:
    """Tests for source dispatch."""

    def test_dispatches_on_source(self) -> None:
        content = _workbook_bytes([["Name"], ["Asha"]])
        assert decode(content, "xlsx_upload") == [{"Name": "Asha"}]
        assert decode("Name\nAsha\n", ImportSource.CSV_UPLOAD) == [{"Name": "Asha"}]

    def test_unknown_source(self) -> None:
        with pytest.raises(UnsupportedFormat):
            decode("Name\nAsha\n", "json_upload")

    def test_xlsx_requires_bytes(self) -> None:
        with pytest.raises(UnsupportedFormat):
            decode("Name\nAsha\n", ImportSource.XLSX_UPLOAD)


class TestHeadersOf:
    """Tests for header extraction."""

    def test_preserves_first_seen_order(self) -> None:
        rows = [{"Name": "Asha", "Phone": "1"}, {"Name": "Bala", "Email": "b@x.com"}]
        assert headers_of(rows) == ["Name", "Phone", "Email"]

    def test_empty(self) -> None:
        assert headers_of([]) == []
