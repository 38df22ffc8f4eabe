from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

import pytest

from leadpitch.errors import EmptyFileError, ParseError, UnsupportedFileError
from leadpitch.excel.reader import detect_format, parse_spreadsheet, read_spreadsheet


def test_detect_format_by_signature_then_suffix():
    assert detect_format(b"PK\x03\x04rest", "data.csv") == "workbook"
    assert detect_format(b"\xd0\xcf\x11\xe0rest") == "legacy"
    assert detect_format(b"a,b\n1,2", "data.xls") == "legacy"
    assert detect_format(b"a,b\n1,2", "data.csv") == "text"
    assert detect_format(b"a,b\n1,2") == "text"


def test_csv_cells_stay_strings():
    table = parse_spreadsheet(b"Name,Age,Joined\nAnn,30,2024-01-05\nBo,,\n", "leads.csv")
    assert table.headers == ["Name", "Age", "Joined"]
    assert table.rows == [["Ann", "30", "2024-01-05"], ["Bo", None, None]]


def test_csv_keeps_na_like_strings():
    table = parse_spreadsheet(b"Name,Code\nNA,N/A\n", "x.csv")
    assert table.rows == [["NA", "N/A"]]


def test_csv_rows_with_extra_fields_are_truncated(caplog):
    caplog.set_level(logging.WARNING)
    table = parse_spreadsheet(b"Name,Email\nAlice,a@x.com\nBob,b@x.com,extra\n", "leads.csv")
    assert table.headers == ["Name", "Email"]
    assert table.rows == [["Alice", "a@x.com"], ["Bob", "b@x.com"]]
    assert "ignoring fields beyond the 2 header columns" in caplog.text


def test_csv_short_rows_are_padded():
    table = parse_spreadsheet(b"Name,Email,City\nAlice,a@x.com\nBob,b@x.com,Austin\n", "leads.csv")
    assert table.rows == [["Alice", "a@x.com", None], ["Bob", "b@x.com", "Austin"]]


def test_semicolon_delimiter_sniffed():
    table = parse_spreadsheet(b"Name;City\nAnn;Dallas\nBo;Austin\n", "x.csv")
    assert table.headers == ["Name", "City"]
    assert table.rows[1] == ["Bo", "Austin"]


def test_blank_and_duplicate_headers(caplog):
    table = parse_spreadsheet(b"Name,,Name,Name\nAnn,x,y,z\n", "x.csv")
    assert table.headers == ["Name", "Column 2", "Name_2", "Name_3"]
    assert "duplicate header" in caplog.text


def test_blank_rows_dropped():
    table = parse_spreadsheet(b"Name,City\n,\nAnn,Dallas\n,\n", "x.csv")
    assert table.rows == [["Ann", "Dallas"]]


def test_empty_inputs_raise_empty_file_error():
    with pytest.raises(EmptyFileError):
        parse_spreadsheet(b"", "x.csv")
    with pytest.raises(EmptyFileError):
        parse_spreadsheet(b"   \n\n", "x.csv")
    with pytest.raises(EmptyFileError, match="no data rows"):
        parse_spreadsheet(b"Name,City\n", "x.csv")


def test_legacy_xls_rejected():
    with pytest.raises(UnsupportedFileError):
        parse_spreadsheet(b"\xd0\xcf\x11\xe0" + b"\x00" * 64, "old.xls")


def test_corrupt_workbook_raises_parse_error():
    with pytest.raises(ParseError):
        parse_spreadsheet(b"PK\x03\x04not really a zip", "broken.xlsx")


def test_xlsx_first_sheet_native_types(make_xlsx, caplog):
    caplog.set_level(logging.INFO)
    path = make_xlsx(
        {
            "Leads": [
                ["Name", "Score", "Joined", None],
                ["Ann", 42, datetime(2024, 1, 5), None],
                [None, None, None, None],
                ["Bo", 3.5, None, "extra"],
            ],
            "Other": [["Ignored"], ["value"]],
        }
    )
    table = read_spreadsheet(path)

    assert table.headers == ["Name", "Score", "Joined", "Column 4"]
    assert table.rows[0][:3] == ["Ann", 42, datetime(2024, 1, 5)]
    assert table.rows[1] == ["Bo", 3.5, None, "extra"]
    assert len(table) == 2
    assert "first sheet" in caplog.text


def test_read_spreadsheet_missing_file(tmp_path: Path):
    with pytest.raises(ParseError):
        read_spreadsheet(tmp_path / "missing.csv")
