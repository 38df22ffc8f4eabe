from __future__ import annotations

from datetime import date, datetime

import pytest

from leadpitch.models.cell import CellType, cell_type, is_empty
from leadpitch.models.table import ParsedTable


@pytest.mark.parametrize(
    "value,expected",
    [
        (None, CellType.NULL),
        (float("nan"), CellType.NULL),
        (True, CellType.BOOLEAN),
        (0, CellType.NUMBER),
        (1.5, CellType.NUMBER),
        (datetime(2024, 1, 5, 10, 0), CellType.DATE),
        (date(2024, 1, 5), CellType.DATE),
        ("", CellType.STRING),
        ("text", CellType.STRING),
    ],
)
def test_cell_type(value, expected):
    assert cell_type(value) is expected


def test_cell_type_rejects_unknown_types():
    with pytest.raises(TypeError):
        cell_type(object())  # type: ignore[arg-type]


def test_is_empty_only_none_and_empty_string():
    assert is_empty(None)
    assert is_empty("")
    assert not is_empty(" ")
    assert not is_empty(0)
    assert not is_empty(False)


def test_parsed_table_pads_and_truncates_rows():
    table = ParsedTable(headers=["a", "b", "c"], rows=[["1"], ["1", "2", "3", "4"]])
    assert table.rows == [["1", None, None], ["1", "2", "3"]]
    assert len(table) == 2


def test_parsed_table_leaves_caller_rows_untouched():
    short, long = ["1"], ["1", "2", "3", "4"]
    grid = [short, long]
    ParsedTable(headers=["a", "b", "c"], rows=grid)
    assert grid == [["1"], ["1", "2", "3", "4"]]
    assert grid[0] is short and grid[1] is long


def test_parsed_table_records_and_column():
    table = ParsedTable(headers=["Name", "Age"], rows=[["Ann", 30], ["Bo", None]])
    assert list(table.records()) == [{"Name": "Ann", "Age": 30}, {"Name": "Bo", "Age": None}]
    assert table.column("Age") == [30, None]
