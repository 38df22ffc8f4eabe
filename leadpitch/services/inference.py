from __future__ import annotations

import re
from collections.abc import Iterable

from ..models.cell import Cell, CellType, cell_type, is_empty
from ..models.table import ColumnProfile, ColumnType, ParsedTable

"""Column type inference and column profiling.

Each non-empty value contributes one type label. Native values use their own
type; strings are tested date -> number -> boolean -> string, in that order,
so "2024-01-05" is a date and "42" is a number.
"""

__all__ = [
    "DATE_PATTERNS",
    "NUMBER_PATTERN",
    "SAMPLE_SIZE",
    "infer_value_type",
    "infer_type",
    "profile_columns",
]

DATE_PATTERNS = (
    re.compile(r"^\d{4}-\d{2}-\d{2}"),
    re.compile(r"^\d{1,2}/\d{1,2}/\d{2,4}"),
)
NUMBER_PATTERN = re.compile(r"^-?\d+(\.\d+)?$")
SAMPLE_SIZE = 5

_NATIVE_LABELS = {
    CellType.BOOLEAN: ColumnType.BOOLEAN,
    CellType.NUMBER: ColumnType.NUMBER,
    CellType.DATE: ColumnType.DATE,
}


def infer_value_type(value: Cell) -> ColumnType | None:
    """Label for a single value, None for null / empty string."""
    kind = cell_type(value)
    if kind is CellType.NULL:
        return None
    if kind is CellType.STRING:
        text = str(value).strip()
        if text == "":
            return None
        if any(p.match(text) for p in DATE_PATTERNS):
            return ColumnType.DATE
        if NUMBER_PATTERN.match(text):
            return ColumnType.NUMBER
        if text.lower() in ("true", "false"):
            return ColumnType.BOOLEAN
        return ColumnType.STRING
    return _NATIVE_LABELS[kind]


def infer_type(values: Iterable[Cell]) -> ColumnType:
    """Infer a column type from its values. Never raises for Cell inputs."""
    labels: set[ColumnType] = set()
    for value in values:
        label = infer_value_type(value)
        if label is not None:
            labels.add(label)
    if not labels:
        return ColumnType.STRING
    if len(labels) == 1:
        return next(iter(labels))
    return ColumnType.MIXED


def _unique_key(value: Cell) -> tuple[str, Cell]:
    # 1 と True を区別する
    return (type(value).__name__, value)


def profile_columns(table: ParsedTable) -> list[ColumnProfile]:
    """Build one ColumnProfile per header, in header order."""
    profiles: list[ColumnProfile] = []
    for idx, name in enumerate(table.headers):
        values = [row[idx] for row in table.rows]
        non_null = [v for v in values if not is_empty(v) and cell_type(v) is not CellType.NULL]
        profiles.append(
            ColumnProfile(
                name=name,
                inferred_type=infer_type(non_null),
                sample_values=non_null[:SAMPLE_SIZE],
                null_count=len(values) - len(non_null),
                unique_count=len({_unique_key(v) for v in non_null}),
            )
        )
    return profiles
