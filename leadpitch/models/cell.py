from __future__ import annotations

import math
from datetime import date, datetime
from enum import Enum
from typing import Union

"""Cell value model for parsed spreadsheet data.

A cell is one of str | int | float | bool | datetime | date | None. Consumers
classify a value with cell_type() instead of ad-hoc isinstance chains so that
every variant is handled in one place.
"""

__all__ = [
    "Cell",
    "CellType",
    "cell_type",
    "is_empty",
]

Cell = Union[str, int, float, bool, datetime, date, None]


class CellType(Enum):
    STRING = "string"
    NUMBER = "number"
    DATE = "date"
    BOOLEAN = "boolean"
    NULL = "null"


def cell_type(value: Cell) -> CellType:
    """Classify a native cell value.

    bool is tested before int because bool is an int subclass. NaN floats are
    treated as NULL (pandas uses them for missing cells).

    Raises:
        TypeError: value is not one of the Cell variants
    """
    if value is None:
        return CellType.NULL
    if isinstance(value, bool):
        return CellType.BOOLEAN
    if isinstance(value, (int, float)):
        if isinstance(value, float) and math.isnan(value):
            return CellType.NULL
        return CellType.NUMBER
    # datetime is a date subclass
    if isinstance(value, date):
        return CellType.DATE
    if isinstance(value, str):
        return CellType.STRING
    raise TypeError(f"unsupported cell value type: {type(value).__name__}")


def is_empty(value: Cell) -> bool:
    """True for None and the empty string (whitespace-only strings are not empty)."""
    return value is None or value == ""
