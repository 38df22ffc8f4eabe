from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum

from .cell import Cell

"""ParsedTable / ColumnProfile models.

ParsedTable is the parser output: ordered unique headers plus a rectangular
grid of cells. ColumnProfile is derived metadata about one column and is
always recomputed from the rows (services.inference.profile_columns).
"""

__all__ = [
    "ColumnType",
    "ColumnProfile",
    "ParsedTable",
]


class ColumnType(Enum):
    """Inferred type of a whole column."""
    STRING = "string"
    NUMBER = "number"
    DATE = "date"
    BOOLEAN = "boolean"
    MIXED = "mixed"


@dataclass(frozen=True)
class ColumnProfile:
    name: str
    inferred_type: ColumnType
    sample_values: list[Cell]  # 最大5件, 非null, 出現順
    null_count: int
    unique_count: int


@dataclass(frozen=True)
class ParsedTable:
    """Header list plus row grid from the first sheet of a spreadsheet.

    Invariant: every row holds exactly len(headers) cells. Short rows are padded
    with None at construction time, long rows are truncated.
    """
    headers: list[str]
    rows: list[list[Cell]] = field(default_factory=list)

    def __post_init__(self) -> None:
        width = len(self.headers)
        # 呼び出し元のリストは変更しない
        normalized = [list(row[:width]) + [None] * (width - len(row)) for row in self.rows]
        object.__setattr__(self, "rows", normalized)

    def __len__(self) -> int:
        return len(self.rows)

    def column(self, name: str) -> list[Cell]:
        idx = self.headers.index(name)
        return [row[idx] for row in self.rows]

    def records(self) -> Iterator[dict[str, Cell]]:
        """Yield each row as a header -> cell mapping."""
        for row in self.rows:
            yield dict(zip(self.headers, row, strict=True))
