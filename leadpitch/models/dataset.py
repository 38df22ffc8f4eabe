from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

"""Dataset storage models.

A Dataset is the header record of one import; DatasetRow holds one cleaned row
as an opaque column -> value mapping, ordered by row_index.
"""

__all__ = [
    "Dataset",
    "DatasetRow",
]


@dataclass(frozen=True)
class Dataset:
    name: str
    user_id: str | None = None
    original_filename: str | None = None
    total_rows: int = 0
    column_mappings: dict[str, dict[str, str]] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def columns(self) -> list[str]:
        return list(self.column_mappings.keys())


@dataclass(frozen=True)
class DatasetRow:
    dataset_id: str
    row_index: int
    row_data: dict[str, Any]
