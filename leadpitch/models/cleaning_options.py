from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any

"""CleaningOptions model.

Independent boolean flags plus a single text-case choice. The case is one enum
field, so "lowercase and uppercase at once" cannot be expressed.
"""

__all__ = [
    "TextCase",
    "CleaningOptions",
]


class TextCase(Enum):
    ORIGINAL = "original"
    LOWER = "lower"
    UPPER = "upper"
    TITLE = "title"


@dataclass(frozen=True)
class CleaningOptions:
    """User-selected cleaning configuration for one import.

    Defaults mirror the import screen: empty rows removed, whitespace trimmed,
    numbers and dates converted, duplicates kept, case untouched.
    """
    remove_empty_rows: bool = True
    remove_duplicates: bool = False
    trim_whitespace: bool = True
    convert_dates: bool = True
    parse_numbers: bool = True
    text_case: TextCase = TextCase.ORIGINAL

    def with_text_case(self, case: TextCase | str) -> CleaningOptions:
        """Return a copy with ``case`` selected (clearing any previous choice)."""
        return replace(self, text_case=TextCase(case))

    @classmethod
    def from_mapping(cls, data: dict[str, Any] | None) -> CleaningOptions:
        """Build options from a config/CLI mapping, ignoring absent keys."""
        if not data:
            return cls()
        kwargs: dict[str, Any] = {}
        for key in ("remove_empty_rows", "remove_duplicates", "trim_whitespace",
                    "convert_dates", "parse_numbers"):
            if key in data and data[key] is not None:
                kwargs[key] = bool(data[key])
        if data.get("text_case") is not None:
            kwargs["text_case"] = TextCase(data["text_case"])
        return cls(**kwargs)
