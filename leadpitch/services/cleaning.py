from __future__ import annotations

import json
import re
import warnings
from collections.abc import Iterable, Mapping, Sequence
from datetime import date, datetime
from typing import Any

import pandas as pd

from ..errors import ValidationError
from ..models.cell import Cell, is_empty
from ..models.cleaning_options import CleaningOptions, TextCase

"""Row cleaning pipeline.

Fixed order, not user-reorderable:
1. remove_empty_rows  - keep rows with at least one non-empty selected column
2. remove_duplicates  - composite key over selected columns, first seen wins
3. per selected cell  - trim -> text case -> number parse -> date parse

Deduplication runs on the raw values, before trimming. Two rows that differ
only by surrounding whitespace both survive and look identical afterwards.

clean_rows() never mutates its input; every output row is a shallow copy.
"""

__all__ = [
    "DATE_FORMATS",
    "clean_rows",
    "validate_selection",
    "to_title_case",
    "try_parse_number",
    "try_parse_date",
]

# 先頭から順に試す (最初に成功したもの優先)
DATE_FORMATS = (
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%d/%m/%Y",
    "%Y/%m/%d",
    "%m-%d-%Y",
    "%d-%m-%Y",
    "%b %d, %Y",
    "%d %b %Y",
    "%Y-%m-%d %H:%M:%S",
    "%m/%d/%Y %H:%M:%S",
)

_NUMBER_RE = re.compile(r"^-?\d+(\.\d+)?$")
_INT_RE = re.compile(r"^-?\d+$")
_WORD_RE = re.compile(r"\w\S*")
_DIGIT_RE = re.compile(r"\d")


def validate_selection(selected_columns: Sequence[str], available_columns: Iterable[str]) -> None:
    """Raise ValidationError for an empty selection or unknown column names."""
    if not selected_columns:
        raise ValidationError("select at least one column to import")
    available = set(available_columns)
    unknown = [c for c in selected_columns if c not in available]
    if unknown:
        raise ValidationError(f"unknown columns selected: {unknown}")


def to_title_case(text: str) -> str:
    """Upper-case the first character of each word, lower-case the rest.

    >>> to_title_case("123 MAIN st. o'BRIEN")
    "123 Main St. O'brien"
    """
    return _WORD_RE.sub(lambda m: m.group(0)[0].upper() + m.group(0)[1:].lower(), text)


def try_parse_number(text: str) -> int | float | None:
    trimmed = text.strip()
    if not _NUMBER_RE.match(trimmed):
        return None
    if _INT_RE.match(trimmed):
        return int(trimmed)
    return float(trimmed)


def try_parse_date(text: str) -> datetime | None:
    """Parse ``text`` with the explicit formats, then pandas' flexible parser.

    The fallback only runs for strings containing a digit so plain words such
    as month names are left alone. Returns None when nothing matches.
    """
    candidate = text.strip()
    if not candidate:
        return None
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(candidate, fmt)
        except ValueError:
            continue
    if not _DIGIT_RE.search(candidate) or _NUMBER_RE.match(candidate):
        return None
    try:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            parsed = pd.to_datetime(candidate)
    except (ValueError, TypeError, OverflowError):
        return None
    if pd.isna(parsed):
        return None
    return parsed.to_pydatetime()


def _apply_case(text: str, case: TextCase) -> str:
    if case is TextCase.LOWER:
        return text.lower()
    if case is TextCase.UPPER:
        return text.upper()
    if case is TextCase.TITLE:
        return to_title_case(text)
    return text


def _clean_value(value: Cell, options: CleaningOptions) -> Cell:
    if value is None:
        return None
    if isinstance(value, str) and options.trim_whitespace:
        value = value.strip()
    if isinstance(value, str):
        value = _apply_case(value, options.text_case)
    if isinstance(value, str) and options.parse_numbers:
        number = try_parse_number(value)
        if number is not None:
            value = number
    if isinstance(value, str) and options.convert_dates:
        parsed = try_parse_date(value)
        if parsed is not None:
            value = parsed
    return value


def _json_default(value: Any) -> str:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


def _dedup_key(row: Mapping[str, Cell], selected_columns: Sequence[str]) -> str:
    return "|".join(
        json.dumps(row.get(col), default=_json_default, ensure_ascii=False)
        for col in selected_columns
    )


def clean_rows(
    rows: Iterable[Mapping[str, Cell]],
    selected_columns: Sequence[str],
    options: CleaningOptions | None = None,
) -> list[dict[str, Cell]]:
    """Apply ``options`` to ``rows`` restricted to ``selected_columns``.

    Parameters
    ----------
    rows: 元データ行 (列名 -> 値)。変更されない
    selected_columns: 取り込み対象列 (重複キーの列順もこの順序)
    options: CleaningOptions (None なら既定値)

    Returns
    -------
    Cleaned rows (shallow copies). Columns outside ``selected_columns`` are
    copied through untouched.
    """
    opts = options or CleaningOptions()
    result: list[Mapping[str, Cell]] = list(rows)

    if opts.remove_empty_rows:
        result = [
            row for row in result
            if any(not is_empty(row.get(col)) for col in selected_columns)
        ]

    if opts.remove_duplicates:
        seen: set[str] = set()
        unique: list[Mapping[str, Cell]] = []
        for row in result:
            key = _dedup_key(row, selected_columns)
            if key in seen:
                continue
            seen.add(key)
            unique.append(row)
        result = unique

    cleaned: list[dict[str, Cell]] = []
    for row in result:
        out = dict(row)
        for col in selected_columns:
            if col in out:
                out[col] = _clean_value(out[col], opts)
        cleaned.append(out)
    return cleaned
