from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from pathlib import Path

import pandas as pd

from ..errors import ValidationError
from ..models.cell import Cell
from ..models.pitch import GeneratedPitch

"""Export cleaned dataset rows and pitch history.

Rows go to .xlsx (openpyxl engine) or .csv depending on the target suffix.
Pitch history is always CSV with one line per generated pitch.
"""

__all__ = [
    "EXPORT_SUFFIXES",
    "HISTORY_COLUMNS",
    "rows_to_frame",
    "export_rows",
    "export_pitch_history",
]

logger = logging.getLogger(__name__)

EXPORT_SUFFIXES = {".xlsx", ".csv"}
HISTORY_COLUMNS = [
    "id",
    "recipient",
    "subject",
    "status",
    "created_at",
    "email_sent_at",
    "error_message",
    "message_id",
    "content",
]


def rows_to_frame(rows: Iterable[Mapping[str, Cell]], columns: Sequence[str] | None = None) -> pd.DataFrame:
    """DataFrame with ``columns`` in order (or first-seen key order when omitted)."""
    materialized = [dict(r) for r in rows]
    if columns is None:
        ordered: list[str] = []
        for r in materialized:
            ordered.extend(k for k in r if k not in ordered)
        columns = ordered
    return pd.DataFrame.from_records(materialized, columns=list(columns))


def export_rows(
    rows: Iterable[Mapping[str, Cell]],
    path: Path,
    *,
    columns: Sequence[str] | None = None,
    sheet_name: str = "Data",
) -> Path:
    suffix = path.suffix.lower()
    if suffix not in EXPORT_SUFFIXES:
        raise ValidationError(f"unsupported export format: {path.suffix or '(none)'} (use .xlsx or .csv)")
    df = rows_to_frame(rows, columns)
    path.parent.mkdir(parents=True, exist_ok=True)
    if suffix == ".xlsx":
        with pd.ExcelWriter(path, engine="openpyxl") as writer:
            df.to_excel(writer, sheet_name=sheet_name, index=False)
    else:
        df.to_csv(path, index=False, encoding="utf-8")
    logger.info(f"exported {len(df)} rows -> {path}")
    return path


def _recipient(pitch: GeneratedPitch, email_column: str | None) -> str:
    if email_column and pitch.source_row.get(email_column) is not None:
        return str(pitch.source_row[email_column])
    for key, value in pitch.source_row.items():
        if "email" in key.lower() and value:
            return str(value)
    return ""


def export_pitch_history(
    pitches: Iterable[GeneratedPitch], path: Path, *, email_column: str | None = None
) -> Path:
    records = [
        {
            "id": p.id,
            "recipient": _recipient(p, email_column),
            "subject": p.subject,
            "status": p.status.value,
            "created_at": p.created_at.isoformat(),
            "email_sent_at": p.sent_at.isoformat() if p.sent_at else "",
            "error_message": p.error_message or "",
            "message_id": p.message_id or "",
            "content": p.filled_text,
        }
        for p in pitches
    ]
    path.parent.mkdir(parents=True, exist_ok=True)
    pd.DataFrame.from_records(records, columns=HISTORY_COLUMNS).to_csv(path, index=False, encoding="utf-8")
    logger.info(f"exported {len(records)} pitches -> {path}")
    return path
