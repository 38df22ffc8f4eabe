from __future__ import annotations

import csv
import io
import logging
import math
from datetime import datetime
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd

from ..errors import EmptyFileError, ParseError, UnsupportedFileError
from ..models.cell import Cell
from ..models.table import ParsedTable

"""Spreadsheet reader.

- Workbooks (.xlsx / .xlsm) are decoded with pandas + openpyxl. Only the first
  sheet is read; later sheets are ignored (known limitation, logged at INFO).
- Anything else is decoded as delimited text (delimiter sniffed). Text cells
  stay strings; converting them is the cleaning pipeline's job.
- Row 1 is the header row. Blank header cells become "Column {n}" (1-based),
  duplicate names are suffixed "_2", "_3", ...
- Fully blank rows are dropped. Spreadsheet-native dates stay datetime values.
"""

__all__ = [
    "parse_spreadsheet",
    "read_spreadsheet",
    "detect_format",
]

logger = logging.getLogger(__name__)

ZIP_SIGNATURE = b"PK\x03\x04"
OLE_SIGNATURE = b"\xd0\xcf\x11\xe0"
WORKBOOK_SUFFIXES = {".xlsx", ".xlsm"}
TEXT_DELIMITERS = ",;\t|"


def detect_format(data: bytes, filename: str | None = None) -> str:
    """Return 'workbook', 'legacy' or 'text' from file signature (then suffix)."""
    if data.startswith(ZIP_SIGNATURE):
        return "workbook"
    if data.startswith(OLE_SIGNATURE):
        return "legacy"
    suffix = Path(filename).suffix.lower() if filename else ""
    if suffix in WORKBOOK_SUFFIXES:
        return "workbook"
    if suffix == ".xls":
        return "legacy"
    return "text"


def _decode_text(data: bytes) -> str:
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError:
        return data.decode("latin-1")


def _read_workbook(data: bytes) -> pd.DataFrame:
    try:
        with pd.ExcelFile(io.BytesIO(data), engine="openpyxl") as xls:
            names = xls.sheet_names
            if not names:
                raise EmptyFileError("The file appears to be empty")
            if len(names) > 1:
                logger.info(f"reading first sheet '{names[0]}' only; ignoring {len(names) - 1} more")
            # 空セルのみ NaN 扱い ("NA" 等の文字列はそのまま残す)
            return xls.parse(names[0], header=None, keep_default_na=False, na_values=[""])
    except ParseError:
        raise
    except Exception as e:
        raise ParseError(f"could not read workbook: {e}") from e


def _read_text(data: bytes) -> pd.DataFrame:
    text = _decode_text(data)
    if not text.strip():
        raise EmptyFileError("The file appears to be empty")
    sample = text[:4096]
    try:
        delimiter = csv.Sniffer().sniff(sample, delimiters=TEXT_DELIMITERS).delimiter
    except csv.Error:
        delimiter = ","
    # 行ごとのフィールド数は揃っていない場合がある (末尾カンマ等)
    try:
        widths = [len(r) for r in csv.reader(io.StringIO(text), delimiter=delimiter) if any(f.strip() for f in r)]
    except csv.Error as e:
        raise ParseError(f"could not parse delimited text: {e}") from e
    if not widths:
        raise EmptyFileError("The file appears to be empty")
    try:
        df = pd.read_csv(
            io.StringIO(text),
            sep=delimiter,
            header=None,
            names=range(max(widths)),
            dtype=str,
            keep_default_na=False,
            na_values=[""],
            skip_blank_lines=True,
        )
    except pd.errors.EmptyDataError as e:
        raise EmptyFileError("The file appears to be empty") from e
    except pd.errors.ParserError as e:
        raise ParseError(f"could not parse delimited text: {e}") from e
    if max(widths) > widths[0]:
        logger.warning(f"ignoring fields beyond the {widths[0]} header columns")
    return df.iloc[:, : widths[0]]


def _to_cell(value: Any) -> Cell:
    """Convert a pandas / numpy scalar to a plain Cell value."""
    if value is None:
        return None
    if isinstance(value, float) and math.isnan(value):
        return None
    if value is pd.NaT:
        return None
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    if isinstance(value, np.datetime64):
        return None if np.isnat(value) else pd.Timestamp(value).to_pydatetime()
    if isinstance(value, np.bool_):
        return bool(value)
    if isinstance(value, np.integer):
        return int(value)
    if isinstance(value, np.floating):
        f = float(value)
        return None if math.isnan(f) else f
    if isinstance(value, (str, bool, int, float, datetime)):
        return value
    return str(value)


def _header_name(value: Cell, index: int) -> str:
    if value is None:
        return f"Column {index + 1}"
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, datetime):
        text = value.isoformat()
    else:
        text = str(value).strip()
    return text or f"Column {index + 1}"


def _dedupe_headers(headers: list[str]) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for name in headers:
        candidate = name
        n = 1
        while candidate in seen:
            n += 1
            candidate = f"{name}_{n}"
        if candidate != name:
            logger.warning(f"duplicate header '{name}' renamed to '{candidate}'")
        seen.add(candidate)
        result.append(candidate)
    return result


def _grid_to_table(df: pd.DataFrame) -> ParsedTable:
    grid = [[_to_cell(v) for v in raw] for raw in df.itertuples(index=False, name=None)]
    grid = [row for row in grid if any(v is not None for v in row)]
    if not grid:
        raise EmptyFileError("The file appears to be empty")
    header_row, data_rows = grid[0], grid[1:]
    if not data_rows:
        raise EmptyFileError("The file has a header row but no data rows")
    headers = _dedupe_headers([_header_name(v, i) for i, v in enumerate(header_row)])
    return ParsedTable(headers=headers, rows=data_rows)


def parse_spreadsheet(data: bytes, filename: str | None = None) -> ParsedTable:
    """Decode spreadsheet bytes into a ParsedTable.

    Parameters
    ----------
    data: アップロードされたファイルの中身
    filename: 元ファイル名 (シグネチャで判別できない場合の拡張子ヒント)

    Raises
    ------
    EmptyFileError: no rows, or no data rows below the header
    UnsupportedFileError: legacy binary .xls workbooks
    ParseError: the content could not be decoded
    """
    if not data:
        raise EmptyFileError("The file appears to be empty")
    kind = detect_format(data, filename)
    if kind == "legacy":
        raise UnsupportedFileError(
            "legacy .xls workbooks are not supported; save the file as .xlsx or .csv"
        )
    df = _read_workbook(data) if kind == "workbook" else _read_text(data)
    table = _grid_to_table(df)
    logger.debug(f"parsed {len(table.rows)} rows x {len(table.headers)} columns ({kind})")
    return table


def read_spreadsheet(path: Path) -> ParsedTable:
    """Read a spreadsheet file from disk (see parse_spreadsheet)."""
    try:
        data = Path(path).read_bytes()
    except OSError as e:
        raise ParseError(f"could not read file {path}: {e}") from e
    return parse_spreadsheet(data, filename=Path(path).name)
