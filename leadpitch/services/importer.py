from __future__ import annotations

import logging
import time
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from ..db.batch_insert import DEFAULT_PAGE_SIZE
from ..db.store import DatasetStore
from ..errors import PersistenceError
from ..excel.reader import parse_spreadsheet
from ..models.cell import Cell
from ..models.cleaning_options import CleaningOptions
from ..models.dataset import Dataset, DatasetRow
from ..models.table import ColumnProfile, ParsedTable
from .cleaning import clean_rows, validate_selection
from .inference import profile_columns

"""Import workflow: file -> ParsedTable -> profile -> clean -> dataset rows.

Steps stop at the first parse / validation error. Row pages are inserted after
the dataset header record exists; a failing page surfaces as PersistenceError
and earlier pages are not rolled back by this service.
"""

__all__ = [
    "ImportResult",
    "ImportService",
    "generate_column_mappings",
    "prepare_dataset_rows",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ImportResult:
    dataset: Dataset
    parsed_rows: int
    imported_rows: int
    profiles: list[ColumnProfile] = field(default_factory=list)
    elapsed_seconds: float = 0.0

    @property
    def removed_rows(self) -> int:
        return self.parsed_rows - self.imported_rows


def generate_column_mappings(
    selected_columns: Sequence[str], profiles: Iterable[ColumnProfile]
) -> dict[str, dict[str, str]]:
    """{column: {"type": <inferred>, "original_name": column}} for selected columns with a profile."""
    by_name = {p.name: p for p in profiles}
    mappings: dict[str, dict[str, str]] = {}
    for col in selected_columns:
        profile = by_name.get(col)
        if profile is not None:
            mappings[col] = {"type": profile.inferred_type.value, "original_name": col}
    return mappings


def prepare_dataset_rows(
    rows: Iterable[Mapping[str, Cell]], selected_columns: Sequence[str], dataset_id: str
) -> list[DatasetRow]:
    """Project each row onto the selected columns and number it from 0."""
    return [
        DatasetRow(
            dataset_id=dataset_id,
            row_index=index,
            row_data={col: row.get(col) for col in selected_columns},
        )
        for index, row in enumerate(rows)
    ]


class ImportService:
    def __init__(
        self,
        store: DatasetStore,
        *,
        default_options: CleaningOptions | None = None,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> None:
        self.store = store
        self.default_options = default_options or CleaningOptions()
        self.page_size = page_size

    def load(self, source: Path | bytes, filename: str | None = None) -> ParsedTable:
        if isinstance(source, Path):
            return parse_spreadsheet(source.read_bytes(), filename or source.name)
        return parse_spreadsheet(source, filename)

    def import_table(
        self,
        table: ParsedTable,
        name: str,
        *,
        selected_columns: Sequence[str] | None = None,
        options: CleaningOptions | None = None,
        user_id: str | None = None,
        original_filename: str | None = None,
    ) -> ImportResult:
        start = time.perf_counter()
        columns = list(selected_columns) if selected_columns else list(table.headers)
        validate_selection(columns, table.headers)
        profiles = profile_columns(table)

        cleaned = clean_rows(table.records(), columns, options or self.default_options)
        logger.info(f"cleaned {name}: {len(cleaned)}/{len(table)} rows kept")

        dataset = self.store.create_dataset(
            Dataset(
                name=name,
                user_id=user_id,
                original_filename=original_filename,
                total_rows=len(cleaned),
                column_mappings=generate_column_mappings(columns, profiles),
            )
        )
        rows = prepare_dataset_rows(cleaned, columns, dataset.id)
        inserted = self.store.insert_rows(rows, page_size=self.page_size)
        if inserted != len(rows):
            raise PersistenceError(f"dataset {dataset.id}: inserted {inserted} of {len(rows)} rows")

        return ImportResult(
            dataset=dataset,
            parsed_rows=len(table),
            imported_rows=inserted,
            profiles=profiles,
            elapsed_seconds=time.perf_counter() - start,
        )

    def import_file(
        self,
        source: Path | bytes,
        name: str,
        *,
        filename: str | None = None,
        selected_columns: Sequence[str] | None = None,
        options: CleaningOptions | None = None,
        user_id: str | None = None,
    ) -> ImportResult:
        """Parse, clean and persist one spreadsheet as a new dataset.

        Raises:
            ParseError: file cannot be decoded (EmptyFileError / UnsupportedFileError included)
            ValidationError: empty or unknown column selection
            PersistenceError: dataset or row insert failed
        """
        original = filename or (source.name if isinstance(source, Path) else None)
        table = self.load(source, original)
        return self.import_table(
            table,
            name,
            selected_columns=selected_columns,
            options=options,
            user_id=user_id,
            original_filename=original,
        )
