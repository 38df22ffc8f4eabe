from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from psycopg2.extras import execute_values

from ..errors import PersistenceError

"""Batched INSERT helper on top of psycopg2.extras.execute_values.

Used for dataset_rows (one page per execute_values call, default 100 rows).
Partial failures are not rolled back here; the caller owns the transaction.
"""

__all__ = [
    "DEFAULT_PAGE_SIZE",
    "BatchInsertError",
    "BatchMetrics",
    "InsertResult",
    "batch_insert",
]

DEFAULT_PAGE_SIZE = 100


class BatchInsertError(PersistenceError):
    pass


@dataclass(frozen=True)
class BatchMetrics:
    """Timing for a single batch insert call."""
    batch_size: int
    elapsed_seconds: float
    start_time: float  # time.time()
    end_time: float


@dataclass(frozen=True)
class InsertResult:
    inserted_rows: int


def batch_insert(
    cursor: Any,
    table: str,
    columns: Sequence[str],
    rows: Iterable[Sequence[Any]],
    page_size: int = DEFAULT_PAGE_SIZE,
    metrics_callback: Callable[[BatchMetrics], None] | None = None,
) -> InsertResult:
    """Perform a batched INSERT.

    Parameters
    ----------
    cursor: psycopg2 cursor
    table: target table (trusted identifier, never user input)
    columns: insert columns
    rows: row value sequences
    page_size: rows per statement sent to the server
    metrics_callback: receives BatchMetrics once per call. Not invoked when
        ``rows`` is empty (the function returns early).
    """
    rows_list = list(rows)
    if not rows_list:
        return InsertResult(inserted_rows=0)

    cols_sql = ",".join(f'"{c}"' for c in columns)
    sql = f"INSERT INTO {table} ({cols_sql}) VALUES %s"

    start_time = time.time()
    try:
        execute_values(cursor, sql, rows_list, page_size=page_size)
    except Exception as e:
        raise BatchInsertError(str(e)) from e
    finally:
        end_time = time.time()
        if metrics_callback is not None:
            metrics_callback(
                BatchMetrics(
                    batch_size=len(rows_list),
                    elapsed_seconds=end_time - start_time,
                    start_time=start_time,
                    end_time=end_time,
                )
            )

    return InsertResult(inserted_rows=len(rows_list))
