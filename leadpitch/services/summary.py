from __future__ import annotations

from ..models.dispatch import DispatchSummary

"""SUMMARY line rendering.

Import:   SUMMARY dataset=<name> rows=<kept>/<parsed> columns=<k> elapsed_sec=<s>
Dispatch: SUMMARY operation=<op> items=<n> success=<s> failed=<f> elapsed_sec=<s>

Values never contain spaces: dataset names are quoted when they do.
"""

__all__ = [
    "format_number",
    "render_import_summary",
    "render_dispatch_summary",
]


def format_number(value: float) -> str:
    """Render a metric without scientific notation or trailing zeros.

    >>> format_number(2.0)
    '2'
    >>> format_number(0.0001234)
    '0.000123'
    """
    if value == 0:
        return "0"
    if value == int(value):
        return str(int(value))
    if value < 0.01:
        return f"{value:.6f}".rstrip("0").rstrip(".")
    return f"{value:.3f}".rstrip("0").rstrip(".")


def _token(value: str) -> str:
    return f'"{value}"' if any(c.isspace() for c in value) else value


def render_import_summary(
    dataset_name: str, kept_rows: int, parsed_rows: int, columns: int, elapsed_seconds: float
) -> str:
    return (
        f"SUMMARY dataset={_token(dataset_name)} "
        f"rows={kept_rows}/{parsed_rows} "
        f"columns={columns} "
        f"elapsed_sec={format_number(elapsed_seconds)}"
    )


def render_dispatch_summary(summary: DispatchSummary, operation: str | None = None) -> str:
    prefix = f"operation={operation} " if operation else ""
    return (
        f"SUMMARY {prefix}items={summary.total} "
        f"success={summary.success} "
        f"failed={summary.failed} "
        f"elapsed_sec={format_number(summary.elapsed_seconds)}"
    )
