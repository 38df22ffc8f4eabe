from __future__ import annotations

import sys
from typing import Any

from tqdm import tqdm
from tqdm.std import tqdm as TqdmType

"""Progress display with tqdm (TTY only).

A ProgressTracker is callable as ``tracker(completed, total)``, which is the
dispatcher's on_progress signature. In non-TTY environments (CI, pipes) no bar
is drawn, but the latest (completed, total) is still kept for the caller.
"""

__all__ = [
    "ProgressTracker",
    "is_tty_enabled",
]


def is_tty_enabled() -> bool:
    return sys.stdout.isatty()


class ProgressTracker:
    """Progress bar over dispatched items (generation or delivery)."""

    def __init__(self, total: int, *, description: str = "Processing", unit: str = "item") -> None:
        self.total = total
        self.description = description
        self.completed = 0

        self.enabled = is_tty_enabled()
        self.pbar: TqdmType[Any] | None
        if self.enabled:
            self.pbar = tqdm(
                total=total,
                desc=description,
                unit=unit,
                leave=True,
                position=0,
                ncols=80,
                ascii=True,
            )
        else:
            self.pbar = None

    def __call__(self, completed: int, total: int) -> None:
        self.update_to(completed, total)

    def update_to(self, completed: int, total: int) -> None:
        """Move the bar to an absolute position (callbacks report cumulative counts)."""
        delta = completed - self.completed
        self.completed = completed
        self.total = total
        if self.enabled and self.pbar is not None:
            if self.pbar.total != total:
                self.pbar.total = total
            if delta > 0:
                self.pbar.update(delta)

    def set_postfix(self, **kwargs: Any) -> None:
        if self.enabled and self.pbar is not None:
            self.pbar.set_postfix(**kwargs)

    def close(self) -> None:
        if self.enabled and self.pbar is not None:
            self.pbar.close()
            self.pbar = None

    def __enter__(self) -> ProgressTracker:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
