from __future__ import annotations

import sys
from typing import Any

from tqdm import tqdm
from tqdm.std import tqdm as TqdmType

"""Progress display with tqdm (TTY only).

A single bar per import run, advanced once per chunk. In non-TTY environments
(CI, piped output) the bar is disabled entirely to avoid ANSI control spam.
"""

__all__ = [
    "ImportProgress",
    "is_tty_enabled",
]


def is_tty_enabled() -> bool:
    return sys.stdout.isatty()


class ImportProgress:
    """Row progress for one import run.

    Args:
        total: Number of rows if known up front (whole-buffer mode); None when streaming
        description: Bar label, usually the uploaded file name
        enabled: Force on/off; defaults to TTY detection
    """

    def __init__(
        self,
        total: int | None,
        *,
        description: str = "Importing recipes",
        enabled: bool | None = None,
    ) -> None:
        self.total = total
        self.description = description
        self.processed = 0
        self.enabled = is_tty_enabled() if enabled is None else enabled
        self.pbar: TqdmType[Any] | None
        if self.enabled:
            self.pbar = tqdm(
                total=total,
                desc=description,
                unit="row",
                disable=False,
                leave=True,
                position=0,
                ncols=80,
                ascii=True,
            )
        else:
            self.pbar = None

    def advance(self, rows: int) -> None:
        self.processed += rows
        if self.enabled and self.pbar is not None:
            self.pbar.update(rows)

    def set_postfix(self, **kwargs: Any) -> None:
        if self.enabled and self.pbar is not None:
            self.pbar.set_postfix(**kwargs)

    def close(self) -> None:
        if self.enabled and self.pbar is not None:
            self.pbar.close()
            self.pbar = None

    def __enter__(self) -> ImportProgress:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
