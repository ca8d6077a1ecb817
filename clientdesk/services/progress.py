from __future__ import annotations

import sys
from typing import Any

from tqdm import tqdm
from tqdm.std import tqdm as TqdmType

"""Import progress display with tqdm (TTY only).

- One tqdm bar per import, measured in percent
- Disabled when stdout is not a TTY (CI, pipes) to avoid control sequence spam
- Instances are callables, so they plug straight into ``progress_cb``
"""

__all__ = [
    "ImportProgress",
    "is_tty_enabled",
]


def is_tty_enabled() -> bool:
    return sys.stdout.isatty()


class ImportProgress:
    """Percent-based progress bar for an import commit."""

    def __init__(self, total_rows: int, *, description: str = "Importing clients") -> None:
        self.total_rows = total_rows
        self.description = description
        self.percent = 0
        self.enabled = is_tty_enabled()
        self.pbar: TqdmType[Any] | None
        if self.enabled:
            self.pbar = tqdm(
                total=100,
                desc=description,
                unit="%",
                leave=True,
                ncols=80,
                ascii=True,
            )
        else:
            self.pbar = None

    def __call__(self, percent: int) -> None:
        """Advance to ``percent`` (0-100); values never move backwards."""
        percent = max(0, min(100, int(percent)))
        if percent <= self.percent:
            return
        if self.pbar is not None:
            self.pbar.update(percent - self.percent)
        self.percent = percent

    def set_postfix(self, **kwargs: Any) -> None:
        if self.pbar is not None:
            self.pbar.set_postfix(**kwargs)

    def close(self) -> None:
        if self.pbar is not None:
            self.pbar.close()
            self.pbar = None

    def __enter__(self) -> ImportProgress:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
