from __future__ import annotations

import csv
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Any

import pandas as pd

from ..models.grid import ColumnDefinition
from .cells import display_text, read_value

"""Grid export helpers: CSV files and clipboard text."""

__all__ = [
    "BOM",
    "records_to_frame",
    "export_csv",
    "clipboard_text",
]

BOM = "\ufeff"


def records_to_frame(records: Iterable[dict[str, Any]], columns: Sequence[ColumnDefinition]) -> pd.DataFrame:
    """One DataFrame column per grid column, titled, values as display text."""
    data = [[display_text(read_value(r, c.key)) for c in columns] for r in records]
    return pd.DataFrame(data, columns=[c.title or c.key for c in columns], dtype=str)


def export_csv(
    records: Iterable[dict[str, Any]],
    columns: Sequence[ColumnDefinition],
    path: Path | None = None,
) -> str:
    """Render records as CSV: UTF-8 BOM, every field quoted, ``"`` doubled.

    When ``path`` is given the file is written too. The returned text always
    starts with the BOM.
    """
    frame = records_to_frame(records, columns)
    text = frame.to_csv(index=False, quoting=csv.QUOTE_ALL, lineterminator="\n")
    if path is not None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(BOM + text, encoding="utf-8")
    return BOM + text


def clipboard_text(values: Iterable[Any]) -> str:
    """One value per line; tabs become spaces so paste targets don't split cells."""
    return "\n".join(display_text(v).replace("\t", " ") for v in values)
