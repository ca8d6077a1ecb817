from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import unquote, urlparse

import pandas as pd
import requests

"""Spreadsheet parsing for the import pipeline.

``parse_spreadsheet(file_url)`` returns a ``ParseResult`` instead of raising:
callers branch on ``status`` ("success" / "error").

- CSV via ``pandas.read_csv``; Excel (.xlsx / .xls) via ``pandas.read_excel``
  (first sheet only)
- Every cell is read as a string; blank cells become ""
- Rows where every cell is blank are dropped
- ``file://`` URLs and plain paths are read locally; http(s) URLs are fetched
  with requests
"""

__all__ = [
    "ParseResult",
    "parse_spreadsheet",
    "CSV_ENCODINGS",
]

logger = logging.getLogger(__name__)

EXCEL_SUFFIXES = {".xlsx", ".xls", ".xlsm"}
# Hebrew exports from Excel are frequently windows-1255.
CSV_ENCODINGS = ("utf-8-sig", "cp1255", "latin-1")
FETCH_TIMEOUT = 30


@dataclass
class ParseResult:
    status: str
    headers: list[str] = field(default_factory=list)
    rows: list[dict[str, str]] = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "success"


def _read_source(file_url: str) -> tuple[str, bytes]:
    parsed = urlparse(file_url)
    if parsed.scheme in ("http", "https"):
        resp = requests.get(file_url, timeout=FETCH_TIMEOUT)
        resp.raise_for_status()
        return Path(parsed.path).suffix.lower(), resp.content
    if parsed.scheme == "file":
        path = Path(unquote(parsed.path))
    else:
        path = Path(file_url)
    return path.suffix.lower(), path.read_bytes()


def _read_csv(content: bytes) -> pd.DataFrame:
    last_error: Exception | None = None
    for encoding in CSV_ENCODINGS:
        try:
            return pd.read_csv(
                io.BytesIO(content),
                dtype=str,
                keep_default_na=False,
                encoding=encoding,
                skipinitialspace=False,
            )
        except UnicodeDecodeError as e:
            last_error = e
            logger.debug("CSV decode failed with %s, trying next encoding", encoding)
    raise ValueError(f"unable to decode CSV: {last_error}")


def _frame_to_rows(df: pd.DataFrame) -> tuple[list[str], list[dict[str, str]]]:
    headers = [str(c).strip() for c in df.columns]
    df = df.fillna("")
    rows: list[dict[str, str]] = []
    for raw in df.itertuples(index=False, name=None):
        values = ["" if v is None else str(v) for v in raw]
        if all(not v.strip() for v in values):
            continue
        rows.append(dict(zip(headers, values, strict=False)))
    return headers, rows


def parse_spreadsheet(file_url: str) -> ParseResult:
    """Parse the first sheet of a CSV / Excel file into header + row dicts."""
    try:
        suffix, content = _read_source(file_url)
        if suffix in EXCEL_SUFFIXES:
            df = pd.read_excel(
                io.BytesIO(content),
                sheet_name=0,
                dtype=str,
                keep_default_na=False,
            )
        else:
            df = _read_csv(content)
        headers, rows = _frame_to_rows(df)
    except Exception as e:
        logger.error("Failed to parse %s: %s", file_url, e)
        return ParseResult(status="error", error=str(e))

    logger.debug("Parsed %s: %d headers, %d rows", file_url, len(headers), len(rows))
    return ParseResult(status="success", headers=headers, rows=rows)
