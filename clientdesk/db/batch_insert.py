from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from psycopg2.extras import Json, execute_values

"""Batched INSERT of entity records into the JSONB ``entities`` table.

Uses ``psycopg2.extras.execute_values`` so one ``bulk_create`` is one
round-trip. Rows are ``(id, entity, data, created_date, updated_date)``;
``RETURNING`` hands the stored rows back so callers get canonical records.

An optional ``metrics_callback`` receives an ``InsertMetrics`` per call for
timing instrumentation.
"""

__all__ = [
    "BatchInsertError",
    "InsertMetrics",
    "InsertResult",
    "ENTITY_COLUMNS",
    "batch_insert",
]

ENTITY_COLUMNS = ("id", "entity", "data", "created_date", "updated_date")


class BatchInsertError(Exception):
    pass


@dataclass(frozen=True)
class InsertMetrics:
    """Timing for a single execute_values call."""
    batch_size: int
    elapsed_seconds: float
    start_time: float
    end_time: float


@dataclass(frozen=True)
class InsertResult:
    inserted_rows: int
    returned_values: list[tuple[Any, ...]]


def batch_insert(
    cursor: Any,
    table: str,
    entity: str,
    records: Sequence[dict[str, Any]],
    page_size: int = 1000,
    metrics_callback: Callable[[InsertMetrics], None] | None = None,
) -> InsertResult:
    """Insert prepared entity records in one statement.

    Args:
        cursor: psycopg2 cursor
        table: target table name (trusted, not user input)
        entity: entity name stored in the ``entity`` column
        records: dicts carrying ``id``, ``created_date``, ``updated_date``;
            every other key goes into the JSONB ``data`` column
        page_size: execute_values page size
        metrics_callback: receives InsertMetrics; not invoked for empty input

    Returns:
        InsertResult with the ``RETURNING`` rows in insertion order
    """
    if not records:
        return InsertResult(inserted_rows=0, returned_values=[])

    rows = [
        (
            r["id"],
            entity,
            Json({k: v for k, v in r.items() if k not in ("id", "created_date", "updated_date")}),
            r["created_date"],
            r["updated_date"],
        )
        for r in records
    ]
    cols_sql = ",".join(f'"{c}"' for c in ENTITY_COLUMNS)
    sql = (
        f"INSERT INTO {table} ({cols_sql}) VALUES %s "
        "RETURNING id, data, created_date, updated_date"
    )

    start_time = time.time()
    try:
        returned = execute_values(cursor, sql, rows, page_size=page_size, fetch=True)
    except Exception as e:
        raise BatchInsertError(str(e)) from e
    finally:
        end_time = time.time()
        if metrics_callback is not None:
            metrics_callback(
                InsertMetrics(
                    batch_size=len(rows),
                    elapsed_seconds=end_time - start_time,
                    start_time=start_time,
                    end_time=end_time,
                )
            )

    return InsertResult(inserted_rows=len(rows), returned_values=list(returned or []))
