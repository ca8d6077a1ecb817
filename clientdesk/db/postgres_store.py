from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

import psycopg2
from psycopg2.extras import Json

from clientdesk.db.batch_insert import BatchInsertError, InsertMetrics, batch_insert
from clientdesk.db.entity_store import (
    REQUIRED_FIELDS,
    EntityError,
    check_required,
    new_record_id,
    sort_records,
    utc_timestamp,
)

"""PostgreSQL EntityClient backend.

All entities share one table; the payload lives in a JSONB ``data`` column.
psycopg2 is blocking, so every statement runs through ``asyncio.to_thread``
while holding a per-backend lock (one connection, one statement at a time).
Each call commits on success and rolls back on failure; ``bulk_create`` is a
single transaction and therefore all-or-nothing.
"""

__all__ = [
    "TABLE_NAME",
    "PostgresEntityStore",
    "PostgresBackend",
]

logger = logging.getLogger(__name__)

TABLE_NAME = "entities"

DDL = f"""
CREATE TABLE IF NOT EXISTS {TABLE_NAME} (
    id TEXT PRIMARY KEY,
    entity TEXT NOT NULL,
    data JSONB NOT NULL DEFAULT '{{}}'::jsonb,
    created_date TEXT NOT NULL,
    updated_date TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS {TABLE_NAME}_entity_idx ON {TABLE_NAME} (entity);
"""

_SELECT = f"SELECT id, data, created_date, updated_date FROM {TABLE_NAME}"


def _row_to_record(row: tuple[Any, ...]) -> dict[str, Any]:
    record_id, data, created, updated = row
    record = dict(data or {})
    record["id"] = record_id
    record["created_date"] = created
    record["updated_date"] = updated
    return record


class PostgresBackend:
    """Owns the connection and hands out one store per entity name."""

    def __init__(self, connection: Any) -> None:
        self._conn = connection
        self._lock = asyncio.Lock()
        self._stores: dict[str, PostgresEntityStore] = {}

    @classmethod
    async def connect(cls, dsn: str) -> PostgresBackend:
        try:
            conn = await asyncio.to_thread(psycopg2.connect, dsn)
        except psycopg2.Error as e:
            raise EntityError(f"database connection failed: {e}") from e
        backend = cls(conn)
        await backend.run(lambda cur: cur.execute(DDL))
        logger.info("Connected to PostgreSQL backend")
        return backend

    def entity(self, name: str) -> PostgresEntityStore:
        if name not in self._stores:
            self._stores[name] = PostgresEntityStore(self, name)
        return self._stores[name]

    async def run(self, fn: Callable[[Any], Any]) -> Any:
        """Run ``fn(cursor)`` in a worker thread inside its own transaction."""
        async with self._lock:
            return await asyncio.to_thread(self._run_sync, fn)

    def _run_sync(self, fn: Callable[[Any], Any]) -> Any:
        try:
            with self._conn.cursor() as cur:
                result = fn(cur)
            self._conn.commit()
            return result
        except (psycopg2.Error, BatchInsertError) as e:
            self._conn.rollback()
            raise EntityError(str(e).strip()) from e

    async def close(self) -> None:
        async with self._lock:
            await asyncio.to_thread(self._conn.close)


class PostgresEntityStore:
    def __init__(
        self,
        backend: PostgresBackend,
        entity_name: str,
        metrics_callback: Callable[[InsertMetrics], None] | None = None,
    ) -> None:
        self.entity_name = entity_name
        self._backend = backend
        self._metrics_callback = metrics_callback

    async def list(self, sort: str | None = None) -> list[dict[str, Any]]:
        def op(cur: Any) -> list[tuple[Any, ...]]:
            cur.execute(f"{_SELECT} WHERE entity = %s", (self.entity_name,))
            return cur.fetchall()

        rows = await self._backend.run(op)
        return sort_records([_row_to_record(r) for r in rows], sort)

    async def filter(self, query: dict[str, Any]) -> list[dict[str, Any]]:
        query = dict(query)
        record_id = query.pop("id", None)

        def op(cur: Any) -> list[tuple[Any, ...]]:
            sql = f"{_SELECT} WHERE entity = %s AND data @> %s::jsonb"
            params: list[Any] = [self.entity_name, Json(query)]
            if record_id is not None:
                sql += " AND id = %s"
                params.append(record_id)
            cur.execute(sql, params)
            return cur.fetchall()

        rows = await self._backend.run(op)
        return sort_records([_row_to_record(r) for r in rows], None)

    async def get(self, record_id: str) -> dict[str, Any]:
        def op(cur: Any) -> tuple[Any, ...] | None:
            cur.execute(f"{_SELECT} WHERE entity = %s AND id = %s", (self.entity_name, record_id))
            return cur.fetchone()

        row = await self._backend.run(op)
        if row is None:
            raise EntityError(f"{self.entity_name} {record_id} not found")
        return _row_to_record(row)

    async def create(self, payload: dict[str, Any]) -> dict[str, Any]:
        created = await self.bulk_create([payload])
        return created[0]

    async def update(self, record_id: str, partial: dict[str, Any]) -> dict[str, Any]:
        data = {k: v for k, v in partial.items() if k not in ("id", "created_date", "updated_date")}
        # Only fields present in the partial can become blank.
        required = REQUIRED_FIELDS.get(self.entity_name, ())
        if any(name in data for name in required):
            check_required(self.entity_name, {name: data.get(name, "x") for name in required})

        def op(cur: Any) -> tuple[Any, ...] | None:
            cur.execute(
                f"UPDATE {TABLE_NAME} SET data = data || %s::jsonb, updated_date = %s "
                "WHERE entity = %s AND id = %s "
                "RETURNING id, data, created_date, updated_date",
                (Json(data), utc_timestamp(), self.entity_name, record_id),
            )
            return cur.fetchone()

        row = await self._backend.run(op)
        if row is None:
            raise EntityError(f"{self.entity_name} {record_id} not found")
        return _row_to_record(row)

    async def delete(self, record_id: str) -> None:
        def op(cur: Any) -> int:
            cur.execute(
                f"DELETE FROM {TABLE_NAME} WHERE entity = %s AND id = %s",
                (self.entity_name, record_id),
            )
            return cur.rowcount

        if await self._backend.run(op) == 0:
            raise EntityError(f"{self.entity_name} {record_id} not found")

    async def bulk_create(self, payloads: list[dict[str, Any]]) -> list[dict[str, Any]]:
        for payload in payloads:
            check_required(self.entity_name, payload)
        now = utc_timestamp()
        prepared = [
            {**p, "id": new_record_id(), "created_date": now, "updated_date": now}
            for p in payloads
        ]

        def op(cur: Any) -> list[tuple[Any, ...]]:
            result = batch_insert(
                cur,
                TABLE_NAME,
                self.entity_name,
                prepared,
                metrics_callback=self._metrics_callback,
            )
            return result.returned_values

        rows = await self._backend.run(op)
        return [_row_to_record(r) for r in rows]
