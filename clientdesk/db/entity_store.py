from __future__ import annotations

import copy
import uuid
from datetime import UTC, datetime
from typing import Any, Protocol, runtime_checkable

"""Generic entity CRUD contract and the in-memory backend.

Every data operation in clientdesk goes through ``EntityClient``:
``list / filter / get / create / update / delete / bulk_create``. All methods
are coroutines and raise ``EntityError`` (carrying a human-readable message)
on failure.

The in-memory backend is the mock mode of the CLI and the default backend in
tests; ``clientdesk.db.postgres_store`` provides the persistent one.
"""

__all__ = [
    "EntityError",
    "EntityClient",
    "EntityBackend",
    "InMemoryEntityStore",
    "InMemoryBackend",
    "REQUIRED_FIELDS",
    "new_record_id",
    "utc_timestamp",
]

# Fields the backend refuses to store empty, per entity.
REQUIRED_FIELDS: dict[str, tuple[str, ...]] = {
    "Client": ("name",),
    "UserPreferences": ("user_email",),
    "AppSettings": ("setting_key",),
}


class EntityError(Exception):
    """Backend failure with a human-readable message."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


@runtime_checkable
class EntityClient(Protocol):
    entity_name: str

    async def list(self, sort: str | None = None) -> list[dict[str, Any]]: ...

    async def filter(self, query: dict[str, Any]) -> list[dict[str, Any]]: ...

    async def get(self, record_id: str) -> dict[str, Any]: ...

    async def create(self, payload: dict[str, Any]) -> dict[str, Any]: ...

    async def update(self, record_id: str, partial: dict[str, Any]) -> dict[str, Any]: ...

    async def delete(self, record_id: str) -> None: ...

    async def bulk_create(self, payloads: list[dict[str, Any]]) -> list[dict[str, Any]]: ...


class EntityBackend(Protocol):
    def entity(self, name: str) -> EntityClient: ...

    async def close(self) -> None: ...


def new_record_id() -> str:
    return uuid.uuid4().hex


def utc_timestamp() -> str:
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


def sort_records(records: list[dict[str, Any]], sort: str | None) -> list[dict[str, Any]]:
    """Apply a ``"field"`` / ``"-field"`` sort spec (default newest first)."""
    spec = sort or "-created_date"
    descending = spec.startswith("-")
    key = spec.lstrip("-")
    present = [r for r in records if r.get(key) not in (None, "")]
    missing = [r for r in records if r.get(key) in (None, "")]
    present.sort(key=lambda r: str(r.get(key)), reverse=descending)
    return present + missing


def check_required(entity_name: str, payload: dict[str, Any]) -> None:
    if not isinstance(payload, dict):
        raise EntityError(f"{entity_name}: payload must be an object")
    for name in REQUIRED_FIELDS.get(entity_name, ()):
        value = payload.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            raise EntityError(f"{entity_name}: field '{name}' is required")


class InMemoryEntityStore:
    """Dictionary-backed EntityClient.

    Returned records are deep copies, so callers can never alias store state.
    ``bulk_create`` validates every payload before inserting any (all or
    nothing), matching the hosted platform's behaviour.
    """

    def __init__(self, entity_name: str) -> None:
        self.entity_name = entity_name
        self._records: dict[str, dict[str, Any]] = {}

    def __len__(self) -> int:
        return len(self._records)

    async def list(self, sort: str | None = None) -> list[dict[str, Any]]:
        return copy.deepcopy(sort_records(list(self._records.values()), sort))

    async def filter(self, query: dict[str, Any]) -> list[dict[str, Any]]:
        matched = [
            r for r in self._records.values()
            if all(r.get(k) == v for k, v in query.items())
        ]
        return copy.deepcopy(sort_records(matched, None))

    async def get(self, record_id: str) -> dict[str, Any]:
        try:
            return copy.deepcopy(self._records[record_id])
        except KeyError:
            raise EntityError(f"{self.entity_name} {record_id} not found") from None

    async def create(self, payload: dict[str, Any]) -> dict[str, Any]:
        check_required(self.entity_name, payload)
        return self._insert(payload)

    async def update(self, record_id: str, partial: dict[str, Any]) -> dict[str, Any]:
        if record_id not in self._records:
            raise EntityError(f"{self.entity_name} {record_id} not found")
        merged = {**self._records[record_id], **copy.deepcopy(partial)}
        merged["id"] = record_id
        check_required(self.entity_name, merged)
        merged["updated_date"] = utc_timestamp()
        self._records[record_id] = merged
        return copy.deepcopy(merged)

    async def delete(self, record_id: str) -> None:
        if self._records.pop(record_id, None) is None:
            raise EntityError(f"{self.entity_name} {record_id} not found")

    async def bulk_create(self, payloads: list[dict[str, Any]]) -> list[dict[str, Any]]:
        for payload in payloads:
            check_required(self.entity_name, payload)
        return [self._insert(p) for p in payloads]

    def _insert(self, payload: dict[str, Any]) -> dict[str, Any]:
        now = utc_timestamp()
        record = copy.deepcopy(payload)
        record["id"] = new_record_id()
        record["created_date"] = now
        record["updated_date"] = now
        self._records[record["id"]] = record
        return copy.deepcopy(record)


class InMemoryBackend:
    """Holds one InMemoryEntityStore per entity name."""

    def __init__(self) -> None:
        self._stores: dict[str, InMemoryEntityStore] = {}

    def entity(self, name: str) -> InMemoryEntityStore:
        if name not in self._stores:
            self._stores[name] = InMemoryEntityStore(name)
        return self._stores[name]

    async def close(self) -> None:
        return None
