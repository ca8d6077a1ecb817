from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from ..db.entity_store import EntityClient, EntityError
from ..services.events import CLIENT_UPDATED, ClientChanged, EventBus

"""Record persistence for grid edits.

A save is ``update(id, partial)`` then ``get(id)`` for the canonical record,
then a ``client:updated`` broadcast. Bulk saves run concurrently and settle
individually; callers pass at most one partial per record.
"""

__all__ = [
    "PersistenceFailure",
    "Outcome",
    "RecordPersister",
    "failure_message",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PersistenceFailure:
    record_id: str
    message: str
    fields: tuple[str, ...] = ()


@dataclass
class Outcome:
    """Result of a grid operation (what the UI would show as a toast)."""
    action: str
    changed: int = 0  # cells (or records) changed locally
    persisted: list[str] = field(default_factory=list)  # confirmed record ids
    failures: list[PersistenceFailure] = field(default_factory=list)
    skipped: int = 0  # stale selection entries
    text: str | None = None

    @property
    def ok(self) -> bool:
        return not self.failures

    def summary(self) -> str:
        parts = [f"{self.action}: {self.changed} changed"]
        if self.persisted:
            parts.append(f"{len(self.persisted)} saved")
        if self.failures:
            parts.append(f"{len(self.failures)} failed")
        if self.skipped:
            parts.append(f"{self.skipped} skipped")
        return ", ".join(parts)


def failure_message(exc: BaseException) -> str:
    if isinstance(exc, EntityError):
        return exc.message
    return str(exc) or exc.__class__.__name__


class RecordPersister:
    def __init__(self, entity: EntityClient, bus: EventBus | None = None) -> None:
        self.entity = entity
        self.bus = bus

    async def persist(self, record_id: str, partial: dict[str, Any]) -> dict[str, Any]:
        """Save ``partial`` and return the canonical record.

        Raises:
            EntityError: update or re-fetch failed
        """
        await self.entity.update(record_id, partial)
        canonical = await self.entity.get(record_id)
        if self.bus is not None:
            self.bus.publish(CLIENT_UPDATED, ClientChanged(client=canonical))
        return canonical

    async def persist_many(
        self,
        partials: dict[str, dict[str, Any]],
    ) -> tuple[dict[str, dict[str, Any]], list[PersistenceFailure]]:
        """Persist every partial concurrently; collect one result per record."""
        ids = list(partials)
        results = await asyncio.gather(
            *(self.persist(rid, partials[rid]) for rid in ids),
            return_exceptions=True,
        )
        saved: dict[str, dict[str, Any]] = {}
        failures: list[PersistenceFailure] = []
        for rid, res in zip(ids, results, strict=True):
            if isinstance(res, BaseException):
                failure = PersistenceFailure(rid, failure_message(res), tuple(sorted(partials[rid])))
                failures.append(failure)
                logger.error("Failed to save client %s: %s", rid, failure.message)
            else:
                saved[rid] = res
        return saved, failures
