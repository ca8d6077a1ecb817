from __future__ import annotations

import asyncio
import copy
import logging
from enum import Enum
from typing import Any

from ..db.entity_store import EntityClient
from ..models.preferences import GeneralPreferences
from .events import USER_PREFERENCES_UPDATED, EventBus, PreferencesUpdated

"""Per-user preference persistence.

``PreferencesWriter`` owns one ``UserPreferences`` document per user and
writes one section of ``spreadsheet_columns`` (grid layout, styles, sort,
stage options) with a debounce:

    UNLOADED --load()--> LOADED --mark_dirty()--> DIRTY --timer--> PERSISTING
    PERSISTING --ok--> LOADED (or DIRTY again when changes arrived meanwhile)
    PERSISTING --error--> DIRTY

- ``mark_dirty`` before the initial load is ignored, so a default layout never
  overwrites a stored one
- single writer per document; changes during a write coalesce into exactly
  one follow-up write
- last write wins
"""

__all__ = [
    "WriterState",
    "PreferencesWriter",
    "load_general_preferences",
    "save_general_preferences",
]

logger = logging.getLogger(__name__)

ENTITY_NAME = "UserPreferences"


class WriterState(Enum):
    UNLOADED = "unloaded"
    LOADED = "loaded"
    DIRTY = "dirty"
    PERSISTING = "persisting"


class PreferencesWriter:
    def __init__(
        self,
        entity: EntityClient,
        user_email: str,
        *,
        section: str = "clients",
        debounce: float = 1.0,
    ) -> None:
        self.entity = entity
        self.user_email = user_email
        self.section = section
        self.debounce = debounce
        self.state = WriterState.UNLOADED
        self.writes = 0
        self.failures = 0
        self._record_id: str | None = None
        self._doc: dict[str, Any] = {}
        self._pending: dict[str, Any] | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._task: asyncio.Future[None] | None = None

    @property
    def document(self) -> dict[str, Any]:
        return copy.deepcopy(self._doc)

    @property
    def layout(self) -> dict[str, Any] | None:
        """The stored section (``spreadsheet_columns[section]``), if any."""
        section = (self._doc.get("spreadsheet_columns") or {}).get(self.section)
        return copy.deepcopy(section) if isinstance(section, dict) else None

    @property
    def general(self) -> GeneralPreferences:
        return GeneralPreferences.from_dict(self._doc.get("general_preferences"))

    async def load(self) -> dict[str, Any] | None:
        """Fetch the user's document; unlocks ``mark_dirty``.

        Raises:
            EntityError: backend failure (the writer stays UNLOADED)
        """
        found = await self.entity.filter({"user_email": self.user_email})
        if found:
            self._doc = found[0]
            self._record_id = found[0]["id"]
        self.state = WriterState.LOADED
        logger.debug("Preferences loaded for %s (stored=%s)", self.user_email, bool(found))
        return self.layout

    def mark_dirty(self, snapshot: dict[str, Any]) -> bool:
        """Queue ``snapshot`` as the new section value.

        Returns False when ignored (not loaded yet).
        """
        if self.state is WriterState.UNLOADED:
            logger.debug("Preferences not loaded yet, change ignored")
            return False
        self._pending = copy.deepcopy(snapshot)
        if self.state is WriterState.PERSISTING:
            return True
        self.state = WriterState.DIRTY
        self._schedule()
        return True

    def _schedule(self) -> None:
        self._cancel_timer()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, preferences write deferred until flush()")
            return
        self._timer = loop.call_later(self.debounce, self._start_write)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _start_write(self) -> None:
        self._timer = None
        if self.state is not WriterState.DIRTY:
            return
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.ensure_future(self._write())

    async def _write(self) -> None:
        snapshot = self._pending
        if snapshot is None:
            self.state = WriterState.LOADED
            return
        self._pending = None
        self.state = WriterState.PERSISTING
        try:
            await self._store(snapshot)
        except Exception as e:
            self.failures += 1
            if self._pending is None:
                self._pending = snapshot
            self.state = WriterState.DIRTY
            logger.error("Failed to save preferences for %s: %s", self.user_email, e)
            return

        self.writes += 1
        logger.debug("Preferences saved for %s (write #%d)", self.user_email, self.writes)
        if self._pending is not None:
            self.state = WriterState.DIRTY
            self._schedule()
        else:
            self.state = WriterState.LOADED

    async def _store(self, snapshot: dict[str, Any]) -> None:
        if self._record_id is None:
            # another writer (general preferences) may have created the document since load()
            found = await self.entity.filter({"user_email": self.user_email})
            if found:
                self._doc = found[0]
                self._record_id = found[0]["id"]
        columns = dict(self._doc.get("spreadsheet_columns") or {})
        columns[self.section] = snapshot
        if self._record_id is not None:
            record = await self.entity.update(self._record_id, {"spreadsheet_columns": columns})
        else:
            record = await self.entity.create({
                "user_email": self.user_email,
                "spreadsheet_columns": columns,
            })
            self._record_id = record["id"]
        self._doc = record

    async def flush(self) -> None:
        """Write any pending change now (waiting for an in-flight write first)."""
        self._cancel_timer()
        if self._task is not None and not self._task.done():
            await self._task
            self._cancel_timer()
        if self.state is WriterState.DIRTY and self._pending is not None:
            self._task = asyncio.ensure_future(self._write())
            await self._task

    async def close(self) -> None:
        await self.flush()
        self._cancel_timer()


async def load_general_preferences(entity: EntityClient, user_email: str) -> GeneralPreferences:
    found = await entity.filter({"user_email": user_email})
    if not found:
        return GeneralPreferences()
    return GeneralPreferences.from_dict(found[0].get("general_preferences"))


async def save_general_preferences(
    entity: EntityClient,
    user_email: str,
    general: GeneralPreferences,
    bus: EventBus | None = None,
) -> GeneralPreferences:
    """Upsert the user's general preferences and broadcast the change."""
    found = await entity.filter({"user_email": user_email})
    if found:
        await entity.update(found[0]["id"], {"general_preferences": general.to_dict()})
    else:
        await entity.create({"user_email": user_email, "general_preferences": general.to_dict()})
    logger.info("General preferences saved for %s", user_email)
    if bus is not None:
        bus.publish(USER_PREFERENCES_UPDATED, PreferencesUpdated(user_email=user_email, general=general))
    return general
