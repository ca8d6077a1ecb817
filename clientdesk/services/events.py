from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from ..models.options import OptionItem, OptionKind
from ..models.preferences import GeneralPreferences

"""In-process event bus for cross-component notifications.

Event names are fixed; each carries one payload dataclass and ``publish``
refuses any other type. Handlers run synchronously in subscription order; a
failing handler is logged and does not stop the others.
"""

__all__ = [
    "CLIENT_CREATED",
    "CLIENT_UPDATED",
    "CLIENT_DELETED",
    "STATUS_OPTIONS_UPDATED",
    "STAGE_OPTIONS_UPDATED",
    "USER_PREFERENCES_UPDATED",
    "ClientChanged",
    "ClientDeleted",
    "OptionsUpdated",
    "PreferencesUpdated",
    "EventBus",
    "Subscription",
    "options_event_name",
]

logger = logging.getLogger(__name__)

CLIENT_CREATED = "client:created"
CLIENT_UPDATED = "client:updated"
CLIENT_DELETED = "client:deleted"
STATUS_OPTIONS_UPDATED = "status:options:updated"
STAGE_OPTIONS_UPDATED = "stage:options:updated"
USER_PREFERENCES_UPDATED = "user:preferences:updated"


@dataclass(frozen=True)
class ClientChanged:
    client: dict[str, Any]


@dataclass(frozen=True)
class ClientDeleted:
    client_id: str


@dataclass(frozen=True)
class OptionsUpdated:
    kind: OptionKind
    options: tuple[OptionItem, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class PreferencesUpdated:
    user_email: str
    general: GeneralPreferences


EVENT_TYPES: dict[str, type] = {
    CLIENT_CREATED: ClientChanged,
    CLIENT_UPDATED: ClientChanged,
    CLIENT_DELETED: ClientDeleted,
    STATUS_OPTIONS_UPDATED: OptionsUpdated,
    STAGE_OPTIONS_UPDATED: OptionsUpdated,
    USER_PREFERENCES_UPDATED: PreferencesUpdated,
}

Handler = Callable[[Any], None]


def options_event_name(kind: OptionKind) -> str:
    return STATUS_OPTIONS_UPDATED if kind is OptionKind.STATUS else STAGE_OPTIONS_UPDATED


class Subscription:
    """Handle returned by ``subscribe``; call ``unsubscribe()`` when done."""

    def __init__(self, bus: EventBus, name: str, handler: Handler) -> None:
        self._bus = bus
        self.name = name
        self.handler = handler
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self._bus._remove(self.name, self.handler)
            self.active = False


class EventBus:
    def __init__(self) -> None:
        self._subscribers: dict[str, list[Handler]] = defaultdict(list)

    def subscribe(self, name: str, handler: Handler) -> Subscription:
        if name not in EVENT_TYPES:
            raise ValueError(f"unknown event: {name}")
        handlers = self._subscribers[name]
        if handler not in handlers:
            handlers.append(handler)
        return Subscription(self, name, handler)

    def _remove(self, name: str, handler: Handler) -> None:
        handlers = self._subscribers.get(name)
        if not handlers:
            return
        try:
            handlers.remove(handler)
        except ValueError:
            return
        if not handlers:
            self._subscribers.pop(name, None)

    def subscriber_count(self, name: str) -> int:
        return len(self._subscribers.get(name, ()))

    def publish(self, name: str, payload: Any) -> None:
        expected = EVENT_TYPES.get(name)
        if expected is None:
            raise ValueError(f"unknown event: {name}")
        if not isinstance(payload, expected):
            raise TypeError(f"{name} expects {expected.__name__}, got {type(payload).__name__}")

        for handler in list(self._subscribers.get(name, ())):
            try:
                handler(payload)
            except Exception:
                logger.exception("Handler for %s failed", name)

    def clear(self) -> None:
        self._subscribers.clear()
