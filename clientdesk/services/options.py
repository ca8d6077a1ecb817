from __future__ import annotations

import json
import logging
import re
import time
from collections.abc import Sequence
from dataclasses import replace
from typing import Any

from ..db.entity_store import EntityClient
from ..models.options import OptionItem, OptionKind, normalize_options
from .clients import ValidationError
from .events import EventBus, OptionsUpdated, options_event_name

"""Status / stage option list editing and global persistence.

The editing helpers are pure: they take a list and return a new one. Only
``OptionStore`` touches the backend (``AppSettings`` entity, one record per
option kind, value wrapped as ``{"options": [...]}``).
"""

__all__ = [
    "add_option",
    "edit_option",
    "delete_option",
    "move_option",
    "glow_for",
    "validate_options",
    "options_to_json",
    "options_from_json",
    "OptionStore",
]

logger = logging.getLogger(__name__)

_HEX_RE = re.compile(r"^#?([0-9a-f]{2})([0-9a-f]{2})([0-9a-f]{2})$", re.IGNORECASE)

DEFAULT_NEW_COLOR = "#22c55e"


def glow_for(color: str) -> str | None:
    """``#rrggbb`` -> ``rgba(r, g, b, 0.4)``; None when not a hex colour."""
    m = _HEX_RE.match(color.strip())
    if not m:
        return None
    r, g, b = (int(part, 16) for part in m.groups())
    return f"rgba({r}, {g}, {b}, 0.4)"


def add_option(options: Sequence[OptionItem], kind: OptionKind) -> list[OptionItem]:
    prefix = "status" if kind is OptionKind.STATUS else "stage"
    new = OptionItem(
        value=f"{prefix}_{int(time.time() * 1000)}",
        label=f"New {prefix}",
        color=DEFAULT_NEW_COLOR,
        glow=glow_for(DEFAULT_NEW_COLOR),
    )
    return [*options, new]


def edit_option(options: Sequence[OptionItem], index: int, field: str, value: str) -> list[OptionItem]:
    """Set ``field`` of the option at ``index``.

    A label edit also derives ``value`` (whitespace -> ``_``); a colour edit
    also derives ``glow``.
    """
    if field not in ("label", "color", "value", "glow"):
        raise ValueError(f"unknown option field: {field}")
    items = list(options)
    item = replace(items[index], **{field: value})
    if field == "label":
        item = replace(item, value=re.sub(r"\s+", "_", value))
    elif field == "color":
        glow = glow_for(value)
        if glow:
            item = replace(item, glow=glow)
    items[index] = item
    return items


def delete_option(options: Sequence[OptionItem], index: int) -> list[OptionItem]:
    if len(options) <= 1:
        raise ValidationError("At least one option must remain")
    return [o for i, o in enumerate(options) if i != index]


def move_option(options: Sequence[OptionItem], src: int, dst: int) -> list[OptionItem]:
    items = list(options)
    moved = items.pop(src)
    items.insert(dst, moved)
    return items


def validate_options(options: Sequence[OptionItem]) -> None:
    if not options:
        raise ValidationError("At least one option must remain")
    labels = [o.label.strip() for o in options]
    if any(not label for label in labels):
        raise ValidationError("Every option needs a label")
    if len(set(labels)) != len(labels):
        raise ValidationError("Option labels must be unique")


def options_to_json(options: Sequence[OptionItem]) -> str:
    return json.dumps([o.to_dict() for o in options], ensure_ascii=False, indent=2)


def options_from_json(text: str) -> list[OptionItem]:
    """Parse an exported option file; entries need a label and a colour."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Invalid JSON file: {e}") from e
    if not isinstance(data, list):
        raise ValidationError("The file must contain a list of options")
    items: list[OptionItem] = []
    for entry in data:
        if not isinstance(entry, dict) or not entry.get("label") or not entry.get("color"):
            continue
        item = OptionItem.from_dict(entry)
        if not item.glow:
            item = replace(item, glow=glow_for(item.color))
        items.append(item)
    if not items:
        raise ValidationError("No valid options found in the file")
    return items


class OptionStore:
    """Loads and saves the global option lists."""

    def __init__(self, settings: EntityClient, bus: EventBus | None = None) -> None:
        self.settings = settings
        self.bus = bus

    async def _find(self, kind: OptionKind) -> dict[str, Any] | None:
        found = await self.settings.filter({"setting_key": kind.value})
        return found[0] if found else None

    async def load(self, kind: OptionKind) -> list[OptionItem]:
        record = await self._find(kind)
        return normalize_options(record.get("setting_value") if record else None, kind)

    async def save(
        self,
        kind: OptionKind,
        options: Sequence[OptionItem],
        user_email: str | None = None,
    ) -> list[OptionItem]:
        """Validate, upsert and broadcast ``options``.

        Raises:
            ValidationError: empty or duplicate labels
            EntityError: backend failure (nothing is broadcast)
        """
        validate_options(options)
        value = {"options": [o.to_dict() for o in options]}
        existing = await self._find(kind)
        if existing:
            await self.settings.update(existing["id"], {"setting_value": value, "updated_by": user_email})
        else:
            await self.settings.create({
                "setting_key": kind.value,
                "setting_value": value,
                "updated_by": user_email,
            })
        logger.info("Saved %d %s option(s)", len(options), kind.name.lower())
        if self.bus is not None:
            self.bus.publish(options_event_name(kind), OptionsUpdated(kind=kind, options=tuple(options)))
        return list(options)
