from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any

"""Stage / status option models.

Option lists are small enumerations stored globally (shared by all users) and
referenced by ``value`` from client records. Stored values come in two shapes
(a bare list, or ``{"options": [...]}``); ``normalize_options`` folds both into
``list[OptionItem]`` at the boundary.
"""

__all__ = [
    "OptionKind",
    "OptionItem",
    "DEFAULT_STATUS_OPTIONS",
    "DEFAULT_STAGE_OPTIONS",
    "default_options",
    "normalize_options",
]


class OptionKind(Enum):
    """Which global option list an operation targets.

    The value is the ``AppSettings.setting_key`` the list is stored under.
    """
    STATUS = "client_status_options"
    STAGE = "client_stage_options"


@dataclass(frozen=True)
class OptionItem:
    value: str
    label: str
    color: str
    glow: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OptionItem:
        label = str(data.get("label") or data.get("value") or "").strip()
        value = str(data.get("value") or label.replace(" ", "_"))
        return cls(
            value=value,
            label=label,
            color=str(data.get("color") or "#6b7280"),
            glow=data.get("glow"),
        )


DEFAULT_STATUS_OPTIONS: tuple[OptionItem, ...] = (
    OptionItem("potential", "Potential", "#f59e0b", "rgba(245, 158, 11, 0.4)"),
    OptionItem("active", "Active", "#22c55e", "rgba(34, 197, 94, 0.4)"),
    OptionItem("inactive", "Inactive", "#ef4444", "rgba(239, 68, 68, 0.4)"),
)

DEFAULT_STAGE_OPTIONS: tuple[OptionItem, ...] = (
    OptionItem("design_review", "Design review", "#3b82f6"),
    OptionItem("information_file", "Information file", "#8b5cf6"),
    OptionItem("permits", "Permits", "#f59e0b"),
    OptionItem("execution", "Execution", "#10b981"),
    OptionItem("completed", "Completed", "#6b7280"),
)


def default_options(kind: OptionKind) -> list[OptionItem]:
    if kind is OptionKind.STATUS:
        return list(DEFAULT_STATUS_OPTIONS)
    return list(DEFAULT_STAGE_OPTIONS)


def normalize_options(raw: Any, kind: OptionKind) -> list[OptionItem]:
    """Fold any stored option shape into a canonical list.

    Accepts a list of dicts/OptionItems or a wrapper ``{"options": [...]}``.
    Anything else (or an empty list) yields the defaults for ``kind``.
    """
    if isinstance(raw, dict):
        raw = raw.get("options")
    if not isinstance(raw, (list, tuple)) or not raw:
        return default_options(kind)
    items: list[OptionItem] = []
    for entry in raw:
        if isinstance(entry, OptionItem):
            items.append(entry)
        elif isinstance(entry, dict) and (entry.get("label") or entry.get("value")):
            items.append(OptionItem.from_dict(entry))
    return items or default_options(kind)
