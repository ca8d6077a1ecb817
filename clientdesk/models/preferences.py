from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Any

"""Per-user general preferences (the "auto save" / "auto close edit" switches)."""

__all__ = [
    "GeneralPreferences",
]


@dataclass(frozen=True)
class GeneralPreferences:
    auto_save: bool = True  # persist cell edits immediately
    auto_close_edit: bool = True  # leave edit mode after a successful commit
    rows_per_page: int = 50
    compact_mode: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> GeneralPreferences:
        if not data:
            return cls()
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})
