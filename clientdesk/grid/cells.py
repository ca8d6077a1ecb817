from __future__ import annotations

import copy
from typing import Any

from ..models.grid import BUILTIN_CLIENT_FIELDS

"""Reading and writing cell values on client records.

Built-in fields are top-level record keys; every other column key lives in
``custom_data``. Writes to a custom column always send the whole
``custom_data`` dict, since the backend merges updates at the top level.
"""

__all__ = [
    "is_custom_key",
    "read_value",
    "write_value",
    "display_text",
]


def is_custom_key(column_key: str) -> bool:
    return column_key not in BUILTIN_CLIENT_FIELDS and column_key != "actions"


def read_value(record: dict[str, Any], column_key: str) -> Any:
    if is_custom_key(column_key):
        return (record.get("custom_data") or {}).get(column_key)
    return record.get(column_key)


def display_text(value: Any) -> str:
    return "" if value is None else str(value)


def write_value(record: dict[str, Any], column_key: str, value: Any) -> tuple[dict[str, Any], dict[str, Any]]:
    """Return ``(updated_record, partial_update)`` without mutating ``record``."""
    updated = copy.deepcopy(record)
    if is_custom_key(column_key):
        custom = dict(updated.get("custom_data") or {})
        custom[column_key] = value
        updated["custom_data"] = custom
        return updated, {"custom_data": dict(custom)}
    updated[column_key] = value
    return updated, {column_key: value}
