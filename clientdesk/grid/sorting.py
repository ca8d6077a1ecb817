from __future__ import annotations

import locale
import math
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from functools import cmp_to_key
from typing import Any

from .cells import display_text, read_value

"""Grid sorting and filtering.

Sort header clicks cycle ``asc -> desc -> none``; a different column starts
again at ``asc``. Two values compare numerically when both parse as numbers,
otherwise with the active locale's collation (``locale.strcoll``). Empty
values sort last in both directions. Python's sort is stable, so ties keep
their input order and "none" returns the input order unchanged.
"""

__all__ = [
    "SortState",
    "next_sort_state",
    "compare_values",
    "sort_records",
    "filter_records",
]

ASC = "asc"
DESC = "desc"


@dataclass(frozen=True)
class SortState:
    key: str | None = None
    direction: str | None = None

    @property
    def active(self) -> bool:
        return self.key is not None and self.direction is not None

    def to_dict(self) -> dict[str, Any]:
        return {"key": self.key, "direction": self.direction}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> SortState:
        if not data or data.get("direction") not in (ASC, DESC) or not data.get("key"):
            return cls()
        return cls(key=str(data["key"]), direction=data["direction"])


def next_sort_state(current: SortState, key: str) -> SortState:
    if current.key != key or not current.active:
        return SortState(key, ASC)
    if current.direction == ASC:
        return SortState(key, DESC)
    return SortState()


def _as_number(text: str) -> float | None:
    try:
        value = float(text)
    except ValueError:
        return None
    # "nan" and "inf" are words here, not numbers
    return value if math.isfinite(value) else None


def compare_values(a: Any, b: Any) -> int:
    """Ascending comparison of two non-empty cell values."""
    sa, sb = display_text(a).strip(), display_text(b).strip()
    na, nb = _as_number(sa), _as_number(sb)
    if na is not None and nb is not None:
        return (na > nb) - (na < nb)
    return locale.strcoll(sa, sb)


def sort_records(
    records: Sequence[dict[str, Any]],
    state: SortState,
    value_of: Callable[[dict[str, Any], str], Any] = read_value,
) -> list[dict[str, Any]]:
    if not state.active:
        return list(records)
    key = state.key
    assert key is not None
    sign = 1 if state.direction == ASC else -1

    def is_empty(record: dict[str, Any]) -> bool:
        return not display_text(value_of(record, key)).strip()

    present = [r for r in records if not is_empty(r)]
    empty = [r for r in records if is_empty(r)]
    present.sort(key=cmp_to_key(lambda x, y: sign * compare_values(value_of(x, key), value_of(y, key))))
    return present + empty


def filter_records(
    records: Iterable[dict[str, Any]],
    column_keys: Sequence[str],
    global_filter: str = "",
    column_filters: dict[str, str] | None = None,
) -> list[dict[str, Any]]:
    """Case-insensitive substring filtering.

    ``global_filter`` matches when any of ``column_keys`` contains it; every
    non-empty entry of ``column_filters`` must match its own column.
    """
    needle = global_filter.strip().lower()
    filters = {k: v.strip().lower() for k, v in (column_filters or {}).items() if v and v.strip()}
    result: list[dict[str, Any]] = []
    for record in records:
        if needle and not any(
            needle in display_text(read_value(record, k)).lower() for k in column_keys
        ):
            continue
        if any(f not in display_text(read_value(record, k)).lower() for k, f in filters.items()):
            continue
        result.append(record)
    return result
