from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from clientdesk.models.mapping import (
    CUSTOM_PREFIX,
    DEFAULT_PLACEHOLDER_NAME,
    FIRST_NAME,
    LAST_NAME,
    SYNONYMS,
    TARGET_FIELDS,
    ColumnMapping,
    is_custom_target,
    is_synthetic_target,
)

"""Header auto-mapping and row building for the client importer.

Flow:
1. ``auto_map_columns(headers)`` proposes targets by synonym / heuristic
2. The user adjusts the mapping
3. ``complete_mapping`` assigns ``cf:<slug>`` to whatever is still unmapped
4. ``build_row`` turns each raw row into a client payload
"""

__all__ = [
    "MappingStats",
    "normalize_header",
    "make_slug",
    "fallback_slug",
    "auto_map_columns",
    "complete_mapping",
    "mapping_stats",
    "build_row",
    "SLUG_MAX_LENGTH",
]

logger = logging.getLogger(__name__)

SLUG_MAX_LENGTH = 60

_FIRST_NAME_RE = re.compile(r"first\s*name|שם\s*פרטי", re.IGNORECASE)
_LAST_NAME_RE = re.compile(r"last\s*name|שם\s*משפחה", re.IGNORECASE)
_WHITESPACE_RE = re.compile(r"\s+")
_QUOTES_RE = re.compile(r"[\"']")


@dataclass(frozen=True)
class MappingStats:
    mapped: int
    total: int

    @property
    def unmapped(self) -> int:
        return self.total - self.mapped


def normalize_header(header: Any) -> str:
    return str(header if header is not None else "").strip().lower()


def make_slug(header: str) -> str:
    """Custom-field slug: whitespace -> ``_``, quotes dropped, max 60 chars.

    Non-Latin letters are preserved (``"תאריך לידה"`` -> ``"תאריך_לידה"``).
    """
    slug = _WHITESPACE_RE.sub("_", str(header).strip())
    slug = _QUOTES_RE.sub("", slug)
    return slug[:SLUG_MAX_LENGTH]


def _match_header(header: str) -> str | None:
    normalized = normalize_header(header)
    if not normalized:
        return None
    for target in TARGET_FIELDS:
        if normalized in SYNONYMS.get(target.key, ()):
            return target.key

    guess = None
    if _FIRST_NAME_RE.search(normalized):
        guess = FIRST_NAME
    # Checked second so "last name" wins when a header matches both.
    if _LAST_NAME_RE.search(normalized):
        guess = LAST_NAME
    return guess


def auto_map_columns(headers: Iterable[str]) -> ColumnMapping:
    """Propose a mapping; headers with no match are left out entirely."""
    mapping: ColumnMapping = {}
    for header in headers:
        target = _match_header(header)
        if target is not None:
            mapping[header] = target
    logger.debug("Auto-mapped %d header(s): %s", len(mapping), mapping)
    return mapping


def fallback_slug(index: int) -> str:
    """Slug for a header with no usable characters (0-based ``index``)."""
    return f"column_{index + 1}"


def complete_mapping(headers: Iterable[str], mapping: Mapping[str, str | None]) -> ColumnMapping:
    """Return a copy where every unmapped header targets ``cf:<slug>``.

    No header is left out: an empty slug falls back to ``column_<n>``, and a
    slug already taken by another header gets a ``_2``, ``_3``... suffix so
    two columns never share one ``custom_data`` key.
    """
    header_list = list(headers)
    completed: ColumnMapping = dict(mapping)
    taken = {
        target[len(CUSTOM_PREFIX):]
        for target in completed.values()
        if is_custom_target(target)
    }
    for index, header in enumerate(header_list):
        if completed.get(header):
            continue
        base = make_slug(header) or fallback_slug(index)
        slug = base
        n = 1
        while slug in taken:
            n += 1
            slug = f"{base}_{n}"
        taken.add(slug)
        completed[header] = f"{CUSTOM_PREFIX}{slug}"
    return completed


def mapping_stats(headers: Iterable[str], mapping: Mapping[str, str | None]) -> MappingStats:
    """Count headers mapped onto a real target (synthetic keys don't count)."""
    header_list = list(headers)
    mapped = 0
    for header in header_list:
        target = mapping.get(header)
        if target and not is_synthetic_target(target):
            mapped += 1
    return MappingStats(mapped=mapped, total=len(header_list))


def build_row(
    raw: Mapping[str, Any],
    mapping: Mapping[str, str | None],
    placeholder: str = DEFAULT_PLACEHOLDER_NAME,
) -> dict[str, Any]:
    """Map one raw row onto a client payload.

    ``name`` is always non-empty: mapped name, then first/last name joined,
    then ``placeholder``.
    """
    payload: dict[str, Any] = {}
    custom_data: dict[str, str] = {}

    for header, target in mapping.items():
        if not target:
            continue
        value = raw.get(header)
        if value is None:
            continue
        if is_custom_target(target):
            custom_data[target[len(CUSTOM_PREFIX):]] = str(value).strip()
        elif is_synthetic_target(target):
            continue
        else:
            payload[target] = str(value).strip()

    if not payload.get("name"):
        first_header = next((h for h, t in mapping.items() if t == FIRST_NAME), None)
        last_header = next((h for h, t in mapping.items() if t == LAST_NAME), None)
        if first_header is not None or last_header is not None:
            parts = [
                str(raw.get(h) or "").strip()
                for h in (first_header, last_header)
                if h is not None
            ]
            joined = " ".join(p for p in parts if p)
            if joined:
                payload["name"] = joined

    if not payload.get("name"):
        payload["name"] = placeholder

    if custom_data:
        payload["custom_data"] = custom_data
    return payload
