from __future__ import annotations

from dataclasses import dataclass

"""Column mapping vocabulary for the client importer.

A column mapping is a plain ``dict[str, str | None]`` from a source header to a
target descriptor:

- a built-in client field key (``name``, ``phone``, ...)
- a synthetic composite key (``__firstName`` / ``__lastName``)
- a custom field key ``cf:<slug>`` stored under ``custom_data[slug]``
- ``None`` / ``""`` for "unmapped"

This module only holds the vocabulary (fields, synonyms, presets); the
algorithms live in ``clientdesk.services.automap``.
"""

__all__ = [
    "ColumnMapping",
    "TargetField",
    "PresetColumn",
    "TARGET_FIELDS",
    "TARGET_KEYS",
    "SYNONYMS",
    "PRESET_CLIENT_COLUMNS",
    "CUSTOM_PREFIX",
    "SYNTHETIC_PREFIX",
    "FIRST_NAME",
    "LAST_NAME",
    "DEFAULT_PLACEHOLDER_NAME",
    "is_custom_target",
    "is_synthetic_target",
    "is_valid_target",
    "preset_target",
]

ColumnMapping = dict[str, str | None]

CUSTOM_PREFIX = "cf:"
SYNTHETIC_PREFIX = "__"
FIRST_NAME = "__firstName"
LAST_NAME = "__lastName"

DEFAULT_PLACEHOLDER_NAME = "Unnamed client"


@dataclass(frozen=True)
class TargetField:
    """A built-in client attribute a header can be mapped onto."""
    key: str
    title: str
    required: bool = False


@dataclass(frozen=True)
class PresetColumn:
    """A predefined custom column offered when renaming/adding headers."""
    slug: str
    label: str
    group: str | None = None


# Iteration order is the tie-break for auto-mapping.
TARGET_FIELDS: tuple[TargetField, ...] = (
    TargetField("name", "Name", required=True),
    TargetField("email", "Email"),
    TargetField("phone", "Phone"),
    TargetField("company", "Company"),
    TargetField("address", "Address"),
    TargetField("source", "Lead source"),
    TargetField("status", "Status"),
    TargetField("budget_range", "Budget"),
    TargetField("notes", "Notes"),
)

TARGET_KEYS = frozenset(f.key for f in TARGET_FIELDS)

SYNONYMS: dict[str, tuple[str, ...]] = {
    "name": ("name", "full_name", "fullname", "full name", "שם", "שם לקוח", "לקוח",
             "contact name", "customer"),
    "email": ("email", "mail", "e-mail", "אימייל", 'דוא"ל', "דואר"),
    "phone": ("phone", "mobile", "טלפון", "נייד", "סלולרי", "מספר", "טל"),
    "company": ("company", "organization", "ארגון", "חברה", "עסק", "שם חברה"),
    "address": ("address", "כתובת", "רחוב", "עיר"),
    "source": ("source", "מקור הגעה", "מקור", "ערוץ"),
    "status": ("status", "סטטוס", "מצב"),
    "budget_range": ("budget", "budget range", "budget_range", "price", "תקציב", "טווח תקציב", "מחיר"),
    "notes": ("notes", "note", "הערות", "תיאור"),
}

PRESET_CLIENT_COLUMNS: tuple[PresetColumn, ...] = (
    PresetColumn("id_number", "ID number", "Identity"),
    PresetColumn("birth_date", "Birth date", "Identity"),
    PresetColumn("city", "City", "Location"),
    PresetColumn("plot_number", "Plot number", "Location"),
    PresetColumn("budget_range", "Budget", "Deal"),
    PresetColumn("project_type", "Project type", "Deal"),
    PresetColumn("referred_by", "Referred by", "Deal"),
    PresetColumn("whatsapp", "WhatsApp"),
)


def is_custom_target(target: str | None) -> bool:
    return bool(target) and str(target).startswith(CUSTOM_PREFIX)


def is_synthetic_target(target: str | None) -> bool:
    return bool(target) and str(target).startswith(SYNTHETIC_PREFIX)


def is_valid_target(target: str | None) -> bool:
    """True for any descriptor a user may assign (including "unmapped")."""
    if target is None or target == "":
        return True
    if target in TARGET_KEYS or target in (FIRST_NAME, LAST_NAME):
        return True
    return is_custom_target(target) and len(target) > len(CUSTOM_PREFIX)


def preset_target(slug: str) -> str:
    """Mapping target for a preset column.

    Presets that name a built-in client attribute (``budget_range``) target
    that attribute; the rest are custom fields.
    """
    return slug if slug in TARGET_KEYS else f"{CUSTOM_PREFIX}{slug}"
