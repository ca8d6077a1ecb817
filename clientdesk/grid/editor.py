from __future__ import annotations

import asyncio
import copy
import logging
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from ..db.entity_store import EntityClient
from ..models.grid import (
    CellRef,
    CellStyle,
    ColumnDefinition,
    SelectionState,
    default_client_columns,
    header_style_key,
    subheader_style_key,
)
from ..models.mapping import PRESET_CLIENT_COLUMNS
from ..models.options import OptionItem, OptionKind, default_options, normalize_options
from ..models.preferences import GeneralPreferences
from ..services.automap import make_slug
from ..services.clients import ValidationError, validate_client_field
from ..services.events import (
    CLIENT_CREATED,
    CLIENT_DELETED,
    CLIENT_UPDATED,
    STAGE_OPTIONS_UPDATED,
    STATUS_OPTIONS_UPDATED,
    USER_PREFERENCES_UPDATED,
    ClientChanged,
    ClientDeleted,
    EventBus,
    OptionsUpdated,
    PreferencesUpdated,
    Subscription,
)
from ..services.preferences import PreferencesWriter
from .cells import display_text, is_custom_key, read_value, write_value
from .export import clipboard_text, export_csv
from .persistence import Outcome, PersistenceFailure, RecordPersister, failure_message
from .sorting import SortState, filter_records, next_sort_state, sort_records

"""Spreadsheet-style editor model for client records.

The editor keeps two kinds of state apart:

- record data (``records``), edited optimistically and saved through the
  entity API (immediately when ``auto_save`` is on)
- layout (columns, cell styles, sort, stage options), saved to the user's
  preferences document through a debounced ``PreferencesWriter``

Interaction methods stand in for mouse and keyboard events: ``click`` with
``ClickModifiers``, ``commit_edit`` for blur/Enter, ``cancel_edit`` and
``escape`` for Escape, ``start_drag_select`` / ``drag_enter`` for Alt+drag.

Structural rule violations raise ``ColumnGuardError`` before any backend call;
blanking a client name raises ``ValidationError``. Persistence failures never
raise: the optimistic change is reverted and reported in the ``Outcome``.
Selections pointing at records that no longer exist are skipped (logged at
WARN, counted in ``Outcome.skipped``).
"""

__all__ = [
    "CellMode",
    "ClickModifiers",
    "ColumnGuardError",
    "GridEditor",
    "SPLIT_SUFFIX_RE",
]

logger = logging.getLogger(__name__)

SPLIT_SUFFIX_RE = re.compile(r"_split\d+$")
MIN_COLUMN_WIDTH = 40


class CellMode(Enum):
    VIEWING = "viewing"
    EDITING = "editing"


class ColumnGuardError(Exception):
    """A column mutation that would break a protected column."""


@dataclass(frozen=True)
class ClickModifiers:
    ctrl: bool = False
    meta: bool = False
    alt: bool = False
    shift: bool = False


NO_MODIFIERS = ClickModifiers()


class GridEditor:
    def __init__(
        self,
        entity: EntityClient,
        records: Iterable[dict[str, Any]] = (),
        *,
        columns: list[ColumnDefinition] | None = None,
        preferences: GeneralPreferences | None = None,
        writer: PreferencesWriter | None = None,
        bus: EventBus | None = None,
    ) -> None:
        self.entity = entity
        self.records: list[dict[str, Any]] = [copy.deepcopy(r) for r in records]
        self.columns: list[ColumnDefinition] = columns if columns is not None else default_client_columns()
        self._renumber()
        self.preferences = preferences or GeneralPreferences()
        self.writer = writer
        self.bus = bus
        self.persister = RecordPersister(entity, bus)

        self.cell_styles: dict[str, CellStyle] = {}
        self.sort = SortState()
        self.stage_options: list[OptionItem] = default_options(OptionKind.STAGE)
        self.status_options: list[OptionItem] = default_options(OptionKind.STATUS)
        self.global_filter = ""
        self.column_filters: dict[str, str] = {}

        self.selection = SelectionState()
        self.editing: CellRef | None = None
        self.draft: Any = None
        self.popover: CellRef | None = None
        self.editing_header: str | None = None
        self.header_draft = ""
        self.unsaved: set[str] = set()
        self._drag_anchor: CellRef | None = None
        self._drag_base: set[CellRef] = set()
        self._subscriptions: list[Subscription] = []

    # ----- lookup ---------------------------------------------------------

    def _renumber(self) -> None:
        for i, col in enumerate(self.columns):
            col.order = i

    def column(self, key: str) -> ColumnDefinition:
        for col in self.columns:
            if col.key == key:
                return col
        raise ColumnGuardError(f"unknown column: {key}")

    def has_column(self, key: str) -> bool:
        return any(c.key == key for c in self.columns)

    def column_index(self, key: str) -> int:
        return self.columns.index(self.column(key))

    def record(self, row_id: str) -> dict[str, Any] | None:
        for rec in self.records:
            if rec.get("id") == row_id:
                return rec
        return None

    @property
    def visible_columns(self) -> list[ColumnDefinition]:
        return [c for c in self.columns if c.visible]

    @property
    def data_columns(self) -> list[ColumnDefinition]:
        return [c for c in self.visible_columns if not c.is_actions]

    def view(self) -> list[dict[str, Any]]:
        """Records as displayed: filtered, then sorted."""
        rows = filter_records(
            self.records,
            [c.key for c in self.data_columns],
            self.global_filter,
            self.column_filters,
        )
        return sort_records(rows, self.sort)

    def cell_mode(self, row_id: str, column_key: str) -> CellMode:
        if self.editing == CellRef(row_id, column_key):
            return CellMode.EDITING
        return CellMode.VIEWING

    def suggestions(self, column_key: str) -> list[str]:
        """Distinct non-empty values of a column, sorted (autocomplete)."""
        values = {display_text(read_value(r, column_key)).strip() for r in self.records}
        return sorted(v for v in values if v)

    # ----- layout persistence ---------------------------------------------

    def layout_snapshot(self) -> dict[str, Any]:
        return {
            "columns": [c.to_dict() for c in self.columns],
            "cellStyles": {k: s.to_dict() for k, s in self.cell_styles.items()},
            "sort": self.sort.to_dict(),
            "stageOptions": [o.to_dict() for o in self.stage_options],
        }

    def apply_layout(self, layout: dict[str, Any] | None) -> None:
        if not layout:
            return
        stored = layout.get("columns")
        if isinstance(stored, list) and stored:
            cols = [ColumnDefinition.from_dict(c) for c in stored if isinstance(c, dict) and c.get("key")]
            if cols:
                self.columns = sorted(cols, key=lambda c: c.order)
                self._renumber()
        styles = layout.get("cellStyles")
        if isinstance(styles, dict):
            self.cell_styles = {
                k: CellStyle.from_dict(v) for k, v in styles.items() if isinstance(v, dict)
            }
        self.sort = SortState.from_dict(layout.get("sort"))
        if layout.get("stageOptions"):
            self.stage_options = normalize_options(layout["stageOptions"], OptionKind.STAGE)

    async def load_layout(self) -> None:
        """Load the stored layout; layout changes are only saved after this."""
        if self.writer is None:
            return
        self.apply_layout(await self.writer.load())
        self.preferences = self.writer.general

    def _layout_changed(self) -> None:
        if self.writer is not None:
            self.writer.mark_dirty(self.layout_snapshot())

    # ----- event bus ------------------------------------------------------

    def attach(self) -> None:
        """Subscribe to record, option and preference broadcasts."""
        if self.bus is None or self._subscriptions:
            return
        self._subscriptions = [
            self.bus.subscribe(CLIENT_UPDATED, self._on_client_updated),
            self.bus.subscribe(CLIENT_CREATED, self._on_client_created),
            self.bus.subscribe(CLIENT_DELETED, self._on_client_deleted),
            self.bus.subscribe(STAGE_OPTIONS_UPDATED, self._on_options_updated),
            self.bus.subscribe(STATUS_OPTIONS_UPDATED, self._on_options_updated),
            self.bus.subscribe(USER_PREFERENCES_UPDATED, self._on_preferences_updated),
        ]

    def detach(self) -> None:
        for sub in self._subscriptions:
            sub.unsubscribe()
        self._subscriptions = []

    def _on_client_updated(self, event: ClientChanged) -> None:
        rid = event.client.get("id")
        for i, rec in enumerate(self.records):
            if rec.get("id") == rid:
                self.records[i] = copy.deepcopy(event.client)
                return

    def _on_client_created(self, event: ClientChanged) -> None:
        if self.record(event.client.get("id")) is None:
            self.records.append(copy.deepcopy(event.client))

    def _on_client_deleted(self, event: ClientDeleted) -> None:
        self.records = [r for r in self.records if r.get("id") != event.client_id]

    def _on_options_updated(self, event: OptionsUpdated) -> None:
        if event.kind is OptionKind.STAGE:
            self.stage_options = list(event.options)
            self._layout_changed()
        else:
            self.status_options = list(event.options)

    def _on_preferences_updated(self, event: PreferencesUpdated) -> None:
        if self.writer is None or event.user_email == self.writer.user_email:
            self.preferences = event.general

    # ----- record persistence ---------------------------------------------

    def _replace_record(self, updated: dict[str, Any]) -> None:
        for i, rec in enumerate(self.records):
            if rec.get("id") == updated.get("id"):
                self.records[i] = updated
                return

    def _revert(self, record_id: str, keys: Iterable[str], before: dict[str, Any]) -> None:
        current = self.record(record_id)
        if current is None:
            return
        reverted = copy.deepcopy(current)
        for key in keys:
            if is_custom_key(key):
                custom = dict(reverted.get("custom_data") or {})
                old_custom = before.get("custom_data") or {}
                if key in old_custom:
                    custom[key] = old_custom[key]
                else:
                    custom.pop(key, None)
                reverted["custom_data"] = custom
            elif key in before:
                reverted[key] = before[key]
            else:
                reverted.pop(key, None)
        self._replace_record(reverted)

    async def _persist_touched(
        self,
        outcome: Outcome,
        touched: dict[str, set[str]],
        before: dict[str, dict[str, Any]],
    ) -> Outcome:
        """Save each touched record once; revert the fields of failed ones."""
        if not touched:
            return outcome
        if not self.preferences.auto_save:
            self.unsaved.update(touched)
            return outcome

        partials: dict[str, dict[str, Any]] = {}
        for rid, keys in touched.items():
            rec = self.record(rid)
            if rec is None:
                continue
            partial: dict[str, Any] = {}
            for key in keys:
                if is_custom_key(key):
                    partial["custom_data"] = dict(rec.get("custom_data") or {})
                else:
                    partial[key] = rec.get(key)
            partials[rid] = partial

        saved, failures = await self.persister.persist_many(partials)
        for rid, canonical in saved.items():
            self._replace_record(copy.deepcopy(canonical))
            self.unsaved.discard(rid)
        for failure in failures:
            self._revert(failure.record_id, touched[failure.record_id], before[failure.record_id])
            logger.warning("Reverted unsaved change to client %s", failure.record_id)
        outcome.persisted.extend(saved)
        outcome.failures.extend(failures)
        return outcome

    async def save_pending(self) -> Outcome:
        """Persist records edited while auto-save was off (whole record)."""
        outcome = Outcome("save")
        partials = {}
        for rid in list(self.unsaved):
            rec = self.record(rid)
            if rec is None:
                self.unsaved.discard(rid)
                outcome.skipped += 1
                continue
            partials[rid] = {
                k: v for k, v in rec.items() if k not in ("id", "created_date", "updated_date")
            }
        saved, failures = await self.persister.persist_many(partials)
        for rid, canonical in saved.items():
            self._replace_record(copy.deepcopy(canonical))
            self.unsaved.discard(rid)
        outcome.changed = len(partials)
        outcome.persisted.extend(saved)
        outcome.failures.extend(failures)
        return outcome

    # ----- cell interaction -----------------------------------------------

    async def click(
        self,
        row_id: str,
        column_key: str,
        modifiers: ClickModifiers = NO_MODIFIERS,
    ) -> CellMode:
        """Plain or double click edits; Ctrl/Cmd opens the popover; Alt selects."""
        ref = CellRef(row_id, column_key)
        if modifiers.ctrl or modifiers.meta:
            self.popover = ref
            return self.cell_mode(row_id, column_key)
        if modifiers.alt:
            self.selection.toggle_cell(ref)
            return self.cell_mode(row_id, column_key)

        if self.editing == ref:
            return CellMode.EDITING

        if self.editing is not None:
            # Clicking elsewhere blurs the open editor, which commits it.
            await self.commit_edit(force_close=True)
        self.start_edit(row_id, column_key)
        return self.cell_mode(row_id, column_key)

    def start_edit(self, row_id: str, column_key: str) -> None:
        col = self.column(column_key)
        if col.is_actions:
            return
        rec = self.record(row_id)
        if rec is None:
            logger.warning("Cannot edit missing client %s", row_id)
            return
        self.popover = None
        self.editing = CellRef(row_id, column_key)
        self.draft = display_text(read_value(rec, column_key))

    def set_draft(self, value: Any) -> None:
        if self.editing is None:
            raise RuntimeError("no cell is being edited")
        self.draft = value

    async def commit_edit(self, *, force_close: bool = False) -> Outcome:
        """Blur / Enter: validate, apply, persist, maybe leave edit mode.

        Raises:
            ValidationError: blank client name (nothing is applied or sent)
        """
        outcome = Outcome("edit")
        ref = self.editing
        if ref is None:
            return outcome
        value = self.draft
        validate_client_field(ref.column_key, value)
        if isinstance(value, str) and ref.column_key == "name":
            value = value.strip()

        rec = self.record(ref.row_id)
        if rec is None:
            logger.warning("Client %s no longer exists, edit dropped", ref.row_id)
            outcome.skipped = 1
            self.editing = None
            self.draft = None
            return outcome

        if display_text(read_value(rec, ref.column_key)) != display_text(value):
            before = copy.deepcopy(rec)
            updated, _ = write_value(rec, ref.column_key, value)
            self._replace_record(updated)
            outcome.changed = 1
            await self._persist_touched(outcome, {ref.row_id: {ref.column_key}}, {ref.row_id: before})

        if force_close or self.preferences.auto_close_edit:
            self.editing = None
            self.draft = None
        else:
            current = self.record(ref.row_id)
            self.draft = display_text(read_value(current, ref.column_key)) if current else None
        return outcome

    def cancel_edit(self) -> None:
        self.editing = None
        self.draft = None

    def close_popover(self) -> None:
        self.popover = None

    def escape(self) -> None:
        """Drop every selection, popover and open editor."""
        self.selection.clear()
        self.popover = None
        self.cancel_edit()
        self.cancel_header_edit()
        self._drag_anchor = None
        self._drag_base = set()

    def start_drag_select(self, row_id: str, column_key: str) -> None:
        ref = CellRef(row_id, column_key)
        self._drag_anchor = ref
        self._drag_base = set(self.selection.cells)
        self.selection.cells.add(ref)

    def drag_enter(self, row_id: str, column_key: str) -> None:
        """Extend the drag selection to the rectangle anchor..hovered cell."""
        anchor = self._drag_anchor
        if anchor is None:
            return
        row_ids = [r.get("id") for r in self.view()]
        col_keys = [c.key for c in self.data_columns]
        try:
            r0, r1 = row_ids.index(anchor.row_id), row_ids.index(row_id)
            c0, c1 = col_keys.index(anchor.column_key), col_keys.index(column_key)
        except ValueError:
            return
        rect = {
            CellRef(row_ids[r], col_keys[c])
            for r in range(min(r0, r1), max(r0, r1) + 1)
            for c in range(min(c0, c1), max(c0, c1) + 1)
        }
        self.selection.cells = self._drag_base | rect

    def end_drag(self) -> None:
        self._drag_anchor = None
        self._drag_base = set()

    def toggle_row_selection(self, row_id: str) -> bool:
        return self.selection.toggle_row(row_id)

    # ----- header interaction ---------------------------------------------

    def click_header(self, column_key: str, modifiers: ClickModifiers = NO_MODIFIERS) -> None:
        """Plain click edits the title; Alt+Shift+click toggles header selection."""
        col = self.column(column_key)
        if modifiers.alt and modifiers.shift:
            self.selection.toggle_header(column_key)
            return
        if col.is_actions:
            return
        self.editing_header = column_key
        self.header_draft = col.title

    def set_header_draft(self, title: str) -> None:
        self.header_draft = title

    def commit_header_edit(self) -> bool:
        key = self.editing_header
        if key is None:
            return False
        renamed = self.rename_column(key, self.header_draft)
        self.cancel_header_edit()
        return renamed

    def cancel_header_edit(self) -> None:
        self.editing_header = None
        self.header_draft = ""

    # ----- column mutations -----------------------------------------------

    def move_column(self, key: str, to_index: int) -> None:
        """Move a column; protected columns are pinned anchors."""
        col = self.column(key)
        if col.protected:
            raise ColumnGuardError(f"column '{col.title or key}' cannot be moved")
        from_index = self.columns.index(col)
        remaining = [c for c in self.columns if c is not col]
        to_index = max(0, min(to_index, len(remaining)))
        for i, other in enumerate(remaining):
            if other.required and self.columns.index(other) < from_index and to_index <= i:
                raise ColumnGuardError(
                    f"column '{col.title or key}' cannot be placed before '{other.title or other.key}'"
                )
        remaining.insert(to_index, col)
        self.columns = remaining
        self._renumber()
        logger.info("Column %s moved from %d to %d", key, from_index, to_index)
        self._layout_changed()

    async def merge_columns(self, source: str, target: str) -> Outcome:
        """Merge ``source`` into ``target`` (``"target, source"``) and drop source.

        Records with an empty source are left alone, so merging an empty
        column changes nothing.
        """
        src = self.column(source)
        dst = self.column(target)
        if source == target:
            raise ColumnGuardError("cannot merge a column into itself")
        for col in (src, dst):
            if col.protected:
                raise ColumnGuardError(f"column '{col.title or col.key}' cannot be merged")

        outcome = Outcome("merge")
        touched: dict[str, set[str]] = {}
        before: dict[str, dict[str, Any]] = {}
        for rec in list(self.records):
            sv = display_text(read_value(rec, source)).strip()
            if not sv:
                continue
            tv = display_text(read_value(rec, target)).strip()
            merged = f"{tv}, {sv}" if tv else sv
            rid = rec["id"]
            before[rid] = copy.deepcopy(rec)
            updated, _ = write_value(rec, target, merged)
            updated, _ = write_value(updated, source, "")
            self._replace_record(updated)
            touched[rid] = {target, source}
        outcome.changed = len(touched)

        await self._persist_touched(outcome, touched, before)
        self._remove_column(source)
        logger.info("Merged column %s into %s (%d records)", source, target, outcome.changed)
        self._layout_changed()
        return outcome

    def split_column(self, key: str) -> tuple[ColumnDefinition, ColumnDefinition]:
        """Replace a column with ``<key>_split1`` / ``<key>_split2``; no data moves."""
        col = self.column(key)
        if col.protected:
            raise ColumnGuardError(f"column '{col.title or key}' cannot be split")
        if SPLIT_SUFFIX_RE.search(key):
            raise ColumnGuardError(f"column '{col.title or key}' is already split")
        title = col.title or key
        first = ColumnDefinition(key=f"{key}_split1", title=f"{title} (1)", width=col.width, type=col.type)
        second = ColumnDefinition(key=f"{key}_split2", title=f"{title} (2)", width=col.width, type=col.type)
        for new in (first, second):
            if self.has_column(new.key):
                raise ColumnGuardError(f"column '{new.key}' already exists")
        index = self.columns.index(col)
        self.columns[index:index + 1] = [first, second]
        self._renumber()
        logger.info("Column %s split into %s and %s", key, first.key, second.key)
        self._layout_changed()
        return first, second

    def _remove_column(self, key: str) -> None:
        self.columns = [c for c in self.columns if c.key != key]
        self._renumber()
        doomed = {header_style_key(key), subheader_style_key(key)}
        doomed.update(f"{r.get('id')}_{key}" for r in self.records)
        for style_key in doomed:
            self.cell_styles.pop(style_key, None)
        self.selection.cells = {c for c in self.selection.cells if c.column_key != key}
        self.selection.headers.discard(key)
        self.column_filters.pop(key, None)
        if self.sort.key == key:
            self.sort = SortState()
        if self.editing is not None and self.editing.column_key == key:
            self.cancel_edit()

    def delete_column(self, key: str, confirm: Callable[[str], bool]) -> bool:
        """Delete a column (after ``confirm`` returns True) and its styles."""
        col = self.column(key)
        if col.protected:
            raise ColumnGuardError(f"column '{col.title or key}' cannot be deleted")
        if not confirm(f"Delete column '{col.title or key}'?"):
            return False
        self._remove_column(key)
        logger.info("Column %s deleted", key)
        self._layout_changed()
        return True

    def toggle_visibility(self, key: str) -> bool:
        """Flip visibility; returns the new state."""
        col = self.column(key)
        if col.protected:
            raise ColumnGuardError(f"column '{col.title or key}' is always visible")
        col.visible = not col.visible
        self._layout_changed()
        return col.visible

    def rename_column(self, key: str, title: str) -> bool:
        col = self.column(key)
        title = (title or "").strip()
        if not title or title == col.title:
            return False
        col.title = title
        self._layout_changed()
        return True

    def set_column_width(self, key: str, width: int) -> None:
        col = self.column(key)
        col.width = max(MIN_COLUMN_WIDTH, int(width))
        self._layout_changed()

    def add_column(self, title: str, column_type: str = "text", key: str | None = None) -> ColumnDefinition:
        """Add a custom-field column just before the actions column."""
        title = (title or "").strip()
        if not title:
            raise ValidationError("Column title is required")
        base = key or make_slug(title)
        candidate = base
        n = 1
        while self.has_column(candidate):
            n += 1
            candidate = f"{base}_{n}"
        col = ColumnDefinition(key=candidate, title=title, type=column_type)
        index = next((i for i, c in enumerate(self.columns) if c.is_actions), len(self.columns))
        self.columns.insert(index, col)
        self._renumber()
        self._layout_changed()
        return col

    def add_preset_column(self, slug: str) -> ColumnDefinition:
        preset = next((p for p in PRESET_CLIENT_COLUMNS if p.slug == slug), None)
        if preset is None:
            raise KeyError(f"unknown preset column: {slug}")
        if self.has_column(preset.slug):
            return self.column(preset.slug)
        return self.add_column(preset.label, key=preset.slug)

    # ----- sort and filter ------------------------------------------------

    def toggle_sort(self, key: str) -> SortState:
        self.column(key)
        self.sort = next_sort_state(self.sort, key)
        self._layout_changed()
        return self.sort

    def set_global_filter(self, text: str) -> None:
        self.global_filter = text or ""

    def set_column_filter(self, key: str, text: str) -> None:
        self.column(key)
        if text:
            self.column_filters[key] = text
        else:
            self.column_filters.pop(key, None)

    def clear_filters(self) -> None:
        self.global_filter = ""
        self.column_filters.clear()
        if self.sort.active:
            self.sort = SortState()
            self._layout_changed()

    # ----- bulk operations ------------------------------------------------

    def _resolve_selection(self) -> tuple[list[CellRef], int]:
        """Selected cells in display order, plus the number of stale entries."""
        row_order = {r.get("id"): i for i, r in enumerate(self.view())}
        col_order = {c.key: i for i, c in enumerate(self.columns)}
        live: list[CellRef] = []
        stale = 0
        for ref in self.selection.cells:
            if self.record(ref.row_id) is None or ref.column_key not in col_order:
                stale += 1
                continue
            live.append(ref)
        if stale:
            logger.warning("%d selected cell(s) refer to missing clients or columns, skipped", stale)
        live.sort(key=lambda r: (row_order.get(r.row_id, len(row_order)), col_order[r.column_key]))
        return live, stale

    def copy_selection(self) -> Outcome:
        refs, stale = self._resolve_selection()
        values = [read_value(self.record(r.row_id) or {}, r.column_key) for r in refs]
        return Outcome("copy", changed=0, skipped=stale, text=clipboard_text(values))

    async def _write_cells(self, action: str, value: Any) -> Outcome:
        refs, stale = self._resolve_selection()
        blank = not display_text(value).strip()
        if blank and any(r.column_key == "name" for r in refs):
            raise ValidationError("Client name cannot be empty", field="name")
        refs = [r for r in refs if not self.column(r.column_key).is_actions]

        outcome = Outcome(action, skipped=stale)
        touched: dict[str, set[str]] = {}
        before: dict[str, dict[str, Any]] = {}
        for ref in refs:
            rec = self.record(ref.row_id)
            assert rec is not None
            if ref.row_id not in before:
                before[ref.row_id] = copy.deepcopy(rec)
            updated, _ = write_value(rec, ref.column_key, value)
            self._replace_record(updated)
            touched.setdefault(ref.row_id, set()).add(ref.column_key)
            outcome.changed += 1

        await self._persist_touched(outcome, touched, before)
        logger.info("%s", outcome.summary())
        return outcome

    async def fill_selection(self, value: str) -> Outcome:
        return await self._write_cells("fill", value)

    async def clear_selection(self) -> Outcome:
        return await self._write_cells("clear", "")

    async def delete_selection(self) -> Outcome:
        return await self._write_cells("delete", "")

    def apply_style(self, style: CellStyle) -> int:
        """Merge ``style`` into every selected cell and header; returns the count."""
        refs, _ = self._resolve_selection()
        keys = [r.key for r in refs]
        keys.extend(header_style_key(k) for k in sorted(self.selection.headers) if self.has_column(k))
        for key in keys:
            self.cell_styles[key] = self.cell_styles.get(key, CellStyle()).merged(style)
        if keys:
            self._layout_changed()
        return len(keys)

    def clear_styles(self) -> int:
        refs, _ = self._resolve_selection()
        keys = [r.key for r in refs] + [header_style_key(k) for k in self.selection.headers]
        removed = sum(1 for k in keys if self.cell_styles.pop(k, None) is not None)
        if removed:
            self._layout_changed()
        return removed

    async def delete_rows(self, confirm: Callable[[str], bool]) -> Outcome:
        """Delete the clients in the row selection (after confirmation)."""
        outcome = Outcome("delete rows")
        ids = [rid for rid in self.selection.rows if self.record(rid) is not None]
        outcome.skipped = len(self.selection.rows) - len(ids)
        if not ids or not confirm(f"Delete {len(ids)} client(s)?"):
            return outcome
        results = await asyncio.gather(
            *(self.entity.delete(rid) for rid in ids),
            return_exceptions=True,
        )
        for rid, res in zip(ids, results, strict=True):
            if isinstance(res, BaseException):
                failure = PersistenceFailure(rid, failure_message(res))
                outcome.failures.append(failure)
                logger.error("Failed to delete client %s: %s", rid, failure.message)
                continue
            self._on_client_deleted(ClientDeleted(rid))
            if self.bus is not None:
                self.bus.publish(CLIENT_DELETED, ClientDeleted(client_id=rid))
            outcome.persisted.append(rid)
            outcome.changed += 1
        self.selection.rows.difference_update(outcome.persisted)
        return outcome

    def export_csv(self, path: Path | None = None, records: list[dict[str, Any]] | None = None) -> str:
        """Visible data columns in display order; defaults to the current view."""
        rows = self.view() if records is None else records
        return export_csv(rows, self.data_columns, path)
