from __future__ import annotations

import pytest

from clientdesk.db.entity_store import InMemoryEntityStore
from clientdesk.grid.editor import CellMode, ClickModifiers, ColumnGuardError, GridEditor
from clientdesk.grid.export import BOM
from clientdesk.models.grid import CellRef, CellStyle
from clientdesk.models.options import OptionItem, OptionKind
from clientdesk.models.preferences import GeneralPreferences
from clientdesk.services.clients import ValidationError
from clientdesk.services.events import (
    CLIENT_DELETED,
    CLIENT_UPDATED,
    STAGE_OPTIONS_UPDATED,
    ClientChanged,
    EventBus,
    OptionsUpdated,
)
from clientdesk.services.preferences import PreferencesWriter

pytestmark = pytest.mark.asyncio

SEED = [
    {"name": "Dana", "phone": "050-1111111", "company": "Acme", "notes": "VIP client", "custom_data": {"city": "Haifa"}},
    {"name": "Avi", "phone": "052-2222222", "company": "", "notes": "x"},
    {"name": "Chen", "phone": "", "company": "Beta", "notes": ""},
]

ALT = ClickModifiers(alt=True)
CTRL = ClickModifiers(ctrl=True)


async def make_editor(store, **kwargs) -> tuple[GridEditor, list[str]]:
    records = await store.bulk_create([dict(r) for r in SEED])
    editor = GridEditor(store, records, **kwargs)
    editor.add_preset_column("city")
    return editor, [r["id"] for r in records]


def confirm_yes(_message: str) -> bool:
    return True


# ----- cell editing ---------------------------------------------------------


async def test_click_edit_commit_persists_and_closes(flaky_store):
    editor, (r1, _, _) = await make_editor(flaky_store)
    assert await editor.click(r1, "phone") is CellMode.EDITING
    assert editor.draft == "050-1111111"
    editor.set_draft("050-9999999")
    outcome = await editor.commit_edit()
    assert outcome.changed == 1
    assert outcome.persisted == [r1]
    assert editor.editing is None
    assert editor.record(r1)["phone"] == "050-9999999"
    assert (await flaky_store.get(r1))["phone"] == "050-9999999"
    assert flaky_store.update_calls == [(r1, {"phone": "050-9999999"})]


async def test_clicking_the_cell_being_edited_keeps_the_draft(flaky_store):
    editor, (r1, _, _) = await make_editor(flaky_store)
    await editor.click(r1, "phone")
    editor.set_draft("052-999")
    assert await editor.click(r1, "phone") is CellMode.EDITING
    assert editor.draft == "052-999"
    assert flaky_store.update_calls == []

    await editor.commit_edit()
    assert editor.record(r1)["phone"] == "052-999"


async def test_unchanged_value_is_not_sent(flaky_store):
    editor, (r1, _, _) = await make_editor(flaky_store)
    await editor.click(r1, "name")
    outcome = await editor.commit_edit()
    assert outcome.changed == 0
    assert flaky_store.update_calls == []


async def test_clicking_another_cell_commits_the_open_edit(flaky_store):
    editor, (r1, r2, _) = await make_editor(flaky_store)
    await editor.click(r1, "notes")
    editor.set_draft("changed")
    await editor.click(r2, "notes")
    assert editor.editing == CellRef(r2, "notes")
    assert editor.record(r1)["notes"] == "changed"
    assert editor.cell_mode(r1, "notes") is CellMode.VIEWING


async def test_ctrl_opens_popover_and_alt_toggles_selection(flaky_store):
    editor, (r1, _, _) = await make_editor(flaky_store)
    assert await editor.click(r1, "notes", CTRL) is CellMode.VIEWING
    assert editor.popover == CellRef(r1, "notes")
    await editor.click(r1, "name", ALT)
    assert CellRef(r1, "name") in editor.selection.cells
    await editor.click(r1, "name", ALT)
    assert not editor.selection.cells


async def test_blank_name_is_rejected_before_any_backend_call(flaky_store):
    editor, (r1, _, _) = await make_editor(flaky_store)
    await editor.click(r1, "name")
    editor.set_draft("   ")
    with pytest.raises(ValidationError):
        await editor.commit_edit()
    assert editor.record(r1)["name"] == "Dana"
    assert flaky_store.update_calls == []


async def test_name_is_trimmed(flaky_store):
    editor, (r1, _, _) = await make_editor(flaky_store)
    await editor.click(r1, "name")
    editor.set_draft("  Dana Levi ")
    await editor.commit_edit()
    assert (await flaky_store.get(r1))["name"] == "Dana Levi"


async def test_failed_save_reverts_optimistic_change(flaky_store):
    editor, (r1, _, _) = await make_editor(flaky_store)
    flaky_store.fail_update_ids = {r1}
    await editor.click(r1, "city")
    editor.set_draft("Tel Aviv")
    outcome = await editor.commit_edit()
    assert not outcome.ok
    assert outcome.failures[0].record_id == r1
    assert outcome.failures[0].fields == ("custom_data",)
    assert editor.record(r1)["custom_data"] == {"city": "Haifa"}


async def test_auto_close_off_keeps_editing(flaky_store):
    editor, (r1, _, _) = await make_editor(
        flaky_store, preferences=GeneralPreferences(auto_close_edit=False)
    )
    await editor.click(r1, "notes")
    editor.set_draft("follow up")
    await editor.commit_edit()
    assert editor.cell_mode(r1, "notes") is CellMode.EDITING
    assert editor.draft == "follow up"
    await editor.commit_edit(force_close=True)
    assert editor.editing is None


async def test_auto_save_off_defers_until_save_pending(flaky_store):
    editor, (r1, _, _) = await make_editor(flaky_store, preferences=GeneralPreferences(auto_save=False))
    await editor.click(r1, "notes")
    editor.set_draft("later")
    await editor.commit_edit()
    assert editor.unsaved == {r1}
    assert flaky_store.update_calls == []
    outcome = await editor.save_pending()
    assert outcome.persisted == [r1]
    assert editor.unsaved == set()
    assert (await flaky_store.get(r1))["notes"] == "later"


async def test_escape_clears_everything(flaky_store):
    editor, (r1, _, _) = await make_editor(flaky_store)
    await editor.click(r1, "name", ALT)
    await editor.click(r1, "notes", CTRL)
    await editor.click(r1, "phone")
    editor.escape()
    assert editor.selection.is_empty()
    assert editor.popover is None
    assert editor.editing is None


# ----- selection and bulk operations ----------------------------------------


async def test_fill_vip_updates_exactly_the_selected_fields(flaky_store):
    editor, (r1, r2, r3) = await make_editor(flaky_store)
    for ref in (CellRef(r1, "notes"), CellRef(r1, "city"), CellRef(r2, "notes")):
        editor.selection.toggle_cell(ref)
    outcome = await editor.fill_selection("VIP")

    assert outcome.changed == 3
    assert sorted(outcome.persisted) == sorted([r1, r2])
    calls = dict(flaky_store.update_calls)
    assert calls == {
        r1: {"notes": "VIP", "custom_data": {"city": "VIP"}},
        r2: {"notes": "VIP"},
    }
    first = await flaky_store.get(r1)
    assert (first["name"], first["phone"], first["company"]) == ("Dana", "050-1111111", "Acme")
    assert first["notes"] == "VIP"
    assert first["custom_data"] == {"city": "VIP"}
    assert (await flaky_store.get(r2))["notes"] == "VIP"
    assert (await flaky_store.get(r3))["notes"] == ""


async def test_clearing_name_cells_is_rejected(flaky_store):
    editor, (r1, _, _) = await make_editor(flaky_store)
    editor.selection.toggle_cell(CellRef(r1, "name"))
    with pytest.raises(ValidationError):
        await editor.clear_selection()
    assert flaky_store.update_calls == []


async def test_stale_selection_entries_are_skipped(flaky_store, caplog):
    editor, (r1, _, _) = await make_editor(flaky_store)
    editor.selection.toggle_cell(CellRef(r1, "notes"))
    editor.selection.toggle_cell(CellRef("gone", "notes"))
    outcome = await editor.delete_selection()
    assert outcome.changed == 1
    assert outcome.skipped == 1
    assert "1 skipped" in outcome.summary()
    assert any("skipped" in r.getMessage() for r in caplog.records if r.levelname == "WARNING")


async def test_drag_selects_rectangle(flaky_store):
    editor, (r1, r2, r3) = await make_editor(flaky_store)
    editor.start_drag_select(r1, "name")
    editor.drag_enter(r3, "stage")
    editor.drag_enter(r2, "stage")
    editor.end_drag()
    assert editor.selection.cells == {
        CellRef(r, k) for r in (r1, r2) for k in ("name", "status", "stage")
    }


async def test_copy_selection_in_display_order(flaky_store):
    editor, (r1, r2, _) = await make_editor(flaky_store)
    for ref in (CellRef(r2, "name"), CellRef(r1, "phone"), CellRef(r1, "name")):
        editor.selection.toggle_cell(ref)
    outcome = editor.copy_selection()
    assert outcome.text == "Dana\n050-1111111\nAvi"


async def test_apply_and_clear_styles(flaky_store):
    editor, (r1, _, _) = await make_editor(flaky_store)
    editor.selection.toggle_cell(CellRef(r1, "name"))
    editor.click_header("phone", ClickModifiers(alt=True, shift=True))
    assert editor.apply_style(CellStyle(background_color="#fde68a")) == 2
    editor.apply_style(CellStyle(font_weight="bold"))
    style = editor.cell_styles[f"{r1}_name"]
    assert (style.background_color, style.font_weight) == ("#fde68a", "bold")
    assert "header_phone" in editor.cell_styles
    assert editor.clear_styles() == 2
    assert editor.cell_styles == {}


async def test_delete_rows_after_confirmation(flaky_store):
    bus = EventBus()
    deleted = []
    bus.subscribe(CLIENT_DELETED, deleted.append)
    editor, (r1, r2, _) = await make_editor(flaky_store, bus=bus)
    editor.toggle_row_selection(r1)
    editor.toggle_row_selection("gone")

    outcome = await editor.delete_rows(lambda msg: False)
    assert outcome.changed == 0
    assert len(flaky_store) == 3

    outcome = await editor.delete_rows(confirm_yes)
    assert outcome.persisted == [r1]
    assert outcome.skipped == 1
    assert editor.record(r1) is None
    assert len(flaky_store) == 2
    assert [e.client_id for e in deleted] == [r1]


async def test_delete_rows_runs_concurrently_and_collects_failures(flaky_store):
    bus = EventBus()
    deleted = []
    bus.subscribe(CLIENT_DELETED, deleted.append)
    editor, (r1, r2, r3) = await make_editor(flaky_store, bus=bus)
    for rid in (r1, r2, r3):
        editor.toggle_row_selection(rid)
    flaky_store.fail_delete_ids = {r2}

    outcome = await editor.delete_rows(confirm_yes)

    assert flaky_store.max_deletes_in_flight == 3
    assert sorted(outcome.persisted) == sorted([r1, r3])
    assert outcome.changed == 2
    assert [(f.record_id, f.message) for f in outcome.failures] == [(r2, "delete rejected")]
    assert editor.record(r2) is not None
    assert editor.selection.rows == {r2}
    assert sorted(e.client_id for e in deleted) == sorted([r1, r3])
    assert len(flaky_store) == 1


# ----- columns --------------------------------------------------------------


async def test_protected_columns_stay_visible_and_pinned(flaky_store):
    editor, _ = await make_editor(flaky_store)
    for key in ("name", "actions"):
        with pytest.raises(ColumnGuardError):
            editor.toggle_visibility(key)
        with pytest.raises(ColumnGuardError):
            editor.delete_column(key, confirm_yes)
        with pytest.raises(ColumnGuardError):
            editor.move_column(key, 3)
        assert editor.column(key).visible is True
    assert editor.toggle_visibility("notes") is False
    assert "notes" not in [c.key for c in editor.visible_columns]


async def test_move_column_cannot_jump_before_required_column(flaky_store):
    editor, _ = await make_editor(flaky_store)
    with pytest.raises(ColumnGuardError):
        editor.move_column("phone", 0)
    editor.move_column("phone", 1)
    assert [c.key for c in editor.columns][:3] == ["name", "phone", "status"]
    assert [c.order for c in editor.columns] == list(range(len(editor.columns)))


async def test_delete_column_removes_its_styles_only(flaky_store):
    editor, (r1, r2, _) = await make_editor(flaky_store)
    editor.cell_styles = {
        "header_company": CellStyle(background_color="#111111"),
        "subheader_company": CellStyle(opacity=0.5),
        f"{r1}_company": CellStyle(font_weight="bold"),
        f"{r2}_name": CellStyle(font_weight="bold"),
        "header_name": CellStyle(background_color="#222222"),
    }
    editor.selection.toggle_cell(CellRef(r1, "company"))
    assert editor.delete_column("company", lambda msg: False) is False
    assert editor.has_column("company")

    assert editor.delete_column("company", confirm_yes) is True
    assert not editor.has_column("company")
    assert set(editor.cell_styles) == {f"{r2}_name", "header_name"}
    assert not editor.selection.cells


async def test_merge_columns_joins_values_and_drops_source(flaky_store):
    editor, (r1, r2, r3) = await make_editor(flaky_store)
    outcome = await editor.merge_columns("company", "notes")
    assert outcome.changed == 2
    assert not editor.has_column("company")
    assert (await flaky_store.get(r1))["notes"] == "VIP client, Acme"
    assert (await flaky_store.get(r1))["company"] == ""
    assert (await flaky_store.get(r3))["notes"] == "Beta"
    assert (await flaky_store.get(r2))["notes"] == "x"


async def test_merge_with_empty_source_leaves_target_unchanged(flaky_store):
    editor, (r1, r2, r3) = await make_editor(flaky_store)
    before = {rid: (await flaky_store.get(rid))["notes"] for rid in (r1, r2, r3)}
    outcome = await editor.merge_columns("email", "notes")
    assert outcome.changed == 0
    assert flaky_store.update_calls == []
    assert {rid: (await flaky_store.get(rid))["notes"] for rid in (r1, r2, r3)} == before


async def test_merge_guards(flaky_store):
    editor, _ = await make_editor(flaky_store)
    with pytest.raises(ColumnGuardError):
        await editor.merge_columns("notes", "notes")
    with pytest.raises(ColumnGuardError):
        await editor.merge_columns("name", "notes")
    with pytest.raises(ColumnGuardError):
        await editor.merge_columns("nope", "notes")


async def test_split_column(flaky_store):
    editor, _ = await make_editor(flaky_store)
    first, second = editor.split_column("notes")
    assert (first.key, first.title) == ("notes_split1", "Notes (1)")
    assert (second.key, second.title) == ("notes_split2", "Notes (2)")
    assert not editor.has_column("notes")
    with pytest.raises(ColumnGuardError):
        editor.split_column("notes_split1")
    with pytest.raises(ColumnGuardError):
        editor.split_column("name")


async def test_header_title_editing(flaky_store):
    editor, _ = await make_editor(flaky_store)
    editor.click_header("phone")
    assert editor.header_draft == "Phone"
    editor.set_header_draft("  Mobile ")
    assert editor.commit_header_edit() is True
    assert editor.column("phone").title == "Mobile"
    assert editor.editing_header is None

    editor.click_header("phone")
    editor.set_header_draft("")
    assert editor.commit_header_edit() is False
    assert editor.column("phone").title == "Mobile"

    editor.click_header("actions")
    assert editor.editing_header is None


async def test_add_columns_before_actions(flaky_store):
    editor, _ = await make_editor(flaky_store)
    col = editor.add_column("Birth Date", "date")
    assert col.key == "Birth_Date"
    assert editor.columns[-1].key == "actions"
    assert editor.columns[-2].key == "Birth_Date"
    assert editor.add_column("Birth Date").key == "Birth_Date_2"
    assert editor.add_preset_column("city").key == "city"
    assert editor.add_preset_column("city") is editor.column("city")
    with pytest.raises(ValidationError):
        editor.add_column(" ")
    with pytest.raises(KeyError):
        editor.add_preset_column("nope")
    editor.set_column_width("city", 5)
    assert editor.column("city").width == 40


# ----- view -----------------------------------------------------------------


async def test_three_sort_clicks_restore_view_order(flaky_store):
    editor, ids = await make_editor(flaky_store)
    original = [r["id"] for r in editor.view()]
    editor.toggle_sort("name")
    assert [r["name"] for r in editor.view()] == ["Avi", "Chen", "Dana"]
    editor.toggle_sort("name")
    assert [r["name"] for r in editor.view()] == ["Dana", "Chen", "Avi"]
    editor.toggle_sort("name")
    assert [r["id"] for r in editor.view()] == original == ids


async def test_filters_and_suggestions(flaky_store):
    editor, (r1, _, r3) = await make_editor(flaky_store)
    editor.set_global_filter("beta")
    assert [r["id"] for r in editor.view()] == [r3]
    editor.set_global_filter("")
    editor.set_column_filter("city", "hai")
    assert [r["id"] for r in editor.view()] == [r1]
    editor.clear_filters()
    assert len(editor.view()) == 3
    assert editor.suggestions("company") == ["Acme", "Beta"]


async def test_export_uses_visible_columns_in_view_order(flaky_store):
    editor, _ = await make_editor(flaky_store)
    for key in ("status", "stage", "email", "company", "address", "source", "budget_range", "notes", "city"):
        editor.toggle_visibility(key)
    editor.toggle_sort("name")
    text = editor.export_csv()
    assert text.removeprefix(BOM).splitlines() == [
        '"Client name","Phone"',
        '"Avi","052-2222222"',
        '"Chen",""',
        '"Dana","050-1111111"',
    ]


# ----- layout and broadcasts ------------------------------------------------


async def test_layout_changes_are_written_through_the_preferences_writer(flaky_store):
    prefs = InMemoryEntityStore("UserPreferences")
    writer = PreferencesWriter(prefs, "owner@example.com", debounce=0.01)
    editor, _ = await make_editor(flaky_store, writer=writer)

    # not loaded yet: the default layout must not be stored
    editor.set_column_width("notes", 500)
    assert len(prefs) == 0

    await editor.load_layout()
    editor.set_column_width("notes", 320)
    editor.toggle_sort("name")
    await writer.flush()
    layout = writer.layout
    assert layout is not None
    assert set(layout) == {"columns", "cellStyles", "sort", "stageOptions"}
    widths = {c["key"]: c["width"] for c in layout["columns"]}
    assert widths["notes"] == 320
    assert layout["sort"] == {"key": "name", "direction": "asc"}

    fresh = GridEditor(flaky_store, [], writer=PreferencesWriter(prefs, "owner@example.com"))
    await fresh.load_layout()
    assert fresh.column("notes").width == 320
    assert fresh.sort.key == "name"


async def test_apply_layout_accepts_stored_shapes(flaky_store):
    editor = GridEditor(flaky_store)
    editor.apply_layout({
        "columns": [
            {"key": "phone", "title": "Tel", "width": "180px", "order": 1},
            {"key": "name", "title": "Name", "required": True, "visible": False, "order": 0},
        ],
        "cellStyles": {"r1_name": {"backgroundColor": "#ffffff", "fontWeight": "bold"}},
        "sort": {"key": "phone", "direction": "desc"},
    })
    assert [c.key for c in editor.columns] == ["name", "phone"]
    assert editor.column("name").visible is True
    assert editor.column("phone").width == 180
    assert editor.cell_styles["r1_name"] == CellStyle(background_color="#ffffff", font_weight="bold")
    assert editor.sort.direction == "desc"


async def test_broadcasts_update_local_state(flaky_store):
    bus = EventBus()
    editor, (r1, r2, _) = await make_editor(flaky_store, bus=bus)
    editor.attach()
    bus.publish(CLIENT_UPDATED, ClientChanged(client={"id": r1, "name": "Dana Levi"}))
    assert editor.record(r1) == {"id": r1, "name": "Dana Levi"}

    stage = (OptionItem("lead", "Lead", "#3b82f6"),)
    bus.publish(STAGE_OPTIONS_UPDATED, OptionsUpdated(kind=OptionKind.STAGE, options=stage))
    assert editor.stage_options == list(stage)

    editor.detach()
    bus.publish(CLIENT_UPDATED, ClientChanged(client={"id": r2, "name": "ignored"}))
    assert editor.record(r2)["name"] == "Avi"


async def test_unknown_column_raises_guard_error(flaky_store):
    editor, _ = await make_editor(flaky_store)
    with pytest.raises(ColumnGuardError):
        editor.toggle_sort("nope")
