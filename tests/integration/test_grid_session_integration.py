from __future__ import annotations

import pytest

from clientdesk.db.entity_store import InMemoryBackend
from clientdesk.grid.editor import GridEditor
from clientdesk.models.grid import CellRef
from clientdesk.models.options import OptionKind
from clientdesk.models.preferences import GeneralPreferences
from clientdesk.services.clients import create_client
from clientdesk.services.events import EventBus
from clientdesk.services.options import OptionStore, add_option, edit_option
from clientdesk.services.preferences import PreferencesWriter, save_general_preferences

pytestmark = pytest.mark.asyncio

USER = "owner@example.com"


async def test_two_editors_share_one_backend_through_the_bus():
    backend = InMemoryBackend()
    clients = backend.entity("Client")
    bus = EventBus()

    left = GridEditor(clients, await clients.list(), bus=bus)
    right = GridEditor(clients, await clients.list(), bus=bus)
    left.attach()
    right.attach()

    dana = await create_client(clients, {"name": "Dana", "phone": "050-1234567"}, bus)
    assert left.record(dana["id"]) is not None
    assert right.record(dana["id"]) is not None

    await left.click(dana["id"], "notes")
    left.set_draft("called back")
    await left.commit_edit()
    assert right.record(dana["id"])["notes"] == "called back"

    right.toggle_row_selection(dana["id"])
    await right.delete_rows(lambda msg: True)
    assert left.record(dana["id"]) is None
    assert await clients.list() == []


async def test_options_and_preferences_flow_into_the_editor():
    backend = InMemoryBackend()
    bus = EventBus()
    prefs = backend.entity("UserPreferences")
    writer = PreferencesWriter(prefs, USER, debounce=0.01)
    editor = GridEditor(backend.entity("Client"), writer=writer, bus=bus)
    editor.attach()
    await editor.load_layout()

    store = OptionStore(backend.entity("AppSettings"), bus)
    stages = add_option(await store.load(OptionKind.STAGE), OptionKind.STAGE)
    stages = edit_option(stages, len(stages) - 1, "label", "Handover")
    await store.save(OptionKind.STAGE, stages, USER)
    assert editor.stage_options[-1].value == "Handover"

    await save_general_preferences(prefs, USER, GeneralPreferences(auto_save=False), bus)
    assert editor.preferences.auto_save is False

    await writer.flush()
    assert [o["value"] for o in writer.layout["stageOptions"]][-1] == "Handover"
    doc = (await prefs.filter({"user_email": USER}))[0]
    assert doc["general_preferences"]["auto_save"] is False
    assert "clients" in doc["spreadsheet_columns"]


async def test_bulk_fill_after_import_with_auto_save_off():
    backend = InMemoryBackend()
    clients = backend.entity("Client")
    created = await clients.bulk_create([{"name": "A"}, {"name": "B"}])
    editor = GridEditor(clients, created, preferences=GeneralPreferences(auto_save=False))
    for rec in created:
        editor.selection.toggle_cell(CellRef(rec["id"], "status"))
    outcome = await editor.fill_selection("active")
    assert outcome.changed == 2
    assert outcome.persisted == []
    assert {r.get("status") for r in await clients.list()} == {None}

    saved = await editor.save_pending()
    assert len(saved.persisted) == 2
    assert {r["status"] for r in await clients.list()} == {"active"}
