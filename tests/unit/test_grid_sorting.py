from __future__ import annotations

from clientdesk.grid.sorting import (
    SortState,
    compare_values,
    filter_records,
    next_sort_state,
    sort_records,
)

RECORDS = [
    {"id": "1", "name": "Dana", "budget_range": "300", "custom_data": {"city": "Haifa"}},
    {"id": "2", "name": "avi", "budget_range": "", "custom_data": {"city": "Eilat"}},
    {"id": "3", "name": "Chen", "budget_range": "25", "custom_data": {}},
    {"id": "4", "name": "Bar", "budget_range": "1000"},
]


def ids(records):
    return [r["id"] for r in records]


def test_sort_cycle_asc_desc_none():
    state = next_sort_state(SortState(), "name")
    assert state == SortState("name", "asc")
    state = next_sort_state(state, "name")
    assert state == SortState("name", "desc")
    state = next_sort_state(state, "name")
    assert not state.active
    # another column starts again at asc
    assert next_sort_state(SortState("name", "desc"), "phone") == SortState("phone", "asc")


def test_three_clicks_restore_original_order():
    state = SortState()
    for _ in range(3):
        state = next_sort_state(state, "budget_range")
    assert ids(sort_records(RECORDS, state)) == ["1", "2", "3", "4"]


def test_numeric_values_compare_as_numbers_and_empties_go_last():
    asc = sort_records(RECORDS, SortState("budget_range", "asc"))
    assert ids(asc) == ["3", "1", "4", "2"]
    desc = sort_records(RECORDS, SortState("budget_range", "desc"))
    assert ids(desc) == ["4", "1", "3", "2"]


def test_custom_field_sort_uses_custom_data():
    asc = sort_records(RECORDS, SortState("city", "asc"))
    assert ids(asc)[:2] == ["2", "1"]
    assert set(ids(asc)[2:]) == {"3", "4"}


def test_compare_values_mixed_and_words():
    assert compare_values("9", "10") < 0
    assert compare_values("nan", "nan") == 0
    assert compare_values("10", "9") > 0


def test_sort_state_dict_round_trip():
    assert SortState.from_dict({"key": "name", "direction": "desc"}) == SortState("name", "desc")
    assert SortState.from_dict({"key": "name", "direction": None}) == SortState()
    assert SortState.from_dict(None) == SortState()
    assert SortState("name", "asc").to_dict() == {"key": "name", "direction": "asc"}


def test_filter_records_global_and_per_column():
    keys = ["name", "city"]
    assert ids(filter_records(RECORDS, keys, "HAIFA")) == ["1"]
    assert ids(filter_records(RECORDS, keys, "", {"name": "a"})) == ["1", "2", "4"]
    assert ids(filter_records(RECORDS, keys, "a", {"city": "ei"})) == ["2"]
    assert ids(filter_records(RECORDS, keys, "   ")) == ["1", "2", "3", "4"]
