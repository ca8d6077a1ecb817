from clientdesk.grid.editor import CellMode, ClickModifiers, ColumnGuardError, GridEditor
from clientdesk.grid.persistence import Outcome, PersistenceFailure, RecordPersister
from clientdesk.grid.sorting import SortState, next_sort_state, sort_records

__all__ = [
    "CellMode",
    "ClickModifiers",
    "ColumnGuardError",
    "GridEditor",
    "Outcome",
    "PersistenceFailure",
    "RecordPersister",
    "SortState",
    "next_sort_state",
    "sort_records",
]
