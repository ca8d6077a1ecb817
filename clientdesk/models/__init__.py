"""Domain models for the clientdesk CRM core.

Import-session models (rows, errors, results), mapping vocabulary, and the
grid/option/preference models used by the spreadsheet editor.
"""

from .error_record import ErrorRecord
from .grid import CellRef, CellStyle, ColumnDefinition, SelectionState, default_client_columns
from .import_result import BatchMetrics, BatchStatsAccumulator, ImportResult
from .mapping import ColumnMapping, PresetColumn, TargetField
from .options import OptionItem, OptionKind, normalize_options
from .preferences import GeneralPreferences
from .row_data import RowData

__all__ = [
    # Import session
    "RowData",
    "ErrorRecord",
    "ImportResult",
    "BatchMetrics",
    "BatchStatsAccumulator",
    # Mapping vocabulary
    "ColumnMapping",
    "TargetField",
    "PresetColumn",
    # Grid
    "ColumnDefinition",
    "CellStyle",
    "CellRef",
    "SelectionState",
    "default_client_columns",
    # Options / preferences
    "OptionItem",
    "OptionKind",
    "normalize_options",
    "GeneralPreferences",
]
