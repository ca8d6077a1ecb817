from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

"""ErrorRecord model for import error logging.

ErrorRecord is used both for the user-visible error list of an import session
and for the JSON Lines error log. ``row=-1`` is the sentinel for session-level
errors (upload/parse) where no specific row applies.
"""

__all__ = [
    "ErrorRecord",
]


@dataclass(frozen=True)
class ErrorRecord:
    """Structured error record for JSON Lines logging.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        source: Name of the imported file
        row: Row number (1-based). Use -1 for session-level errors
        error_type: Error classification in UPPER_SNAKE_CASE format
        message: Backend or parser error message
    """
    timestamp: str  # ISO8601 UTC
    source: str
    row: int
    error_type: str  # UPPER_SNAKE
    message: str

    @staticmethod
    def create(source: str, row: int, error_type: str, message: str) -> ErrorRecord:
        """Create a new ErrorRecord with current UTC timestamp."""
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ErrorRecord(
            timestamp=ts,
            source=source,
            row=row,
            error_type=error_type,
            message=message,
        )

    def to_json_line(self) -> str:
        """Serialize to a single JSON line (fixed key set)."""
        return json.dumps(asdict(self), ensure_ascii=False)

    def display(self) -> str:
        """Short human-readable form used in the session error list."""
        if self.row < 0:
            return self.message
        return f"Row {self.row} failed: {self.message}"
