from __future__ import annotations

from dataclasses import dataclass, field

"""RowData model for the client importer.

RowData represents a single parsed spreadsheet row before it is mapped onto a
client payload. Values are kept as the strings produced by the parser; the
row builder is responsible for trimming and placing them.
"""

__all__ = [
    "RowData",
]


@dataclass
class RowData:
    """One raw row of an import session.

    ``row_number`` is 1-based in file order (first data row = 1). Preview
    sorting never reorders the underlying rows, only the displayed view.
    """
    row_number: int  # 1-based position in the parsed file
    values: dict[str, str] = field(default_factory=dict)  # header -> cell text

    def get(self, header: str, default: str | None = None) -> str | None:
        return self.values.get(header, default)

    def rename(self, old: str, new: str) -> None:
        """Move the value stored under ``old`` to ``new`` (header rename)."""
        if old in self.values:
            self.values[new] = self.values.pop(old)
