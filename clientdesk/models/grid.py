from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from typing import Any

"""Grid domain models: column definitions, cell styles and selection state.

Column definitions, styles and selection are UI/session state. Only column
layout and styles are persisted (to the per-user preferences record); record
data never lives here.

Style keys:
- ``<rowId>_<columnKey>`` for a body cell
- ``header_<columnKey>`` / ``subheader_<columnKey>`` for header rows
"""

__all__ = [
    "COLUMN_TYPES",
    "BUILTIN_CLIENT_FIELDS",
    "ColumnDefinition",
    "CellStyle",
    "CellRef",
    "SelectionState",
    "cell_style_key",
    "header_style_key",
    "subheader_style_key",
    "default_client_columns",
]

COLUMN_TYPES = frozenset({
    "text", "phone", "email", "status", "stage", "select",
    "long_text", "number", "date", "actions",
})

# Keys stored as top-level client attributes; any other column key is a
# custom field living in ``custom_data``.
BUILTIN_CLIENT_FIELDS = frozenset({
    "name", "email", "phone", "company", "address", "source",
    "status", "stage", "budget_range", "notes",
})


def cell_style_key(row_id: str, column_key: str) -> str:
    return f"{row_id}_{column_key}"


def header_style_key(column_key: str) -> str:
    return f"header_{column_key}"


def subheader_style_key(column_key: str) -> str:
    return f"subheader_{column_key}"


@dataclass
class ColumnDefinition:
    """Layout definition of one grid column.

    ``order`` is kept in sync with the list position by the grid editor;
    it is stored so persisted layouts survive reordering.
    """
    key: str
    title: str
    width: int = 150
    type: str = "text"
    required: bool = False
    visible: bool = True
    order: int = 0

    def __post_init__(self) -> None:
        if self.type not in COLUMN_TYPES:
            raise ValueError(f"unknown column type: {self.type}")
        if self.protected:
            self.visible = True

    @property
    def is_actions(self) -> bool:
        return self.type == "actions" or self.key == "actions"

    @property
    def protected(self) -> bool:
        """Required and actions columns are pinned, always visible and undeletable."""
        return self.required or self.is_actions

    @property
    def is_custom_field(self) -> bool:
        return not self.is_actions and self.key not in BUILTIN_CLIENT_FIELDS

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ColumnDefinition:
        width = data.get("width", 150)
        if isinstance(width, str):
            # stored layouts may carry CSS widths like "200px"
            width = int(width.removesuffix("px") or 150)
        return cls(
            key=str(data["key"]),
            title=str(data.get("title") or data["key"]),
            width=int(width),
            type=str(data.get("type") or "text"),
            required=bool(data.get("required", False)),
            visible=data.get("visible") is not False,
            order=int(data.get("order", 0)),
        )


_STYLE_ALIASES = {
    "backgroundColor": "background_color",
    "fontWeight": "font_weight",
    "borderColor": "border_color",
}


@dataclass(frozen=True)
class CellStyle:
    """Visual style of a cell or header. Unset attributes are ``None``."""
    background_color: str | None = None
    opacity: float | None = None
    font_weight: str | None = None
    border_color: str | None = None

    def merged(self, other: CellStyle) -> CellStyle:
        """Return a copy with every attribute set on ``other`` overriding ours."""
        values = {f.name: getattr(self, f.name) for f in fields(self)}
        for f in fields(other):
            value = getattr(other, f.name)
            if value is not None:
                values[f.name] = value
        return CellStyle(**values)

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CellStyle:
        known = {f.name for f in fields(cls)}
        values: dict[str, Any] = {}
        for raw_key, value in data.items():
            key = _STYLE_ALIASES.get(raw_key, raw_key)
            if key in known:
                values[key] = value
        return cls(**values)


@dataclass(frozen=True)
class CellRef:
    """Address of a body cell."""
    row_id: str
    column_key: str

    @property
    def key(self) -> str:
        return cell_style_key(self.row_id, self.column_key)


@dataclass
class SelectionState:
    """Multi-select state: cells, headers (for merge) and whole rows."""
    cells: set[CellRef] = field(default_factory=set)
    headers: set[str] = field(default_factory=set)
    rows: set[str] = field(default_factory=set)

    def toggle_cell(self, ref: CellRef) -> bool:
        """Toggle membership; returns True when the cell is now selected."""
        if ref in self.cells:
            self.cells.discard(ref)
            return False
        self.cells.add(ref)
        return True

    def toggle_header(self, column_key: str) -> bool:
        if column_key in self.headers:
            self.headers.discard(column_key)
            return False
        self.headers.add(column_key)
        return True

    def toggle_row(self, row_id: str) -> bool:
        if row_id in self.rows:
            self.rows.discard(row_id)
            return False
        self.rows.add(row_id)
        return True

    def clear(self) -> None:
        self.cells.clear()
        self.headers.clear()
        self.rows.clear()

    def is_empty(self) -> bool:
        return not (self.cells or self.headers or self.rows)


def default_client_columns() -> list[ColumnDefinition]:
    """Default client grid layout (used when the user has no stored layout)."""
    specs = [
        ("name", "Client name", 200, "text", True),
        ("status", "Status", 120, "status", False),
        ("stage", "Stage", 150, "stage", False),
        ("phone", "Phone", 150, "phone", False),
        ("email", "Email", 200, "email", False),
        ("company", "Company", 150, "text", False),
        ("address", "Address", 200, "text", False),
        ("source", "Lead source", 120, "select", False),
        ("budget_range", "Budget", 150, "select", False),
        ("notes", "Notes", 300, "long_text", False),
        ("actions", "", 60, "actions", True),
    ]
    return [
        ColumnDefinition(key=k, title=t, width=w, type=typ, required=req, order=i)
        for i, (k, t, w, typ, req) in enumerate(specs)
    ]
