"""Entity model for extragrid tables.

Defines the column/row/table value types, their identity rules, the
per-column-type value coercion used at write time, and the JSON shape the
table store speaks.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from typing import Any, NamedTuple, TypeAlias

from extragrid.exceptions import InvalidCellValueError

CellValue: TypeAlias = str | int | float | tuple[str, ...] | None

DEFAULT_MIN_ROWS = 50
DEFAULT_MIN_COLUMNS = 10

_NUMBER_RE = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")
_TAG_SPLIT_RE = re.compile(r"[,、]")
_PLACEHOLDER_TITLE_RE = re.compile(r"^Column (\d+|[A-Z]+)$", re.IGNORECASE)
_DATE_FORMATS = ("%Y/%m/%d", "%Y.%m.%d", "%Y年%m月%d日")


class ColumnType(Enum):
    """Declared type of a column."""

    TEXT = "text"
    NUMBER = "number"
    TAG = "tag"
    URL = "url"
    EMAIL = "email"
    DATE = "date"


class TextOverflowMode(Enum):
    """How a cell renders text that does not fit."""

    CLIP = "clip"
    ELLIPSIS = "ellipsis"
    WRAP = "wrap"
    VISIBLE = "visible"


class RowOrigin(Enum):
    """Lifecycle phase of a row identity."""

    PLACEHOLDER = "placeholder"
    DURABLE = "durable"


class CellRef(NamedTuple):
    """Address of a single cell by row and column id."""

    row_id: str
    column_id: str


@dataclass(frozen=True)
class TagOption:
    """A selectable label of a tag column."""

    id: str
    label: str
    color: str = "gray"


@dataclass(frozen=True)
class Column:
    """A column definition.

    ``id`` never changes once created; ``order`` is the dense display rank.
    """

    id: str
    title: str
    type: ColumnType = ColumnType.TEXT
    description: str = ""
    text_overflow: TextOverflowMode = TextOverflowMode.CLIP
    options: tuple[TagOption, ...] = ()
    order: int = 0

    def option_by_label(self, label: str) -> TagOption | None:
        for option in self.options:
            if option.label == label:
                return option
        return None


@dataclass
class Row:
    """A table row: an id plus a sparse mapping of column id to value."""

    id: str
    values: dict[str, CellValue] = field(default_factory=dict)
    origin: RowOrigin = RowOrigin.DURABLE

    @classmethod
    def placeholder(cls, values: dict[str, CellValue] | None = None) -> Row:
        """Create a fresh, not-yet-persisted row."""
        return cls(
            id=new_placeholder_id(),
            values=dict(values or {}),
            origin=RowOrigin.PLACEHOLDER,
        )

    @property
    def is_placeholder(self) -> bool:
        return self.origin is RowOrigin.PLACEHOLDER

    def get(self, column_id: str) -> CellValue:
        return self.values.get(column_id)

    def with_values(self, updates: dict[str, CellValue]) -> Row:
        """Return a copy of this row with ``updates`` merged into its values."""
        return Row(id=self.id, values={**self.values, **updates}, origin=self.origin)

    def copy(self) -> Row:
        return Row(id=self.id, values=dict(self.values), origin=self.origin)


@dataclass
class Table:
    """A table: ordered columns and ordered rows."""

    id: str
    name: str = ""
    description: str = ""
    columns: list[Column] = field(default_factory=list)
    rows: list[Row] = field(default_factory=list)

    def row_index(self, row_id: str) -> int | None:
        for i, row in enumerate(self.rows):
            if row.id == row_id:
                return i
        return None

    def column_index(self, column_id: str) -> int | None:
        for i, column in enumerate(self.columns):
            if column.id == column_id:
                return i
        return None

    def find_row(self, row_id: str) -> Row | None:
        index = self.row_index(row_id)
        return None if index is None else self.rows[index]

    def find_column(self, column_id: str) -> Column | None:
        index = self.column_index(column_id)
        return None if index is None else self.columns[index]

    def column_by_title(self, title: str) -> Column | None:
        """Return the first column with this title."""
        for column in self.columns:
            if column.title == title:
                return column
        return None

    def with_rows(self, rows: list[Row]) -> Table:
        return replace(self, rows=rows)

    def with_columns(self, columns: list[Column]) -> Table:
        return replace(self, columns=columns)

    def replace_row(self, row: Row) -> Table:
        """Return a copy with the row of the same id swapped for ``row``."""
        return self.with_rows([row if r.id == row.id else r for r in self.rows])

    def copy(self) -> Table:
        """Deep copy (columns are immutable and shared)."""
        return Table(
            id=self.id,
            name=self.name,
            description=self.description,
            columns=list(self.columns),
            rows=[row.copy() for row in self.rows],
        )


def new_placeholder_id() -> str:
    return f"tmp_{uuid.uuid4().hex[:16]}"


def new_column_id(prefix: str = "col") -> str:
    return f"{prefix}_{uuid.uuid4().hex[:10]}"


def new_tag_id() -> str:
    return f"tag_{uuid.uuid4().hex[:10]}"


def is_empty_value(value: Any) -> bool:
    """``None``, ``""`` and an empty tag list are all empty."""
    if value is None:
        return True
    if isinstance(value, str):
        return value == ""
    if isinstance(value, (tuple, list)):
        return len(value) == 0
    return False


def has_data(row: Row, columns: list[Column]) -> bool:
    """True when any column of ``row`` holds a non-empty value."""
    return any(not is_empty_value(row.values.get(c.id)) for c in columns)


def is_numeric_text(text: str) -> bool:
    return bool(_NUMBER_RE.match(text.strip()))


def parse_number(text: str) -> int | float:
    """Parse decimal text into an int when integral in form, else a float.

    Raises:
        ValueError: If ``text`` is not a decimal number
    """
    stripped = text.strip()
    if not _NUMBER_RE.match(stripped):
        raise ValueError(f"Not a number: {text!r}")
    if any(ch in stripped for ch in ".eE"):
        return float(stripped)
    return int(stripped)


def value_to_text(value: CellValue) -> str:
    """Render a stored value as plain text (clipboard, formulas, display)."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, (tuple, list)):
        return ", ".join(str(v) for v in value)
    return str(value)


def coerce_value(column: Column, raw: Any, *, strict: bool = False) -> CellValue:
    """Coerce raw input into the value variant of ``column``'s type.

    Formulas (text starting with ``=``) and the empty string are stored as-is
    for every type. Input that does not fit the type is kept as text unless
    ``strict`` is set.

    Raises:
        InvalidCellValueError: If ``strict`` and the value does not fit
    """
    if raw is None:
        return None
    if isinstance(raw, str) and (raw == "" or raw.startswith("=")):
        return raw

    ctype = column.type

    if ctype is ColumnType.NUMBER:
        if isinstance(raw, bool):
            return _reject(column, raw, strict)
        if isinstance(raw, (int, float)):
            return raw
        text = value_to_text(raw)
        try:
            return parse_number(text)
        except ValueError:
            return _reject(column, text, strict)

    if ctype is ColumnType.TAG:
        if isinstance(raw, (tuple, list)):
            labels = [str(v).strip() for v in raw]
        else:
            labels = [part.strip() for part in _TAG_SPLIT_RE.split(str(raw))]
        return tuple(label for label in labels if label)

    if ctype is ColumnType.DATE:
        if isinstance(raw, datetime):
            return raw.date().isoformat() if _is_midnight(raw) else raw.isoformat()
        if isinstance(raw, date):
            return raw.isoformat()
        text = value_to_text(raw).strip()
        parsed = _parse_date(text)
        if parsed is None:
            return _reject(column, text, strict)
        return parsed

    text = value_to_text(raw)
    if strict and ctype is ColumnType.EMAIL and "@" not in text:
        raise InvalidCellValueError(column.id, ctype.value, raw)
    if strict and ctype is ColumnType.URL and not ("://" in text or "." in text):
        raise InvalidCellValueError(column.id, ctype.value, raw)
    return text


def _reject(column: Column, value: Any, strict: bool) -> CellValue:
    if strict:
        raise InvalidCellValueError(column.id, column.type.value, value)
    return value_to_text(value)


def _is_midnight(value: datetime) -> bool:
    return (value.hour, value.minute, value.second, value.microsecond) == (0, 0, 0, 0)


def _parse_date(text: str) -> str | None:
    try:
        return date.fromisoformat(text).isoformat()
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text).isoformat()
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date().isoformat()
        except ValueError:
            continue
    return None


def reindex_columns(columns: list[Column]) -> list[Column]:
    """Restore a dense 0..n-1 ``order`` following list position."""
    return [c if c.order == i else replace(c, order=i) for i, c in enumerate(columns)]


def column_letter(index: int) -> str:
    """Convert a 0-based column index to spreadsheet letters.

    Examples: 0 -> A, 25 -> Z, 26 -> AA
    """
    result = ""
    idx = index
    while idx >= 0:
        result = chr(ord("A") + idx % 26) + result
        idx = idx // 26 - 1
    return result


def is_placeholder_column(column: Column) -> bool:
    """Whether a column looks auto-generated ("Column C" with no description)."""
    title = column.title.strip()
    if not title:
        return True
    return bool(_PLACEHOLDER_TITLE_RE.match(title)) and not column.description.strip()


def pad_rows(table: Table, min_rows: int = DEFAULT_MIN_ROWS) -> Table:
    """Append empty placeholder rows until the table has ``min_rows`` rows."""
    missing = min_rows - len(table.rows)
    if missing <= 0:
        return table
    return table.with_rows(table.rows + [Row.placeholder() for _ in range(missing)])


def pad_columns(table: Table, min_columns: int = DEFAULT_MIN_COLUMNS) -> Table:
    """Append auto-named text columns until the table has ``min_columns``."""
    start = len(table.columns)
    if start >= min_columns:
        return table
    extra = [
        Column(
            id=new_column_id("col_placeholder"),
            title=f"Column {column_letter(i)}",
            order=i,
        )
        for i in range(start, min_columns)
    ]
    return table.with_columns(reindex_columns(table.columns + extra))


# --- JSON shape used by the table store ---------------------------------------


def column_to_dict(column: Column) -> dict[str, Any]:
    result: dict[str, Any] = {
        "id": column.id,
        "name": column.title,
        "type": column.type.value,
        "description": column.description,
        "required": False,
        "order": column.order,
        "textOverflow": column.text_overflow.value,
    }
    if column.options:
        result["options"] = [
            {"id": o.id, "label": o.label, "color": o.color} for o in column.options
        ]
    return result


def column_from_dict(data: dict[str, Any], order: int = 0) -> Column:
    return Column(
        id=data["id"],
        title=data.get("name", data.get("title", "")),
        type=ColumnType(data.get("type", "text")),
        description=data.get("description") or "",
        text_overflow=TextOverflowMode(data.get("textOverflow") or "clip"),
        options=tuple(
            TagOption(id=o["id"], label=o["label"], color=o.get("color", "gray"))
            for o in data.get("options") or []
        ),
        order=data.get("order", order),
    )


def values_to_json(values: dict[str, CellValue]) -> dict[str, Any]:
    return {k: list(v) if isinstance(v, tuple) else v for k, v in values.items()}


def values_from_json(data: dict[str, Any]) -> dict[str, CellValue]:
    return {k: tuple(v) if isinstance(v, list) else v for k, v in data.items()}


def row_from_record(record: dict[str, Any]) -> Row:
    """Build a durable row from a store record ``{"id": ..., "data": {...}}``."""
    return Row(
        id=str(record["id"]),
        values=values_from_json(record.get("data") or {}),
        origin=RowOrigin.DURABLE,
    )


def table_to_dict(table: Table) -> dict[str, Any]:
    return {
        "id": table.id,
        "name": table.name,
        "description": table.description,
        "columns": [column_to_dict(c) for c in table.columns],
        "rows": [
            {
                "id": row.id,
                "origin": row.origin.value,
                "data": values_to_json(row.values),
            }
            for row in table.rows
        ],
    }


def table_from_dict(data: dict[str, Any]) -> Table:
    columns = [column_from_dict(c, i) for i, c in enumerate(data.get("columns", []))]
    columns.sort(key=lambda c: c.order)
    rows: list[Row] = []
    for record in data.get("rows", []):
        if "data" in record:
            raw_values = record["data"] or {}
        else:
            raw_values = {k: v for k, v in record.items() if k not in ("id", "origin")}
        rows.append(
            Row(
                id=str(record["id"]),
                values=values_from_json(raw_values),
                origin=RowOrigin(record.get("origin", "durable")),
            )
        )
    return Table(
        id=data["id"],
        name=data.get("name", ""),
        description=data.get("description") or "",
        columns=columns,
        rows=rows,
    )
