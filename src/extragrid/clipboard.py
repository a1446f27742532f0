"""Tab/newline clipboard transfer for rectangular cell ranges."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from extragrid.models import CellRef, coerce_value, value_to_text

if TYPE_CHECKING:
    from collections.abc import Iterable

    from extragrid.models import CellValue, Table

_LINE_BREAK_RE = re.compile(r"\r\n|\n|\r")


def copy_cells(table: Table, cells: Iterable[CellRef]) -> str:
    """Serialize selected cells as tab-separated lines.

    Cells are grouped by row in table order, then by column in table order.
    Cells whose row or column is no longer in ``table`` are skipped; missing
    values serialize as the empty string.
    """
    by_row: dict[int, list[int]] = {}
    for ref in cells:
        r = table.row_index(ref.row_id)
        c = table.column_index(ref.column_id)
        if r is None or c is None:
            continue
        by_row.setdefault(r, []).append(c)

    lines: list[str] = []
    for r in sorted(by_row):
        row = table.rows[r]
        lines.append(
            "\t".join(
                value_to_text(row.get(table.columns[c].id)) for c in sorted(by_row[r])
            )
        )
    return "\n".join(lines)


def parse_clipboard(text: str) -> list[list[str]]:
    """Split clipboard text into a grid of strings.

    A single trailing line break (as spreadsheet apps append) is dropped.
    """
    if not text:
        return []
    lines = _LINE_BREAK_RE.split(text)
    if len(lines) > 1 and lines[-1] == "":
        lines.pop()
    return [line.split("\t") for line in lines]


def paste_targets(table: Table, anchor: CellRef, text: str) -> list[tuple[CellRef, CellValue]]:
    """Resolve clipboard text into ``(cell, value)`` writes starting at ``anchor``.

    Positions follow the row and column order of ``table`` (pass the displayed
    view when there is one). Targets outside the current rows or columns are
    skipped. Values are coerced to the target column type.
    """
    start_row = table.row_index(anchor.row_id)
    start_col = table.column_index(anchor.column_id)
    if start_row is None or start_col is None:
        return []

    writes: list[tuple[CellRef, CellValue]] = []
    for r, line in enumerate(parse_clipboard(text)):
        target_row = start_row + r
        if target_row >= len(table.rows):
            break
        row_id = table.rows[target_row].id
        for c, raw in enumerate(line):
            target_col = start_col + c
            if target_col >= len(table.columns):
                break
            column = table.columns[target_col]
            writes.append((CellRef(row_id, column.id), coerce_value(column, raw)))
    return writes


def apply_writes(table: Table, writes: list[tuple[CellRef, CellValue]]) -> Table:
    """Apply cell writes by id; writes to missing rows or columns are dropped."""
    column_ids = {column.id for column in table.columns}
    by_row: dict[str, dict[str, CellValue]] = {}
    for ref, value in writes:
        if ref.column_id in column_ids:
            by_row.setdefault(ref.row_id, {})[ref.column_id] = value
    if not by_row:
        return table
    return table.with_rows(
        [row.with_values(by_row[row.id]) if row.id in by_row else row for row in table.rows]
    )


def paste_text(table: Table, anchor: CellRef, text: str) -> Table:
    """Write clipboard text into ``table`` starting at ``anchor``.

    The table never grows. Returns ``table`` unchanged when the anchor cannot
    be located.
    """
    return apply_writes(table, paste_targets(table, anchor, text))
