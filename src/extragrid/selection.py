"""Anchor-based row and cell selection.

All range computations use the row/column order of the table passed in,
which is the displayed order (after filters and sorts), never id order.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from extragrid.models import CellRef

if TYPE_CHECKING:
    from extragrid.models import Table


class SelectionModel:
    """Row selection, cell selection, the cell anchor and the last toggled row.

    Example:
        >>> selection = SelectionModel()
        >>> selection.select_cell("r1", "name")
        >>> selection.extend_to(table, "r3", "email")
    """

    def __init__(self) -> None:
        self.rows: set[str] = set()
        self.cells: set[CellRef] = set()
        self.anchor: CellRef | None = None
        self.last_row: str | None = None

    def select_cell(self, row_id: str, column_id: str) -> None:
        """Select exactly one cell and move the anchor to it."""
        ref = CellRef(row_id, column_id)
        self.cells = {ref}
        self.anchor = ref

    def toggle_cell(self, row_id: str, column_id: str) -> None:
        """Add or remove one cell from a free-form selection."""
        ref = CellRef(row_id, column_id)
        if ref in self.cells:
            self.cells.discard(ref)
        else:
            self.cells.add(ref)
        self.anchor = ref

    def extend_to(self, table: Table, row_id: str, column_id: str) -> None:
        """Select the rectangle between the anchor and the target cell.

        No-op when there is no anchor or when either corner is no longer
        present in ``table``. The anchor does not move.
        """
        if self.anchor is None:
            return
        start_row = table.row_index(self.anchor.row_id)
        end_row = table.row_index(row_id)
        start_col = table.column_index(self.anchor.column_id)
        end_col = table.column_index(column_id)
        if start_row is None or end_row is None or start_col is None or end_col is None:
            return

        row_lo, row_hi = sorted((start_row, end_row))
        col_lo, col_hi = sorted((start_col, end_col))
        self.cells = {
            CellRef(table.rows[r].id, table.columns[c].id)
            for r in range(row_lo, row_hi + 1)
            for c in range(col_lo, col_hi + 1)
        }

    def toggle_row(self, table: Table, row_id: str, *, extend: bool = False) -> None:
        """Toggle one row, or with ``extend`` select every row from the last
        toggled row through ``row_id`` inclusive.
        """
        if extend and self.last_row is not None:
            start = table.row_index(self.last_row)
            end = table.row_index(row_id)
            if start is None or end is None:
                return
            lo, hi = sorted((start, end))
            self.rows.update(table.rows[i].id for i in range(lo, hi + 1))
            self.last_row = row_id
            return

        if row_id in self.rows:
            self.rows.discard(row_id)
        else:
            self.rows.add(row_id)
        self.last_row = row_id

    def select_all_rows(self, table: Table) -> None:
        self.rows = {row.id for row in table.rows}

    def toggle_all_rows(self, table: Table) -> None:
        """Select every row, or clear when every row is already selected."""
        if self.rows and len(self.rows) == len(table.rows):
            self.rows = set()
        else:
            self.select_all_rows(table)

    def clear(self) -> None:
        self.rows = set()
        self.cells = set()
        self.anchor = None
        self.last_row = None

    def clear_cells(self) -> None:
        self.cells = set()

    def is_cell_selected(self, row_id: str, column_id: str) -> bool:
        return CellRef(row_id, column_id) in self.cells

    def sorted_cells(self, table: Table) -> list[tuple[int, int, CellRef]]:
        """Selected cells present in ``table`` as (row index, column index, ref),
        in row-major display order.
        """
        located: list[tuple[int, int, CellRef]] = []
        for ref in self.cells:
            r = table.row_index(ref.row_id)
            c = table.column_index(ref.column_id)
            if r is not None and c is not None:
                located.append((r, c, ref))
        located.sort(key=lambda item: (item[0], item[1]))
        return located

    def first_selected_cell(self, table: Table) -> CellRef | None:
        """The positionally first selected cell (the paste anchor)."""
        located = self.sorted_cells(table)
        return located[0][2] if located else None

    def rename_row(self, old_id: str, new_id: str) -> None:
        """Rewrite a row id everywhere it is referenced."""
        if old_id in self.rows:
            self.rows.discard(old_id)
            self.rows.add(new_id)
        self.cells = {
            CellRef(new_id, ref.column_id) if ref.row_id == old_id else ref
            for ref in self.cells
        }
        if self.anchor is not None and self.anchor.row_id == old_id:
            self.anchor = CellRef(new_id, self.anchor.column_id)
        if self.last_row == old_id:
            self.last_row = new_id

    def prune(self, table: Table) -> None:
        """Drop references to rows or columns that no longer exist."""
        row_ids = {row.id for row in table.rows}
        column_ids = {column.id for column in table.columns}
        self.rows &= row_ids
        self.cells = {
            ref
            for ref in self.cells
            if ref.row_id in row_ids and ref.column_id in column_ids
        }
        if self.anchor is not None and (
            self.anchor.row_id not in row_ids or self.anchor.column_id not in column_ids
        ):
            self.anchor = None
        if self.last_row is not None and self.last_row not in row_ids:
            self.last_row = None
