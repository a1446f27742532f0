"""Tests for anchor-based row and cell selection."""

import itertools

from extragrid.models import CellRef
from extragrid.selection import SelectionModel
from extragrid.view import SortState, build_view
from tests.fakes import build_table, durable, simple_columns


def grid_table():
    return build_table(
        [durable(f"r{i}", a=str(5 - i)) for i in range(5)],
        columns=simple_columns("A", "B", "C", "D"),
    )


def rectangle(table, a, b):
    (ra, ca), (rb, cb) = a, b
    return {
        CellRef(table.rows[r].id, table.columns[c].id)
        for r in range(min(ra, rb), max(ra, rb) + 1)
        for c in range(min(ca, cb), max(ca, cb) + 1)
    }


class TestCellSelection:
    def test_select_cell_sets_anchor(self):
        selection = SelectionModel()
        selection.select_cell("r1", "a")
        assert selection.cells == {CellRef("r1", "a")}
        assert selection.anchor == CellRef("r1", "a")

    def test_extend_to_every_rectangle(self):
        table = grid_table()
        positions = list(itertools.product(range(5), range(4)))
        for a, b in itertools.product(positions, positions):
            selection = SelectionModel()
            selection.select_cell(table.rows[a[0]].id, table.columns[a[1]].id)
            selection.extend_to(table, table.rows[b[0]].id, table.columns[b[1]].id)
            assert selection.cells == rectangle(table, a, b)

    def test_extend_uses_displayed_order(self):
        table = grid_table()
        view = build_view(table, sorts=[SortState("a", "asc")])
        # Sorted ascending by A the display order is r4, r3, r2, r1, r0.
        selection = SelectionModel()
        selection.select_cell("r4", "a")
        selection.extend_to(view, "r2", "a")
        assert {ref.row_id for ref in selection.cells} == {"r4", "r3", "r2"}

    def test_extend_without_anchor_is_noop(self):
        selection = SelectionModel()
        selection.extend_to(grid_table(), "r1", "a")
        assert selection.cells == set()

    def test_extend_keeps_anchor(self):
        table = grid_table()
        selection = SelectionModel()
        selection.select_cell("r0", "a")
        selection.extend_to(table, "r2", "c")
        assert selection.anchor == CellRef("r0", "a")

    def test_toggle_cell(self):
        selection = SelectionModel()
        selection.toggle_cell("r1", "a")
        selection.toggle_cell("r2", "b")
        selection.toggle_cell("r1", "a")
        assert selection.cells == {CellRef("r2", "b")}

    def test_first_selected_cell_is_positional(self):
        table = grid_table()
        selection = SelectionModel()
        selection.toggle_cell("r3", "a")
        selection.toggle_cell("r1", "c")
        selection.toggle_cell("r1", "b")
        assert selection.first_selected_cell(table) == CellRef("r1", "b")


class TestRowSelection:
    def test_toggle_row(self):
        table = grid_table()
        selection = SelectionModel()
        selection.toggle_row(table, "r1")
        assert selection.rows == {"r1"}
        selection.toggle_row(table, "r1")
        assert selection.rows == set()

    def test_shift_toggle_selects_range_inclusive(self):
        table = grid_table()
        selection = SelectionModel()
        selection.toggle_row(table, "r3")
        selection.toggle_row(table, "r1", extend=True)
        assert selection.rows == {"r1", "r2", "r3"}
        assert selection.last_row == "r1"

    def test_toggle_all(self):
        table = grid_table()
        selection = SelectionModel()
        selection.toggle_all_rows(table)
        assert len(selection.rows) == 5
        selection.toggle_all_rows(table)
        assert selection.rows == set()


class TestIdentityMaintenance:
    def test_rename_row_rewrites_everything(self):
        table = grid_table()
        selection = SelectionModel()
        selection.toggle_row(table, "r1")
        selection.select_cell("r1", "a")
        selection.toggle_cell("r2", "b")
        selection.rename_row("r1", "uuid-1")
        assert selection.rows == {"uuid-1"}
        assert CellRef("uuid-1", "a") in selection.cells
        assert all(ref.row_id != "r1" for ref in selection.cells)
        assert selection.anchor == CellRef("r2", "b")
        assert selection.last_row == "uuid-1"

    def test_prune_drops_missing_rows_and_columns(self):
        table = grid_table()
        selection = SelectionModel()
        selection.toggle_row(table, "r4")
        selection.select_cell("r4", "d")
        smaller = table.with_rows(table.rows[:4]).with_columns(table.columns[:3])
        selection.prune(smaller)
        assert selection.rows == set()
        assert selection.cells == set()
        assert selection.anchor is None
        assert selection.last_row is None
