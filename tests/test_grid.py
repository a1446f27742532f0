"""Tests for Grid, the single mutation entry point."""

import pytest

from extragrid.exceptions import ImportValidationError, InvalidCellValueError
from extragrid.grid import Grid
from extragrid.importer import ImportAction, ImportMapping, ImportSource
from extragrid.models import CellRef, ColumnType, TagOption
from extragrid.view import SortState, build_view
from tests.fakes import build_table, durable, placeholder


def make_grid(**kwargs):
    return Grid(
        build_table(
            [
                durable("r1", company_name="Acme", revenue=100),
                durable("r2", company_name="Globex", revenue=5),
                placeholder("tmp_1"),
            ]
        ),
        **kwargs,
    )


class TestUpdate:
    def test_update_with_function_and_listeners(self):
        grid = make_grid()
        seen = []
        grid.add_listener(lambda table: seen.append(len(table.rows)))
        grid.update(lambda t: t.with_rows(t.rows[:1]))
        assert seen == [1]
        assert len(grid.table.rows) == 1

    def test_update_prunes_selection(self):
        grid = make_grid()
        grid.selection.select_cell("r2", "company_name")
        grid.selection.toggle_row(grid.table, "r2")
        grid.delete_rows(["r2"])
        assert grid.selection.cells == set()
        assert grid.selection.rows == set()

    def test_local_grid_has_no_engine(self):
        grid = make_grid()
        assert grid.engine is None


class TestCells:
    def test_set_cell_coerces(self):
        grid = make_grid()
        grid.set_cell("r1", "revenue", "1,000")
        assert grid.table.find_row("r1").get("revenue") == "1,000"
        grid.set_cell("r1", "revenue", "1000")
        assert grid.table.find_row("r1").get("revenue") == 1000

    def test_set_cell_strict(self):
        grid = make_grid()
        with pytest.raises(InvalidCellValueError):
            grid.set_cell("r1", "revenue", "lots", strict=True)
        assert grid.table.find_row("r1").get("revenue") == 100

    def test_set_cell_unknown_column_is_noop(self):
        grid = make_grid()
        before = grid.table
        grid.set_cell("r1", "nope", "x")
        assert grid.table is before

    def test_delete_selection_prefers_rows(self):
        grid = make_grid()
        grid.selection.select_cell("r1", "company_name")
        grid.selection.toggle_row(grid.table, "r2")
        assert grid.delete_selection() == 1
        assert grid.table.find_row("r2") is None
        assert grid.table.find_row("r1").get("company_name") == "Acme"
        assert grid.selection.rows == set()
        assert grid.selection.cells == set()

    def test_delete_selection_clears_cells(self):
        grid = make_grid()
        grid.selection.select_cell("r1", "company_name")
        grid.selection.extend_to(grid.table, "r2", "revenue")
        assert grid.delete_selection() == 6
        assert grid.table.find_row("r1").values == {
            "company_name": "",
            "revenue": "",
            "email": "",
        }

    def test_copy_and_paste_through_sorted_view(self):
        grid = make_grid()
        view = build_view(grid.table, sorts=[SortState("revenue", "asc")])
        # Sorted view: r2 (5), r1 (100), tmp_1 (empty last).
        grid.selection.select_cell("r2", "company_name")
        assert grid.paste("X\nY", view) == 2
        assert grid.table.find_row("r2").get("company_name") == "X"
        assert grid.table.find_row("r1").get("company_name") == "Y"

        grid.selection.select_cell("r2", "company_name")
        grid.selection.extend_to(view, "r1", "company_name")
        assert grid.copy(view) == "X\nY"

    def test_paste_without_selection(self):
        assert make_grid().paste("x") == 0

    def test_import_rows(self):
        grid = make_grid()
        source = ImportSource("a.csv", ["Name"], [["Initech"], ["Umbrella"]])
        result = grid.import_rows(
            source,
            [ImportMapping("Name", ImportAction.EXISTING, existing_column_id="company_name")],
        )
        assert result.reused_row_ids == ["tmp_1"]
        assert grid.table.find_row("tmp_1").get("company_name") == "Initech"
        assert len(grid.table.rows) == 4

    def test_invalid_import_leaves_table(self):
        grid = make_grid()
        before = grid.table
        with pytest.raises(ImportValidationError):
            grid.import_rows(ImportSource("a.csv", ["Name"], [["x"]]), [ImportMapping("Name")])
        assert grid.table is before


class TestRows:
    def test_add_empty_row(self):
        grid = make_grid()
        row = grid.add_empty_row(index=0)
        assert row.is_placeholder
        assert grid.table.rows[0].id == row.id

    def test_ensure_padding(self):
        grid = make_grid()
        grid.ensure_padding(min_rows=5, min_columns=7)
        assert len(grid.table.rows) == 5
        assert [c.title for c in grid.table.columns][-2:] == ["Column F", "Column G"]

    def test_rename_row_rewrites_all_references(self):
        grid = make_grid()
        grid.selection.toggle_row(grid.table, "tmp_1")
        grid.selection.select_cell("tmp_1", "email")
        grid.progress.start_row("tmp_1", ["industry"])
        grid.rename_row("tmp_1", "uuid-1")

        assert grid.table.find_row("uuid-1").is_placeholder is False
        assert grid.selection.rows == {"uuid-1"}
        assert grid.selection.cells == {CellRef("uuid-1", "email")}
        assert grid.progress.get("uuid-1", "industry") is not None
        assert grid.resolve_row_id("tmp_1") == "uuid-1"


class TestColumns:
    def test_add_column_at_index(self):
        grid = make_grid()
        column = grid.add_column("Phone", index=1)
        assert grid.table.columns[1].id == column.id
        assert [c.order for c in grid.table.columns] == list(range(6))

    def test_add_column_default_title(self):
        grid = make_grid()
        column = grid.add_column()
        assert column.title == "Column F"

    def test_update_column(self):
        grid = make_grid()
        updated = grid.update_column("industry", title="Industry", type=ColumnType.TAG)
        assert updated.title == "Industry"
        assert grid.table.find_column("industry").type is ColumnType.TAG
        assert grid.update_column("nope", title="x") is None

    def test_delete_column_drops_values(self):
        grid = make_grid()
        grid.selection.select_cell("r1", "revenue")
        assert grid.delete_column("revenue")
        assert grid.table.find_column("revenue") is None
        assert "revenue" not in grid.table.find_row("r1").values
        assert grid.selection.cells == set()
        assert not grid.delete_column("revenue")

    def test_set_tag_options(self):
        grid = make_grid()
        options = (TagOption(id="t1", label="VIP", color="purple"),)
        grid.set_tag_options("tags", options)
        assert grid.table.find_column("tags").options == options


class TestErrors:
    def test_report_error_calls_callback(self):
        messages = []
        grid = make_grid(on_error=messages.append)
        grid.report_error("boom")
        assert messages == ["boom"]
        assert grid.errors == ["boom"]
