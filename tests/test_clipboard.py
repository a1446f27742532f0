"""Tests for tab/newline clipboard transfer."""

from extragrid.clipboard import apply_writes, copy_cells, parse_clipboard, paste_targets, paste_text
from extragrid.models import CellRef, Column, ColumnType, Row
from extragrid.selection import SelectionModel
from tests.fakes import build_table, durable, placeholder


def sample_table():
    columns = [
        Column(id="name", title="Name", order=0),
        Column(id="revenue", title="Revenue", type=ColumnType.NUMBER, order=1),
        Column(id="tags", title="Tags", type=ColumnType.TAG, order=2),
        Column(id="note", title="Note", order=3),
    ]
    return build_table(
        [
            durable("r1", name="Acme", revenue=100, tags=("高", "VIP"), note=""),
            durable("r2", name="Globex", revenue=2.5, note="call back"),
            durable("r3", name="Initech"),
            placeholder("tmp_1"),
        ],
        columns=columns,
    )


class TestCopy:
    def test_rectangle_in_display_order(self):
        table = sample_table()
        cells = {CellRef(r, c) for r in ("r2", "r1") for c in ("revenue", "name")}
        assert copy_cells(table, cells) == "Acme\t100\nGlobex\t2.5"

    def test_missing_values_are_empty_strings(self):
        table = sample_table()
        cells = {CellRef("r3", c) for c in ("name", "revenue", "tags")}
        assert copy_cells(table, cells) == "Initech\t\t"

    def test_tags_joined(self):
        assert copy_cells(sample_table(), {CellRef("r1", "tags")}) == "高, VIP"

    def test_stale_refs_skipped(self):
        assert copy_cells(sample_table(), {CellRef("gone", "name")}) == ""


class TestParse:
    def test_mixed_line_breaks(self):
        assert parse_clipboard("a\tb\r\nc\td\re") == [["a", "b"], ["c", "d"], ["e"]]

    def test_single_trailing_newline_dropped(self):
        assert parse_clipboard("a\tb\n") == [["a", "b"]]
        assert parse_clipboard("a\n\n") == [["a"], [""]]

    def test_empty(self):
        assert parse_clipboard("") == []


class TestPaste:
    def test_round_trip_at_same_anchor(self):
        table = sample_table()
        selection = SelectionModel()
        selection.select_cell("r1", "name")
        selection.extend_to(table, "r3", "note")
        text = copy_cells(table, selection.cells)

        blank = table.with_rows([Row(id=r.id, origin=r.origin) for r in table.rows])
        restored = paste_text(blank, CellRef("r1", "name"), text)

        for row_id in ("r1", "r2", "r3"):
            original = table.find_row(row_id)
            pasted = restored.find_row(row_id)
            for column in table.columns:
                expected = original.get(column.id)
                if expected is None:
                    expected = ""
                assert pasted.get(column.id) == expected, (row_id, column.id)

    def test_paste_clips_at_table_edges(self):
        table = sample_table()
        writes = paste_targets(table, CellRef("r3", "tags"), "a\tb\tc\nd\te\nf\ng")
        refs = [ref for ref, _ in writes]
        assert refs == [
            CellRef("r3", "tags"),
            CellRef("r3", "note"),
            CellRef("tmp_1", "tags"),
            CellRef("tmp_1", "note"),
        ]
        assert len(paste_text(table, CellRef("r3", "tags"), "x\ny\nz").rows) == len(table.rows)

    def test_values_coerced_to_target_type(self):
        table = sample_table()
        result = paste_text(table, CellRef("r3", "revenue"), "1,5\t42")
        # "1,5" is not a number; kept as text
        assert result.find_row("r3").get("revenue") == "1,5"
        assert result.find_row("r3").get("tags") == ("42",)

    def test_unknown_anchor_is_noop(self):
        table = sample_table()
        assert paste_text(table, CellRef("gone", "name"), "x") is table

    def test_apply_writes_drops_missing_columns(self):
        table = sample_table()
        result = apply_writes(table, [(CellRef("r1", "nope"), "x")])
        assert result is table
