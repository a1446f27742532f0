"""Tests for import file parsing, mapping suggestions and row reuse."""

import io

import pytest
from openpyxl import Workbook

from extragrid.exceptions import ImportValidationError
from extragrid.importer import (
    ImportAction,
    ImportMapping,
    ImportSource,
    apply_import,
    parse_import_bytes,
    read_import_file,
    suggest_mappings,
)
from extragrid.models import ColumnType, has_data
from tests.fakes import build_table, durable, placeholder


def xlsx_bytes(rows):
    workbook = Workbook()
    sheet = workbook.active
    for row in rows:
        sheet.append(row)
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


class TestParse:
    def test_xlsx_first_sheet(self):
        data = xlsx_bytes([["会社名", None, "売上"], ["Acme", "x", 100], [None, None, None]])
        source = parse_import_bytes("leads.xlsx", data)
        assert source.headers == ["会社名", "Column 2", "売上"]
        assert source.body_rows == [["Acme", "x", 100]]

    def test_csv_with_bom(self):
        data = "\ufeffName,Email\nAcme,info@acme.jp\n,\nGlobex,\n".encode()
        source = parse_import_bytes("leads.csv", data)
        assert source.headers == ["Name", "Email"]
        assert source.body_rows == [["Acme", "info@acme.jp"], ["Globex", ""]]

    def test_unsupported_extension(self):
        with pytest.raises(ImportValidationError) as exc:
            parse_import_bytes("leads.xls", b"whatever")
        assert exc.value.file_name == "leads.xls"

    def test_too_large(self):
        with pytest.raises(ImportValidationError, match="too large"):
            parse_import_bytes("a.csv", b"a\n1\n", max_file_bytes=2)

    def test_too_many_rows_rejected(self):
        data = ("h\n" + "x\n" * 4).encode()
        with pytest.raises(ImportValidationError, match="Too many rows"):
            parse_import_bytes("a.csv", data, max_rows=3)
        assert len(parse_import_bytes("a.csv", data, max_rows=4).body_rows) == 4

    def test_header_only_file(self):
        with pytest.raises(ImportValidationError, match="No data rows"):
            parse_import_bytes("a.csv", b"Name,Email\n")

    def test_corrupt_xlsx(self):
        with pytest.raises(ImportValidationError, match="Could not parse"):
            parse_import_bytes("a.xlsx", b"not a zip file")

    def test_read_from_disk(self, tmp_path):
        path = tmp_path / "leads.csv"
        path.write_text("Name\nAcme\n", encoding="utf-8")
        source = read_import_file(path)
        assert source.file_name == "leads.csv"
        assert source.preview == [["Acme"]]

    def test_missing_file(self, tmp_path):
        with pytest.raises(ImportValidationError, match="Could not read"):
            read_import_file(tmp_path / "nope.csv")


class TestSuggestMappings:
    def test_close_titles_map_to_existing(self):
        table = build_table()
        mappings = suggest_mappings(["会社名", "email", "Phone"], table.columns)
        assert mappings[0].action is ImportAction.EXISTING
        assert mappings[0].existing_column_id == "company_name"
        assert mappings[1].existing_column_id == "email"
        assert mappings[2].action is ImportAction.NEW
        assert mappings[2].new_column_name == "Phone"

    def test_each_column_used_once(self):
        table = build_table()
        mappings = suggest_mappings(["Email", "Email"], table.columns)
        assert mappings[0].action is ImportAction.EXISTING
        assert mappings[1].action is ImportAction.NEW


class TestApplyImport:
    def reuse_table(self):
        return build_table(
            [
                durable("r1", company_name="Acme", industry="Retail"),
                durable("r2", company_name="Globex", industry="Energy"),
            ]
            + [placeholder(f"tmp_{i}") for i in range(5)]
        )

    def test_reuses_empty_placeholders_first(self):
        table = self.reuse_table()
        source = ImportSource("a.csv", ["Name"], [["A"], ["B"], ["C"]])
        mappings = [
            ImportMapping("Name", ImportAction.EXISTING, existing_column_id="company_name")
        ]
        result = apply_import(table, source, mappings)

        rows = result.table.rows
        assert len(rows) == 7
        filled = [r for r in rows if has_data(r, result.table.columns)]
        assert len(filled) == 5
        assert [r for r in rows if not has_data(r, result.table.columns)] == rows[5:]
        assert result.reused_row_ids == ["tmp_0", "tmp_1", "tmp_2"]
        assert result.appended_row_ids == []
        assert rows[0].values == {"company_name": "Acme", "industry": "Retail"}
        assert rows[1].values == {"company_name": "Globex", "industry": "Energy"}

    def test_appends_when_placeholders_run_out(self):
        table = build_table([placeholder("tmp_0")])
        source = ImportSource("a.csv", ["Name"], [["A"], ["B"]])
        mappings = [
            ImportMapping("Name", ImportAction.EXISTING, existing_column_id="company_name")
        ]
        result = apply_import(table, source, mappings)
        assert result.reused_row_ids == ["tmp_0"]
        assert len(result.appended_row_ids) == 1
        assert result.table.rows[1].is_placeholder
        assert result.row_count == 2

    def test_new_columns_appended_and_typed(self):
        table = build_table([])
        source = ImportSource("a.csv", ["Name", "Employees", "Skip"], [["A", "120", "x"]])
        mappings = [
            ImportMapping("Name", ImportAction.EXISTING, existing_column_id="company_name"),
            ImportMapping(
                "Employees",
                ImportAction.NEW,
                new_column_name="従業員数",
                new_column_type=ColumnType.NUMBER,
            ),
            ImportMapping("Skip"),
        ]
        result = apply_import(table, source, mappings)
        new = result.new_columns[0]
        assert new.title == "従業員数"
        assert new.description == "従業員数"
        assert new.id.startswith("import_col_")
        assert result.table.columns[-1] == new
        assert new.order == len(result.table.columns) - 1
        row = result.table.rows[0]
        assert row.values == {"company_name": "A", new.id: 120}

    def test_short_rows_write_empty_strings(self):
        table = build_table([])
        source = ImportSource("a.csv", ["Name", "Email"], [["A"]])
        mappings = [
            ImportMapping("Name", ImportAction.EXISTING, existing_column_id="company_name"),
            ImportMapping("Email", ImportAction.EXISTING, existing_column_id="email"),
        ]
        result = apply_import(table, source, mappings)
        assert result.table.rows[0].values == {"company_name": "A", "email": ""}

    def test_nothing_mapped_is_rejected(self):
        table = self.reuse_table()
        source = ImportSource("a.csv", ["Name"], [["A"]])
        with pytest.raises(ImportValidationError, match="at least one column"):
            apply_import(table, source, [ImportMapping("Name")])

    def test_no_rows_is_rejected(self):
        with pytest.raises(ImportValidationError):
            apply_import(build_table([]), ImportSource("a.csv", ["Name"], []), [])
