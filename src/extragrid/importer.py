"""Import external tabular files into a table.

Reading (xlsx via openpyxl, csv via the csv module) produces an
``ImportSource``; the caller then chooses a per-header ``ImportMapping`` and
``apply_import`` merges the body rows into the table, reusing empty
placeholder rows before appending new ones.

Every validation failure raises ``ImportValidationError`` before anything is
mutated.
"""

from __future__ import annotations

import csv
import difflib
import io
import zipfile
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from loguru import logger
from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from extragrid.exceptions import ImportValidationError
from extragrid.models import (
    Column,
    ColumnType,
    Row,
    coerce_value,
    new_column_id,
    reindex_columns,
    value_to_text,
)

if TYPE_CHECKING:
    from extragrid.models import Table

MAX_FILE_SIZE_BYTES = 5 * 1024 * 1024
MAX_IMPORT_ROWS = 500
PREVIEW_ROWS = 10
SUPPORTED_EXTENSIONS = frozenset({"xlsx", "csv"})

SUGGESTION_CUTOFF = 0.6


class ImportAction(Enum):
    EXISTING = "existing"
    NEW = "new"
    IGNORE = "ignore"


@dataclass(frozen=True)
class ImportSource:
    """Parsed header row and non-blank body rows of an import file."""

    file_name: str
    headers: list[str]
    body_rows: list[list[Any]]

    @property
    def preview(self) -> list[list[Any]]:
        return self.body_rows[:PREVIEW_ROWS]


@dataclass(frozen=True)
class ImportMapping:
    """What to do with one source column."""

    source_header: str
    action: ImportAction = ImportAction.IGNORE
    existing_column_id: str | None = None
    new_column_name: str | None = None
    new_column_type: ColumnType = ColumnType.TEXT


@dataclass
class ImportResult:
    """Outcome of ``apply_import``."""

    table: Table
    new_columns: list[Column] = field(default_factory=list)
    reused_row_ids: list[str] = field(default_factory=list)
    appended_row_ids: list[str] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.reused_row_ids) + len(self.appended_row_ids)


def read_import_file(
    path: Path | str,
    *,
    max_file_bytes: int = MAX_FILE_SIZE_BYTES,
    max_rows: int = MAX_IMPORT_ROWS,
) -> ImportSource:
    """Read an xlsx or csv file from disk.

    Raises:
        ImportValidationError: If the file is missing, unsupported, too large,
            empty or unparseable
    """
    path = Path(path)
    _check_extension(path.name)
    try:
        size = path.stat().st_size
    except OSError as e:
        raise ImportValidationError(f"Could not read file: {e}", path.name) from e
    if size > max_file_bytes:
        raise ImportValidationError(_too_large_message(max_file_bytes), path.name)
    return parse_import_bytes(
        path.name, path.read_bytes(), max_file_bytes=max_file_bytes, max_rows=max_rows
    )


def parse_import_bytes(
    file_name: str,
    data: bytes,
    *,
    max_file_bytes: int = MAX_FILE_SIZE_BYTES,
    max_rows: int = MAX_IMPORT_ROWS,
) -> ImportSource:
    """Parse the first sheet of an xlsx file, or a csv file, from bytes.

    Blank headers become ``Column <n>`` and body rows with no non-blank cell
    are dropped. More than ``max_rows`` body rows is rejected outright.

    Raises:
        ImportValidationError: On any validation or parse failure
    """
    extension = _check_extension(file_name)
    if len(data) > max_file_bytes:
        raise ImportValidationError(_too_large_message(max_file_bytes), file_name)

    if extension == "xlsx":
        sheet = _read_xlsx(file_name, data)
    else:
        sheet = _read_csv(file_name, data)

    if not sheet:
        raise ImportValidationError("No data found in file", file_name)

    headers = [_cell_text(cell).strip() or f"Column {i + 1}" for i, cell in enumerate(sheet[0])]
    body_rows = [list(row) for row in sheet[1:] if any(_cell_text(c).strip() for c in row)]
    if not body_rows:
        raise ImportValidationError("No data rows found in file", file_name)
    if len(body_rows) > max_rows:
        raise ImportValidationError(
            f"Too many rows: {len(body_rows)} (maximum is {max_rows})", file_name
        )

    logger.info(f"Parsed {file_name}: {len(headers)} columns, {len(body_rows)} rows")
    return ImportSource(file_name=file_name, headers=headers, body_rows=body_rows)


def suggest_mappings(headers: list[str], columns: list[Column]) -> list[ImportMapping]:
    """Propose a mapping per header.

    Headers that closely match an unused existing column title map onto it;
    everything else is proposed as a new text column of the same name.
    """
    remaining = {column.title.strip().lower(): column for column in reversed(columns)}
    mappings: list[ImportMapping] = []
    for header in headers:
        key = header.strip().lower()
        match = difflib.get_close_matches(key, list(remaining), n=1, cutoff=SUGGESTION_CUTOFF)
        if match:
            column = remaining.pop(match[0])
            mappings.append(
                ImportMapping(
                    source_header=header,
                    action=ImportAction.EXISTING,
                    existing_column_id=column.id,
                )
            )
        else:
            mappings.append(
                ImportMapping(
                    source_header=header,
                    action=ImportAction.NEW,
                    new_column_name=header,
                )
            )
    return mappings


def apply_import(
    table: Table, source: ImportSource, mappings: list[ImportMapping]
) -> ImportResult:
    """Merge ``source`` into ``table`` according to ``mappings``.

    ``mappings[i]`` describes ``source.headers[i]``. New columns are appended
    after the existing ones. Each body row is written into the next
    placeholder row that is empty in every pre-existing column, in table
    order; once those run out, new placeholder rows are appended. Only mapped
    columns are written.

    Raises:
        ImportValidationError: If there are no rows or no usable mapping
    """
    if not source.body_rows:
        raise ImportValidationError("There is no data to import", source.file_name)

    existing_columns = list(table.columns)
    existing_ids = {column.id for column in existing_columns}
    targets: dict[int, Column] = {}
    new_columns: list[Column] = []

    for index, mapping in enumerate(mappings):
        if mapping.action is ImportAction.EXISTING:
            if mapping.existing_column_id in existing_ids:
                column = table.find_column(mapping.existing_column_id)  # type: ignore[arg-type]
                assert column is not None
                targets[index] = column
        elif mapping.action is ImportAction.NEW:
            name = (mapping.new_column_name or mapping.source_header or "").strip()
            if not name:
                continue
            column = Column(
                id=new_column_id("import_col"),
                title=name,
                type=mapping.new_column_type,
                description=name,
                order=len(existing_columns) + len(new_columns),
            )
            new_columns.append(column)
            targets[index] = column

    if not targets:
        raise ImportValidationError("Map at least one column to import", source.file_name)

    rows = list(table.rows)
    reusable = [
        i
        for i, row in enumerate(rows)
        if row.is_placeholder
        and all(_is_blank(row.get(column.id)) for column in existing_columns)
    ]

    reused: list[str] = []
    appended: list[str] = []
    for n, body_row in enumerate(source.body_rows):
        updates = {
            column.id: _import_value(column, body_row[index] if index < len(body_row) else None)
            for index, column in targets.items()
        }
        if n < len(reusable):
            i = reusable[n]
            rows[i] = rows[i].with_values(updates)
            reused.append(rows[i].id)
        else:
            row = Row.placeholder(updates)
            rows.append(row)
            appended.append(row.id)

    columns = reindex_columns(existing_columns + new_columns)
    logger.info(
        f"Import into {table.id}: {len(reused)} reused rows, {len(appended)} new rows, "
        f"{len(new_columns)} new columns"
    )
    return ImportResult(
        table=table.with_columns(columns).with_rows(rows),
        new_columns=new_columns,
        reused_row_ids=reused,
        appended_row_ids=appended,
    )


def _check_extension(file_name: str) -> str:
    extension = file_name.rsplit(".", 1)[-1].lower() if "." in file_name else ""
    if extension not in SUPPORTED_EXTENSIONS:
        raise ImportValidationError(
            "Unsupported file type. Choose an xlsx or csv file.", file_name
        )
    return extension


def _too_large_message(max_file_bytes: int) -> str:
    return f"File is too large. Choose a file of {max_file_bytes // (1024 * 1024)}MB or less."


def _read_xlsx(file_name: str, data: bytes) -> list[tuple[Any, ...]]:
    try:
        workbook = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, ValueError, OSError) as e:
        logger.warning(f"Failed to parse {file_name}: {e}")
        raise ImportValidationError(
            "Could not parse the file. Check that it is a valid xlsx or csv file.",
            file_name,
        ) from e
    try:
        if not workbook.sheetnames:
            raise ImportValidationError("No sheet found in file", file_name)
        sheet = workbook[workbook.sheetnames[0]]
        return [tuple(row) for row in sheet.iter_rows(values_only=True)]
    finally:
        workbook.close()


def _read_csv(file_name: str, data: bytes) -> list[tuple[Any, ...]]:
    try:
        text = data.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise ImportValidationError("Could not decode the file as UTF-8", file_name) from e
    try:
        return [tuple(row) for row in csv.reader(io.StringIO(text))]
    except csv.Error as e:
        raise ImportValidationError(f"Could not parse the file: {e}", file_name) from e


def _cell_text(cell: Any) -> str:
    return "" if cell is None else value_to_text(cell)


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, tuple):
        return len(value) == 0
    return value_to_text(value).strip() == ""


def _import_value(column: Column, raw: Any) -> Any:
    if raw is None:
        return ""
    return coerce_value(column, raw)
