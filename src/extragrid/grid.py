"""The grid: one table plus everything that acts on it.

Every mutation goes through ``Grid.update``, which accepts either a full
replacement table or a function from the current table to the new one. The
function form is what async callbacks must use: it runs against the table as
it is at that moment, addressing rows and columns by id.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable
from dataclasses import replace
from typing import TYPE_CHECKING, Any

from loguru import logger

from extragrid.clipboard import apply_writes, copy_cells, paste_targets
from extragrid.editing import EditController
from extragrid.importer import apply_import
from extragrid.models import (
    DEFAULT_MIN_COLUMNS,
    DEFAULT_MIN_ROWS,
    CellRef,
    Column,
    ColumnType,
    Row,
    RowOrigin,
    Table,
    coerce_value,
    column_letter,
    new_column_id,
    pad_columns,
    pad_rows,
    reindex_columns,
)
from extragrid.progress import ProgressTracker
from extragrid.selection import SelectionModel
from extragrid.sync import SyncEngine

if TYPE_CHECKING:
    from extragrid.importer import ImportMapping, ImportResult, ImportSource
    from extragrid.models import CellValue, TagOption
    from extragrid.transport import TableStore

TableUpdate = Table | Callable[[Table], Table]


class Grid:
    """Interactive grid state.

    Args:
        table: Initial table
        store: Table store to keep in sync; None for a purely local grid
        on_error: Called with a user-facing message whenever something fails
        sync: Set False to keep a store reference without syncing
        snapshot: Last synchronized state; defaults to ``table``
    """

    def __init__(
        self,
        table: Table,
        store: TableStore | None = None,
        *,
        on_error: Callable[[str], None] | None = None,
        sync: bool = True,
        snapshot: Table | None = None,
    ) -> None:
        self._table = table
        self._store = store
        self._on_error = on_error
        self._listeners: list[Callable[[Table], None]] = []
        self._aliases: dict[str, str] = {}
        self.errors: list[str] = []
        self.selection = SelectionModel()
        self.progress = ProgressTracker()
        self.editor = EditController(self)
        self.engine: SyncEngine | None = None
        if store is not None and sync:
            self.engine = SyncEngine(
                store,
                table.id,
                snapshot if snapshot is not None else table,
                on_promote=self.rename_row,
                on_error=self.report_error,
            )

    @property
    def table(self) -> Table:
        return self._table

    def add_listener(self, listener: Callable[[Table], None]) -> None:
        self._listeners.append(listener)

    def update(self, table_or_fn: TableUpdate) -> Table:
        """Replace the table and schedule a sync pass.

        Args:
            table_or_fn: New table, or a function of the current table

        Returns:
            The new current table
        """
        new_table = table_or_fn(self._table) if callable(table_or_fn) else table_or_fn
        self._table = new_table
        self.selection.prune(new_table)
        self._notify()
        self._schedule_sync()
        return new_table

    async def flush(self) -> None:
        """Run a sync pass over the latest table and wait for all pending work."""
        if self.engine is None:
            return
        self.engine.schedule(lambda: self._table)
        await self.engine.flush()

    # --- identity -------------------------------------------------------------

    def rename_row(self, old_id: str, new_id: str) -> None:
        """Replace a row id everywhere it is referenced, in one step.

        Used when a placeholder row is promoted to its durable id. The row list,
        both selection sets, the anchor, progress keys and open editors are all
        rewritten before this returns.
        """
        if old_id == new_id:
            return
        self._aliases[old_id] = new_id
        self._table = self._table.with_rows(
            [
                Row(id=new_id, values=row.values, origin=RowOrigin.DURABLE)
                if row.id == old_id
                else row
                for row in self._table.rows
            ]
        )
        self.selection.rename_row(old_id, new_id)
        self.progress.rename_row(old_id, new_id)
        self.editor.rename_row(old_id, new_id)
        self._notify()

    def resolve_row_id(self, row_id: str) -> str:
        """Follow promotions from an id captured earlier to the current one."""
        seen = {row_id}
        while row_id in self._aliases:
            row_id = self._aliases[row_id]
            if row_id in seen:
                break
            seen.add(row_id)
        return row_id

    def report_error(self, message: str) -> None:
        self.errors.append(message)
        if self._on_error is not None:
            self._on_error(message)

    # --- cells ----------------------------------------------------------------

    def set_cell(
        self, row_id: str, column_id: str, raw: Any, *, strict: bool = False
    ) -> None:
        """Write one cell, coerced to its column type.

        Raises:
            InvalidCellValueError: If ``strict`` and the value does not fit
        """
        column = self._table.find_column(column_id)
        if column is None:
            return
        value = coerce_value(column, raw, strict=strict)
        row_id = self.resolve_row_id(row_id)
        self.update(lambda t: apply_writes(t, [(CellRef(row_id, column_id), value)]))

    def clear_cells(self, cells: Iterable[CellRef]) -> int:
        writes: list[tuple[CellRef, CellValue]] = [
            (CellRef(self.resolve_row_id(ref.row_id), ref.column_id), "") for ref in cells
        ]
        if writes:
            self.update(lambda t: apply_writes(t, writes))
        return len(writes)

    def delete_selection(self) -> int:
        """Delete selected rows, or clear selected cells when no row is selected."""
        if self.selection.rows:
            row_ids = list(self.selection.rows)
            self.selection.rows = set()
            self.selection.clear_cells()
            return self.delete_rows(row_ids)
        if self.selection.cells:
            return self.clear_cells(list(self.selection.cells))
        return 0

    def copy(self, view: Table | None = None) -> str:
        """Copy the selected cells, ordered as in ``view`` when given."""
        return copy_cells(view or self._table, self.selection.cells)

    def paste(self, text: str, view: Table | None = None) -> int:
        """Paste at the first selected cell of ``view`` (or the table).

        Returns:
            Number of cells written
        """
        base = view or self._table
        anchor = self.selection.first_selected_cell(base)
        if anchor is None:
            return 0
        writes = paste_targets(base, anchor, text)
        if writes:
            self.update(lambda t: apply_writes(t, writes))
        return len(writes)

    def import_rows(self, source: ImportSource, mappings: list[ImportMapping]) -> ImportResult:
        """Merge an import source into the table.

        Raises:
            ImportValidationError: Before any change, if the import is invalid
        """
        result = apply_import(self._table, source, mappings)
        self.update(result.table)
        return result

    # --- rows -----------------------------------------------------------------

    def add_empty_row(self, index: int | None = None) -> Row:
        row = Row.placeholder()

        def insert(t: Table) -> Table:
            rows = list(t.rows)
            rows.insert(len(rows) if index is None else index, row)
            return t.with_rows(rows)

        self.update(insert)
        return row

    def delete_rows(self, row_ids: Iterable[str]) -> int:
        doomed = {self.resolve_row_id(row_id) for row_id in row_ids}
        count = sum(1 for row in self._table.rows if row.id in doomed)
        if count:
            self.update(lambda t: t.with_rows([r for r in t.rows if r.id not in doomed]))
        return count

    def ensure_padding(
        self, min_rows: int = DEFAULT_MIN_ROWS, min_columns: int = DEFAULT_MIN_COLUMNS
    ) -> None:
        """Pad with placeholder rows and auto-named columns up to the minimums."""
        padded = pad_columns(pad_rows(self._table, min_rows), min_columns)
        if padded is not self._table:
            self.update(lambda t: pad_columns(pad_rows(t, min_rows), min_columns))

    # --- columns --------------------------------------------------------------

    def add_column(
        self,
        title: str | None = None,
        type: ColumnType = ColumnType.TEXT,
        index: int | None = None,
        description: str = "",
    ) -> Column:
        """Insert a column (at the end by default) and re-rank column order."""
        position = len(self._table.columns) if index is None else index
        column = Column(
            id=new_column_id(),
            title=title or f"Column {column_letter(len(self._table.columns))}",
            type=type,
            description=description,
            order=position,
        )

        def insert(t: Table) -> Table:
            columns = list(t.columns)
            columns.insert(min(position, len(columns)), column)
            return t.with_columns(reindex_columns(columns))

        self.update(insert)
        logger.debug(f"Added column {column.id} at {position}")
        return column

    def update_column(self, column_id: str, **changes: Any) -> Column | None:
        """Change column attributes (title, type, description, text_overflow, ...)."""
        column = self._table.find_column(column_id)
        if column is None:
            return None
        updated = replace(column, **changes)
        self.update(
            lambda t: t.with_columns(
                reindex_columns([updated if c.id == column_id else c for c in t.columns])
            )
        )
        return updated

    def delete_column(self, column_id: str) -> bool:
        """Remove a column and its values from every row."""
        if self._table.find_column(column_id) is None:
            return False

        def remove(t: Table) -> Table:
            columns = reindex_columns([c for c in t.columns if c.id != column_id])
            rows = [
                Row(
                    id=r.id,
                    values={k: v for k, v in r.values.items() if k != column_id},
                    origin=r.origin,
                )
                if column_id in r.values
                else r
                for r in t.rows
            ]
            return t.with_columns(columns).with_rows(rows)

        self.update(remove)
        return True

    def set_tag_options(self, column_id: str, options: tuple[TagOption, ...]) -> None:
        self.update_column(column_id, options=tuple(options))

    # --- internals ------------------------------------------------------------

    def _notify(self) -> None:
        for listener in self._listeners:
            listener(self._table)

    def _schedule_sync(self) -> None:
        if self.engine is None:
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            # No running loop: the next flush() syncs.
            return
        self.engine.schedule(lambda: self._table)

