"""Change-diff and sync engine.

``compute_changes`` compares the last synchronized table (the snapshot)
against the current one and returns the minimal set of store operations.
``SyncEngine`` owns the snapshot, serializes passes with an ``asyncio.Lock``,
applies each operation independently, and promotes placeholder rows to the
ids the store assigns.

Failures are logged and reported; nothing is rolled back locally. The
snapshot keeps the previous state for every failed entry, so the next pass
tries again.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

from loguru import logger

from extragrid.exceptions import ExtraGridError
from extragrid.models import (
    Row,
    RowOrigin,
    column_to_dict,
    has_data,
    is_empty_value,
    values_to_json,
)

if TYPE_CHECKING:
    from extragrid.models import CellValue, Column, Table
    from extragrid.transport import TableStore

PromoteCallback = Callable[[str, str], None]
ErrorCallback = Callable[[str], None]


@dataclass
class ColumnsReplace:
    """Replace the whole ordered column list."""

    columns: list[Column]


@dataclass
class RowDelete:
    row_id: str


@dataclass
class RowCreate:
    """Create a row from a placeholder that now holds data."""

    row_id: str  # placeholder id
    values: dict[str, CellValue]
    index: int = 0  # position in the current table


@dataclass
class RowUpdate:
    """Partial update of a durable row: only the changed columns."""

    row_id: str
    values: dict[str, CellValue]
    index: int = 0


@dataclass
class ChangeSet:
    """Operations needed to bring the store from the snapshot to the current table."""

    columns: ColumnsReplace | None = None
    deletes: list[RowDelete] = field(default_factory=list)
    creates: list[RowCreate] = field(default_factory=list)
    updates: list[RowUpdate] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.columns or self.deletes or self.creates or self.updates)

    @property
    def row_writes(self) -> list[RowCreate | RowUpdate]:
        """Creates and updates in current row order."""
        writes: list[RowCreate | RowUpdate] = [*self.creates, *self.updates]
        writes.sort(key=lambda op: op.index)
        return writes

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready form, used for dry runs."""
        return {
            "columns": [column_to_dict(c) for c in self.columns.columns]
            if self.columns
            else None,
            "deletes": [op.row_id for op in self.deletes],
            "creates": [
                {"row_id": op.row_id, "index": op.index, "data": values_to_json(op.values)}
                for op in self.creates
            ],
            "updates": [
                {"row_id": op.row_id, "index": op.index, "data": values_to_json(op.values)}
                for op in self.updates
            ],
        }


@dataclass
class SyncFailure:
    operation: Literal["columns", "delete", "create", "update"]
    row_id: str | None
    error: str


@dataclass
class SyncReport:
    """Outcome of one sync pass."""

    applied: int = 0
    failures: list[SyncFailure] = field(default_factory=list)
    promoted: dict[str, str] = field(default_factory=dict)  # placeholder -> durable

    @property
    def ok(self) -> bool:
        return not self.failures


def cell_changed(
    old_values: dict[str, CellValue],
    new_values: dict[str, CellValue],
    column_id: str,
) -> bool:
    """Whether one cell differs between two rows.

    ``None``, ``""`` and an empty tag list compare equal, except that a key
    absent from the old row and present in the new one (with any value, even
    ``""``) always counts as a change.
    """
    if column_id not in old_values and column_id in new_values:
        return True
    old = old_values.get(column_id)
    new = new_values.get(column_id)
    if is_empty_value(old) and is_empty_value(new):
        return False
    return old != new


def row_changed(old: Row, new: Row, columns: list[Column]) -> bool:
    return any(cell_changed(old.values, new.values, c.id) for c in columns)


def compute_changes(snapshot: Table, current: Table) -> ChangeSet:
    """Diff ``current`` against ``snapshot``.

    Rules:
        - Any difference in the ordered column list replaces all columns.
        - Durable rows missing from ``current`` are deleted; placeholders are
          never deleted remotely.
        - A placeholder is created when it is new or changed and holds data.
        - A changed durable row gets a partial update of its changed columns.
        - Durable rows the snapshot has never seen are left alone.
    """
    changes = ChangeSet()
    if snapshot.columns != current.columns:
        changes.columns = ColumnsReplace(columns=list(current.columns))

    current_ids = {row.id for row in current.rows}
    for row in snapshot.rows:
        if row.id not in current_ids and not row.is_placeholder:
            changes.deletes.append(RowDelete(row_id=row.id))

    old_by_id = {row.id: row for row in snapshot.rows}
    for index, row in enumerate(current.rows):
        old = old_by_id.get(row.id)
        if row.is_placeholder:
            if old is not None and not row_changed(old, row, current.columns):
                continue
            if has_data(row, current.columns):
                changes.creates.append(
                    RowCreate(row_id=row.id, values=dict(row.values), index=index)
                )
            continue

        if old is None:
            continue
        changed = [
            c.id for c in current.columns if cell_changed(old.values, row.values, c.id)
        ]
        if changed:
            changes.updates.append(
                RowUpdate(
                    row_id=row.id,
                    values={cid: row.get(cid) for cid in changed},
                    index=index,
                )
            )
    return changes


class SyncEngine:
    """Keeps a table store in step with an optimistic local table.

    The snapshot is only ever read or written inside a pass, and passes run
    one at a time.

    Args:
        store: Persistence collaborator
        table_id: Remote table id
        snapshot: Last synchronized state (deep-copied)
        on_promote: Called with ``(placeholder_id, durable_id)`` right after a
            create succeeds
        on_error: Called with a user-facing message for every failure
    """

    def __init__(
        self,
        store: TableStore,
        table_id: str,
        snapshot: Table,
        on_promote: PromoteCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> None:
        self._store = store
        self._table_id = table_id
        self._snapshot = snapshot.copy()
        self._on_promote = on_promote
        self._on_error = on_error
        self._lock = asyncio.Lock()
        self._worker: asyncio.Task[None] | None = None
        self._dirty = False
        self._get_current: Callable[[], Table] | None = None

    @property
    def snapshot(self) -> Table:
        return self._snapshot.copy()

    @property
    def is_busy(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def schedule(self, get_current: Callable[[], Table]) -> asyncio.Task[None]:
        """Request a pass over the latest table.

        Requests made while a pass is running coalesce into one more pass,
        which reads ``get_current()`` when it starts.
        """
        self._get_current = get_current
        self._dirty = True
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._run())
        return self._worker

    async def flush(self) -> None:
        """Wait until no pass is running or pending."""
        while self._worker is not None and not self._worker.done():
            await self._worker

    async def sync(self, current: Table) -> SyncReport:
        """Run one pass against ``current``."""
        async with self._lock:
            return await self._sync_locked(current.copy())

    async def _run(self) -> None:
        while self._dirty and self._get_current is not None:
            self._dirty = False
            try:
                await self.sync(self._get_current())
            except Exception as e:
                logger.exception(f"Sync pass for table {self._table_id} crashed")
                self._report(f"Sync failed: {e}")

    async def _sync_locked(self, current: Table) -> SyncReport:
        report = SyncReport()
        changes = compute_changes(self._snapshot, current)
        if not changes.has_changes:
            self._snapshot = current
            return report

        logger.debug(
            f"Sync {self._table_id}: columns={changes.columns is not None} "
            f"deletes={len(changes.deletes)} creates={len(changes.creates)} "
            f"updates={len(changes.updates)}"
        )

        # Operations stay pending until the store confirms them.
        columns_ok = changes.columns is None
        pending_deletes = {op.row_id for op in changes.deletes}
        pending_rows = {op.row_id for op in changes.row_writes}
        try:
            if changes.columns is not None:
                try:
                    await self._store.update_table(self._table_id, changes.columns.columns)
                    columns_ok = True
                    report.applied += 1
                except Exception as e:
                    self._fail(report, "columns", None, e)

            if changes.deletes:
                results = await asyncio.gather(
                    *(self._store.delete_row(op.row_id) for op in changes.deletes),
                    return_exceptions=True,
                )
                for op, result in zip(changes.deletes, results, strict=True):
                    if isinstance(result, Exception):
                        self._fail(report, "delete", op.row_id, result)
                    elif isinstance(result, BaseException):
                        raise result
                    else:
                        pending_deletes.discard(op.row_id)
                        report.applied += 1

            for op in changes.row_writes:
                if isinstance(op, RowCreate):
                    try:
                        created = await self._store.create_row(self._table_id, op.values)
                    except Exception as e:
                        self._fail(report, "create", op.row_id, e)
                        continue
                    pending_rows.discard(op.row_id)
                    report.applied += 1
                    report.promoted[op.row_id] = created.id
                    logger.info(f"Promoted row {op.row_id} -> {created.id}")
                    if self._on_promote is not None:
                        self._on_promote(op.row_id, created.id)
                else:
                    try:
                        await self._store.update_row(op.row_id, op.values)
                    except Exception as e:
                        self._fail(report, "update", op.row_id, e)
                        continue
                    pending_rows.discard(op.row_id)
                    report.applied += 1
        finally:
            self._snapshot = self._rebuild_snapshot(
                current, columns_ok, pending_deletes, pending_rows, report.promoted
            )
        return report

    def _rebuild_snapshot(
        self,
        current: Table,
        columns_ok: bool,
        unsent_deletes: set[str],
        unsent_rows: set[str],
        promoted: dict[str, str],
    ) -> Table:
        old_by_id = {row.id: row for row in self._snapshot.rows}
        rows: list[Row] = []
        for row in current.rows:
            if row.id in promoted:
                rows.append(
                    Row(id=promoted[row.id], values=dict(row.values), origin=RowOrigin.DURABLE)
                )
            elif row.id in unsent_rows:
                old = old_by_id.get(row.id)
                if old is not None:
                    rows.append(old.copy())
            else:
                rows.append(row.copy())
        rows.extend(old_by_id[row_id].copy() for row_id in unsent_deletes)

        snapshot = current.with_rows(rows)
        if not columns_ok:
            snapshot = snapshot.with_columns(list(self._snapshot.columns))
        return snapshot

    def _fail(
        self,
        report: SyncReport,
        operation: Literal["columns", "delete", "create", "update"],
        row_id: str | None,
        error: Exception,
    ) -> None:
        target = f" row {row_id}" if row_id else ""
        message = f"Failed to {operation}{target} in table {self._table_id}: {error}"
        if isinstance(error, ExtraGridError):
            logger.error(message)
        else:
            logger.opt(exception=error).error(message)
        report.failures.append(SyncFailure(operation=operation, row_id=row_id, error=str(error)))
        self._report(f"Failed to save changes ({operation}{target}): {error}")

    def _report(self, message: str) -> None:
        if self._on_error is not None:
            self._on_error(message)
