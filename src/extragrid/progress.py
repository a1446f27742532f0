"""Per-cell progress of enrichment and generation batches.

Entries are keyed by ``CellRef`` and live only in memory. A batch sets every
targeted cell of a row through the same phases together, and the whole map is
cleared a few seconds after the batch ends.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace
from enum import Enum
from typing import TYPE_CHECKING

from extragrid.models import CellRef

if TYPE_CHECKING:
    from extragrid.models import CellValue

DEFAULT_CLEAR_DELAY = 3.0


class EnrichmentPhase(Enum):
    DISCOVERY = "discovery"
    EXTRACTION = "extraction"
    FINANCIAL = "financial"
    COMPLETE = "complete"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (EnrichmentPhase.COMPLETE, EnrichmentPhase.ERROR)


class GenerationPhase(Enum):
    GENERATING_NAMES = "generating_names"
    ENRICHING_DETAILS = "enriching_details"
    COMPLETE = "complete"


@dataclass(frozen=True)
class EnrichmentResult:
    """Value discovered for one cell."""

    field: str
    value: CellValue
    confidence: str = "high"


@dataclass(frozen=True)
class CellProgress:
    row_id: str
    column_id: str
    phase: EnrichmentPhase
    result: EnrichmentResult | None = None
    error: str | None = None


@dataclass(frozen=True)
class GenerationProgress:
    """Batch-level status of a generation run."""

    phase: GenerationPhase
    current_row: int
    total_rows: int
    current_column: str | None = None
    row_id: str | None = None


class ProgressTracker:
    """Phase state machine for the cells of running batches.

    Listeners registered with ``add_listener`` are called after every change.
    """

    def __init__(self) -> None:
        self._entries: dict[CellRef, CellProgress] = {}
        self._listeners: list[Callable[[], None]] = []
        self._clear_handle: asyncio.TimerHandle | None = None
        self.generating_rows: set[str] = set()
        self.generation: GenerationProgress | None = None

    @property
    def entries(self) -> dict[CellRef, CellProgress]:
        return dict(self._entries)

    @property
    def is_running(self) -> bool:
        return any(not entry.phase.is_terminal for entry in self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, row_id: str, column_id: str) -> CellProgress | None:
        return self._entries.get(CellRef(row_id, column_id))

    def row_entries(self, row_id: str) -> list[CellProgress]:
        return [entry for ref, entry in self._entries.items() if ref.row_id == row_id]

    def add_listener(self, listener: Callable[[], None]) -> None:
        self._listeners.append(listener)

    def start_row(self, row_id: str, column_ids: Iterable[str]) -> None:
        """Put every targeted cell of ``row_id`` into ``discovery``."""
        self._cancel_pending_clear()
        for column_id in column_ids:
            self._entries[CellRef(row_id, column_id)] = CellProgress(
                row_id, column_id, EnrichmentPhase.DISCOVERY
            )
        self._notify()

    def advance_row(
        self, row_id: str, column_ids: Iterable[str], phase: EnrichmentPhase
    ) -> None:
        for column_id in column_ids:
            ref = CellRef(row_id, column_id)
            current = self._entries.get(ref)
            if current is None:
                self._entries[ref] = CellProgress(row_id, column_id, phase)
            else:
                self._entries[ref] = replace(current, phase=phase)
        self._notify()

    def complete_row(
        self,
        row_id: str,
        column_ids: Iterable[str],
        results: dict[str, EnrichmentResult] | None = None,
    ) -> None:
        """Mark cells complete, attaching a result where one was found."""
        results = results or {}
        for column_id in column_ids:
            self._entries[CellRef(row_id, column_id)] = CellProgress(
                row_id,
                column_id,
                EnrichmentPhase.COMPLETE,
                result=results.get(column_id),
            )
        self._notify()

    def fail_row(self, row_id: str, column_ids: Iterable[str], error: str) -> None:
        for column_id in column_ids:
            self._entries[CellRef(row_id, column_id)] = CellProgress(
                row_id, column_id, EnrichmentPhase.ERROR, error=error
            )
        self._notify()

    def set_generation(self, progress: GenerationProgress | None) -> None:
        self.generation = progress
        self._notify()

    def clear(self) -> None:
        self._cancel_pending_clear()
        self._entries = {}
        self.generating_rows = set()
        self.generation = None
        self._notify()

    def schedule_clear(self, delay: float = DEFAULT_CLEAR_DELAY) -> asyncio.TimerHandle:
        """Clear everything after ``delay`` seconds on the running loop."""
        self._cancel_pending_clear()
        loop = asyncio.get_running_loop()
        self._clear_handle = loop.call_later(delay, self.clear)
        return self._clear_handle

    def rename_row(self, old_id: str, new_id: str) -> None:
        """Re-key every entry of ``old_id`` to ``new_id``."""
        renamed: dict[CellRef, CellProgress] = {}
        for ref, entry in self._entries.items():
            if ref.row_id == old_id:
                renamed[CellRef(new_id, ref.column_id)] = replace(entry, row_id=new_id)
            else:
                renamed[ref] = entry
        self._entries = renamed
        if old_id in self.generating_rows:
            self.generating_rows.discard(old_id)
            self.generating_rows.add(new_id)
        if self.generation is not None and self.generation.row_id == old_id:
            self.generation = replace(self.generation, row_id=new_id)

    def _cancel_pending_clear(self) -> None:
        if self._clear_handle is not None:
            self._clear_handle.cancel()
            self._clear_handle = None

    def _notify(self) -> None:
        for listener in self._listeners:
            listener()
