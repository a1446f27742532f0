"""extragrid - Spreadsheet-like tables kept in sync with a remote store.

An optimistic, in-memory grid with selection, formulas, clipboard, file
import and AI enrichment, whose every change is diffed against the last
synchronized state and written back to the store.
"""

__version__ = "0.1.0"

from extragrid.client import GridClient
from extragrid.exceptions import (
    APIError,
    AuthenticationError,
    EnrichmentError,
    ExtraGridError,
    ImportValidationError,
    InvalidCellValueError,
    NotFoundError,
    TransportError,
    ValidationError,
)
from extragrid.formula import display_value, evaluate_formula
from extragrid.grid import Grid
from extragrid.models import CellRef, Column, ColumnType, Row, RowOrigin, Table, TagOption
from extragrid.sync import ChangeSet, SyncEngine, compute_changes
from extragrid.transport import InMemoryTransport, SupabaseTransport, TableStore
from extragrid.view import Filter, SortState, build_view

__all__ = [
    "APIError",
    "AuthenticationError",
    "CellRef",
    "ChangeSet",
    "Column",
    "ColumnType",
    "EnrichmentError",
    "ExtraGridError",
    "Filter",
    "Grid",
    "GridClient",
    "ImportValidationError",
    "InMemoryTransport",
    "InvalidCellValueError",
    "NotFoundError",
    "Row",
    "RowOrigin",
    "SortState",
    "SupabaseTransport",
    "SyncEngine",
    "Table",
    "TableStore",
    "TagOption",
    "TransportError",
    "ValidationError",
    "__version__",
    "build_view",
    "compute_changes",
    "display_value",
    "evaluate_formula",
]
