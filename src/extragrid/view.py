"""Filtered and sorted views of a table.

A view has the same columns as its table and a subset of its rows in display
order. Selection ranges and paste positions are computed against the view.
"""

from __future__ import annotations

import functools
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

from extragrid.models import is_empty_value, value_to_text

if TYPE_CHECKING:
    from extragrid.models import CellValue, Row, Table

FilterOperator = Literal["contains", "equals", "greater", "less"]
SortDirection = Literal["asc", "desc"]

_LEADING_NUMBER_RE = re.compile(r"^\s*[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?")


@dataclass(frozen=True)
class Filter:
    column_id: str
    operator: FilterOperator
    value: str


@dataclass(frozen=True)
class SortState:
    column_id: str
    direction: SortDirection = "asc"


def _leading_number(text: str) -> float | None:
    match = _LEADING_NUMBER_RE.match(text)
    return float(match.group(0)) if match else None


def matches_filter(row: Row, flt: Filter) -> bool:
    """Case-insensitive match of one row against one filter.

    ``greater`` and ``less`` compare the leading number of both sides and
    never match when either side has none.
    """
    text = value_to_text(row.get(flt.column_id)).lower()
    wanted = flt.value.lower()
    if flt.operator == "contains":
        return wanted in text
    if flt.operator == "equals":
        return text == wanted
    left = _leading_number(text)
    right = _leading_number(wanted)
    if left is None or right is None:
        return False
    if flt.operator == "greater":
        return left > right
    return left < right


def apply_filters(rows: list[Row], filters: list[Filter]) -> list[Row]:
    """Rows matching every filter (AND), in their original order."""
    if not filters:
        return list(rows)
    return [row for row in rows if all(matches_filter(row, f) for f in filters)]


def _compare_values(a: CellValue, b: CellValue) -> int:
    if isinstance(a, (int, float)) and isinstance(b, (int, float)):
        return (a > b) - (a < b)
    left = value_to_text(a).lower()
    right = value_to_text(b).lower()
    return (left > right) - (left < right)


def _compare_rows(a: Row, b: Row, sorts: list[SortState]) -> int:
    for sort in sorts:
        left = a.get(sort.column_id)
        right = b.get(sort.column_id)
        if left == right or (is_empty_value(left) and is_empty_value(right)):
            continue
        # Empty values sort last in both directions.
        if is_empty_value(left):
            return 1
        if is_empty_value(right):
            return -1
        comparison = _compare_values(left, right)
        if comparison:
            return comparison if sort.direction == "asc" else -comparison
    return 0


def apply_sorts(rows: list[Row], sorts: list[SortState]) -> list[Row]:
    """Stable multi-column sort; earlier sorts take precedence."""
    if not sorts:
        return list(rows)
    return sorted(rows, key=functools.cmp_to_key(lambda a, b: _compare_rows(a, b, sorts)))


def add_sort(sorts: list[SortState], sort: SortState) -> list[SortState]:
    """Append ``sort``, replacing any existing sort on the same column."""
    return [s for s in sorts if s.column_id != sort.column_id] + [sort]


def build_view(
    table: Table,
    filters: list[Filter] | None = None,
    sorts: list[SortState] | None = None,
) -> Table:
    return table.with_rows(apply_sorts(apply_filters(table.rows, filters or []), sorts or []))
