"""In-place cell editing: text sessions, the tag dropdown, and the controller
that decides when an edit starts, commits or is cancelled.

A text session moves ``editing -> committed | cancelled`` exactly once; a
second commit/cancel (for instance blur racing an explicit Enter) is ignored.
Tag sessions have no cancel: every add/remove commits and closing commits
again.
"""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum
from typing import TYPE_CHECKING

from loguru import logger

from extragrid.models import ColumnType, TagOption, new_tag_id, value_to_text

if TYPE_CHECKING:
    from extragrid.grid import Grid
    from extragrid.models import CellValue, Column

CommitCallback = Callable[[str, str, "CellValue"], None]
OptionsCallback = Callable[[str, tuple[TagOption, ...]], None]

ENTER = "Enter"
ESCAPE = "Escape"

_TAG_COLORS = {
    "high": "green",
    "高": "green",
    "medium": "yellow",
    "中": "yellow",
    "low": "gray",
    "低": "gray",
    "uncontacted": "gray",
    "未連絡": "gray",
    "未接触": "gray",
    "contacting": "blue",
    "連絡中": "blue",
    "調査中": "blue",
    "contacted": "green",
    "連絡済み": "green",
    "excluded": "red",
    "除外候補": "red",
}
_TAG_PALETTE = ("blue", "indigo", "orange", "pink", "emerald", "purple", "cyan", "teal")


class EditState(Enum):
    VIEWING = "viewing"
    EDITING = "editing"
    COMMITTED = "committed"
    CANCELLED = "cancelled"


def default_tag_color(label: str) -> str:
    """Colour for a newly created tag option.

    Well-known fit/status labels get fixed colours; anything else is picked
    from a small palette by a stable hash of the label.
    """
    normalized = label.strip()
    known = _TAG_COLORS.get(normalized) or _TAG_COLORS.get(normalized.lower())
    if known:
        return known
    if not normalized:
        return "gray"
    return _TAG_PALETTE[sum(map(ord, normalized)) % len(_TAG_PALETTE)]


def is_seed_key(key: str) -> bool:
    """A single printable character starts an edit; named keys never do."""
    return len(key) == 1 and key.isprintable()


class TextCellEditor:
    """One free-text edit session."""

    def __init__(
        self,
        row_id: str,
        column_id: str,
        initial_value: str,
        on_commit: CommitCallback,
    ) -> None:
        self.row_id = row_id
        self.column_id = column_id
        self.value = initial_value
        self.state = EditState.EDITING
        self._composing = False
        self._on_commit = on_commit

    @property
    def is_active(self) -> bool:
        return self.state is EditState.EDITING

    def set_value(self, text: str) -> None:
        if self.is_active:
            self.value = text

    def start_composition(self) -> None:
        self._composing = True

    def end_composition(self) -> None:
        self._composing = False

    def handle_key(self, key: str, *, shift: bool = False) -> bool:
        """Handle a terminal key.

        Returns:
            True when the key ended the session
        """
        if not self.is_active:
            return False
        if key == ENTER and not shift and not self._composing:
            return self.commit()
        if key == ESCAPE:
            return self.cancel()
        return False

    def blur(self) -> bool:
        return self.commit()

    def commit(self) -> bool:
        """Commit the working value. Returns False if the session already ended."""
        if not self.is_active:
            return False
        self.state = EditState.COMMITTED
        self._on_commit(self.row_id, self.column_id, self.value)
        return True

    def cancel(self) -> bool:
        """Discard the working value. Returns False if the session already ended."""
        if not self.is_active:
            return False
        self.state = EditState.CANCELLED
        return True


class TagCellEditor:
    """The tag dropdown for one cell of a tag column."""

    def __init__(
        self,
        row_id: str,
        column: Column,
        initial_tags: tuple[str, ...] | list[str],
        on_commit: CommitCallback,
        on_options_change: OptionsCallback,
    ) -> None:
        self.row_id = row_id
        self.column_id = column.id
        self.tags: list[str] = list(initial_tags)
        self.options: list[TagOption] = list(column.options)
        self.is_open = True
        self._on_commit = on_commit
        self._on_options_change = on_options_change

    def add_tag(self, label: str) -> None:
        """Select ``label``, creating a new option if the column lacks one."""
        label = label.strip()
        if not self.is_open or not label or label in self.tags:
            return
        if not any(option.label == label for option in self.options):
            option = TagOption(id=new_tag_id(), label=label, color=default_tag_color(label))
            self.options.append(option)
            self._on_options_change(self.column_id, tuple(self.options))
        self.tags.append(label)
        self._commit()

    def remove_tag(self, label: str) -> None:
        if not self.is_open or label not in self.tags:
            return
        self.tags.remove(label)
        self._commit()

    def toggle_tag(self, label: str) -> None:
        if label in self.tags:
            self.remove_tag(label)
        else:
            self.add_tag(label)

    def close(self) -> None:
        """Close the dropdown, saving the working list once more."""
        if not self.is_open:
            return
        self._commit()
        self.is_open = False

    def _commit(self) -> None:
        self._on_commit(self.row_id, self.column_id, tuple(self.tags))


class EditController:
    """Owns the single active text session and the single open tag dropdown.

    Args:
        grid: The grid whose cells are edited; commits go through
            ``grid.set_cell`` and new tag options through
            ``grid.set_tag_options``.
    """

    def __init__(self, grid: Grid) -> None:
        self._grid = grid
        self.active: TextCellEditor | None = None
        self.tag_editor: TagCellEditor | None = None

    @property
    def is_editing(self) -> bool:
        return self.active is not None and self.active.is_active

    def begin_edit(
        self, row_id: str, column_id: str, seed: str | None = None
    ) -> TextCellEditor | TagCellEditor | None:
        """Start editing a cell (double activation, or a seeding keystroke).

        With ``seed`` the working value starts as that text, replacing the
        existing content. Tag columns open the tag dropdown instead.
        """
        table = self._grid.table
        row = table.find_row(row_id)
        column = table.find_column(column_id)
        if row is None or column is None:
            return None

        if self.is_editing:
            assert self.active is not None
            if (self.active.row_id, self.active.column_id) == (row_id, column_id):
                return self.active
            self.active.commit()
        self.active = None
        self._grid.selection.select_cell(row_id, column_id)

        if column.type is ColumnType.TAG:
            return self.open_tag_editor(row_id, column_id)

        initial = seed if seed is not None else value_to_text(row.get(column_id))
        self.active = TextCellEditor(row_id, column_id, initial, self._commit_value)
        return self.active

    def handle_keystroke(self, key: str, *, shift: bool = False) -> bool:
        """Route a keystroke; returns True when it was consumed."""
        if self.is_editing:
            assert self.active is not None
            ended = self.active.handle_key(key, shift=shift)
            if ended:
                self.active = None
            return ended

        if not is_seed_key(key):
            return False
        cells = self._grid.selection.cells
        if len(cells) != 1:
            return False
        ref = next(iter(cells))
        column = self._grid.table.find_column(ref.column_id)
        if column is None or column.type is ColumnType.TAG:
            return False
        return self.begin_edit(ref.row_id, ref.column_id, seed=key) is not None

    def select_cell(self, row_id: str, column_id: str) -> None:
        """Single-click a cell: commits an edit elsewhere, then selects."""
        if self.is_editing:
            assert self.active is not None
            if (self.active.row_id, self.active.column_id) != (row_id, column_id):
                self.active.commit()
                self.active = None
        if self.tag_editor is not None and (
            self.tag_editor.row_id,
            self.tag_editor.column_id,
        ) != (row_id, column_id):
            self.close_tag_editor()
        self._grid.selection.select_cell(row_id, column_id)

    def blur(self) -> None:
        if self.active is not None:
            self.active.blur()
            self.active = None

    def cancel(self) -> None:
        if self.active is not None:
            self.active.cancel()
            self.active = None

    def open_tag_editor(self, row_id: str, column_id: str) -> TagCellEditor | None:
        """Open the dropdown for a tag cell, closing any other one with save."""
        table = self._grid.table
        row = table.find_row(row_id)
        column = table.find_column(column_id)
        if row is None or column is None or column.type is not ColumnType.TAG:
            return None
        if self.tag_editor is not None:
            if (self.tag_editor.row_id, self.tag_editor.column_id) == (row_id, column_id):
                return self.tag_editor
            self.close_tag_editor()

        current = row.get(column_id)
        if isinstance(current, tuple):
            initial: tuple[str, ...] = current
        elif current:
            initial = (value_to_text(current),)
        else:
            initial = ()
        self.tag_editor = TagCellEditor(
            row_id,
            column,
            initial,
            self._commit_value,
            self._grid.set_tag_options,
        )
        return self.tag_editor

    def close_tag_editor(self) -> None:
        if self.tag_editor is not None:
            self.tag_editor.close()
            self.tag_editor = None

    def rename_row(self, old_id: str, new_id: str) -> None:
        if self.active is not None and self.active.row_id == old_id:
            self.active.row_id = new_id
        if self.tag_editor is not None and self.tag_editor.row_id == old_id:
            self.tag_editor.row_id = new_id

    def _commit_value(self, row_id: str, column_id: str, value: CellValue) -> None:
        logger.debug(f"Commit edit {row_id}/{column_id}")
        self._grid.set_cell(row_id, column_id, value)
