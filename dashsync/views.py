"""
View projection: read-only shapes derived from cached state.

Pure functions, no side effects. Recomputed by SyncedState on every
replacement.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from .schema import (
    ADVANCE_TARGET,
    TOGGLE_TARGET,
    Board,
    ColumnId,
    Note,
    NoteCategory,
)


@dataclass(frozen=True)
class TaskRow:
    id: str
    content: str
    checked: bool
    can_advance: bool
    toggle_to: ColumnId
    advance_to: Optional[ColumnId] = None


@dataclass(frozen=True)
class ColumnView:
    id: ColumnId
    title: str
    label: str          # "To Do (3)"
    count: int
    rows: List[TaskRow] = field(default_factory=list)


@dataclass(frozen=True)
class BoardView:
    columns: List[ColumnView]

    def column(self, column_id: ColumnId) -> ColumnView:
        for col in self.columns:
            if col.id == column_id:
                return col
        raise KeyError(column_id)

    @property
    def total(self) -> int:
        return sum(col.count for col in self.columns)


@dataclass(frozen=True)
class NotesView:
    notes: List[Note]
    category: Optional[NoteCategory]
    counts: Dict[NoteCategory, int]
    total: int


def project_board(board: Board) -> BoardView:
    """Per-column labels and row affordances. The done column has no advance."""
    columns = []
    for cid in ColumnId:
        col = board.columns[cid]
        rows = [
            TaskRow(
                id=task.id,
                content=task.content,
                checked=cid is ColumnId.DONE,
                can_advance=cid in ADVANCE_TARGET,
                toggle_to=TOGGLE_TARGET[cid],
                advance_to=ADVANCE_TARGET.get(cid),
            )
            for task in col.tasks
        ]
        columns.append(ColumnView(
            id=cid,
            title=col.title,
            label=f"{col.title} ({len(col.tasks)})",
            count=len(col.tasks),
            rows=rows,
        ))
    return BoardView(columns=columns)


def filter_notes(notes: Sequence[Note], category: Optional[NoteCategory]) -> List[Note]:
    """Notes in category (all when None), in their original order."""
    if category is None:
        return list(notes)
    return [note for note in notes if note.category == category]


def project_notes(notes: Sequence[Note], category: Optional[NoteCategory] = None) -> NotesView:
    counts = {cat: 0 for cat in NoteCategory}
    for note in notes:
        counts[note.category] += 1
    return NotesView(
        notes=filter_notes(notes, category),
        category=category,
        counts=counts,
        total=len(notes),
    )
