"""
Local state cache: the reconciled in-memory board and notes for one user.

Mutated from exactly two places, the dispatcher (optimistic updates) and
the reconciler (snapshots), both on the event loop thread. Replacement is
always whole-aggregate.
"""
import logging
from typing import Callable, Dict, List, Optional, Sequence

from .schema import Board, Note, NoteCategory
from .views import BoardView, NotesView, project_board, project_notes

logger = logging.getLogger(__name__)

BOARD = "board"
NOTES = "notes"


class SyncedState:
    """Owned holder of the board, the notes and their derived views."""

    def __init__(self):
        self.subscribers: List[Callable] = []
        self.category_filter: Optional[NoteCategory] = None
        self.reset()

    def reset(self) -> None:
        """Back to the signed-out shape: default board, no notes, loading."""
        self._board = Board.default()
        self._notes: List[Note] = []
        self.board_loading = True
        self.notes_loading = True
        self.board_view: BoardView = project_board(self._board)
        self.notes_view: NotesView = project_notes(self._notes, self.category_filter)

    # ── listeners ──

    def subscribe(self, callback: Callable[[str, "SyncedState"], None]) -> Callable[[], None]:
        """Register callback(aggregate, state); returns an unsubscribe function."""
        self.subscribers.append(callback)

        def unsubscribe():
            if callback in self.subscribers:
                self.subscribers.remove(callback)
        return unsubscribe

    def _emit(self, aggregate: str) -> None:
        for callback in list(self.subscribers):
            try:
                callback(aggregate, self)
            except Exception as e:
                logger.error(f"Error in {aggregate} listener: {e}")

    # ── board ──

    def get_board(self) -> Board:
        return self._board

    def replace_board(self, board: Board) -> None:
        self._board = board
        self.board_view = project_board(board)
        self._emit(BOARD)

    # ── notes ──

    def get_notes(self) -> List[Note]:
        return list(self._notes)

    def replace_notes(self, notes: Sequence[Note]) -> None:
        self._notes = list(notes)
        self.notes_view = project_notes(self._notes, self.category_filter)
        self._emit(NOTES)

    def set_category_filter(self, category: "NoteCategory | str | None") -> None:
        self.category_filter = NoteCategory.parse(category) if category is not None else None
        self.notes_view = project_notes(self._notes, self.category_filter)
        self._emit(NOTES)

    @property
    def loading(self) -> bool:
        return self.board_loading or self.notes_loading

    def summary(self) -> Dict[str, int]:
        counts = {col.id.value: col.count for col in self.board_view.columns}
        counts["notes"] = self.notes_view.total
        return counts
