"""
Mutation dispatcher: user intents → optimistic cache update + store write.

Board intents update the cache first and then write the entire board
document. Note intents only write; the new state shows up once the
reconciler sees it in a snapshot.

Writes are detached tasks. Their failure is logged and recorded for
diagnosis, never raised to the caller and never rolled back.
"""
import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Optional, Set

from .cache import SyncedState
from .schema import (
    ADVANCE_TARGET,
    BOARDS,
    NOTES,
    TOGGLE_TARGET,
    Board,
    ColumnId,
    NoteCategory,
    Task,
    board_to_document,
    make_task_id,
)
from .store import SERVER_TIMESTAMP, DocumentStore

logger = logging.getLogger(__name__)


def utc_now() -> str:
    """ISO-8601 UTC timestamp."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass(frozen=True)
class WriteFailure:
    """One failed store write, kept for operator diagnosis."""
    description: str
    error: str
    at: str


class WriteRunner:
    """Runs store writes as fire-and-forget tasks on the current loop."""

    def __init__(self, history: int = 100):
        self.failures: deque = deque(maxlen=history)
        self.completed = 0
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, write: Awaitable, description: str) -> asyncio.Task:
        """Schedule write; returns immediately. Must run inside the loop."""
        task = asyncio.get_running_loop().create_task(self._run(write, description))
        # Held here so the task isn't garbage-collected mid-flight
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, write: Awaitable, description: str) -> bool:
        try:
            await write
        except Exception as e:
            logger.error(f"Write failed ({description}): {e}")
            self.failures.append(WriteFailure(description=description, error=str(e), at=utc_now()))
            return False
        self.completed += 1
        logger.debug(f"Write done ({description})")
        return True

    async def drain(self) -> None:
        """Wait for every write in flight, including ones spawned meanwhile."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class MutationDispatcher:
    """Applies intents for one signed-in user."""

    def __init__(self, state: SyncedState, store: DocumentStore, user_id: str, writer: WriteRunner):
        self.state = state
        self.store = store
        self.user_id = user_id
        self.writer = writer

    @property
    def board_key(self) -> str:
        return f"{BOARDS}/{self.user_id}"

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # Board
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    def add_task(self, content: str) -> Optional[Task]:
        """Append a new task to To Do. Blank content is ignored."""
        if not content or not content.strip():
            logger.debug("Ignoring empty task")
            return None

        task = Task(id=make_task_id(), content=content, completed=False)
        board = self.state.get_board().copy()
        board.columns[ColumnId.TODO].tasks.append(task)
        self._commit_board(board, f"add task {task.id}")
        return task

    def move_task(self, task_id: str, from_column: "ColumnId | str", to_column: "ColumnId | str") -> bool:
        """
        Move the first task_id found in from_column to the end of to_column.

        Returns False (and writes nothing) when the task is not in from_column.
        """
        src = ColumnId.parse(from_column)
        dst = ColumnId.parse(to_column)
        board = self.state.get_board().copy()
        tasks = board.columns[src].tasks
        index = next((i for i, t in enumerate(tasks) if t.id == task_id), None)
        if index is None:
            logger.debug(f"Task {task_id} not in {src.value}, nothing to move")
            return False

        task = tasks.pop(index)
        board.columns[dst].tasks.append(task)
        self._commit_board(board, f"move {task_id} {src.value}->{dst.value}")
        return True

    def delete_task(self, column_id: "ColumnId | str", task_id: str) -> int:
        """Remove every task_id from column_id; returns how many were removed."""
        cid = ColumnId.parse(column_id)
        board = self.state.get_board().copy()
        before = board.columns[cid].tasks
        board.columns[cid].tasks = [t for t in before if t.id != task_id]
        removed = len(before) - len(board.columns[cid].tasks)
        self._commit_board(board, f"delete {task_id} from {cid.value}")
        return removed

    def toggle_task(self, task_id: str, column: "ColumnId | str") -> bool:
        """Checkbox: done goes back to To Do, anything else goes to Done."""
        cid = ColumnId.parse(column)
        return self.move_task(task_id, cid, TOGGLE_TARGET[cid])

    def advance_task(self, task_id: str, column: "ColumnId | str") -> bool:
        """Forward arrow: To Do → In Progress → Done. No-op in Done."""
        cid = ColumnId.parse(column)
        if cid not in ADVANCE_TARGET:
            return False
        return self.move_task(task_id, cid, ADVANCE_TARGET[cid])

    def _commit_board(self, board: Board, description: str) -> None:
        self.state.replace_board(board)
        document = board_to_document(board, self.user_id)
        self.writer.spawn(self.store.write(self.board_key, document), description)

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # Notes
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    def add_note(self, content: str, category: "NoteCategory | str" = NoteCategory.CATATAN) -> Optional[str]:
        """
        Write a new note with a server-assigned createdAt.

        Returns the new note id, or None for blank content. The cache is
        not touched; the note appears with the next notes snapshot.
        """
        cat = NoteCategory.parse(category)
        if not content or not content.strip():
            logger.debug("Ignoring empty note")
            return None

        note_id = self.store.new_id(NOTES)
        document = {
            "content": content.strip(),
            "category": cat.value,
            "userId": self.user_id,
            "createdAt": SERVER_TIMESTAMP,
        }
        self.writer.spawn(self.store.write(f"{NOTES}/{note_id}", document), f"add note {note_id}")
        return note_id

    def delete_note(self, note_id: str) -> None:
        """Delete by id; removal shows up with the next notes snapshot."""
        self.writer.spawn(self.store.delete(f"{NOTES}/{note_id}"), f"delete note {note_id}")
