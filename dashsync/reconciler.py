"""
Snapshot reconciler: store subscriptions → local state cache.

Every snapshot overwrites the cached aggregate, whatever optimistic
mutations are still in flight (last snapshot wins). A snapshot that
predates a pending write will briefly revert the board until that
write's own snapshot arrives.
"""
import asyncio
import logging
from typing import Callable, List

from .cache import SyncedState
from .dispatcher import WriteRunner
from .schema import (
    BOARDS,
    NOTES,
    Board,
    board_from_document,
    board_to_document,
    note_from_snapshot,
)
from .store import DocumentSnapshot, DocumentStore, Query, Subscription

logger = logging.getLogger(__name__)


def notes_query(user_id: str) -> Query:
    """All notes owned by user_id, newest first."""
    return Query(collection=NOTES, field="userId", value=user_id, order_by="createdAt", descending=True)


class SnapshotReconciler:
    """Reads the board and notes channels for one user into SyncedState."""

    def __init__(self, state: SyncedState, store: DocumentStore, user_id: str, writer: WriteRunner):
        self.state = state
        self.store = store
        self.user_id = user_id
        self.writer = writer
        self.board_ready = asyncio.Event()
        self.notes_ready = asyncio.Event()
        self._subscriptions: List[Subscription] = []
        self._readers: List[asyncio.Task] = []

    @property
    def board_key(self) -> str:
        return f"{BOARDS}/{self.user_id}"

    def start(self) -> None:
        self.watch_board()
        self.watch_notes()

    def watch_board(self) -> asyncio.Task:
        sub = self.store.subscribe(self.board_key)
        return self._read_in_background(sub, self.apply_board_snapshot, "board")

    def watch_notes(self) -> asyncio.Task:
        sub = self.store.subscribe_query(notes_query(self.user_id))
        return self._read_in_background(sub, self.apply_notes_snapshot, "notes")

    def _read_in_background(self, sub: Subscription, apply: Callable, name: str) -> asyncio.Task:
        self._subscriptions.append(sub)
        task = asyncio.get_running_loop().create_task(self._read(sub, apply, name))
        self._readers.append(task)
        return task

    async def _read(self, sub: Subscription, apply: Callable, name: str) -> None:
        try:
            async for snapshot in sub:
                try:
                    apply(snapshot)
                except Exception as e:
                    logger.error(f"Skipping {name} snapshot for {self.user_id}: {e}")
        except Exception as e:
            logger.error(f"{name} subscription for {self.user_id} failed: {e}")
        else:
            logger.debug(f"{name} subscription for {self.user_id} closed")

    # ── appliers ──

    def apply_board_snapshot(self, snapshot: DocumentSnapshot) -> None:
        if not snapshot.exists:
            board = Board.default()
            logger.info(f"No board for {self.user_id}, creating default")
            self.writer.spawn(
                self.store.write(self.board_key, board_to_document(board, self.user_id)),
                f"bootstrap board {self.user_id}",
            )
        else:
            board = board_from_document(snapshot.data)
        logger.debug(f"Board snapshot for {self.user_id}: {board}")
        self.state.board_loading = False
        self.state.replace_board(board)
        self.board_ready.set()

    def apply_notes_snapshot(self, snapshots: List[DocumentSnapshot]) -> None:
        notes = [note_from_snapshot(snap) for snap in snapshots]
        logger.debug(f"Notes snapshot for {self.user_id}: {len(notes)} notes")
        self.state.notes_loading = False
        self.state.replace_notes(notes)
        self.notes_ready.set()

    # ── lifecycle ──

    async def ready(self) -> None:
        await asyncio.gather(self.board_ready.wait(), self.notes_ready.wait())

    def backlog(self) -> int:
        """Snapshots delivered but not yet applied."""
        return sum(
            sub.pending
            for sub, reader in zip(self._subscriptions, self._readers)
            if not sub.closed and not reader.done()
        )

    async def close(self) -> None:
        """Stop delivery. Writes already spawned keep running."""
        for sub in self._subscriptions:
            sub.close()
        for task in self._readers:
            task.cancel()
        await asyncio.gather(*self._readers, return_exceptions=True)
        self._subscriptions.clear()
        self._readers.clear()
