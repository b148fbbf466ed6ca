"""
Dashboard session: wires cache, dispatcher and reconciler for whoever is
signed in.

The auth gate calls set_user() with the current user id (or None). A
change of identity closes the old subscriptions, resets the cache and
subscribes again for the new user. Writes already in flight are left to
finish.
"""
import asyncio
import logging
from typing import Optional

from .cache import SyncedState
from .config import DashConfig
from .dispatcher import MutationDispatcher, WriteRunner
from .errors import ConfigError
from .reconciler import SnapshotReconciler
from .schema import NoteCategory
from .store import DocumentStore, MemoryDocumentStore, SqliteDocumentStore

logger = logging.getLogger(__name__)


def open_store(cfg: DashConfig) -> DocumentStore:
    """Build the configured store backend."""
    if cfg.backend == "memory":
        return MemoryDocumentStore()
    if cfg.backend == "sqlite":
        return SqliteDocumentStore(cfg.sqlite_path)
    if cfg.backend == "firestore":
        from .firestore import FirestoreRestStore
        return FirestoreRestStore(
            project_id=cfg.firestore_project,
            token=cfg.firestore_token,
            database=cfg.firestore_database,
            poll_interval=cfg.firestore_poll_interval,
            timeout=cfg.http_timeout,
        )
    raise ConfigError(f"Unknown backend '{cfg.backend}'")


class DashboardSession:
    """Owns the synced state for the current identity."""

    def __init__(self, store: DocumentStore, config: Optional[DashConfig] = None):
        self.store = store
        self.config = config or DashConfig()
        self.state = SyncedState()
        self.writer = WriteRunner(history=self.config.failure_history)
        self.user_id: Optional[str] = None
        self.dispatcher: Optional[MutationDispatcher] = None
        self.reconciler: Optional[SnapshotReconciler] = None

    async def set_user(self, user_id: Optional[str]) -> None:
        """Identity signal from the auth gate. None means signed out."""
        if user_id == self.user_id:
            return

        if self.reconciler is not None:
            logger.info(f"Closing session for {self.user_id}")
            await self.reconciler.close()
        self.reconciler = None
        self.dispatcher = None
        self.state.reset()
        self.user_id = user_id

        if not user_id:
            return

        logger.info(f"Starting session for {user_id}")
        self.reconciler = SnapshotReconciler(self.state, self.store, user_id, self.writer)
        self.reconciler.start()
        self.dispatcher = MutationDispatcher(self.state, self.store, user_id, self.writer)

    async def wait_ready(self, timeout: Optional[float] = None) -> None:
        """Wait for the first board and notes snapshots."""
        if self.reconciler is None:
            raise RuntimeError("No user signed in")
        await asyncio.wait_for(self.reconciler.ready(), timeout)

    async def settle(self) -> None:
        """Drain writes in flight and apply every snapshot already delivered."""
        while True:
            await self.writer.drain()
            backlog = self.reconciler.backlog() if self.reconciler is not None else 0
            if not backlog and not self.writer.pending:
                return
            await asyncio.sleep(0)

    def set_category_filter(self, category: "NoteCategory | str | None") -> None:
        self.state.set_category_filter(category)

    async def close(self) -> None:
        await self.set_user(None)

    async def __aenter__(self) -> "DashboardSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
