"""
Document store backends.

Key/document store with a subscribe/notify contract:
  write(key, value)        upsert the whole document
  delete(key)              remove a document
  subscribe(key)           channel of DocumentSnapshot (initial + every change)
  subscribe_query(query)   channel of list[DocumentSnapshot]

Keys are "<collection>/<doc_id>" paths. SERVER_TIMESTAMP placed in a
written value is replaced by the store's commit time.
"""
import asyncio
import copy
import json
import logging
import sqlite3
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .errors import StoreWriteError, StoreReadError

logger = logging.getLogger(__name__)


class _ServerTimestamp:
    """Sentinel resolved to the commit time by the store."""

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


def split_key(key: str) -> Tuple[str, str]:
    """Split "collection/doc_id"; raise ValueError on anything else."""
    parts = key.split("/")
    if len(parts) != 2 or not all(parts):
        raise ValueError(f"Invalid document key: {key!r}")
    return parts[0], parts[1]


@dataclass(frozen=True)
class DocumentSnapshot:
    """Point-in-time value of one document. data is None when absent."""
    id: str
    data: Optional[Dict[str, Any]] = None

    @property
    def exists(self) -> bool:
        return self.data is not None


@dataclass(frozen=True)
class Query:
    """Equality filter on one field plus an optional sort."""
    collection: str
    field: Optional[str] = None
    value: Any = None
    order_by: Optional[str] = None
    descending: bool = False

    def matches(self, data: Dict[str, Any]) -> bool:
        if self.field is not None and data.get(self.field) != self.value:
            return False
        # Documents without the sort field are left out of ordered results
        if self.order_by is not None and data.get(self.order_by) is None:
            return False
        return True

    def apply(self, docs: List[Tuple[str, Dict[str, Any]]]) -> List[DocumentSnapshot]:
        hits = [(doc_id, data) for doc_id, data in docs if self.matches(data)]
        if self.order_by is not None:
            hits.sort(key=lambda item: item[1][self.order_by], reverse=self.descending)
        return [DocumentSnapshot(id=doc_id, data=data) for doc_id, data in hits]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Subscription channel
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class _Closed:
    pass


_CLOSED = _Closed()


@dataclass
class _Failure:
    error: Exception


class Subscription:
    """
    Persistent async channel of snapshots.

    Iterate with ``async for``. ``close()`` ends iteration for the reader and
    detaches the channel from its store; nothing already written is undone.
    """

    def __init__(self, target: Any, on_close=None):
        self.target = target
        self._queue: asyncio.Queue = asyncio.Queue()
        self._on_close = on_close
        self._closed = False
        self.last: Any = None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def push(self, snapshot: Any) -> None:
        if self._closed:
            return
        self.last = snapshot
        self._queue.put_nowait(snapshot)

    def fail(self, error: Exception) -> None:
        """Deliver an error to the reader; the channel stays open."""
        if not self._closed:
            self._queue.put_nowait(_Failure(error))

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)
        if self._on_close:
            self._on_close(self)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        if isinstance(item, _Failure):
            raise item.error
        return item


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Store contract
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class DocumentStore(ABC):
    """What the sync core needs from a document store."""

    @abstractmethod
    async def write(self, key: str, value: Dict[str, Any]) -> None:
        """Upsert the full document at key."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove the document at key (absent is not an error)."""

    @abstractmethod
    def subscribe(self, key: str) -> Subscription:
        """Channel delivering the document's current state and every change."""

    @abstractmethod
    def subscribe_query(self, query: Query) -> Subscription:
        """Channel delivering the query result and every change to it."""

    def new_id(self, collection: str) -> str:
        """Fresh store-side document id for collection."""
        return uuid.uuid4().hex[:20]

    async def aclose(self) -> None:
        """Release backend resources."""


class LocalDocumentStore(DocumentStore):
    """
    In-process notifying store. Subclasses provide the storage primitives;
    this class resolves server timestamps and fans out snapshots to
    subscribers after each commit.

    Writes and deletes commit one at a time, in the order they were
    issued. Reads are synchronous so that every delivered snapshot reflects
    the committed state at the moment of notification, in commit order.
    """

    def __init__(self, latency: float = 0.0):
        self.latency = latency
        self.write_error: Optional[Exception] = None
        self._doc_subs: Dict[str, List[Subscription]] = {}
        self._query_subs: Dict[str, List[Subscription]] = {}
        self._last_ts: Optional[datetime] = None
        # Commits run one at a time, in the order they were issued
        self._commit_lock = asyncio.Lock()

    # ── storage primitives ──

    @abstractmethod
    def _get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    def _put(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    def _remove(self, collection: str, doc_id: str) -> None:
        ...

    @abstractmethod
    def _scan(self, collection: str) -> List[Tuple[str, Dict[str, Any]]]:
        ...

    async def _persist(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        self._put(collection, doc_id, data)

    async def _unpersist(self, collection: str, doc_id: str) -> None:
        self._remove(collection, doc_id)

    # ── contract ──

    async def write(self, key: str, value: Dict[str, Any]) -> None:
        collection, doc_id = split_key(key)
        async with self._commit_lock:
            if self.latency:
                await asyncio.sleep(self.latency)
            if self.write_error is not None:
                raise StoreWriteError(f"Write rejected: {self.write_error}", key=key) from self.write_error
            data = self._resolve(copy.deepcopy(value), self._commit_time())
            await self._persist(collection, doc_id, data)
            logger.debug(f"Committed {key}")
            self._notify(collection, doc_id)

    async def delete(self, key: str) -> None:
        collection, doc_id = split_key(key)
        async with self._commit_lock:
            if self.latency:
                await asyncio.sleep(self.latency)
            if self.write_error is not None:
                raise StoreWriteError(f"Delete rejected: {self.write_error}", key=key) from self.write_error
            await self._unpersist(collection, doc_id)
            logger.debug(f"Deleted {key}")
            self._notify(collection, doc_id)

    def subscribe(self, key: str) -> Subscription:
        collection, doc_id = split_key(key)
        sub = Subscription(key, on_close=self._detach)
        self._doc_subs.setdefault(key, []).append(sub)
        self._deliver_document(sub, collection, doc_id)
        return sub

    def subscribe_query(self, query: Query) -> Subscription:
        sub = Subscription(query, on_close=self._detach)
        self._query_subs.setdefault(query.collection, []).append(sub)
        self._deliver_query(sub, force=True)
        return sub

    def subscriber_count(self) -> int:
        return sum(len(v) for v in self._doc_subs.values()) + sum(len(v) for v in self._query_subs.values())

    # ── internals ──

    def _commit_time(self) -> datetime:
        """Commit timestamp, strictly increasing within this store."""
        now = datetime.now(timezone.utc)
        if self._last_ts is not None and now <= self._last_ts:
            now = self._last_ts + timedelta(microseconds=1)
        self._last_ts = now
        return now

    def _resolve(self, value: Any, ts: datetime) -> Any:
        if value is SERVER_TIMESTAMP:
            return ts
        if isinstance(value, dict):
            return {k: self._resolve(v, ts) for k, v in value.items()}
        if isinstance(value, list):
            return [self._resolve(v, ts) for v in value]
        return value

    def _detach(self, sub: Subscription) -> None:
        registry = self._query_subs if isinstance(sub.target, Query) else self._doc_subs
        bucket_key = sub.target.collection if isinstance(sub.target, Query) else sub.target
        bucket = registry.get(bucket_key, [])
        if sub in bucket:
            bucket.remove(sub)
        if not bucket:
            registry.pop(bucket_key, None)

    def _notify(self, collection: str, doc_id: str) -> None:
        for sub in list(self._doc_subs.get(f"{collection}/{doc_id}", [])):
            self._deliver_document(sub, collection, doc_id)
        for sub in list(self._query_subs.get(collection, [])):
            self._deliver_query(sub)

    def _deliver_document(self, sub: Subscription, collection: str, doc_id: str) -> None:
        try:
            data = self._get(collection, doc_id)
        except Exception as e:
            logger.error(f"Read failed for {collection}/{doc_id}: {e}")
            sub.fail(StoreReadError(str(e), key=f"{collection}/{doc_id}"))
            return
        sub.push(DocumentSnapshot(id=doc_id, data=copy.deepcopy(data)))

    def _deliver_query(self, sub: Subscription, force: bool = False) -> None:
        query: Query = sub.target
        try:
            result = query.apply(copy.deepcopy(self._scan(query.collection)))
        except Exception as e:
            logger.error(f"Query failed on {query.collection}: {e}")
            sub.fail(StoreReadError(str(e), key=query.collection))
            return
        if force or result != sub.last:
            sub.push(result)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Memory backend
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class MemoryDocumentStore(LocalDocumentStore):
    """Dict-backed store. Set ``write_error`` to make writes fail."""

    def __init__(self, latency: float = 0.0):
        super().__init__(latency=latency)
        self._docs: Dict[str, Dict[str, Dict[str, Any]]] = {}

    def _get(self, collection, doc_id):
        return self._docs.get(collection, {}).get(doc_id)

    def _put(self, collection, doc_id, data):
        self._docs.setdefault(collection, {})[doc_id] = data

    def _remove(self, collection, doc_id):
        self._docs.get(collection, {}).pop(doc_id, None)

    def _scan(self, collection):
        return list(self._docs.get(collection, {}).items())

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        """Direct read, for inspection."""
        collection, doc_id = split_key(key)
        return copy.deepcopy(self._get(collection, doc_id))


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# SQLite backend
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def _encode(value: Any) -> str:
    def default(obj):
        if isinstance(obj, datetime):
            return {"$timestamp": obj.isoformat()}
        raise TypeError(f"Not JSON serializable: {type(obj).__name__}")
    return json.dumps(value, default=default)


def _decode(text: str) -> Dict[str, Any]:
    def hook(obj):
        if set(obj) == {"$timestamp"}:
            return datetime.fromisoformat(obj["$timestamp"])
        return obj
    return json.loads(text, object_hook=hook)


def _connect(db_path: str) -> sqlite3.Connection:
    """Open a connection in WAL mode."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode = WAL")
    return conn


class SqliteDocumentStore(LocalDocumentStore):
    """Durable single-file store: one JSON document per row."""

    def __init__(self, db_path: str, latency: float = 0.0):
        super().__init__(latency=latency)
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _init_schema(self):
        """Create tables if they don't exist."""
        with _connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS documents (
                    collection TEXT NOT NULL,
                    doc_id TEXT NOT NULL,
                    data TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (collection, doc_id)
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_documents_collection ON documents(collection)")
            conn.commit()

    def _get(self, collection, doc_id):
        with _connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT data FROM documents WHERE collection = ? AND doc_id = ?",
                (collection, doc_id),
            ).fetchone()
        return _decode(row["data"]) if row else None

    def _put(self, collection, doc_id, data):
        try:
            with _connect(self.db_path) as conn:
                conn.execute("""
                    INSERT OR REPLACE INTO documents (collection, doc_id, data, updated_at)
                    VALUES (?, ?, ?, ?)
                """, (collection, doc_id, _encode(data), datetime.now(timezone.utc).isoformat()))
                conn.commit()
        except (sqlite3.Error, TypeError) as e:
            raise StoreWriteError(f"Error saving {collection}/{doc_id}: {e}", key=f"{collection}/{doc_id}") from e

    def _remove(self, collection, doc_id):
        try:
            with _connect(self.db_path) as conn:
                conn.execute("DELETE FROM documents WHERE collection = ? AND doc_id = ?", (collection, doc_id))
                conn.commit()
        except sqlite3.Error as e:
            raise StoreWriteError(f"Error deleting {collection}/{doc_id}: {e}", key=f"{collection}/{doc_id}") from e

    def _scan(self, collection):
        with _connect(self.db_path) as conn:
            rows = conn.execute(
                "SELECT doc_id, data FROM documents WHERE collection = ?",
                (collection,),
            ).fetchall()
        return [(row["doc_id"], _decode(row["data"])) for row in rows]

    async def _persist(self, collection, doc_id, data):
        await asyncio.to_thread(self._put, collection, doc_id, data)

    async def _unpersist(self, collection, doc_id):
        await asyncio.to_thread(self._remove, collection, doc_id)
