"""
Firestore backend over the REST API.

Writes go through documents:commit so that SERVER_TIMESTAMP fields become
REQUEST_TIME transforms. The REST API has no push channel, so
subscriptions poll and only emit when the result changes.

Dependencies:
    pip install requests
"""
import asyncio
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import requests

from .errors import StoreReadError, StoreWriteError
from .store import (
    SERVER_TIMESTAMP,
    DocumentSnapshot,
    DocumentStore,
    Query,
    Subscription,
    split_key,
)

logger = logging.getLogger(__name__)

BASE_URL = "https://firestore.googleapis.com/v1"

_FRACTION_RE = re.compile(r"\.(\d{6})\d+")


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Typed value codec
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def encode_value(value: Any) -> Dict[str, Any]:
    """Python value → Firestore typed value."""
    if value is None:
        return {"nullValue": None}
    if isinstance(value, bool):
        return {"booleanValue": value}
    if isinstance(value, int):
        return {"integerValue": str(value)}
    if isinstance(value, float):
        return {"doubleValue": value}
    if isinstance(value, str):
        return {"stringValue": value}
    if isinstance(value, datetime):
        ts = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        return {"timestampValue": ts.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")}
    if isinstance(value, (list, tuple)):
        return {"arrayValue": {"values": [encode_value(v) for v in value]}}
    if isinstance(value, dict):
        return {"mapValue": {"fields": encode_fields(value)}}
    raise TypeError(f"Cannot encode {type(value).__name__} for Firestore")


def encode_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: encode_value(v) for k, v in data.items()}


def parse_timestamp(text: str) -> datetime:
    """RFC 3339 timestamp; nanosecond precision is cut to microseconds."""
    text = _FRACTION_RE.sub(r".\1", text.replace("Z", "+00:00"))
    return datetime.fromisoformat(text)


def decode_value(value: Dict[str, Any]) -> Any:
    """Firestore typed value → Python value."""
    if "nullValue" in value:
        return None
    if "booleanValue" in value:
        return bool(value["booleanValue"])
    if "integerValue" in value:
        return int(value["integerValue"])
    if "doubleValue" in value:
        return float(value["doubleValue"])
    if "stringValue" in value:
        return value["stringValue"]
    if "timestampValue" in value:
        return parse_timestamp(value["timestampValue"])
    if "arrayValue" in value:
        return [decode_value(v) for v in value["arrayValue"].get("values", [])]
    if "mapValue" in value:
        return decode_fields(value["mapValue"].get("fields", {}))
    if "referenceValue" in value:
        return value["referenceValue"]
    return None


def decode_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {k: decode_value(v) for k, v in fields.items()}


def split_server_timestamps(data: Dict[str, Any], prefix: str = "") -> Tuple[Dict[str, Any], List[str]]:
    """Strip SERVER_TIMESTAMP fields, returning (rest, their dotted field paths)."""
    rest: Dict[str, Any] = {}
    paths: List[str] = []
    for key, value in data.items():
        path = f"{prefix}{key}"
        if value is SERVER_TIMESTAMP:
            paths.append(path)
        elif isinstance(value, dict):
            nested, nested_paths = split_server_timestamps(value, prefix=f"{path}.")
            rest[key] = nested
            paths.extend(nested_paths)
        else:
            rest[key] = value
    return rest, paths


def document_to_snapshot(doc: Dict[str, Any]) -> DocumentSnapshot:
    doc_id = doc["name"].rsplit("/", 1)[-1]
    return DocumentSnapshot(id=doc_id, data=decode_fields(doc.get("fields", {})))


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Store
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class FirestoreRestStore(DocumentStore):
    """DocumentStore backed by Cloud Firestore's REST endpoints."""

    def __init__(
        self,
        project_id: str,
        token: Optional[str] = None,
        database: str = "(default)",
        poll_interval: float = 2.0,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.root = f"projects/{project_id}/databases/{database}/documents"
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.session = session or requests.Session()
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"
        self._pollers: Dict[Subscription, asyncio.Task] = {}
        # One commit in flight at a time, in issue order
        self._commit_lock = asyncio.Lock()

    def doc_name(self, key: str) -> str:
        split_key(key)
        return f"{self.root}/{key}"

    # ── request bodies ──

    def commit_body(self, key: str, value: Dict[str, Any]) -> Dict[str, Any]:
        """Full-document upsert; SERVER_TIMESTAMP fields become REQUEST_TIME transforms."""
        fields, ts_paths = split_server_timestamps(value)
        write: Dict[str, Any] = {"update": {"name": self.doc_name(key), "fields": encode_fields(fields)}}
        if ts_paths:
            write["updateTransforms"] = [
                {"fieldPath": path, "setToServerValue": "REQUEST_TIME"} for path in ts_paths
            ]
        return {"writes": [write]}

    def query_body(self, query: Query) -> Dict[str, Any]:
        structured: Dict[str, Any] = {"from": [{"collectionId": query.collection}]}
        if query.field is not None:
            structured["where"] = {"fieldFilter": {
                "field": {"fieldPath": query.field},
                "op": "EQUAL",
                "value": encode_value(query.value),
            }}
        if query.order_by is not None:
            structured["orderBy"] = [{
                "field": {"fieldPath": query.order_by},
                "direction": "DESCENDING" if query.descending else "ASCENDING",
            }]
        return {"structuredQuery": structured}

    # ── blocking HTTP calls (run in a worker thread) ──

    def _commit(self, body: Dict[str, Any], key: str) -> None:
        try:
            r = self.session.post(f"{BASE_URL}/{self.root}:commit", json=body, timeout=self.timeout)
        except requests.RequestException as e:
            raise StoreWriteError(f"Commit failed for {key}: {e}", key=key) from e
        if not r.ok:
            raise StoreWriteError(f"Commit failed for {key}: HTTP {r.status_code} {r.text[:200]}", key=key)

    def fetch_document(self, key: str) -> DocumentSnapshot:
        _, doc_id = split_key(key)
        try:
            r = self.session.get(f"{BASE_URL}/{self.doc_name(key)}", timeout=self.timeout)
        except requests.RequestException as e:
            raise StoreReadError(f"Read failed for {key}: {e}", key=key) from e
        if r.status_code == 404:
            return DocumentSnapshot(id=doc_id, data=None)
        if not r.ok:
            raise StoreReadError(f"Read failed for {key}: HTTP {r.status_code}", key=key)
        return document_to_snapshot(r.json())

    def fetch_query(self, query: Query) -> List[DocumentSnapshot]:
        try:
            r = self.session.post(
                f"{BASE_URL}/{self.root}:runQuery", json=self.query_body(query), timeout=self.timeout
            )
        except requests.RequestException as e:
            raise StoreReadError(f"Query failed on {query.collection}: {e}", key=query.collection) from e
        if not r.ok:
            raise StoreReadError(f"Query failed on {query.collection}: HTTP {r.status_code}", key=query.collection)
        # runQuery answers with a list; entries without "document" only carry readTime
        return [document_to_snapshot(entry["document"]) for entry in r.json() if "document" in entry]

    # ── contract ──

    async def write(self, key: str, value: Dict[str, Any]) -> None:
        body = self.commit_body(key, value)
        async with self._commit_lock:
            await asyncio.to_thread(self._commit, body, key)

    async def delete(self, key: str) -> None:
        body = {"writes": [{"delete": self.doc_name(key)}]}
        async with self._commit_lock:
            await asyncio.to_thread(self._commit, body, key)

    def subscribe(self, key: str) -> Subscription:
        split_key(key)
        sub = Subscription(key, on_close=self._detach)
        self._start_poller(sub, lambda: self.fetch_document(key))
        return sub

    def subscribe_query(self, query: Query) -> Subscription:
        sub = Subscription(query, on_close=self._detach)
        self._start_poller(sub, lambda: self.fetch_query(query))
        return sub

    def _start_poller(self, sub: Subscription, fetch) -> None:
        self._pollers[sub] = asyncio.get_running_loop().create_task(self._poll(sub, fetch))

    async def _poll(self, sub: Subscription, fetch) -> None:
        first = True
        while not sub.closed:
            try:
                snapshot = await asyncio.to_thread(fetch)
            except (StoreReadError, ValueError, KeyError) as e:
                logger.error(f"Polling {sub.target} failed: {e}")
                sub.fail(e if isinstance(e, StoreReadError) else StoreReadError(str(e)))
                return
            if first or snapshot != sub.last:
                sub.push(snapshot)
                first = False
            await asyncio.sleep(self.poll_interval)

    def _detach(self, sub: Subscription) -> None:
        task = self._pollers.pop(sub, None)
        if task is not None:
            task.cancel()

    async def aclose(self) -> None:
        for sub in list(self._pollers):
            sub.close()
        self.session.close()
