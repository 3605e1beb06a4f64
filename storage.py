"""
Storage capability used by the services.

A Store keeps keyed records (plain dicts with a string "id") in named
collections. It answers equality / IN queries ordered by a timestamp field,
commits a WriteBatch all-or-nothing, and lets callers watch a single record
or a query result. MongoStore (database.py) is the production backend;
MemoryStore below is the in-process one used by tests and local runs.
"""

import copy
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from bson import ObjectId

from errors import ConflictError

logger = logging.getLogger(__name__)


class _ServerTimestamp:
    def __repr__(self):
        return "SERVER_TIMESTAMP"


# Placeholder replaced by the store's clock when the batch is committed.
SERVER_TIMESTAMP = _ServerTimestamp()


def new_id() -> str:
    return str(ObjectId())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def resolve_timestamps(fields: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    return {k: (now if v is SERVER_TIMESTAMP else v) for k, v in fields.items()}


def matches(record: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    """Equality per field; a list/tuple/set value means IN."""
    for key, expected in filters.items():
        value = record.get(key)
        if isinstance(expected, (list, tuple, set, frozenset)):
            if value not in expected:
                return False
        elif value != expected:
            return False
    return True


@dataclass
class WriteOp:
    kind: str  # "create" | "update"
    collection: str
    doc_id: str
    fields: Dict[str, Any] = field(default_factory=dict)
    increments: Dict[str, float] = field(default_factory=dict)
    expect: Dict[str, Any] = field(default_factory=dict)


class WriteBatch:
    """Collects writes; commit() applies all of them or none."""

    def __init__(self, store: "Store"):
        self._store = store
        self.ops: List[WriteOp] = []
        self.committed = False

    def create(self, collection: str, data: Dict[str, Any], doc_id: Optional[str] = None) -> str:
        doc_id = doc_id or new_id()
        self.ops.append(WriteOp("create", collection, doc_id, fields=dict(data)))
        return doc_id

    def update(self, collection: str, doc_id: str, fields: Optional[Dict[str, Any]] = None,
               increments: Optional[Dict[str, float]] = None,
               expect: Optional[Dict[str, Any]] = None):
        """
        Set `fields` and add `increments` on an existing record.

        `expect` is a precondition on the stored record; when it does not hold
        at commit time the whole batch fails with ConflictError.
        """
        self.ops.append(WriteOp(
            "update", collection, doc_id,
            fields=dict(fields or {}),
            increments=dict(increments or {}),
            expect=dict(expect or {}),
        ))

    def commit(self):
        if self.committed:
            raise RuntimeError("batch already committed")
        if self.ops:
            self._store.commit(self.ops)
        self.committed = True


class Subscription:
    """Handle returned by the watch_* methods. unsubscribe() is idempotent."""

    def __init__(self, on_unsubscribe: Callable[[], None]):
        self._on_unsubscribe = on_unsubscribe
        self.active = True

    def unsubscribe(self):
        if not self.active:
            return
        self.active = False
        self._on_unsubscribe()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.unsubscribe()


class Store:
    backend = "abstract"

    def now(self) -> datetime:
        return utcnow()

    def batch(self) -> WriteBatch:
        return WriteBatch(self)

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def query(self, collection: str, filters: Optional[Dict[str, Any]] = None,
              order_by: Optional[str] = "created_at", descending: bool = True,
              limit: Optional[int] = None) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def commit(self, ops: List[WriteOp]):
        raise NotImplementedError

    def watch_document(self, collection: str, doc_id: str,
                       callback: Callable[[Optional[Dict[str, Any]]], None]) -> Subscription:
        raise NotImplementedError

    def watch_query(self, collection: str, filters: Optional[Dict[str, Any]],
                    callback: Callable[[List[Dict[str, Any]]], None],
                    order_by: Optional[str] = "created_at", descending: bool = True,
                    limit: Optional[int] = None) -> Subscription:
        raise NotImplementedError

    def collection_names(self) -> List[str]:
        raise NotImplementedError


def _sort_key(order_by: str):
    # records missing the field sort as the smallest values
    def key(record):
        value = record.get(order_by)
        return (value is not None, value if value is not None else 0)
    return key


@dataclass(eq=False)
class _Watcher:
    collection: str
    callback: Callable
    doc_id: Optional[str] = None
    filters: Optional[Dict[str, Any]] = None
    order_by: Optional[str] = None
    descending: bool = True
    limit: Optional[int] = None
    last: Any = None


class MemoryStore(Store):
    """
    In-process store.

    Commits are staged on copies of the touched records and swapped in under
    a lock, so a failure part way through a batch leaves nothing behind.
    Watchers are notified after the lock is released.
    """

    backend = "memory"

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._watchers: List[_Watcher] = []
        self._lock = threading.RLock()
        self._clock = clock or utcnow

    def now(self) -> datetime:
        return self._clock()

    def get(self, collection, doc_id):
        with self._lock:
            record = self._collections.get(collection, {}).get(doc_id)
            if record is None:
                return None
            return dict(copy.deepcopy(record), id=doc_id)

    def query(self, collection, filters=None, order_by="created_at", descending=True, limit=None):
        with self._lock:
            records = [
                dict(copy.deepcopy(record), id=doc_id)
                for doc_id, record in self._collections.get(collection, {}).items()
                if matches(record, filters or {})
            ]
        if order_by:
            records.sort(key=_sort_key(order_by), reverse=descending)
        if limit:
            records = records[:limit]
        return records

    def commit(self, ops):
        with self._lock:
            now = self.now()
            staged: Dict[str, Dict[str, Dict[str, Any]]] = {}
            for op in ops:
                self._apply(staged, op, now)
            for name, records in staged.items():
                self._collections.setdefault(name, {}).update(records)
            touched = {(op.collection, op.doc_id) for op in ops}
            watchers = list(self._watchers)
        self._notify(watchers, touched)

    def _staged_record(self, staged, collection, doc_id):
        bucket = staged.setdefault(collection, {})
        if doc_id not in bucket:
            current = self._collections.get(collection, {}).get(doc_id)
            bucket[doc_id] = copy.deepcopy(current) if current is not None else None
        return bucket[doc_id]

    def _apply(self, staged, op: WriteOp, now: datetime):
        record = self._staged_record(staged, op.collection, op.doc_id)
        if op.kind == "create":
            if record is not None:
                raise ConflictError(f"{op.collection}/{op.doc_id} already exists")
            staged[op.collection][op.doc_id] = resolve_timestamps(op.fields, now)
            return
        if record is None:
            raise ConflictError(f"{op.collection}/{op.doc_id} does not exist")
        if not matches(record, op.expect):
            raise ConflictError(f"{op.collection}/{op.doc_id} changed concurrently")
        record.update(resolve_timestamps(op.fields, now))
        for key, delta in op.increments.items():
            record[key] = (record.get(key) or 0) + delta

    def _notify(self, watchers: List[_Watcher], touched):
        collections = {name for name, _ in touched}
        for watcher in watchers:
            if watcher not in self._watchers:
                continue
            if watcher.doc_id is not None:
                if (watcher.collection, watcher.doc_id) in touched:
                    watcher.callback(self.get(watcher.collection, watcher.doc_id))
            elif watcher.collection in collections:
                result = self.query(watcher.collection, watcher.filters, watcher.order_by,
                                    watcher.descending, watcher.limit)
                if result != watcher.last:
                    watcher.last = result
                    watcher.callback(result)

    def _register(self, watcher: _Watcher) -> Subscription:
        with self._lock:
            self._watchers.append(watcher)

        def remove():
            with self._lock:
                if watcher in self._watchers:
                    self._watchers.remove(watcher)

        return Subscription(remove)

    def watch_document(self, collection, doc_id, callback):
        callback(self.get(collection, doc_id))
        return self._register(_Watcher(collection, callback, doc_id=doc_id))

    def watch_query(self, collection, filters, callback, order_by="created_at",
                    descending=True, limit=None):
        result = self.query(collection, filters, order_by, descending, limit)
        callback(result)
        return self._register(_Watcher(collection, callback, filters=dict(filters or {}),
                                       order_by=order_by, descending=descending,
                                       limit=limit, last=result))

    def collection_names(self):
        with self._lock:
            return sorted(name for name, records in self._collections.items() if records)

    @property
    def watcher_count(self) -> int:
        with self._lock:
            return len(self._watchers)
