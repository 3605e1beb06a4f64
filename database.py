"""
MongoDB connection and the Mongo-backed storage capability.

The service talks to MongoDB when DATABASE_URL and DATABASE_NAME are both set.
Batches run inside a multi-document transaction and subscriptions ride on
change streams, so the server must be a replica set (Atlas, or a local
`mongod --replSet`).
Fields staged as SERVER_TIMESTAMP are written with $currentDate, so stored
times come from the database server rather than the app host.
"""

import logging
import os
import threading
from typing import Any, Dict, List, Optional

from pymongo import DESCENDING, ASCENDING, MongoClient
from pymongo.errors import DuplicateKeyError, PyMongoError

from errors import CapabilityError, ConflictError, EcoCollectError
from storage import SERVER_TIMESTAMP, MemoryStore, Store, Subscription

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

client: Optional[MongoClient] = None
db = None

if DATABASE_URL and DATABASE_NAME:
    client = MongoClient(DATABASE_URL, serverSelectionTimeoutMS=5000)
    db = client[DATABASE_NAME]


def _to_record(doc):
    if not doc:
        return None
    doc = dict(doc)
    doc["id"] = str(doc.pop("_id"))
    return doc


def _to_filter(filters: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    q = {}
    for key, value in (filters or {}).items():
        if isinstance(value, (list, tuple, set, frozenset)):
            q[key] = {"$in": list(value)}
        else:
            q[key] = value
    return q


def _split_timestamps(fields: Dict[str, Any]):
    plain = {k: v for k, v in fields.items() if v is not SERVER_TIMESTAMP}
    stamped = {k: True for k, v in fields.items() if v is SERVER_TIMESTAMP}
    return plain, stamped


def _create_spec(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Upsert document for a new record. SERVER_TIMESTAMP fields take the server time."""
    plain, stamped = _split_timestamps(fields)
    spec: Dict[str, Any] = {}
    if plain:
        spec["$setOnInsert"] = plain
    if stamped:
        spec["$currentDate"] = stamped
    return spec


def _update_spec(fields: Dict[str, Any], increments: Dict[str, float]) -> Dict[str, Any]:
    plain, stamped = _split_timestamps(fields)
    spec: Dict[str, Any] = {}
    if plain:
        spec["$set"] = plain
    if stamped:
        spec["$currentDate"] = stamped
    if increments:
        spec["$inc"] = dict(increments)
    return spec

class _ChangeStreamWatch:
    """
    Re-reads and delivers on every change event until stopped.

    The stream is opened before the first read, so a change committed
    between that read and the thread starting still arrives as an event.
    """

    def __init__(self, collection, pipeline, refresh):
        self._collection = collection
        self._pipeline = pipeline
        self._refresh = refresh
        self._stream = None
        self._stopped = threading.Event()
        self._thread = threading.Thread(target=self._run, daemon=True)

    def start(self):
        try:
            self._stream = self._collection.watch(self._pipeline, max_await_time_ms=500)
        except PyMongoError as e:
            raise CapabilityError(f"Could not watch {self._collection.name}: {str(e)[:80]}") from e
        try:
            self._refresh()
        except Exception:
            self._stream.close()
            raise
        self._thread.start()

    def stop(self):
        self._stopped.set()
        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=5.0)

    def _run(self):
        try:
            with self._stream as stream:
                while not self._stopped.is_set() and stream.alive:
                    change = stream.try_next()
                    if change is not None and not self._stopped.is_set():
                        self._refresh()
        except (PyMongoError, CapabilityError) as e:
            if not self._stopped.is_set():
                logger.error(f"Change stream on {self._collection.name} stopped: {e}")


class MongoStore(Store):
    backend = "mongodb"

    def __init__(self, mongo_client: MongoClient, database):
        self.client = mongo_client
        self.db = database

    def get(self, collection, doc_id):
        try:
            return _to_record(self.db[collection].find_one({"_id": doc_id}))
        except PyMongoError as e:
            raise CapabilityError(f"Database unavailable: {str(e)[:80]}") from e

    def query(self, collection, filters=None, order_by="created_at", descending=True, limit=None):
        try:
            cursor = self.db[collection].find(_to_filter(filters))
            if order_by:
                cursor = cursor.sort(order_by, DESCENDING if descending else ASCENDING)
            if limit:
                cursor = cursor.limit(limit)
            return [_to_record(d) for d in cursor]
        except PyMongoError as e:
            raise CapabilityError(f"Database unavailable: {str(e)[:80]}") from e

    def commit(self, ops):
        def run(session):
            for op in ops:
                coll = self.db[op.collection]
                if op.kind == "create":
                    result = coll.update_one({"_id": op.doc_id}, _create_spec(op.fields),
                                             upsert=True, session=session)
                    if result.upserted_id is None:
                        raise ConflictError(f"{op.collection}/{op.doc_id} already exists")
                    continue
                result = coll.update_one({"_id": op.doc_id, **op.expect},
                                         _update_spec(op.fields, op.increments), session=session)
                if result.matched_count == 0:
                    raise ConflictError(f"{op.collection}/{op.doc_id} changed concurrently")

        try:
            with self.client.start_session() as session:
                session.with_transaction(run)
        except EcoCollectError:
            raise
        except DuplicateKeyError as e:
            raise ConflictError("Record already exists") from e
        except PyMongoError as e:
            logger.error(f"Transaction aborted: {e}")
            raise CapabilityError(f"Database unavailable: {str(e)[:80]}") from e

    def watch_document(self, collection, doc_id, callback):
        watch = _ChangeStreamWatch(
            self.db[collection],
            [{"$match": {"documentKey._id": doc_id}}],
            lambda: callback(self.get(collection, doc_id)),
        )
        watch.start()
        return Subscription(watch.stop)

    def watch_query(self, collection, filters, callback, order_by="created_at",
                    descending=True, limit=None):
        last: List[Any] = [None]

        def refresh():
            result = self.query(collection, filters, order_by, descending, limit)
            if result != last[0]:
                last[0] = result
                callback(result)

        watch = _ChangeStreamWatch(self.db[collection], [], refresh)
        watch.start()
        return Subscription(watch.stop)

    def collection_names(self):
        try:
            return self.db.list_collection_names()
        except PyMongoError as e:
            raise CapabilityError(f"Database unavailable: {str(e)[:80]}") from e


_store: Optional[Store] = None


def get_store() -> Store:
    """The process-wide store: MongoDB when configured, otherwise in memory."""
    global _store
    if _store is None:
        if db is not None:
            _store = MongoStore(client, db)
        else:
            logger.warning("DATABASE_URL / DATABASE_NAME not set, using the in-memory store")
            _store = MemoryStore()
    return _store
