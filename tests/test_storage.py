import pytest

from errors import CapabilityError, ConflictError
from storage import SERVER_TIMESTAMP, MemoryStore, matches


@pytest.fixture
def mem(clock):
    return MemoryStore(clock=clock)


def _seed(mem, *docs):
    batch = mem.batch()
    ids = [batch.create("things", dict(d, created_at=SERVER_TIMESTAMP)) for d in docs]
    batch.commit()
    return ids


def test_create_resolves_server_timestamp(mem, clock):
    expected = clock.current
    [doc_id] = _seed(mem, {"name": "a"})
    doc = mem.get("things", doc_id)
    assert doc["id"] == doc_id
    assert doc["created_at"] == expected


def test_get_returns_copies(mem):
    [doc_id] = _seed(mem, {"name": "a", "tags": ["x"]})
    mem.get("things", doc_id)["tags"].append("y")
    assert mem.get("things", doc_id)["tags"] == ["x"]


def test_missing_record_is_none(mem):
    assert mem.get("things", "nope") is None
    assert mem.query("things") == []


def test_update_fields_and_increments(mem):
    [doc_id] = _seed(mem, {"count": 1, "total": 0.5})
    batch = mem.batch()
    batch.update("things", doc_id, {"label": "x"}, increments={"count": 2, "total": 0.25, "fresh": 3})
    batch.commit()
    doc = mem.get("things", doc_id)
    assert (doc["label"], doc["count"], doc["total"], doc["fresh"]) == ("x", 3, 0.75, 3)


def test_failed_expect_rolls_back_whole_batch(mem):
    [a, b] = _seed(mem, {"state": "open", "n": 0}, {"state": "open", "n": 0})
    batch = mem.batch()
    batch.update("things", a, increments={"n": 1})
    batch.create("others", {"note": "should not land"})
    batch.update("things", b, {"state": "closed"}, expect={"state": "closed"})
    with pytest.raises(ConflictError):
        batch.commit()
    assert mem.get("things", a)["n"] == 0
    assert mem.get("things", b)["state"] == "open"
    assert mem.query("others", order_by=None) == []


def test_conflict_is_retryable_capability_error(mem):
    batch = mem.batch()
    batch.update("things", "ghost", {"x": 1})
    with pytest.raises(CapabilityError) as exc:
        batch.commit()
    assert isinstance(exc.value, ConflictError)
    assert exc.value.retryable is True


def test_duplicate_create_conflicts(mem):
    batch = mem.batch()
    batch.create("things", {"n": 1}, doc_id="fixed")
    batch.commit()
    again = mem.batch()
    again.create("things", {"n": 2}, doc_id="fixed")
    with pytest.raises(ConflictError):
        again.commit()
    assert mem.get("things", "fixed")["n"] == 1


def test_batch_commits_once(mem):
    batch = mem.batch()
    batch.create("things", {"n": 1})
    batch.commit()
    with pytest.raises(RuntimeError):
        batch.commit()
    assert len(mem.query("things", order_by=None)) == 1


def test_later_ops_see_earlier_ops_in_same_batch(mem):
    batch = mem.batch()
    doc_id = batch.create("things", {"state": "new"})
    batch.update("things", doc_id, {"state": "seen"}, expect={"state": "new"})
    batch.commit()
    assert mem.get("things", doc_id)["state"] == "seen"


def test_query_filters_order_and_limit(mem):
    _seed(mem, {"kind": "a"}, {"kind": "b"}, {"kind": "c"})
    # one commit each so created_at differs
    mem2_ids = []
    for kind in ["a", "b", "c"]:
        mem2_ids.extend(_seed(mem, {"kind": kind, "round": 2}))

    newest = mem.query("things", {"round": 2})
    assert [d["id"] for d in newest] == list(reversed(mem2_ids))
    oldest = mem.query("things", {"round": 2}, descending=False, limit=2)
    assert [d["id"] for d in oldest] == mem2_ids[:2]
    assert {d["kind"] for d in mem.query("things", {"kind": ["a", "c"]})} == {"a", "c"}
    assert len(mem.query("things", {"kind": ["a", "c"]})) == 4


def test_records_without_order_field_sort_last_when_descending(mem):
    batch = mem.batch()
    batch.create("things", {"n": 1}, doc_id="undated")
    batch.commit()
    _seed(mem, {"n": 2})
    assert mem.query("things")[-1]["id"] == "undated"


def test_matches_treats_sequences_as_in():
    record = {"status": "arrived", "owner": "x"}
    assert matches(record, {"status": ["matched", "arrived"], "owner": "x"})
    assert not matches(record, {"status": ("pending",)})
    assert matches(record, {})
    assert not matches(record, {"missing": "value"})


def test_watch_document_sends_current_then_changes(mem):
    [doc_id] = _seed(mem, {"n": 0})
    seen = []
    sub = mem.watch_document("things", doc_id, lambda d: seen.append(d["n"] if d else None))

    batch = mem.batch()
    batch.update("things", doc_id, increments={"n": 1})
    batch.commit()
    _seed(mem, {"n": 100})  # other record, no delivery

    assert seen == [0, 1]
    sub.unsubscribe()
    sub.unsubscribe()
    assert mem.watcher_count == 0


def test_watch_document_on_missing_record(mem):
    seen = []
    with mem.watch_document("things", "later", seen.append):
        batch = mem.batch()
        batch.create("things", {"n": 5}, doc_id="later")
        batch.commit()
    assert seen[0] is None
    assert seen[1]["n"] == 5


def test_watch_query_delivers_only_when_result_changes(mem):
    [doc_id] = _seed(mem, {"kind": "a", "n": 0})
    snapshots = []
    sub = mem.watch_query("things", {"kind": "a"}, lambda docs: snapshots.append([d["n"] for d in docs]))

    _seed(mem, {"kind": "b", "n": 9})
    batch = mem.batch()
    batch.update("things", doc_id, increments={"n": 1})
    batch.commit()

    assert snapshots == [[0], [1]]
    sub.unsubscribe()

    batch = mem.batch()
    batch.update("things", doc_id, increments={"n": 1})
    batch.commit()
    assert snapshots == [[0], [1]]


def test_failed_commit_notifies_nobody(mem):
    [doc_id] = _seed(mem, {"state": "open"})
    seen = []
    mem.watch_document("things", doc_id, seen.append)
    batch = mem.batch()
    batch.update("things", doc_id, {"state": "closed"}, expect={"state": "gone"})
    with pytest.raises(ConflictError):
        batch.commit()
    assert len(seen) == 1


def test_collection_names(mem):
    assert mem.collection_names() == []
    _seed(mem, {"n": 1})
    assert mem.collection_names() == ["things"]
    assert mem.backend == "memory"
