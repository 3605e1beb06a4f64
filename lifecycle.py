"""
Pickup request lifecycle.

    pending -> matched -> collector_enroute -> arrived -> inspecting
            -> collected -> completed

Any non-terminal status may also move to cancelled. Every step is a real
world event, so no stage may be skipped. Each write is conditional on the
status read just before it; if another writer got there first the commit
fails with ConflictError and nothing changes.
"""

import logging
import math
from typing import Callable, Dict, Iterable, List, Optional

import ledger
from errors import InvalidTransition, NotFound, ValidationError
from schemas import (
    EWASTE_CATEGORIES, PICKUP_ITEMS, PICKUPS, PROFILES,
    Award, PickupDetail, PickupItem, PickupItemIn, PickupLocation,
    PickupRequest, PickupSchedule, PickupStatus,
)
from storage import SERVER_TIMESTAMP, Store, Subscription, WriteBatch

logger = logging.getLogger(__name__)

S = PickupStatus

TRANSITIONS: Dict[PickupStatus, frozenset] = {
    S.PENDING: frozenset({S.MATCHED, S.CANCELLED}),
    S.MATCHED: frozenset({S.COLLECTOR_ENROUTE, S.CANCELLED}),
    S.COLLECTOR_ENROUTE: frozenset({S.ARRIVED, S.CANCELLED}),
    S.ARRIVED: frozenset({S.INSPECTING, S.CANCELLED}),
    S.INSPECTING: frozenset({S.COLLECTED, S.CANCELLED}),
    S.COLLECTED: frozenset({S.COMPLETED, S.CANCELLED}),
    S.COMPLETED: frozenset(),
    S.CANCELLED: frozenset(),
}

TIMESTAMP_FIELDS = {
    S.MATCHED: "matched_at",
    S.COLLECTED: "collected_at",
    S.COMPLETED: "completed_at",
    S.CANCELLED: "cancelled_at",
}

# Statuses a collector is still working on
ACTIVE_STATUSES = [S.MATCHED, S.COLLECTOR_ENROUTE, S.ARRIVED, S.INSPECTING, S.COLLECTED]


def can_transition(current: PickupStatus, nxt: PickupStatus) -> bool:
    return nxt in TRANSITIONS[current]


def parse_status(value) -> PickupStatus:
    try:
        return PickupStatus(value)
    except ValueError:
        raise ValidationError(f"Unknown pickup status: {value}")


def _check_transition(current: PickupStatus, nxt: PickupStatus):
    if not can_transition(current, nxt):
        raise InvalidTransition(f"Cannot move pickup from {current.value} to {nxt.value}")


def _load(store: Store, request_id: str) -> Dict:
    doc = store.get(PICKUPS, request_id)
    if not doc:
        raise NotFound("Pickup not found")
    return doc


def _item_records(store: Store, items: Iterable[PickupItemIn]) -> List[Dict]:
    items = list(items or [])
    if not items:
        raise ValidationError("At least one item is required")
    records = []
    for item in items:
        if item.quantity < 1:
            raise ValidationError("Quantity must be >= 1")
        if not math.isfinite(item.unit_weight_kg) or item.unit_weight_kg < 0:
            raise ValidationError("Weight must be >= 0")
        if not store.get(EWASTE_CATEGORIES, item.category_id):
            raise ValidationError(f"Unknown category: {item.category_id}")
        records.append({
            "category_id": item.category_id,
            "description": item.description,
            "quantity": item.quantity,
            "condition": item.condition.value,
            "unit_weight_kg": item.unit_weight_kg,
            "estimated_weight_kg": item.unit_weight_kg * item.quantity,
            "actual_weight_kg": None,
            "ai_detected_label": item.ai_detected_label,
            "ai_confidence": item.ai_confidence,
            "credits_earned": 0,
        })
    return records


def _stage_items(batch: WriteBatch, request_id: str, records: List[Dict]):
    for record in records:
        batch.create(PICKUP_ITEMS, dict(record, pickup_id=request_id, created_at=SERVER_TIMESTAMP))


def create_request(store: Store, donor_id: str, location: PickupLocation, schedule: PickupSchedule,
                   items: Iterable[PickupItemIn], ai_scan_results: Optional[Dict] = None) -> str:
    """Create a pending pickup and its items in one commit. Returns the pickup id."""
    records = _item_records(store, items)
    if not store.get(PROFILES, donor_id):
        raise NotFound("Donor profile not found")

    total_items = sum(r["quantity"] for r in records)
    total_weight = sum(r["estimated_weight_kg"] for r in records)

    batch = store.batch()
    request_id = batch.create(PICKUPS, {
        "donor_id": donor_id,
        "collector_id": None,
        "pickup_address": location.address,
        "pickup_city": location.city,
        "pickup_state": location.state,
        "pickup_zip": location.zip_code,
        "pickup_latitude": location.latitude,
        "pickup_longitude": location.longitude,
        "pickup_instructions": location.instructions,
        "preferred_date": schedule.preferred_date.isoformat(),
        "preferred_time_slot": schedule.time_slot.value,
        "status": S.PENDING.value,
        "total_items": total_items,
        "estimated_weight_kg": total_weight,
        "actual_weight_kg": None,
        "estimated_credits": ledger.estimate_credits(total_weight),
        "actual_credits_awarded": None,
        "ai_scan_results": ai_scan_results,
        "created_at": SERVER_TIMESTAMP,
        "updated_at": SERVER_TIMESTAMP,
        "matched_at": None,
        "collected_at": None,
        "completed_at": None,
        "cancelled_at": None,
    })
    _stage_items(batch, request_id, records)
    batch.commit()

    logger.info(f"Created pickup {request_id} for {donor_id}: {total_items} items, {total_weight:.2f}kg")
    return request_id


def add_items(store: Store, request_id: str, items: Iterable[PickupItemIn]) -> PickupDetail:
    """Amend a non-terminal pickup with more items and recompute its estimates."""
    records = _item_records(store, items)
    pickup = _load(store, request_id)
    current = PickupStatus(pickup["status"])
    if current.is_terminal:
        raise InvalidTransition(f"Items cannot change on a {current.value} pickup")

    total_items = pickup["total_items"] + sum(r["quantity"] for r in records)
    total_weight = pickup["estimated_weight_kg"] + sum(r["estimated_weight_kg"] for r in records)

    batch = store.batch()
    batch.update(PICKUPS, request_id, {
        "total_items": total_items,
        "estimated_weight_kg": total_weight,
        "estimated_credits": ledger.estimate_credits(total_weight),
        "updated_at": SERVER_TIMESTAMP,
    }, expect={"status": current.value, "total_items": pickup["total_items"]})
    _stage_items(batch, request_id, records)
    batch.commit()
    return get_request_detail(store, request_id)


def assign_collector(store: Store, request_id: str, collector_id: str) -> PickupRequest:
    if not collector_id:
        raise ValidationError("collector_id is required")
    pickup = _load(store, request_id)
    current = PickupStatus(pickup["status"])
    if current != S.PENDING:
        raise InvalidTransition(f"Only pending pickups can be accepted (status is {current.value})")

    batch = store.batch()
    batch.update(PICKUPS, request_id, {
        "collector_id": collector_id,
        "status": S.MATCHED.value,
        "matched_at": SERVER_TIMESTAMP,
        "updated_at": SERVER_TIMESTAMP,
    }, expect={"status": current.value})
    batch.commit()

    logger.info(f"Pickup {request_id} matched with collector {collector_id}")
    return get_request(store, request_id)


def advance_status(store: Store, request_id: str, next_status) -> PickupRequest:
    """
    Move a pickup one stage forward, or cancel it.

    matched is reached through assign_collector and completed through
    complete_pickup; asking for either here is an InvalidTransition.
    """
    nxt = parse_status(next_status)
    pickup = _load(store, request_id)
    current = PickupStatus(pickup["status"])

    if nxt == S.MATCHED:
        raise InvalidTransition("A pickup is matched by assigning a collector")
    if nxt == S.COMPLETED:
        raise InvalidTransition("A pickup is completed by recording its actual weight and credits")
    _check_transition(current, nxt)

    fields = {"status": nxt.value, "updated_at": SERVER_TIMESTAMP}
    if nxt in TIMESTAMP_FIELDS:
        fields[TIMESTAMP_FIELDS[nxt]] = SERVER_TIMESTAMP

    batch = store.batch()
    batch.update(PICKUPS, request_id, fields, expect={"status": current.value})
    batch.commit()

    logger.info(f"Pickup {request_id}: {current.value} -> {nxt.value}")
    return get_request(store, request_id)


def split_credits(total: int, weights: List[float]) -> List[int]:
    """Share `total` across items by weight; shares are whole and sum to total."""
    if not weights:
        return []
    if sum(weights) <= 0:
        weights = [1.0] * len(weights)
    whole = sum(weights)
    raw = [total * w / whole for w in weights]
    shares = [int(math.floor(r)) for r in raw]
    leftover = total - sum(shares)
    by_remainder = sorted(range(len(raw)), key=lambda i: raw[i] - shares[i], reverse=True)
    for i in by_remainder[:leftover]:
        shares[i] += 1
    return shares


def complete_pickup(store: Store, request_id: str, actual_weight_kg: float, actual_credits: int) -> Award:
    """
    Close a collected pickup and pay out its credits in a single commit.

    The move to completed is written by ledger.award_credits together with
    the actuals; this adds each item's share of the credits to the batch.
    Callers must not race two completions of the same pickup; the status
    guard makes the loser fail with ConflictError rather than pay twice.
    """
    ledger.validate_award(actual_weight_kg, actual_credits)
    pickup = _load(store, request_id)
    current = PickupStatus(pickup["status"])
    if current != S.COLLECTED:
        raise InvalidTransition(f"Only collected pickups can be completed (status is {current.value})")

    batch = store.batch()
    items = store.query(PICKUP_ITEMS, {"pickup_id": request_id}, order_by="created_at", descending=False)
    shares = split_credits(actual_credits, [i.get("estimated_weight_kg") or 0 for i in items])
    for item, share in zip(items, shares):
        batch.update(PICKUP_ITEMS, item["id"], {"credits_earned": share})

    award = ledger.award_credits(store, request_id, actual_weight_kg, actual_credits, batch=batch)
    batch.commit()

    logger.info(f"Pickup {request_id} completed: {actual_weight_kg}kg, {actual_credits} credits "
                f"to {award.user_id}")
    return award


# ---------- Reads ----------

def get_request(store: Store, request_id: str) -> PickupRequest:
    return PickupRequest.model_validate(_load(store, request_id))


def get_items(store: Store, request_id: str) -> List[PickupItem]:
    docs = store.query(PICKUP_ITEMS, {"pickup_id": request_id}, order_by="created_at", descending=False)
    return [PickupItem.model_validate(d) for d in docs]


def get_request_detail(store: Store, request_id: str) -> PickupDetail:
    doc = _load(store, request_id)
    return PickupDetail.model_validate(dict(doc, items=[i.model_dump() for i in get_items(store, request_id)]))


def _donor_query(donor_id):
    return {"donor_id": donor_id}


def _pending_query():
    return {"status": S.PENDING.value}


def _collector_query(collector_id):
    return {"collector_id": collector_id, "status": [s.value for s in ACTIVE_STATUSES]}


def _as_requests(docs) -> List[PickupRequest]:
    return [PickupRequest.model_validate(d) for d in docs]


def list_donor_requests(store: Store, donor_id: str, limit: int = 20) -> List[PickupRequest]:
    return _as_requests(store.query(PICKUPS, _donor_query(donor_id), limit=limit))


def list_pending_requests(store: Store, limit: int = 50) -> List[PickupRequest]:
    return _as_requests(store.query(PICKUPS, _pending_query(), limit=limit))


def list_collector_requests(store: Store, collector_id: str) -> List[PickupRequest]:
    return _as_requests(store.query(PICKUPS, _collector_query(collector_id)))


# ---------- Subscriptions ----------

def subscribe_request(store: Store, request_id: str,
                      callback: Callable[[Optional[PickupRequest]], None]) -> Subscription:
    return store.watch_document(
        PICKUPS, request_id,
        lambda doc: callback(PickupRequest.model_validate(doc) if doc else None),
    )


def subscribe_donor_requests(store: Store, donor_id: str,
                             callback: Callable[[List[PickupRequest]], None],
                             limit: int = 20) -> Subscription:
    return store.watch_query(PICKUPS, _donor_query(donor_id),
                             lambda docs: callback(_as_requests(docs)), limit=limit)


def subscribe_pending_requests(store: Store, callback: Callable[[List[PickupRequest]], None],
                               limit: int = 50) -> Subscription:
    return store.watch_query(PICKUPS, _pending_query(),
                             lambda docs: callback(_as_requests(docs)), limit=limit)


def subscribe_collector_requests(store: Store, collector_id: str,
                                 callback: Callable[[List[PickupRequest]], None]) -> Subscription:
    return store.watch_query(PICKUPS, _collector_query(collector_id),
                             lambda docs: callback(_as_requests(docs)))
