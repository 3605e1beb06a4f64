"""
Credit ledger.

award_credits is the only writer of a profile's balance and totals. It stages
four writes (pickup, profile, ledger entry, notification) into one batch so
they land together or not at all. The pickup write is the move from collected
to completed, so actuals are only ever set on that transition.
lifecycle.complete_pickup passes its own batch in so the per-item credit split
rides in the same commit.

Both the pickup and the profile writes are conditional on what was read: a
second award for the same pickup, or an award for another pickup of the same
donor that committed in between, makes the commit fail with ConflictError.
"""

import logging
import math
from datetime import date, datetime
from typing import Callable, List, Optional

from errors import InvalidTransition, NotFound, ValidationError
from schemas import (
    CREDIT_TRANSACTIONS, NOTIFICATIONS, PICKUPS, PROFILES,
    Award, CreditTransaction, LedgerBalance, PickupStatus,
)
from storage import SERVER_TIMESTAMP, Store, Subscription, WriteBatch

logger = logging.getLogger(__name__)

CREDITS_PER_KG = 20
CO2_KG_PER_KG = 1.5

PICKUP_COMPLETED = "pickup_completed"
CREDIT_EARNED = "credit_earned"


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def estimate_credits(weight_kg: float) -> int:
    return round_half_up(weight_kg * CREDITS_PER_KG)


def validate_award(actual_weight_kg, actual_credits):
    if isinstance(actual_weight_kg, bool) or not isinstance(actual_weight_kg, (int, float)):
        raise ValidationError("Actual weight must be a number")
    if not math.isfinite(actual_weight_kg) or actual_weight_kg < 0:
        raise ValidationError("Actual weight must be a non-negative number")
    if isinstance(actual_credits, bool) or not isinstance(actual_credits, int):
        raise ValidationError("Credits must be a whole number")
    if actual_credits < 0:
        raise ValidationError("Credits must be non-negative")


def next_streak(last_activity_at: Optional[datetime], streak_days: int, today: date) -> int:
    """Same day keeps the streak, the next day extends it, a longer gap restarts it."""
    if last_activity_at is None:
        return 1
    gap = (today - last_activity_at.date()).days
    if gap <= 0:
        return max(streak_days, 1)
    if gap == 1:
        return streak_days + 1
    return 1


def _kg(value: float) -> str:
    return f"{value:g}"


def award_credits(store: Store, request_id: str, actual_weight_kg: float, actual_credits: int,
                  batch: Optional[WriteBatch] = None) -> Award:
    validate_award(actual_weight_kg, actual_credits)

    pickup = store.get(PICKUPS, request_id)
    if not pickup:
        raise NotFound("Pickup not found")
    if pickup.get("actual_credits_awarded") is not None:
        raise InvalidTransition("Credits were already awarded for this pickup")
    if pickup.get("status") != PickupStatus.COLLECTED.value:
        raise InvalidTransition(f"Only collected pickups can be completed (status is {pickup['status']})")

    donor_id = pickup["donor_id"]
    profile = store.get(PROFILES, donor_id)
    if not profile:
        raise NotFound("Donor profile not found")

    own_batch = batch is None
    if own_batch:
        batch = store.batch()

    co2_saved = actual_weight_kg * CO2_KG_PER_KG
    balance = profile.get("green_credits")
    balance_after = (balance or 0) + actual_credits
    streak = next_streak(profile.get("last_activity_at"), profile.get("streak_days") or 0,
                         store.now().date())

    batch.update(PICKUPS, request_id, {
        "status": PickupStatus.COMPLETED.value,
        "actual_weight_kg": actual_weight_kg,
        "actual_credits_awarded": actual_credits,
        "completed_at": SERVER_TIMESTAMP,
        "updated_at": SERVER_TIMESTAMP,
    }, expect={"status": PickupStatus.COLLECTED.value, "actual_credits_awarded": None})

    # balance_after is only true if nobody else paid this donor since the read
    batch.update(PROFILES, donor_id, {
        "streak_days": streak,
        "last_activity_at": SERVER_TIMESTAMP,
        "updated_at": SERVER_TIMESTAMP,
    }, increments={
        "green_credits": actual_credits,
        "total_items_recycled": pickup.get("total_items") or 0,
        "total_weight_kg": actual_weight_kg,
        "co2_saved_kg": co2_saved,
    }, expect={"green_credits": balance})

    transaction_id = batch.create(CREDIT_TRANSACTIONS, {
        "user_id": donor_id,
        "amount": actual_credits,
        "type": PICKUP_COMPLETED,
        "description": f"Pickup #{request_id[:8]} completed - {_kg(actual_weight_kg)}kg recycled",
        "reference_id": request_id,
        "balance_after": balance_after,
        "created_at": SERVER_TIMESTAMP,
    })

    notification_id = batch.create(NOTIFICATIONS, {
        "user_id": donor_id,
        "title": "Credits Earned!",
        "body": f"You earned {actual_credits} Green Credits for recycling "
                f"{_kg(actual_weight_kg)}kg of e-waste!",
        "type": CREDIT_EARNED,
        "data": {"amount": actual_credits, "pickup_id": request_id},
        "is_read": False,
        "created_at": SERVER_TIMESTAMP,
    })

    if own_batch:
        batch.commit()
        logger.info(f"Awarded {actual_credits} credits to {donor_id} for pickup {request_id}")

    return Award(
        pickup_id=request_id,
        user_id=donor_id,
        credits=actual_credits,
        weight_kg=actual_weight_kg,
        co2_saved_kg=co2_saved,
        transaction_id=transaction_id,
        notification_id=notification_id,
        balance_after=balance_after,
    )


def list_transactions(store: Store, user_id: str, limit: int = 20) -> List[CreditTransaction]:
    docs = store.query(CREDIT_TRANSACTIONS, {"user_id": user_id}, limit=limit)
    return [CreditTransaction.model_validate(d) for d in docs]


def subscribe_transactions(store: Store, user_id: str,
                           callback: Callable[[List[CreditTransaction]], None],
                           limit: int = 20) -> Subscription:
    return store.watch_query(
        CREDIT_TRANSACTIONS, {"user_id": user_id},
        lambda docs: callback([CreditTransaction.model_validate(d) for d in docs]),
        limit=limit,
    )


def reconcile(store: Store, user_id: str) -> LedgerBalance:
    """Compare the stored balance with the sum of the user's ledger entries."""
    profile = store.get(PROFILES, user_id)
    if not profile:
        raise NotFound("Profile not found")
    entries = store.query(CREDIT_TRANSACTIONS, {"user_id": user_id}, order_by=None)
    result = LedgerBalance(
        user_id=user_id,
        balance=profile.get("green_credits") or 0,
        ledger_total=sum(e.get("amount") or 0 for e in entries),
        entries=len(entries),
    )
    if not result.consistent:
        logger.warning(f"Ledger mismatch for {user_id}: balance {result.balance}, "
                       f"entries sum {result.ledger_total}")
    return result
