"""
Profile aggregate: balance and recycling totals per user.

This module only creates profiles and edits contact fields. The balance and
the totals are changed by ledger.award_credits and nothing else, which is why
ProfileUpdate has no such fields.
"""

import logging
from typing import Callable, Optional

from errors import NotFound, ValidationError
from schemas import PROFILES, Profile, ProfileIn, ProfileUpdate
from storage import SERVER_TIMESTAMP, Store, Subscription

logger = logging.getLogger(__name__)


def create_profile(store: Store, payload: ProfileIn) -> Profile:
    if store.get(PROFILES, payload.user_id):
        raise ValidationError("Profile already exists")
    data = payload.model_dump(mode="json", exclude={"user_id"})
    data.update({
        "green_credits": 0,
        "total_items_recycled": 0,
        "total_weight_kg": 0.0,
        "co2_saved_kg": 0.0,
        "streak_days": 0,
        "is_verified": False,
        "last_activity_at": None,
        "created_at": SERVER_TIMESTAMP,
        "updated_at": SERVER_TIMESTAMP,
    })
    batch = store.batch()
    batch.create(PROFILES, data, doc_id=payload.user_id)
    batch.commit()
    logger.info(f"Created profile {payload.user_id}")
    return get_profile(store, payload.user_id)


def get_profile(store: Store, user_id: str) -> Profile:
    doc = store.get(PROFILES, user_id)
    if not doc:
        raise NotFound("Profile not found")
    return Profile.model_validate(doc)


def update_profile(store: Store, user_id: str, payload: ProfileUpdate) -> Profile:
    get_profile(store, user_id)
    changes = payload.model_dump(mode="json", exclude_unset=True)
    if not changes:
        raise ValidationError("Nothing to update")
    changes["updated_at"] = SERVER_TIMESTAMP
    batch = store.batch()
    batch.update(PROFILES, user_id, changes)
    batch.commit()
    return get_profile(store, user_id)


def subscribe_profile(store: Store, user_id: str,
                      callback: Callable[[Optional[Profile]], None]) -> Subscription:
    return store.watch_document(
        PROFILES, user_id,
        lambda doc: callback(Profile.model_validate(doc) if doc else None),
    )
