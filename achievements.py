"""
Achievement catalog and per-donor progress.

Progress is read from the profile totals the ledger keeps and from the
donor's completed pickups, so nothing here writes outside the catalog.
"""

import logging
from typing import Dict, List

from errors import NotFound
from schemas import (
    ACHIEVEMENTS, PICKUPS, PROFILES,
    Achievement, AchievementProgress, PickupStatus, RequirementType,
)
from storage import Store

logger = logging.getLogger(__name__)

ACHIEVEMENT_SEED = [
    {"slug": "first_drop", "name": "First Drop", "description": "Complete your first pickup", "icon_name": "Leaf", "requirement_type": "pickups", "requirement_value": 1, "credit_reward": 50},
    {"slug": "eco_starter", "name": "Eco Starter", "description": "Recycle 5 items", "icon_name": "Sprout", "requirement_type": "items_recycled", "requirement_value": 5, "credit_reward": 100},
    {"slug": "green_warrior", "name": "Green Warrior", "description": "Recycle 25 items", "icon_name": "TreePine", "requirement_type": "items_recycled", "requirement_value": 25, "credit_reward": 250},
    {"slug": "weight_lifter", "name": "Weight Lifter", "description": "Recycle 10kg of e-waste", "icon_name": "Dumbbell", "requirement_type": "weight_kg", "requirement_value": 10, "credit_reward": 200},
    {"slug": "streak_3", "name": "On a Roll", "description": "3-day activity streak", "icon_name": "Flame", "requirement_type": "streak", "requirement_value": 3, "credit_reward": 75},
    {"slug": "streak_7", "name": "Week Warrior", "description": "7-day activity streak", "icon_name": "Zap", "requirement_type": "streak", "requirement_value": 7, "credit_reward": 150},
    {"slug": "century", "name": "Century Club", "description": "Recycle 100 items", "icon_name": "Trophy", "requirement_type": "items_recycled", "requirement_value": 100, "credit_reward": 500},
    {"slug": "half_ton", "name": "Half Ton Hero", "description": "Recycle 500kg of e-waste", "icon_name": "Medal", "requirement_type": "weight_kg", "requirement_value": 500, "credit_reward": 1000},
]


def seed_achievements(store: Store) -> int:
    """Create the catalog entries that are missing. Returns how many were added."""
    existing = {a["id"] for a in store.query(ACHIEVEMENTS, order_by=None)}
    batch = store.batch()
    added = 0
    for achievement in ACHIEVEMENT_SEED:
        if achievement["slug"] in existing:
            continue
        batch.create(ACHIEVEMENTS, achievement, doc_id=achievement["slug"])
        added += 1
    batch.commit()
    if added:
        logger.info(f"Seeded {added} achievements")
    return added


def list_achievements(store: Store) -> List[Achievement]:
    docs = store.query(ACHIEVEMENTS, order_by="credit_reward", descending=False)
    return [Achievement.model_validate(d) for d in docs]


def _progress_values(store: Store, user_id: str) -> Dict[RequirementType, float]:
    profile = store.get(PROFILES, user_id)
    if not profile:
        raise NotFound("Profile not found")
    completed = store.query(PICKUPS, {"donor_id": user_id, "status": PickupStatus.COMPLETED.value},
                            order_by=None)
    return {
        RequirementType.PICKUPS: len(completed),
        RequirementType.ITEMS_RECYCLED: profile.get("total_items_recycled") or 0,
        RequirementType.WEIGHT_KG: profile.get("total_weight_kg") or 0,
        RequirementType.STREAK: profile.get("streak_days") or 0,
    }


def user_achievements(store: Store, user_id: str) -> List[AchievementProgress]:
    """Every catalog entry with the donor's current value and whether it is reached."""
    values = _progress_values(store, user_id)
    return [
        AchievementProgress(**a.model_dump(), progress=values[a.requirement_type])
        for a in list_achievements(store)
    ]
