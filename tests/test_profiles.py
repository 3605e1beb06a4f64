import pytest
from pydantic import ValidationError as PydanticValidationError

import profiles
from errors import NotFound, ValidationError
from schemas import BADGE_TIERS, PROFILES, BadgeLevel, Profile, ProfileIn, ProfileUpdate, badge_level


def test_new_profile_starts_at_zero(donor):
    assert donor.id == "donor-1"
    assert donor.green_credits == 0
    assert donor.total_items_recycled == 0
    assert donor.total_weight_kg == 0
    assert donor.co2_saved_kg == 0
    assert donor.streak_days == 0
    assert donor.badge_level == BadgeLevel.SEEDLING
    assert donor.created_at is not None


def test_duplicate_profile_is_rejected(store, donor):
    with pytest.raises(ValidationError):
        profiles.create_profile(store, ProfileIn(user_id=donor.id, email="x@example.com", full_name="X"))
    assert profiles.get_profile(store, donor.id).email == "dana@example.com"


def test_missing_profile(store):
    with pytest.raises(NotFound):
        profiles.get_profile(store, "ghost")


@pytest.mark.parametrize("credits,level", [
    (0, BadgeLevel.SEEDLING),
    (99, BadgeLevel.SEEDLING),
    (100, BadgeLevel.SPROUT),
    (499, BadgeLevel.SPROUT),
    (500, BadgeLevel.TREE),
    (1499, BadgeLevel.TREE),
    (1500, BadgeLevel.FOREST),
    (4999, BadgeLevel.FOREST),
    (5000, BadgeLevel.EARTH_GUARDIAN),
    (250000, BadgeLevel.EARTH_GUARDIAN),
])
def test_badge_boundaries(credits, level):
    assert badge_level(credits) == level


def test_every_balance_gets_exactly_one_tier():
    minimums = [m for m, _ in BADGE_TIERS]
    assert minimums == sorted(minimums) and minimums[0] == 0
    for credits in range(0, 6000):
        owning = [tier for i, (m, tier) in enumerate(BADGE_TIERS)
                  if credits >= m and (i + 1 == len(BADGE_TIERS) or credits < BADGE_TIERS[i + 1][0])]
        assert owning == [badge_level(credits)]


def test_badge_follows_balance_not_stored_value(store, donor):
    batch = store.batch()
    batch.update(PROFILES, donor.id, {"badge_level": "earth_guardian"}, increments={"green_credits": 120})
    batch.commit()
    profile = profiles.get_profile(store, donor.id)
    assert profile.badge_level == BadgeLevel.SPROUT
    assert profile.model_dump()["badge_level"] == BadgeLevel.SPROUT


def test_update_contact_fields(store, donor):
    updated = profiles.update_profile(store, donor.id, ProfileUpdate(phone="+91 98000 00000", city="Pune"))
    assert updated.phone == "+91 98000 00000"
    assert updated.city == "Pune"
    assert updated.full_name == "Dana Donor"
    assert updated.updated_at > donor.updated_at


def test_update_cannot_touch_balance():
    with pytest.raises(PydanticValidationError):
        ProfileUpdate(green_credits=10_000)


def test_empty_update_is_rejected(store, donor):
    with pytest.raises(ValidationError):
        profiles.update_profile(store, donor.id, ProfileUpdate())


def test_update_missing_profile(store):
    with pytest.raises(NotFound):
        profiles.update_profile(store, "ghost", ProfileUpdate(city="Pune"))


def test_subscribe_profile(store, donor):
    seen = []
    with profiles.subscribe_profile(store, donor.id, lambda p: seen.append(p.city if p else None)):
        profiles.update_profile(store, donor.id, ProfileUpdate(city="Mumbai"))
    profiles.update_profile(store, donor.id, ProfileUpdate(city="Nagpur"))
    assert seen == [None, "Mumbai"]
    assert store.watcher_count == 0


def test_profile_model_computes_badge():
    assert Profile(id="u", email="e", full_name="n", green_credits=1500).badge_level == BadgeLevel.FOREST
