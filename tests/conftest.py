from datetime import date, datetime, timedelta, timezone

import pytest

import achievements
import categories
import lifecycle
import profiles
from schemas import PickupItemIn, PickupLocation, PickupSchedule, PickupStatus, ProfileIn
from storage import MemoryStore


class TickingClock:
    """Advances one second per reading so commits get distinct timestamps."""

    def __init__(self, start=datetime(2026, 10, 1, 9, 0, tzinfo=timezone.utc)):
        self.current = start

    def __call__(self):
        value = self.current
        self.current += timedelta(seconds=1)
        return value


@pytest.fixture
def clock():
    return TickingClock()


@pytest.fixture
def store(clock):
    s = MemoryStore(clock=clock)
    categories.seed_categories(s)
    achievements.seed_achievements(s)
    return s


@pytest.fixture
def donor(store):
    return profiles.create_profile(store, ProfileIn(
        user_id="donor-1", email="dana@example.com", full_name="Dana Donor",
    ))


@pytest.fixture
def location():
    return PickupLocation(
        address="12 Green Street", city="Pune", state="MH", zip_code="411001",
        latitude=18.52, longitude=73.85, instructions="Ring twice",
    )


@pytest.fixture
def schedule():
    return PickupSchedule(preferred_date=date(2026, 10, 20), time_slot="morning")


def phone_items(quantity=2, unit_weight_kg=0.2):
    return [PickupItemIn(category_id="smartphones", quantity=quantity, unit_weight_kg=unit_weight_kg)]


@pytest.fixture
def pickup_id(store, donor, location, schedule):
    return lifecycle.create_request(store, donor.id, location, schedule, phone_items())


ORDER = [
    PickupStatus.PENDING,
    PickupStatus.MATCHED,
    PickupStatus.COLLECTOR_ENROUTE,
    PickupStatus.ARRIVED,
    PickupStatus.INSPECTING,
    PickupStatus.COLLECTED,
]


@pytest.fixture
def drive_to(store):
    """Walk a pickup forward from its current status until it reaches `target`."""

    def drive(request_id, target):
        current = lifecycle.get_request(store, request_id).status
        start, stop = ORDER.index(current), ORDER.index(PickupStatus(target))
        for status in ORDER[start + 1:stop + 1]:
            if status == PickupStatus.MATCHED:
                lifecycle.assign_collector(store, request_id, "collector-7")
            else:
                lifecycle.advance_status(store, request_id, status)

    return drive
