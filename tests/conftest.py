import pytest

from donations.models import (
    Donation,
    DonationStatus,
    OrganizationType,
    Quantity,
    RecipientCandidate,
    VerificationStatus,
)
from donations.store import InMemoryStore
from routing.osrm_client import OSRMError
from volunteers.models import Volunteer


class MockOSRM:
    """
    Stands in for OSRMClient. Distances are a flat 1 km per leg unless a
    route table says otherwise; trips return `trip_order` when given.
    """
    def __init__(self, distance=1000.0, duration=120.0, trip_order=None, fail=False):
        self.distance = distance
        self.duration = duration
        self.trip_order = trip_order
        self.fail = fail
        self.route_calls = 0
        self.trip_calls = 0

    def compute_route(self, coords, geometry=False):
        self.route_calls += 1
        if self.fail:
            raise OSRMError("OSRM offline")
        return {"distance": self.distance, "duration": self.duration, "polyline": "abc" if geometry else None}

    def compute_trip(self, coords):
        self.trip_calls += 1
        if self.fail:
            raise OSRMError("OSRM offline")
        order = self.trip_order if self.trip_order is not None else list(range(len(coords)))
        return {
            "ordered_indices": list(order),
            "distance": self.distance * (len(coords) - 1),
            "duration": self.duration * (len(coords) - 1),
            "polyline": "trip",
        }


class RecordingNotifier:
    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    def notify(self, user_id, kind, payload):
        if self.fail:
            raise RuntimeError("push service down")
        self.sent.append((user_id, kind, payload))

    def kinds_for(self, user_id):
        return [kind for uid, kind, _ in self.sent if uid == user_id]


class FakeScheduler:
    """
    Records retries instead of starting timers. run_next() fires the oldest.
    """
    def __init__(self):
        self.jobs = []
        self.cancelled = []

    def schedule(self, key, delay_seconds, callback):
        self.jobs = [job for job in self.jobs if job[0] != key]
        self.jobs.append((key, delay_seconds, callback))

    def cancel(self, key):
        before = len(self.jobs)
        self.jobs = [job for job in self.jobs if job[0] != key]
        self.cancelled.append(key)
        return len(self.jobs) != before

    def run_next(self):
        key, _, callback = self.jobs.pop(0)
        return callback()

    def shutdown(self):
        self.jobs = []


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def pickup_location():
    # Harare city centre
    return (-17.8292, 31.0522)


def make_recipient(recipient_id, location=(-17.83, 31.05), **overrides):
    fields = dict(
        id=recipient_id,
        organization_name=f"{recipient_id} kitchen",
        organization_type=OrganizationType.COMMUNITY_KITCHEN,
        capacity=50,
        preferred_categories=("vegetables",),
        location=location,
        verification_status=VerificationStatus.VERIFIED,
    )
    fields.update(overrides)
    return RecipientCandidate(**fields)


def make_donation(pickup_location, **overrides):
    fields = dict(
        status=DonationStatus.ACTIVE,
        description="Fresh vegetables from the market",
        categories=["vegetables"],
        quantity=Quantity(amount=4, unit="kg"),
    )
    fields.update(overrides)
    return Donation.new("donor_1", pickup_location[0], pickup_location[1], **fields)


def add_load(store, recipient_id, count, pickup_location):
    """Accepted, undelivered donations counting against a recipient."""
    for _ in range(count):
        store.add_donation(make_donation(pickup_location, status=DonationStatus.SCHEDULED, accepted_by=recipient_id))


@pytest.fixture
def active_donation(store, pickup_location):
    return store.add_donation(make_donation(pickup_location))


@pytest.fixture
def located_volunteer(pickup_location):
    return Volunteer.new("vol_car", pickup_location[0] + 0.005, pickup_location[1], vehicle_type="car")


@pytest.fixture
def unlocated_volunteer():
    return Volunteer.new("vol_nowhere", vehicle_type="car")
