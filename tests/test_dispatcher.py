import random
import threading
from datetime import datetime

import pytest

from conftest import MockOSRM, make_donation, make_recipient
from dispatch.dispatcher import Dispatcher
from dispatch.escalation import AssignmentState
from dispatch.notifications import NotificationKind
from dispatch.scheduler import RetryScheduler
from donations.models import DonationStatus, OfferStatus, TaskStatus
from matching.response import DonationNotFoundError, StateConflictError
from routing.traffic_service import GeoTrafficOracle

OFF_PEAK = datetime(2026, 10, 14, 12, 0)


@pytest.fixture
def dispatcher(store, notifier, scheduler):
    store.add_recipient(make_recipient("r1"))
    oracle = GeoTrafficOracle(osrm_client=MockOSRM(distance=3000.0, duration=400.0), clock=lambda: OFF_PEAK)
    dispatcher = Dispatcher(
        store, oracle=oracle, notifier=notifier, scheduler=scheduler, max_workers=2, rng=random.Random(7),
    )
    yield dispatcher
    dispatcher.shutdown()


def test_donation_flows_from_activation_to_delivery(dispatcher, store, notifier, pickup_location, located_volunteer):
    store.add_volunteer(located_volunteer)
    donation = store.add_donation(make_donation(pickup_location, status=DonationStatus.PENDING))

    match = dispatcher.activate_donation(donation.id).result(timeout=10)
    assert [offer.recipient_id for offer in match.offers] == ["r1"]
    assert notifier.kinds_for("r1") == [NotificationKind.DONATION_OFFER]

    dispatcher.accept_donation(donation.id, "r1")
    dispatcher.drain(timeout=10)

    stored = store.get_donation(donation.id)
    assert stored.status == DonationStatus.SCHEDULED
    assert stored.assigned_volunteer == located_volunteer.id
    assert notifier.kinds_for("donor_1") == [NotificationKind.DONATION_ACCEPTED]
    assert notifier.kinds_for(located_volunteer.id) == [NotificationKind.TASK_ASSIGNED]

    task = store.find_tasks(donation_id=donation.id)[0]
    assert task.status == TaskStatus.ASSIGNED
    assert task.optimized_route.optimized
    assert task.optimized_route.total_distance_m == 3000.0

    dispatcher.update_task_status(task.id, TaskStatus.PICKED_UP, volunteer_id=located_volunteer.id)
    assert store.get_donation(donation.id).status == DonationStatus.PICKED_UP

    dispatcher.update_task_status(task.id, TaskStatus.IN_TRANSIT, volunteer_id=located_volunteer.id)
    delivered = dispatcher.update_task_status(task.id, TaskStatus.DELIVERED, volunteer_id=located_volunteer.id)
    dispatcher.drain(timeout=10)

    assert delivered.actual_delivery_time is not None
    assert store.get_donation(donation.id).status == DonationStatus.DELIVERED
    assert notifier.kinds_for("r1").count(NotificationKind.TASK_STATUS) == 3


def test_only_assigned_courier_can_update_task(dispatcher, store, pickup_location, located_volunteer):
    store.add_volunteer(located_volunteer)
    donation = store.add_donation(make_donation(pickup_location))
    dispatcher.accept_donation(donation.id, "r1")
    dispatcher.drain(timeout=10)
    task = store.find_tasks(donation_id=donation.id)[0]

    with pytest.raises(StateConflictError):
        dispatcher.update_task_status(task.id, TaskStatus.PICKED_UP, volunteer_id="someone_else")

    assert store.get_task(task.id).status == TaskStatus.ASSIGNED


def test_activation_guards(dispatcher, store, pickup_location):
    matched = store.add_donation(make_donation(pickup_location, status=DonationStatus.MATCHED, accepted_by="r1"))

    with pytest.raises(StateConflictError):
        dispatcher.activate_donation(matched.id)
    with pytest.raises(DonationNotFoundError):
        dispatcher.activate_donation("missing")


def test_cancelling_task_drops_pending_retry(dispatcher, store, scheduler, pickup_location):
    donation = store.add_donation(make_donation(pickup_location))
    dispatcher.accept_donation(donation.id, "r1")
    dispatcher.drain(timeout=10)

    task = store.find_tasks(donation_id=donation.id)[0]
    assert dispatcher.controller.state_of(task.id) == AssignmentState.RETRY_SCHEDULED
    assert len(scheduler.jobs) == 1

    cancelled = dispatcher.update_task_status(task.id, TaskStatus.CANCELLED, notes="donor withdrew")

    assert cancelled.cancellation_notes == "donor withdrew"
    assert scheduler.jobs == []


def test_decline_through_dispatcher(dispatcher, store, pickup_location):
    donation = store.add_donation(make_donation(pickup_location, status=DonationStatus.PENDING))
    dispatcher.activate_donation(donation.id).result(timeout=10)

    offer = dispatcher.decline_donation(donation.id, "r1", "closed today")

    assert offer.status == OfferStatus.DECLINED
    assert store.get_donation(donation.id).status == DonationStatus.ACTIVE


def test_rescan_restarts_stalled_pipelines(dispatcher, store, pickup_location, located_volunteer):
    store.add_volunteer(located_volunteer)
    unmatched = store.add_donation(make_donation(pickup_location))
    unassigned = store.add_donation(make_donation(pickup_location, status=DonationStatus.MATCHED, accepted_by="r1"))

    futures = dispatcher.rescan_active_donations()
    dispatcher.drain(timeout=10)

    assert len(futures) == 2
    assert store.get_donation(unmatched.id).offer_for("r1") is not None
    assert store.get_donation(unassigned.id).assigned_volunteer == located_volunteer.id


def test_retry_scheduler_runs_and_replaces_jobs():
    scheduler = RetryScheduler()
    fired = []
    done = threading.Event()

    scheduler.schedule("assign:t1", 30, lambda: fired.append("stale"))
    scheduler.schedule("assign:t1", 0.01, lambda: (fired.append("fresh"), done.set()))
    assert scheduler.pending() == 1

    assert done.wait(timeout=5)
    assert fired == ["fresh"]
    scheduler.shutdown()


def test_retry_scheduler_cancel():
    scheduler = RetryScheduler()
    scheduler.schedule("assign:t1", 30, lambda: None)

    assert scheduler.cancel("assign:t1")
    assert not scheduler.cancel("assign:t1")
    assert scheduler.pending() == 0
