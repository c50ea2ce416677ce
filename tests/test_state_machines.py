from datetime import datetime, timedelta

import pytest

from conftest import make_donation
from donations.models import DonationStatus, Task, TaskStatus
from donations.state_machines import (
    DonationStateException,
    TaskStateException,
    can_transition_donation,
    can_transition_task,
    transition_donation,
    transition_task,
)

PICKUP_AT = datetime(2026, 10, 14, 10, 0)


def make_task(status=TaskStatus.PENDING):
    return Task(id="t1", donation_id="d1", pickup_location=(0.0, 0.0), dropoff_location=(0.0, 0.1), status=status)


def test_donation_moves_forward_only():
    assert can_transition_donation(DonationStatus.ACTIVE, DonationStatus.MATCHED)
    assert can_transition_donation(DonationStatus.PENDING, DonationStatus.ACTIVE)
    assert not can_transition_donation(DonationStatus.MATCHED, DonationStatus.ACTIVE)
    assert not can_transition_donation(DonationStatus.MATCHED, DonationStatus.MATCHED)


def test_donation_cancel_only_from_non_terminal():
    assert can_transition_donation(DonationStatus.SCHEDULED, DonationStatus.CANCELLED)
    assert not can_transition_donation(DonationStatus.DELIVERED, DonationStatus.CANCELLED)
    assert not can_transition_donation(DonationStatus.CANCELLED, DonationStatus.ACTIVE)


def test_donation_transition_stamps_times(pickup_location):
    donation = make_donation(pickup_location, status=DonationStatus.SCHEDULED)

    transition_donation(donation, DonationStatus.PICKED_UP, PICKUP_AT)
    transition_donation(donation, DonationStatus.DELIVERED, PICKUP_AT + timedelta(minutes=40))

    assert donation.pickup_time == PICKUP_AT
    assert donation.delivery_time == PICKUP_AT + timedelta(minutes=40)


def test_invalid_donation_transition_raises(pickup_location):
    donation = make_donation(pickup_location, status=DonationStatus.DELIVERED)

    with pytest.raises(DonationStateException):
        transition_donation(donation, DonationStatus.ACTIVE)
    assert donation.status == DonationStatus.DELIVERED


def test_task_full_lifecycle_records_completion_time():
    task = make_task()

    transition_task(task, TaskStatus.ASSIGNED, PICKUP_AT - timedelta(minutes=10))
    transition_task(task, TaskStatus.PICKED_UP, PICKUP_AT)
    transition_task(task, TaskStatus.IN_TRANSIT, PICKUP_AT + timedelta(minutes=1))
    transition_task(task, TaskStatus.DELIVERED, PICKUP_AT + timedelta(minutes=30))

    assert task.assigned_at == PICKUP_AT - timedelta(minutes=10)
    assert task.actual_pickup_time == PICKUP_AT
    assert task.completion_time_s == 1800


def test_task_cannot_skip_steps():
    assert not can_transition_task(TaskStatus.PENDING, TaskStatus.PICKED_UP)
    assert not can_transition_task(TaskStatus.ASSIGNED, TaskStatus.DELIVERED)

    with pytest.raises(TaskStateException):
        transition_task(make_task(TaskStatus.ASSIGNED), TaskStatus.DELIVERED)


def test_task_cancellation_keeps_notes():
    task = transition_task(make_task(TaskStatus.ASSIGNED), TaskStatus.CANCELLED, PICKUP_AT, notes="donor unreachable")

    assert task.cancelled_at == PICKUP_AT
    assert task.cancellation_notes == "donor unreachable"
    assert not can_transition_task(TaskStatus.CANCELLED, TaskStatus.ASSIGNED)
