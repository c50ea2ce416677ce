"""
Purpose: The persistence collaborator (in-memory, lock guarded).
What it does:
- Owns the records the engine works on:
   - donations
   - tasks
   - recipients
   - volunteers

Provides operations:
   - add_* / get_* (reads return detached copies)
   - find_* by criteria
   - update_donation / update_task: atomic conditional update
     ("apply mutate only if expected(record) holds"), the
     find-one-and-update shape a document database gives you
   - live counters used by bind-time capacity checks

Rule: Store owns record state, callers never mutate a returned record and
expect it to persist. There are no multi-record transactions.
"""

from __future__ import annotations

import copy
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional

from volunteers.models import Volunteer, VolunteerStatus

from .models import (
    Donation,
    DonationStatus,
    RecipientCandidate,
    Task,
    TaskStatus,
)

# donation statuses that count against a recipient's capacity
RECIPIENT_LOAD_STATUSES = (
    DonationStatus.ACTIVE,
    DonationStatus.MATCHED,
    DonationStatus.SCHEDULED,
    DonationStatus.PICKED_UP,
)

# task statuses that count against a volunteer's workload
ACTIVE_TASK_STATUSES = (
    TaskStatus.ASSIGNED,
    TaskStatus.PICKED_UP,
    TaskStatus.IN_TRANSIT,
)


@dataclass
class InMemoryStore:
    """
    In-memory record store.

    Every read hands out a deep copy and every write goes through the lock,
    so two concurrent updates to the same donation cannot lose each other.
    """
    _donations: Dict[str, Donation] = field(default_factory=dict)
    _tasks: Dict[str, Task] = field(default_factory=dict)
    _recipients: Dict[str, RecipientCandidate] = field(default_factory=dict)
    _volunteers: Dict[str, Volunteer] = field(default_factory=dict)
    _lock: threading.RLock = field(default_factory=threading.RLock, repr=False)

    # --- Donations ---

    def add_donation(self, donation: Donation) -> Donation:
        with self._lock:
            # idempotency : dont double insert
            if donation.id not in self._donations:
                self._donations[donation.id] = copy.deepcopy(donation)
            return copy.deepcopy(self._donations[donation.id])

    def get_donation(self, donation_id: str) -> Optional[Donation]:
        with self._lock:
            donation = self._donations.get(donation_id)
            return copy.deepcopy(donation) if donation else None

    def find_donations(
        self,
        *,
        statuses: Optional[Iterable[DonationStatus]] = None,
        accepted_by: Optional[str] = None,
    ) -> List[Donation]:
        wanted = set(statuses) if statuses is not None else None
        with self._lock:
            found = []
            for donation in self._donations.values():
                if wanted is not None and donation.status not in wanted:
                    continue
                if accepted_by is not None and donation.accepted_by != accepted_by:
                    continue
                found.append(copy.deepcopy(donation))
            return found

    def update_donation(
        self,
        donation_id: str,
        mutate: Callable[[Donation], None],
        *,
        expected: Optional[Callable[[Donation], bool]] = None,
    ) -> Optional[Donation]:
        """
        Atomic conditional update.

        Returns the updated copy, or None when the record is missing or
        `expected` does not hold. If `mutate` raises, nothing is written and
        the exception propagates to the caller.
        """
        with self._lock:
            current = self._donations.get(donation_id)
            if current is None:
                return None
            if expected is not None and not expected(current):
                return None

            working = copy.deepcopy(current)
            mutate(working)
            working.updated_at = datetime.utcnow()
            self._donations[donation_id] = working
            return copy.deepcopy(working)

    def recipient_load(self, recipient_id: str) -> int:
        """
        Live count of donations a recipient has accepted and not yet received.
        """
        with self._lock:
            return sum(
                1
                for donation in self._donations.values()
                if donation.accepted_by == recipient_id and donation.status in RECIPIENT_LOAD_STATUSES
            )

    # --- Recipients ---

    def add_recipient(self, recipient: RecipientCandidate) -> None:
        with self._lock:
            self._recipients[recipient.id] = recipient

    def get_recipient(self, recipient_id: str) -> Optional[RecipientCandidate]:
        with self._lock:
            return self._recipients.get(recipient_id)

    def find_recipients(self, *, verified_only: bool = True, active_only: bool = True) -> List[RecipientCandidate]:
        with self._lock:
            recipients = list(self._recipients.values())
        if verified_only:
            recipients = [recipient for recipient in recipients if recipient.is_verified]
        if active_only:
            recipients = [recipient for recipient in recipients if recipient.is_active]
        return recipients

    # --- Volunteers ---

    def add_volunteer(self, volunteer: Volunteer) -> None:
        with self._lock:
            self._volunteers[volunteer.id] = volunteer

    def get_volunteer(self, volunteer_id: str) -> Optional[Volunteer]:
        with self._lock:
            return self._volunteers.get(volunteer_id)

    def find_volunteers(
        self,
        *,
        available: Optional[bool] = None,
        status: Optional[VolunteerStatus] = VolunteerStatus.ACTIVE,
        limit: Optional[int] = None,
    ) -> List[Volunteer]:
        """
        available=None means "any availability flag".
        """
        with self._lock:
            volunteers = list(self._volunteers.values())

        found: List[Volunteer] = []
        for volunteer in volunteers:
            if status is not None and volunteer.status != status:
                continue
            if available is not None and volunteer.is_available != available:
                continue
            found.append(volunteer)
            if limit is not None and len(found) >= limit:
                break
        return found

    def update_volunteer(self, volunteer_id: str, **changes) -> Optional[Volunteer]:
        # Volunteer is a frozen dataclass, so we store a new instance via replace
        with self._lock:
            volunteer = self._volunteers.get(volunteer_id)
            if volunteer is None:
                return None
            updated = replace(volunteer, **changes)
            self._volunteers[volunteer_id] = updated
            return updated

    # --- Tasks ---

    def add_task(self, task: Task) -> Task:
        with self._lock:
            if task.id not in self._tasks:
                self._tasks[task.id] = copy.deepcopy(task)
            return copy.deepcopy(self._tasks[task.id])

    def get_task(self, task_id: str) -> Optional[Task]:
        with self._lock:
            task = self._tasks.get(task_id)
            return copy.deepcopy(task) if task else None

    def find_tasks(
        self,
        *,
        donation_id: Optional[str] = None,
        volunteer_id: Optional[str] = None,
        statuses: Optional[Iterable[TaskStatus]] = None,
    ) -> List[Task]:
        wanted = set(statuses) if statuses is not None else None
        with self._lock:
            found = []
            for task in self._tasks.values():
                if donation_id is not None and task.donation_id != donation_id:
                    continue
                if volunteer_id is not None and task.volunteer_id != volunteer_id:
                    continue
                if wanted is not None and task.status not in wanted:
                    continue
                found.append(copy.deepcopy(task))
            found.sort(key=lambda task: task.created_at)
            return found

    def update_task(
        self,
        task_id: str,
        mutate: Callable[[Task], None],
        *,
        expected: Optional[Callable[[Task], bool]] = None,
    ) -> Optional[Task]:
        """
        Atomic conditional update, same contract as update_donation.
        """
        with self._lock:
            current = self._tasks.get(task_id)
            if current is None:
                return None
            if expected is not None and not expected(current):
                return None

            working = copy.deepcopy(current)
            mutate(working)
            working.updated_at = datetime.utcnow()
            self._tasks[task_id] = working
            return copy.deepcopy(working)

    def active_task_count(self, volunteer_id: str) -> int:
        with self._lock:
            return sum(
                1
                for task in self._tasks.values()
                if task.volunteer_id == volunteer_id and task.status in ACTIVE_TASK_STATUSES
            )
