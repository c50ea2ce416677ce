"""
Purpose: Drive courier assignment for one accepted donation until it sticks.
What it does:

start(donation_id)
   create the Task (PENDING) -> SEARCHING

SEARCHING
   no available couriers            -> RETRY_SCHEDULED (5 min)
   couriers, but none suitable      -> RETRY_SCHEDULED (10 min)
   planner pick passes live check   -> ASSIGNED
   pick fails live check            -> re-plan once without that courier
                                       -> ASSIGNED | ABANDONED
   unexpected exception             -> EMERGENCY_FALLBACK

EMERGENCY_FALLBACK
   scan up to 5 active couriers (any availability), bind the first with room
   -> ASSIGNED | FAILED (manual intervention, no automatic retry)

RETRY_SCHEDULED
   timer fires -> SEARCHING, until max_retry_attempts searches -> FAILED

On bind: Task.volunteer_id + ASSIGNED, Donation.assigned_volunteer +
SCHEDULED, then a fire-and-forget notification.

Rule: the capacity check at bind time reads the store, never a cache, and the
task write is conditional on the task still being PENDING and unassigned.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, List, Optional

from donations.models import Donation, DonationStatus, Task, TaskStatus
from donations.state_machines import transition_donation, transition_task
from volunteers.planner import NoAvailableVolunteersError, NoSuitableVolunteerError, VolunteerAssignmentPlanner
from volunteers.policy import EmergencyPolicy, VolunteerPolicy, default_volunteer_policy
from volunteers.selection import VolunteerCapacityError, VolunteerDirectory, can_accept_task, haversine_km

from .notifications import NotificationKind, dispatch_notification
from .scheduler import RetryScheduler

logger = logging.getLogger(__name__)

# tasks that already carry (or are waiting for) a courier
OPEN_TASK_STATUSES = (TaskStatus.PENDING, TaskStatus.ASSIGNED, TaskStatus.PICKED_UP, TaskStatus.IN_TRANSIT)


class AssignmentError(Exception):
    """Raised when assignment cannot start for a donation."""
    pass


class AssignmentState(str, Enum):
    SEARCHING = "searching"
    ASSIGNED = "assigned"
    RETRY_SCHEDULED = "retry_scheduled"
    EMERGENCY_FALLBACK = "emergency_fallback"
    FAILED = "failed"
    # live capacity re-check failed twice; task left PENDING for a rescan
    ABANDONED = "abandoned"


@dataclass
class AssignmentAttempt:
    task_id: str
    donation_id: str
    state: AssignmentState = AssignmentState.SEARCHING
    searches: int = 0
    volunteer_id: Optional[str] = None
    next_retry_at: Optional[datetime] = None
    last_error: Optional[str] = None
    history: List[AssignmentState] = field(default_factory=list)


class AssignmentEscalationController:
    def __init__(
        self,
        store,
        planner: Optional[VolunteerAssignmentPlanner] = None,
        directory: Optional[VolunteerDirectory] = None,
        policy: Optional[VolunteerPolicy] = None,
        notifier=None,
        scheduler=None,
        clock: Callable[[], datetime] = datetime.utcnow,
        on_assigned: Optional[Callable[[str, str], None]] = None,
    ):
        self.store = store
        self.policy = policy or default_volunteer_policy()
        self.planner = planner or VolunteerAssignmentPlanner(policy=self.policy)
        self.directory = directory or VolunteerDirectory(store, self.policy)
        self.notifier = notifier
        self.scheduler = scheduler or RetryScheduler()
        self._clock = clock
        self.on_assigned = on_assigned

        self._attempts: Dict[str, AssignmentAttempt] = {}
        self._lock = threading.Lock()
        self._start_lock = threading.Lock()

    #----------------
    # public
    #----------------
    def start(self, donation_id: str) -> AssignmentAttempt:
        """
        Creates the courier task for an accepted donation and runs the first
        search. Calling it again for the same donation reuses the open task.
        """
        donation = self.store.get_donation(donation_id)
        if donation is None:
            raise AssignmentError(f"Donation {donation_id} not found")
        if donation.accepted_by is None:
            raise AssignmentError(f"Donation {donation_id} has not been accepted")

        # two starts for one donation must not create two tasks
        with self._start_lock:
            existing = self.store.find_tasks(donation_id=donation_id, statuses=OPEN_TASK_STATUSES)
            if existing:
                task = existing[0]
                attempt = self.attempt_for(task.id)
                if attempt is not None and attempt.state != AssignmentState.ABANDONED:
                    return attempt
                if task.status != TaskStatus.PENDING:
                    return self._track(task.id, donation_id, AssignmentState.ASSIGNED, task.volunteer_id)
            else:
                task = self.store.add_task(Task.for_donation(donation, self._dropoff_for(donation)))
                logger.info("Created task %s for donation %s", task.id, donation_id)

            self._track(task.id, donation_id, AssignmentState.SEARCHING)
        return self.run_search(task.id)

    def run_search(self, task_id: str) -> AssignmentAttempt:
        """
        One SEARCHING pass. Scheduled retries re-enter here.
        """
        task = self.store.get_task(task_id)
        if task is None:
            raise AssignmentError(f"Task {task_id} not found")

        attempt = self.attempt_for(task_id) or self._track(task_id, task.donation_id, AssignmentState.SEARCHING)
        if task.status != TaskStatus.PENDING:
            # bound elsewhere or cancelled while a retry was pending
            state = AssignmentState.ASSIGNED if task.volunteer_id else AssignmentState.ABANDONED
            return self._enter(task_id, state, volunteer_id=task.volunteer_id)

        self._enter(task_id, AssignmentState.SEARCHING, searches=attempt.searches + 1)

        try:
            pool = self.directory.available_near(task.pickup_location)
            if not pool:
                logger.info("No available volunteers for task %s", task_id)
                return self._schedule_retry(task_id, self._retry_delay(task_id), "no available couriers")
            return self._plan_and_bind(task, pool)
        except Exception as exc:
            logger.exception("Assignment search failed for task %s, entering emergency fallback", task_id)
            self._enter(task_id, AssignmentState.EMERGENCY_FALLBACK, last_error=str(exc))
            return self._emergency_fallback(task)

    def assign(self, task_id: str, volunteer_id: str) -> AssignmentAttempt:
        """
        Manual bind by an operator, e.g. to resolve a FAILED task.
        """
        task = self.store.get_task(task_id)
        if task is None:
            raise AssignmentError(f"Task {task_id} not found")
        if task.status != TaskStatus.PENDING:
            raise AssignmentError(f"Task {task_id} is {task.status.value}, not pending")

        if self.attempt_for(task_id) is None:
            self._track(task_id, task.donation_id, AssignmentState.SEARCHING)

        if not self._bind(task, volunteer_id, require_available=False):
            raise VolunteerCapacityError(f"Volunteer {volunteer_id} cannot take task {task_id}")
        return self.attempt_for(task_id)

    def state_of(self, task_id: str) -> Optional[AssignmentState]:
        attempt = self.attempt_for(task_id)
        return attempt.state if attempt else None

    def attempt_for(self, task_id: str) -> Optional[AssignmentAttempt]:
        with self._lock:
            attempt = self._attempts.get(task_id)
            return replace(attempt, history=list(attempt.history)) if attempt else None

    def cancel(self, task_id: str) -> bool:
        """Drops a pending retry for a task (e.g. the task was cancelled)."""
        return self.scheduler.cancel(self._retry_key(task_id))

    #----------------
    # search
    #----------------
    def _plan_and_bind(self, task: Task, pool) -> AssignmentAttempt:
        try:
            plan = self.planner.plan(pool, task.pickup_location, task.urgency)
        except NoSuitableVolunteerError:
            return self._schedule_retry(task.id, self.policy.no_suitable_retry_seconds, "no suitable courier")
        except NoAvailableVolunteersError:
            return self._schedule_retry(task.id, self._retry_delay(task.id), "no available couriers")

        first_choice = plan.volunteer.id
        if self._bind(task, first_choice, require_available=True):
            return self.attempt_for(task.id)

        # one extra attempt without the courier that failed the live check
        logger.info("Volunteer %s failed the capacity re-check for task %s, re-planning", first_choice, task.id)
        try:
            plan = self.planner.plan(pool, task.pickup_location, task.urgency, exclude_ids=[first_choice])
        except NoAvailableVolunteersError:
            return self._abandon(task.id, "no other courier after capacity re-check")

        if self._bind(task, plan.volunteer.id, require_available=True):
            return self.attempt_for(task.id)
        return self._abandon(task.id, "capacity re-check failed twice")

    def _emergency_fallback(self, task: Task) -> AssignmentAttempt:
        try:
            scanned = self.store.find_volunteers(available=None, limit=self.policy.emergency_scan_limit)
            candidates = list(scanned)

            if self.policy.emergency_policy == EmergencyPolicy.NEAREST and task.pickup_location is not None:
                candidates = [volunteer for volunteer in candidates if volunteer.location is not None]
                candidates.sort(key=lambda volunteer: haversine_km(volunteer.location, task.pickup_location))

            for volunteer in candidates:
                if self._bind(task, volunteer.id, require_available=False):
                    logger.warning("Emergency fallback bound volunteer %s to task %s", volunteer.id, task.id)
                    return self.attempt_for(task.id)
        except Exception as exc:
            logger.exception("Emergency fallback errored for task %s", task.id)
            self._enter(task.id, AssignmentState.FAILED, last_error=str(exc))
            return self.attempt_for(task.id)

        logger.error(
            "Emergency fallback exhausted %d volunteers for task %s, manual intervention required",
            len(scanned), task.id,
        )
        return self._enter(task.id, AssignmentState.FAILED, last_error="emergency fallback exhausted")

    #----------------
    # bind
    #----------------
    def _bind(self, task: Task, volunteer_id: str, require_available: bool) -> bool:
        if not can_accept_task(self.store, volunteer_id, task, self.policy, require_available):
            return False

        now = self._clock()

        def assign(current: Task) -> None:
            current.volunteer_id = volunteer_id
            transition_task(current, TaskStatus.ASSIGNED, now)

        # the capacity check is repeated under the store lock so two tasks
        # cannot both take the last slot of one courier
        updated = self.store.update_task(
            task.id,
            assign,
            expected=lambda current: (
                current.status == TaskStatus.PENDING
                and current.volunteer_id is None
                and can_accept_task(self.store, volunteer_id, current, self.policy, require_available)
            ),
        )
        if updated is None:
            current = self.store.get_task(task.id)
            if current is not None and current.status == TaskStatus.PENDING:
                return False
            # someone else moved the task on; nothing left to do here
            volunteer = current.volunteer_id if current else None
            self._enter(task.id, AssignmentState.ASSIGNED if volunteer else AssignmentState.ABANDONED, volunteer_id=volunteer)
            return True

        def schedule(donation: Donation) -> None:
            donation.assigned_volunteer = volunteer_id
            transition_donation(donation, DonationStatus.SCHEDULED, now)

        donation = self.store.update_donation(
            task.donation_id,
            schedule,
            expected=lambda current: current.status == DonationStatus.MATCHED,
        )
        if donation is None:
            logger.warning("Donation %s was not MATCHED when task %s got a courier", task.donation_id, task.id)

        self.scheduler.cancel(self._retry_key(task.id))
        self._enter(task.id, AssignmentState.ASSIGNED, volunteer_id=volunteer_id, next_retry_at=None)
        logger.info("Task %s assigned to volunteer %s", task.id, volunteer_id)

        dispatch_notification(self.notifier, volunteer_id, NotificationKind.TASK_ASSIGNED, {
            "task_id": task.id,
            "donation_id": task.donation_id,
            "urgency": task.urgency.value,
            "pickup_location": task.pickup_location,
            "dropoff_location": task.dropoff_location,
        })

        if self.on_assigned is not None:
            try:
                self.on_assigned(task.id, volunteer_id)
            except Exception:
                logger.exception("Post-assignment hook failed for task %s", task.id)
        return True

    #----------------
    # retry / terminal states
    #----------------
    def _retry_delay(self, task_id: str) -> int:
        attempt = self.attempt_for(task_id)
        searches = attempt.searches if attempt else 1
        delays = self.policy.retry_delays_seconds
        return delays[min(max(searches, 1) - 1, len(delays) - 1)]

    def _schedule_retry(self, task_id: str, delay_seconds: int, reason: str) -> AssignmentAttempt:
        attempt = self.attempt_for(task_id)
        if attempt is not None and attempt.searches >= self.policy.max_retry_attempts:
            logger.error("Task %s still unassigned after %d searches (%s), giving up", task_id, attempt.searches, reason)
            return self._enter(task_id, AssignmentState.FAILED, last_error=reason)

        self.scheduler.schedule(self._retry_key(task_id), delay_seconds, lambda: self.run_search(task_id))
        logger.info("Task %s: %s, retrying in %d s", task_id, reason, delay_seconds)
        return self._enter(
            task_id,
            AssignmentState.RETRY_SCHEDULED,
            last_error=reason,
            next_retry_at=self._clock() + timedelta(seconds=delay_seconds),
        )

    def _abandon(self, task_id: str, reason: str) -> AssignmentAttempt:
        logger.warning("Assignment for task %s stopped: %s", task_id, reason)
        return self._enter(task_id, AssignmentState.ABANDONED, last_error=reason)

    #----------------
    # bookkeeping
    #----------------
    def _dropoff_for(self, donation: Donation):
        recipient = self.store.get_recipient(donation.accepted_by)
        return recipient.location if recipient else None

    @staticmethod
    def _retry_key(task_id: str) -> str:
        return f"assign:{task_id}"

    def _track(
        self,
        task_id: str,
        donation_id: str,
        state: AssignmentState,
        volunteer_id: Optional[str] = None,
    ) -> AssignmentAttempt:
        with self._lock:
            attempt = self._attempts.get(task_id)
            if attempt is None:
                attempt = AssignmentAttempt(task_id=task_id, donation_id=donation_id, state=state)
                self._attempts[task_id] = attempt
            attempt.state = state
            attempt.history.append(state)
            if volunteer_id is not None:
                attempt.volunteer_id = volunteer_id
        return self.attempt_for(task_id)

    def _enter(self, task_id: str, state: AssignmentState, **changes) -> AssignmentAttempt:
        with self._lock:
            attempt = self._attempts[task_id]
            attempt.state = state
            attempt.history.append(state)
            for name, value in changes.items():
                setattr(attempt, name, value)
        return self.attempt_for(task_id)
