"""
Purpose: Orchestrator / pipeline glue (the "one object" entry point).
What it does:
Wires the matching and assignment components around one store and runs the
slow parts as detached background work:

activate_donation  -> donation ACTIVE, matching submitted to the pool
accept_donation    -> synchronous accept, assignment submitted to the pool
assignment bound   -> courier route refresh submitted to the pool
update_task_status -> courier progress, mirrored onto the donation

Pipelines for different donations run independently; inside one pipeline the
steps are sequential. Callers get a Future back and never have to wait on it;
drain() exists for scripts, tests and graceful shutdown.
"""

from __future__ import annotations

import logging
import random
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait as wait_for_futures
from datetime import datetime
from typing import List, Optional, Set

from donations.models import DonationStatus, OfferStatus, Task, TaskStatus
from donations.state_machines import can_transition_donation, transition_donation, transition_task
from matching.policy import MatchingPolicy, default_matching_policy
from matching.response import AcceptanceResult, DonationNotFoundError, ResponseResolver, StateConflictError
from matching.selector import MatchSelector
from routing.route_service import RouteOptimizer
from routing.traffic_service import GeoTrafficOracle
from volunteers.fitness import VolunteerFitnessModel
from volunteers.planner import VolunteerAssignmentPlanner
from volunteers.policy import VolunteerPolicy, default_volunteer_policy
from volunteers.selection import VolunteerDirectory

from .escalation import OPEN_TASK_STATUSES, AssignmentEscalationController, AssignmentError, AssignmentState
from .notifications import LoggingNotifier, NotificationKind, dispatch_notification
from .scheduler import RetryScheduler

logger = logging.getLogger(__name__)

# courier progress that is mirrored onto the donation
DONATION_STATUS_FOR_TASK = {
    TaskStatus.PICKED_UP: DonationStatus.PICKED_UP,
    TaskStatus.DELIVERED: DonationStatus.DELIVERED,
}


class Dispatcher:
    def __init__(
        self,
        store,
        embedder=None,
        oracle: Optional[GeoTrafficOracle] = None,
        matching_policy: Optional[MatchingPolicy] = None,
        volunteer_policy: Optional[VolunteerPolicy] = None,
        notifier=None,
        scheduler=None,
        max_workers: int = 4,
        rng: Optional[random.Random] = None,
    ):
        self.store = store
        self.oracle = oracle or GeoTrafficOracle()
        self.matching_policy = matching_policy or default_matching_policy()
        self.volunteer_policy = volunteer_policy or default_volunteer_policy()
        self.notifier = notifier if notifier is not None else LoggingNotifier()
        self.scheduler = scheduler or RetryScheduler()
        self.executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="pipeline")
        self._inflight: Set[Future] = set()
        self._inflight_lock = threading.Lock()

        self.selector = MatchSelector(store, embedder, self.matching_policy, self.notifier)
        self.resolver = ResponseResolver(store, self.matching_policy, on_accepted=self._on_accepted)

        fitness_model = VolunteerFitnessModel(self.oracle, self.volunteer_policy, store)
        self.directory = VolunteerDirectory(store, self.volunteer_policy)
        self.controller = AssignmentEscalationController(
            store,
            planner=VolunteerAssignmentPlanner(fitness_model, self.volunteer_policy, rng),
            directory=self.directory,
            policy=self.volunteer_policy,
            notifier=self.notifier,
            scheduler=self.scheduler,
            on_assigned=self._on_assigned,
        )
        self.route_optimizer = RouteOptimizer(self.oracle)

    #----------------
    # matching
    #----------------
    def activate_donation(self, donation_id: str) -> Future:
        """
        Marks an analysed donation ACTIVE and starts matching in the background.
        """
        updated = self.store.update_donation(
            donation_id,
            lambda donation: transition_donation(donation, DonationStatus.ACTIVE),
            expected=lambda donation: donation.status in (DonationStatus.PENDING, DonationStatus.PROCESSING),
        )
        if updated is None:
            current = self.store.get_donation(donation_id)
            if current is None:
                raise DonationNotFoundError(f"Donation {donation_id} not found")
            if current.status != DonationStatus.ACTIVE:
                raise StateConflictError(f"Donation {donation_id} is {current.status.value}, cannot activate")
        return self.submit_matching(donation_id)

    def submit_matching(self, donation_id: str) -> Future:
        return self._submit(self.selector.find_matches, donation_id)

    def accept_donation(self, donation_id: str, recipient_id: str) -> AcceptanceResult:
        return self.resolver.accept(donation_id, recipient_id)

    def decline_donation(self, donation_id: str, recipient_id: str, reason: Optional[str] = None):
        return self.resolver.decline(donation_id, recipient_id, reason)

    def _on_accepted(self, result: AcceptanceResult) -> None:
        donation = self.store.get_donation(result.donation_id)
        dispatch_notification(self.notifier, donation.donor_id if donation else None, NotificationKind.DONATION_ACCEPTED, {
            "donation_id": result.donation_id,
            "recipient_id": result.recipient_id,
        })
        self.submit_assignment(result.donation_id)

    #----------------
    # assignment
    #----------------
    def submit_assignment(self, donation_id: str) -> Future:
        return self._submit(self.controller.start, donation_id)

    def _on_assigned(self, task_id: str, volunteer_id: str) -> None:
        self._submit(self.refresh_route, volunteer_id)

    def refresh_route(self, volunteer_id: str):
        return self.route_optimizer.optimize_for_volunteer(self.store, volunteer_id)

    def rescan_active_donations(self) -> List[Future]:
        """
        Recovery pass (e.g. after a restart dropped pending timers):
        re-matches ACTIVE donations with no open offers and restarts
        assignment for accepted donations that have no courier yet.
        """
        futures: List[Future] = []

        for donation in self.store.find_donations(statuses=[DonationStatus.ACTIVE]):
            if donation.accepted_by is None and not any(
                offer.status == OfferStatus.OFFERED for offer in donation.matched_recipients
            ):
                futures.append(self.submit_matching(donation.id))

        for donation in self.store.find_donations(statuses=[DonationStatus.MATCHED]):
            tasks = self.store.find_tasks(donation_id=donation.id, statuses=OPEN_TASK_STATUSES)
            waiting = not tasks or (
                tasks[0].status == TaskStatus.PENDING
                and self.controller.state_of(tasks[0].id) in (None, AssignmentState.ABANDONED)
            )
            if waiting:
                futures.append(self.submit_assignment(donation.id))

        logger.info("Rescan submitted %d pipelines", len(futures))
        return futures

    #----------------
    # courier progress
    #----------------
    def update_task_status(
        self,
        task_id: str,
        new_status: TaskStatus,
        volunteer_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Task:
        """
        Applies one courier progress step. PICKED_UP and DELIVERED move the
        donation along; CANCELLED drops any pending assignment retry.
        """
        now = datetime.utcnow()

        def apply(task: Task) -> None:
            if volunteer_id is not None and task.volunteer_id != volunteer_id:
                raise StateConflictError(f"Task {task.id} is not assigned to volunteer {volunteer_id}")
            transition_task(task, new_status, now, notes)

        updated = self.store.update_task(task_id, apply)
        if updated is None:
            raise AssignmentError(f"Task {task_id} not found")

        donation_status = DONATION_STATUS_FOR_TASK.get(new_status)
        if donation_status is not None:
            self.store.update_donation(
                updated.donation_id,
                lambda donation: transition_donation(donation, donation_status, now),
                expected=lambda donation: can_transition_donation(donation.status, donation_status),
            )

        if new_status == TaskStatus.CANCELLED:
            self.controller.cancel(task_id)

        donation = self.store.get_donation(updated.donation_id)
        dispatch_notification(self.notifier, donation.accepted_by if donation else None, NotificationKind.TASK_STATUS, {
            "task_id": task_id,
            "donation_id": updated.donation_id,
            "status": new_status.value,
        })

        if updated.volunteer_id is not None:
            self._submit(self.refresh_route, updated.volunteer_id)

        logger.info("Task %s -> %s", task_id, new_status.value)
        return updated

    #----------------
    # lifecycle
    #----------------
    def _submit(self, fn, *args) -> Future:
        future = self.executor.submit(fn, *args)
        with self._inflight_lock:
            self._inflight.add(future)
        future.add_done_callback(self._finished)
        return future

    def _finished(self, future: Future) -> None:
        with self._inflight_lock:
            self._inflight.discard(future)

        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error("Background pipeline failed: %r", error)

    def drain(self, timeout: Optional[float] = None) -> None:
        """
        Blocks until every submitted pipeline has finished, including the
        follow-up work those pipelines submitted while running.
        """
        deadline = time.monotonic() + timeout if timeout is not None else None
        while True:
            with self._inflight_lock:
                # a future can finish before _submit records it
                self._inflight = {future for future in self._inflight if not future.done()}
                pending = list(self._inflight)
            if not pending:
                return

            remaining = max(0.0, deadline - time.monotonic()) if deadline is not None else None
            _, not_done = wait_for_futures(pending, timeout=remaining)
            if not_done:
                raise TimeoutError(f"{len(not_done)} pipelines still running after {timeout} s")

    def shutdown(self, wait: bool = True) -> None:
        self.scheduler.shutdown()
        if wait:
            self.drain()
        self.executor.shutdown(wait=wait)
