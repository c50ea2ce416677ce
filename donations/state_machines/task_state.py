from datetime import datetime
from typing import Dict, Optional, Set

from donations.models import Task, TaskStatus


class TaskStateException(Exception):
    """Raised when an invalid task transition is attempted."""
    pass


VALID_TASK_TRANSITIONS: Dict[TaskStatus, Set[TaskStatus]] = {
    TaskStatus.PENDING: {TaskStatus.ASSIGNED, TaskStatus.CANCELLED},
    TaskStatus.ASSIGNED: {TaskStatus.PICKED_UP, TaskStatus.CANCELLED},
    TaskStatus.PICKED_UP: {TaskStatus.IN_TRANSIT, TaskStatus.CANCELLED},
    TaskStatus.IN_TRANSIT: {TaskStatus.DELIVERED, TaskStatus.CANCELLED},
    TaskStatus.DELIVERED: set(),
    TaskStatus.CANCELLED: set(),
}


def can_transition_task(current: TaskStatus, new: TaskStatus) -> bool:
    return new in VALID_TASK_TRANSITIONS.get(current, set())


def transition_task(
    task: Task,
    new_status: TaskStatus,
    now: Optional[datetime] = None,
    notes: Optional[str] = None,
) -> Task:
    """
    Applies one courier progress step and records its timestamps.
    Completion time is measured from the actual pickup to the delivery.
    """
    if not can_transition_task(task.status, new_status):
        raise TaskStateException(
            f"Invalid status transition from {task.status.value} to {new_status.value} for task {task.id}"
        )

    now = now or datetime.utcnow()
    task.status = new_status

    if new_status == TaskStatus.ASSIGNED:
        task.assigned_at = now
    elif new_status == TaskStatus.PICKED_UP and task.actual_pickup_time is None:
        task.actual_pickup_time = now
    elif new_status == TaskStatus.DELIVERED and task.actual_delivery_time is None:
        task.actual_delivery_time = now
        if task.actual_pickup_time:
            task.completion_time_s = (now - task.actual_pickup_time).total_seconds()
    elif new_status == TaskStatus.CANCELLED:
        task.cancelled_at = now
        task.cancellation_notes = notes

    return task
