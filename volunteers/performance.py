"""
Purpose: Courier performance report.
What it does:
Aggregates a courier's finished tasks (delivered / cancelled) over a period
into completion rate, average distance and duration, an efficiency score and
a rating label.

efficiency = completion_rate - 5 x cancellations + min(20, speed bonus)
rating     = completion_rate / 20 (5 star scale) - 2 x cancellation share
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

import pandas as pd

from donations.models import TaskStatus

from .selection import VolunteerNotFoundError

PERIOD_DAYS = {
    "week": 7,
    "month": 30,
    "quarter": 90,
}

# Reference delivery time for the speed bonus, minutes.
REFERENCE_DELIVERY_MINUTES = 120


@dataclass(frozen=True)
class PerformanceReport:
    volunteer_id: str
    name: str
    vehicle_type: str
    is_available: bool
    period: str
    total_tasks: int
    completed: int
    cancelled: int
    completion_rate: int
    average_distance_km: int
    average_duration_min: int
    total_distance_km: int
    efficiency: int
    rating: str


def period_start(period: str, now: datetime) -> Optional[datetime]:
    """None means all time."""
    days = PERIOD_DAYS.get(period)
    return now - timedelta(days=days) if days is not None else None


def finished_tasks_frame(store, volunteer_id: str, since: Optional[datetime] = None) -> pd.DataFrame:
    rows = []
    for task in store.find_tasks(volunteer_id=volunteer_id, statuses=(TaskStatus.DELIVERED, TaskStatus.CANCELLED)):
        if since is not None and task.created_at < since:
            continue
        rows.append({
            "task_id": task.id,
            "status": task.status.value,
            "distance_m": task.optimized_route.total_distance_m if task.optimized_route else 0.0,
            "completion_time_s": task.completion_time_s or 0.0,
        })
    return pd.DataFrame(rows, columns=["task_id", "status", "distance_m", "completion_time_s"])


def efficiency_score(completion_rate: float, average_duration_s: float, cancellations: int) -> int:
    score = completion_rate - cancellations * 5
    if average_duration_s > 0:
        speed = (REFERENCE_DELIVERY_MINUTES / (average_duration_s / 60)) * 10
        score += min(speed, 20)
    return max(0, round(score))


def volunteer_rating(completion_rate: float, cancellations: int, total_tasks: int) -> str:
    if total_tasks == 0:
        return "new"

    rating = completion_rate / 20
    rating = max(0.0, rating - (cancellations / total_tasks) * 2)

    if rating >= 4.5:
        return "excellent"
    if rating >= 4.0:
        return "very-good"
    if rating >= 3.5:
        return "good"
    if rating >= 3.0:
        return "satisfactory"
    return "needs-improvement"


def performance_report(store, volunteer_id: str, period: str = "month", now: Optional[datetime] = None) -> PerformanceReport:
    volunteer = store.get_volunteer(volunteer_id)
    if volunteer is None:
        raise VolunteerNotFoundError(f"Volunteer {volunteer_id} not found")

    now = now or datetime.utcnow()
    frame = finished_tasks_frame(store, volunteer_id, period_start(period, now))

    delivered = frame[frame["status"] == TaskStatus.DELIVERED.value]
    completed = len(delivered)
    cancelled = int((frame["status"] == TaskStatus.CANCELLED.value).sum())
    total = completed + cancelled

    completion_rate = (completed / total) * 100 if total else 0.0
    total_distance_m = float(delivered["distance_m"].sum()) if completed else 0.0
    average_distance_m = total_distance_m / completed if completed else 0.0
    average_duration_s = float(delivered["completion_time_s"].mean()) if completed else 0.0

    return PerformanceReport(
        volunteer_id=volunteer.id,
        name=volunteer.name,
        vehicle_type=volunteer.vehicle_type.value,
        is_available=volunteer.is_available,
        period=period,
        total_tasks=total,
        completed=completed,
        cancelled=cancelled,
        completion_rate=round(completion_rate),
        average_distance_km=round(average_distance_m / 1000),
        average_duration_min=round(average_duration_s / 60),
        total_distance_km=round(total_distance_m / 1000),
        efficiency=efficiency_score(completion_rate, average_duration_s, cancelled),
        rating=volunteer_rating(completion_rate, cancelled, total),
    )
