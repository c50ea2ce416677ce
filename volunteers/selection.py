"""
Purpose: Business rules for which couriers may take a task.
What it does:
- filters the courier pool (active account, availability flag, search radius)
- live capacity check used at bind time (vehicle size limit + concurrent tasks)
- a cached lookup of available couriers around a pickup point

Rule: the cached lookup only narrows the candidate pool. Whether a courier can
actually take a task is always answered from the store (can_accept_task).
"""

from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import List, Optional, Tuple

from donations.models import TASK_SIZE_ORDER, Task, TaskSize
from routing.cache import TTLCache

from .models import Volunteer, VolunteerStatus
from .policy import VolunteerPolicy, default_volunteer_policy

logger = logging.getLogger(__name__)

LatLon = Tuple[float, float]


class VolunteerCapacityError(Exception):
    """Raised when a courier cannot take on another task."""
    pass


class VolunteerNotFoundError(Exception):
    """Raised when the courier does not exist."""
    pass


def haversine_km(origin: LatLon, destination: LatLon) -> float:
    radius_km = 6371.0
    lat1, lon1 = map(math.radians, origin)
    lat2, lon2 = map(math.radians, destination)
    d_lat = lat2 - lat1
    d_lon = lon2 - lon1
    a = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(d_lon / 2) ** 2
    return radius_km * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def filter_available_volunteers(
    volunteers: List[Volunteer],
    center: Optional[LatLon] = None,
    max_distance_km: Optional[float] = None,
) -> List[Volunteer]:
    """
    Returns active, available couriers. With a center and radius, couriers
    outside the radius are dropped; couriers without a location are kept
    (they still get a low fitness).
    """
    eligible = []

    for volunteer in volunteers:
        if volunteer.status != VolunteerStatus.ACTIVE or not volunteer.is_available:
            continue

        if center is not None and max_distance_km is not None and volunteer.location is not None:
            if haversine_km(center, volunteer.location) > max_distance_km:
                continue

        eligible.append(volunteer)

    return eligible


def fits_vehicle(volunteer: Volunteer, size: TaskSize, policy: VolunteerPolicy) -> bool:
    largest = policy.max_task_size.get(volunteer.vehicle_type, TaskSize.SMALL)
    return TASK_SIZE_ORDER.index(size) <= TASK_SIZE_ORDER.index(largest)


def can_accept_task(
    store,
    volunteer_id: str,
    task: Task,
    policy: Optional[VolunteerPolicy] = None,
    require_available: bool = False,
) -> bool:
    """
    Live capacity check against the store, never against a cache.
    """
    policy = policy or default_volunteer_policy()

    volunteer = store.get_volunteer(volunteer_id)
    if volunteer is None or volunteer.status != VolunteerStatus.ACTIVE:
        return False

    if require_available and not volunteer.is_available:
        return False

    if not fits_vehicle(volunteer, task.size, policy):
        return False

    limit = policy.max_active_tasks.get(volunteer.vehicle_type, 1)
    return store.active_task_count(volunteer_id) < limit


class VolunteerDirectory:
    """
    Cached "who is available near here" lookups for one service instance.
    """
    def __init__(self, store, policy: Optional[VolunteerPolicy] = None, cache: Optional[TTLCache] = None):
        self.store = store
        self.policy = policy or default_volunteer_policy()
        self.cache = cache if cache is not None else TTLCache(ttl_seconds=self.policy.lookup_cache_ttl_seconds)

    def available_near(self, center: Optional[LatLon], max_distance_km: Optional[float] = None) -> List[Volunteer]:
        max_distance_km = max_distance_km if max_distance_km is not None else self.policy.search_radius_km
        key = ("available", center, max_distance_km)

        cached = self.cache.get(key)
        if cached is not None:
            return list(cached)

        volunteers = filter_available_volunteers(
            self.store.find_volunteers(available=True, status=VolunteerStatus.ACTIVE),
            center=center,
            max_distance_km=max_distance_km,
        )
        logger.info("Found %d available volunteers within %.0f km", len(volunteers), max_distance_km)

        # an empty pool is not cached; the next retry must look again
        if volunteers:
            self.cache.set(key, list(volunteers))
        return volunteers

    def update_availability(self, volunteer_id: str, is_available: bool, reason: str = "") -> Volunteer:
        volunteer = self.store.update_volunteer(
            volunteer_id,
            is_available=is_available,
            availability_reason=reason,
            last_status_update=datetime.utcnow(),
        )
        if volunteer is None:
            raise VolunteerNotFoundError(f"Volunteer {volunteer_id} not found")

        logger.info("Volunteer %s availability updated to %s", volunteer_id, is_available)
        # cached pools would still list (or miss) this courier
        self.cache.clear()
        return volunteer

    def update_location(self, volunteer_id: str, lat: float, lon: float) -> Volunteer:
        volunteer = self.store.update_volunteer(
            volunteer_id,
            location=(lat, lon),
            last_location_update=datetime.utcnow(),
        )
        if volunteer is None:
            raise VolunteerNotFoundError(f"Volunteer {volunteer_id} not found")

        self.cache.clear()
        return volunteer
