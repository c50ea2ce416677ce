#Purpose: Route computation for downstream use.
#Sequences a courier's pending pickups/dropoffs into one ordered route for:
#navigation guidance
#map display / polyline geometry
#total distance / duration of the run
#Uses the GeoTrafficOracle (OSRM /trip primarily, /route for a single task).
#A result with optimized=False means "input order kept", never an error.

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

from donations.models import OptimizedRoute, StopType, Task, TaskStatus, Waypoint

from .traffic_service import GeoTrafficOracle

logger = logging.getLogger(__name__)

# tasks whose stops are still ahead of the courier
ROUTABLE_TASK_STATUSES = (TaskStatus.ASSIGNED, TaskStatus.PICKED_UP)


class RouteOptimizer:
    """
    Orders a courier's waypoints. Only ever writes Task.optimized_route.
    """
    def __init__(self, oracle: Optional[GeoTrafficOracle] = None):
        self.oracle = oracle

    def optimize(self, waypoints: Sequence[Waypoint]) -> OptimizedRoute:
        """
        Reorders 2+ waypoints through the oracle; any failure keeps the input
        order with zero distance/duration.
        """
        waypoints = list(waypoints)
        if len(waypoints) < 2 or self.oracle is None:
            return self._unoptimized(waypoints)

        result = self.oracle.optimize_route([waypoint.location for waypoint in waypoints])
        if result.is_fallback:
            return self._unoptimized(waypoints)

        indices = result.ordered_indices
        if sorted(indices) != list(range(len(waypoints))):
            logger.warning("Route optimizer returned an invalid permutation %s, keeping input order", indices)
            return self._unoptimized(waypoints)

        ordered = [waypoints[index] for index in indices]
        if not respects_precedence(ordered):
            # a dropoff can never come before its own pickup
            logger.warning("Optimized route breaks pickup-before-dropoff, keeping input order")
            return self._unoptimized(waypoints)

        return OptimizedRoute(
            waypoints=ordered,
            ordered_indices=list(indices),
            total_distance_m=result.total_distance_m,
            total_duration_s=result.total_duration_s,
            polyline=result.polyline,
            optimized=True,
        )

    def optimize_for_volunteer(self, store, volunteer_id: str) -> Optional[OptimizedRoute]:
        """
        Recomputes and stores the route for every pending task of a courier.
        Returns None when the courier has nothing left to route.
        """
        tasks = store.find_tasks(volunteer_id=volunteer_id, statuses=ROUTABLE_TASK_STATUSES)
        if not tasks:
            return None

        if len(tasks) == 1:
            route = self._single_task_route(tasks[0])
        else:
            route = self.optimize(waypoints_for_tasks(tasks))

        def attach(task: Task) -> None:
            task.optimized_route = route

        for task in tasks:
            store.update_task(task.id, attach)

        logger.info(
            "Route for volunteer %s: %d stops, optimized=%s, %.0f m",
            volunteer_id, len(route.waypoints), route.optimized, route.total_distance_m,
        )
        return route

    def _single_task_route(self, task: Task) -> OptimizedRoute:
        waypoints = waypoints_for_tasks([task], include_completed_pickups=True)
        if len(waypoints) < 2 or self.oracle is None:
            return self._unoptimized(waypoints)

        result = self.oracle.direct_route(task.pickup_location, task.dropoff_location)
        if result.is_fallback:
            return self._unoptimized(waypoints)

        return OptimizedRoute(
            waypoints=waypoints,
            ordered_indices=[0, 1],
            total_distance_m=result.total_distance_m,
            total_duration_s=result.total_duration_s,
            polyline=result.polyline,
            optimized=True,
        )

    @staticmethod
    def _unoptimized(waypoints: List[Waypoint]) -> OptimizedRoute:
        return OptimizedRoute(
            waypoints=list(waypoints),
            ordered_indices=list(range(len(waypoints))),
            total_distance_m=0.0,
            total_duration_s=0.0,
            polyline=None,
            optimized=False,
        )


def waypoints_for_tasks(tasks: Sequence[Task], include_completed_pickups: bool = False) -> List[Waypoint]:
    """
    Flattens tasks into pickup/dropoff waypoints. Stops without coordinates are
    skipped, and so is the pickup of a task that is already picked up.
    """
    waypoints: List[Waypoint] = []
    for task in tasks:
        picked_up = task.status == TaskStatus.PICKED_UP
        if task.pickup_location is not None and (include_completed_pickups or not picked_up):
            waypoints.append(Waypoint(task.id, StopType.PICKUP, task.pickup_location, task.urgency))
        if task.dropoff_location is not None:
            waypoints.append(Waypoint(task.id, StopType.DROPOFF, task.dropoff_location, task.urgency))
    return waypoints


def respects_precedence(ordered: Sequence[Waypoint]) -> bool:
    pickup_position: Dict[str, int] = {}
    for position, waypoint in enumerate(ordered):
        if waypoint.stop_type == StopType.PICKUP:
            pickup_position[waypoint.task_id] = position

    for position, waypoint in enumerate(ordered):
        if waypoint.stop_type == StopType.DROPOFF:
            pickup_at = pickup_position.get(waypoint.task_id)
            if pickup_at is not None and pickup_at > position:
                return False
    return True
