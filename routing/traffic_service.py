"""
Purpose: The GeoTrafficOracle (distance, traffic and route ordering).
What it does:
Wraps the OSRM adapter with:
- a per-instance TTL cache of free-flow route lookups
- a time-of-day traffic multiplier applied on top of OSRM durations
- conservative defaults whenever OSRM is missing or fails

Rule: every public method degrades instead of raising. Callers get
`is_fallback=True` results, never an OSRM exception.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from .cache import TTLCache
from .osrm_client import OSRMClient, OSRMError
from .policy import RoutingPolicy, default_routing_policy

logger = logging.getLogger(__name__)

LatLon = Tuple[float, float]


@dataclass(frozen=True)
class TravelEstimate:
    """
    Output of a distance lookup between two points.
    seconds already includes the traffic multiplier.
    """
    meters: float
    seconds: float
    traffic_multiplier: float
    congestion_level: str
    is_fallback: bool = False


@dataclass(frozen=True)
class RouteOptimizationResult:
    """
    Output of a waypoint reordering request.
    On fallback the indices are the input order and the metrics are zero.
    """
    ordered_indices: List[int]
    total_distance_m: float
    total_duration_s: float
    polyline: Optional[str] = None
    is_fallback: bool = False


@dataclass(frozen=True)
class DepartureRecommendation:
    departure_time: Optional[datetime]
    traffic_multiplier: float
    estimated_duration_s: float
    recommendation: str


class GeoTrafficOracle:
    """
    Distance / traffic / route-optimization provider used by the fitness model
    and the route optimizer.
    """
    def __init__(
        self,
        osrm_client: Optional[OSRMClient] = None,
        policy: Optional[RoutingPolicy] = None,
        cache: Optional[TTLCache] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.osrm_client = osrm_client
        self.policy = policy or default_routing_policy()
        self.cache = cache if cache is not None else TTLCache(
            ttl_seconds=self.policy.cache_ttl_seconds, max_entries=self.policy.cache_max_entries,
        )
        self._clock = clock

    #----------------
    # traffic heuristics
    #----------------
    def traffic_multiplier_at(self, when: datetime) -> float:
        """
        Free-flow → expected duration factor for a departure time.
        """
        multiplier = 1.0
        for start_hour, end_hour, window_multiplier in self.policy.peak_windows:
            if start_hour <= when.hour < end_hour:
                multiplier = max(multiplier, window_multiplier)

        # weekends have softer rush hours
        if when.weekday() >= 5:
            multiplier = min(multiplier, self.policy.weekend_multiplier_cap)
        return multiplier

    def congestion_level(self, traffic_multiplier: float) -> str:
        if traffic_multiplier >= self.policy.heavy_congestion_ratio:
            return "heavy"
        if traffic_multiplier >= self.policy.moderate_congestion_ratio:
            return "moderate"
        if traffic_multiplier >= self.policy.light_congestion_ratio:
            return "light"
        return "smooth"

    #----------------
    # distance
    #----------------
    def distance(
        self,
        origin: Optional[LatLon],
        destination: Optional[LatLon],
        departure_time: Optional[datetime] = None,
    ) -> TravelEstimate:
        """
        Travel distance/duration between two points at a departure time (now by default).
        """
        free_flow = self._free_flow_route(origin, destination)
        if free_flow is None:
            return self._fallback_estimate()

        multiplier = self.traffic_multiplier_at(departure_time or self._clock())
        return TravelEstimate(
            meters=free_flow["distance"],
            seconds=free_flow["duration"] * multiplier,
            traffic_multiplier=multiplier,
            congestion_level=self.congestion_level(multiplier),
        )

    def _free_flow_route(self, origin: Optional[LatLon], destination: Optional[LatLon]) -> Optional[Dict[str, float]]:
        if origin is None or destination is None or self.osrm_client is None:
            return None

        cache_key = ("route", round(origin[0], 5), round(origin[1], 5), round(destination[0], 5), round(destination[1], 5))
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        try:
            route = self.osrm_client.compute_route([origin, destination])
        except (OSRMError, ValueError) as exc:
            logger.warning("Distance lookup failed, using defaults: %s", exc)
            return None

        self.cache.set(cache_key, route)
        return route

    def _fallback_estimate(self) -> TravelEstimate:
        return TravelEstimate(
            meters=self.policy.fallback_distance_m,
            seconds=self.policy.fallback_duration_s,
            traffic_multiplier=self.policy.fallback_traffic_multiplier,
            congestion_level="unknown",
            is_fallback=True,
        )

    #----------------
    # route optimization
    #----------------
    def optimize_route(self, waypoints: List[LatLon]) -> RouteOptimizationResult:
        """
        Reorders intermediate waypoints (first and last stay fixed).
        """
        original_order = list(range(len(waypoints)))
        if len(waypoints) < 2 or self.osrm_client is None:
            return RouteOptimizationResult(original_order, 0.0, 0.0, None, is_fallback=True)

        try:
            trip = self.osrm_client.compute_trip(waypoints)
        except (OSRMError, ValueError, KeyError) as exc:
            logger.warning("Route optimization failed, keeping input order: %s", exc)
            return RouteOptimizationResult(original_order, 0.0, 0.0, None, is_fallback=True)

        multiplier = self.traffic_multiplier_at(self._clock())
        return RouteOptimizationResult(
            ordered_indices=list(trip["ordered_indices"]),
            total_distance_m=trip["distance"],
            total_duration_s=trip["duration"] * multiplier,
            polyline=trip.get("polyline"),
        )

    def direct_route(self, origin: Optional[LatLon], destination: Optional[LatLon]) -> RouteOptimizationResult:
        """
        Single pickup → dropoff route with geometry, used for one-task couriers.
        """
        if origin is None or destination is None or self.osrm_client is None:
            return RouteOptimizationResult([0, 1], 0.0, 0.0, None, is_fallback=True)

        try:
            route = self.osrm_client.compute_route([origin, destination], geometry=True)
        except (OSRMError, ValueError) as exc:
            logger.warning("Direct route lookup failed: %s", exc)
            return RouteOptimizationResult([0, 1], 0.0, 0.0, None, is_fallback=True)

        multiplier = self.traffic_multiplier_at(self._clock())
        return RouteOptimizationResult(
            ordered_indices=[0, 1],
            total_distance_m=route["distance"],
            total_duration_s=route["duration"] * multiplier,
            polyline=route.get("polyline"),
        )

    #----------------
    # departure planning
    #----------------
    def best_departure(
        self,
        origin: Optional[LatLon],
        destination: Optional[LatLon],
        arrive_by: datetime,
    ) -> DepartureRecommendation:
        """
        Tries departures between `departure_earliest_minutes` and
        `departure_latest_minutes` before `arrive_by` and keeps the one with
        the lowest traffic multiplier (earliest wins ties).
        """
        free_flow = self._free_flow_route(origin, destination)
        base_duration = free_flow["duration"] if free_flow else self.policy.fallback_duration_s

        best_time: Optional[datetime] = None
        best_multiplier = float("inf")

        minutes = self.policy.departure_earliest_minutes
        while minutes >= self.policy.departure_latest_minutes:
            departure = arrive_by - timedelta(minutes=minutes)
            multiplier = self.traffic_multiplier_at(departure)
            if multiplier < best_multiplier:
                best_multiplier = multiplier
                best_time = departure
            minutes -= self.policy.departure_step_minutes

        if best_time is None:
            best_multiplier = self.policy.fallback_traffic_multiplier

        return DepartureRecommendation(
            departure_time=best_time,
            traffic_multiplier=best_multiplier,
            estimated_duration_s=base_duration * best_multiplier,
            recommendation=self._departure_recommendation(best_multiplier),
        )

    def _departure_recommendation(self, traffic_multiplier: float) -> str:
        level = self.congestion_level(traffic_multiplier)
        if level == "heavy":
            return "Leave much earlier - heavy traffic expected"
        if level == "moderate":
            return "Leave earlier - moderate traffic expected"
        if level == "light":
            return "Leave slightly earlier - light traffic expected"
        return "Normal departure time recommended"
