"""
Purpose: Central configuration for the routing / traffic layer.
What it does:

Stores all tunable thresholds for distance lookups and route optimization:

CACHE_TTL_SECONDS = 300
FALLBACK_DISTANCE_M = 10000
FALLBACK_DURATION_S = 1800
PEAK_HOURS = 7-10 (x1.4), 16-19 (x1.5)

Rule: No logic here, just parameters so you can tune without rewriting code.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Tuple


@dataclass(frozen=True)
class RoutingPolicy:
    """
    Central configuration for the GeoTrafficOracle and RouteOptimizer.
    """

    # --- Caching ---
    # Distance lookups are cached briefly per oracle instance.
    cache_ttl_seconds: int = 300
    # Courier positions keep changing, so the cache is bounded.
    cache_max_entries: int = 4096

    # --- Conservative defaults ---
    # Used whenever OSRM cannot be reached or cannot route.
    fallback_distance_m: float = 10000.0
    fallback_duration_s: float = 1800.0
    fallback_traffic_multiplier: float = 1.0

    # --- Time-of-day traffic profile ---
    # OSRM durations are free-flow; (start_hour, end_hour, multiplier) windows
    # scale them for rush hours. Hours outside every window use 1.0.
    peak_windows: List[Tuple[int, int, float]] = field(
        default_factory=lambda: [(7, 10, 1.4), (16, 19, 1.5)]
    )
    weekend_multiplier_cap: float = 1.2

    # --- Congestion labels ---
    heavy_congestion_ratio: float = 2.0
    moderate_congestion_ratio: float = 1.5
    light_congestion_ratio: float = 1.2

    # --- Departure planning ---
    # Candidate departures are tried every `departure_step_minutes`
    # between `earliest` and `latest` minutes before the desired arrival.
    departure_earliest_minutes: int = 180
    departure_latest_minutes: int = 30
    departure_step_minutes: int = 15

    def validate(self) -> None:
        """
        Basic sanity checks.
        """
        if self.cache_ttl_seconds < 0:
            raise ValueError("cache_ttl_seconds must be >= 0")
        if self.cache_max_entries < 1:
            raise ValueError("cache_max_entries must be >= 1")

        if self.fallback_distance_m <= 0 or self.fallback_duration_s <= 0:
            raise ValueError("fallback distance/duration must be > 0")

        for start, end, multiplier in self.peak_windows:
            if not 0 <= start < end <= 24:
                raise ValueError(f"invalid peak window {start}-{end}")
            if multiplier < 1.0:
                raise ValueError("peak multipliers must be >= 1.0")

        if not (self.heavy_congestion_ratio >= self.moderate_congestion_ratio >= self.light_congestion_ratio >= 1.0):
            raise ValueError("congestion ratios must be ordered heavy >= moderate >= light >= 1.0")

        if self.departure_step_minutes <= 0:
            raise ValueError("departure_step_minutes must be > 0")
        if self.departure_earliest_minutes < self.departure_latest_minutes:
            raise ValueError("departure_earliest_minutes must be >= departure_latest_minutes")


def default_routing_policy() -> RoutingPolicy:
    """
    Convenience factory for the default policy.
    """
    p = RoutingPolicy()
    p.validate()
    return p
