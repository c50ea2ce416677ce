"""
Purpose: Central configuration for courier selection and assignment.
What it does:

Stores all tunable parameters for finding and binding a volunteer:

GA = population min(20, 2 x pool), 50 generations, mutation 0.1, tournament 3
FITNESS WEIGHTS = distance .25, vehicle .20, availability .15, workload .15,
                  urgency .10, fuel .10, traffic .05
CAPACITY = max concurrent tasks + largest task size, per vehicle
RETRIES = 5 min, then 10 min, bounded by max_retry_attempts
EMERGENCY = scan up to 5 active couriers, bind the first that fits

Rule: No logic here, just parameters so you can tune without rewriting code.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List

from donations.models import TaskSize, Urgency

from .models import VehicleType


class EmergencyPolicy(str, Enum):
    # availability over optimality: first courier with room wins
    FIRST_PASSING = "first_passing"
    # among scanned couriers with room, the one closest to the pickup wins
    NEAREST = "nearest"


@dataclass(frozen=True)
class VolunteerPolicy:
    """
    Central configuration for the assignment planner and escalation.
    """

    # --- Genetic search ---
    max_population: int = 20
    generations: int = 50
    mutation_rate: float = 0.1
    tournament_size: int = 3

    # --- Fitness ---
    fitness_weights: Dict[str, float] = field(default_factory=lambda: {
        "distance": 0.25,
        "vehicle": 0.20,
        "availability": 0.15,
        "workload": 0.15,
        "urgency": 0.10,
        "fuel": 0.10,
        "traffic": 0.05,
    })
    vehicle_scores: Dict[VehicleType, float] = field(default_factory=lambda: {
        VehicleType.BIKE: 0.6,
        VehicleType.CAR: 0.8,
        VehicleType.VAN: 0.9,
        VehicleType.TRUCK: 1.0,
        VehicleType.NONE: 0.3,
    })
    urgency_scores: Dict[Urgency, float] = field(default_factory=lambda: {
        Urgency.CRITICAL: 1.5,
        Urgency.HIGH: 1.3,
        Urgency.NORMAL: 1.0,
    })
    fuel_efficiency: Dict[VehicleType, float] = field(default_factory=lambda: {
        VehicleType.BIKE: 1.0,
        VehicleType.NONE: 0.9,
        VehicleType.CAR: 0.7,
        VehicleType.VAN: 0.5,
        VehicleType.TRUCK: 0.3,
    })
    # Trips longer than this (km) halve the fuel score for human powered couriers.
    bike_comfort_km: float = 10.0
    walking_comfort_km: float = 3.0
    long_trip_fuel_factor: float = 0.5
    workload_step: float = 0.2
    unavailable_score: float = 0.2
    # Fitness of a courier without any known location.
    no_location_fitness: float = 0.1

    # --- Capacity ---
    max_active_tasks: Dict[VehicleType, int] = field(default_factory=lambda: {
        VehicleType.NONE: 1,
        VehicleType.BIKE: 2,
        VehicleType.CAR: 3,
        VehicleType.VAN: 4,
        VehicleType.TRUCK: 5,
    })
    max_task_size: Dict[VehicleType, TaskSize] = field(default_factory=lambda: {
        VehicleType.NONE: TaskSize.SMALL,
        VehicleType.BIKE: TaskSize.MEDIUM,
        VehicleType.CAR: TaskSize.LARGE,
        VehicleType.VAN: TaskSize.XLARGE,
        VehicleType.TRUCK: TaskSize.XLARGE,
    })

    # --- Candidate pool ---
    # Couriers further than this (km, great circle) from the pickup are not considered.
    # Couriers without a location stay in the pool.
    search_radius_km: float = 50.0
    lookup_cache_ttl_seconds: int = 300

    # --- Escalation ---
    # Delay before attempt N+1 is retry_delays_seconds[min(N-1, len-1)].
    retry_delays_seconds: List[int] = field(default_factory=lambda: [300, 600])
    # Delay after a search that found couriers but none suitable.
    no_suitable_retry_seconds: int = 600
    # Total searches (first one included) before the task is marked FAILED.
    max_retry_attempts: int = 6
    emergency_scan_limit: int = 5
    emergency_policy: EmergencyPolicy = EmergencyPolicy.FIRST_PASSING

    def validate(self) -> None:
        """
        Basic sanity checks.
        """
        if self.max_population < 1:
            raise ValueError("max_population must be >= 1")

        if self.generations < 1:
            raise ValueError("generations must be >= 1")

        if not 0.0 <= self.mutation_rate <= 1.0:
            raise ValueError("mutation_rate must be in [0, 1]")

        if self.tournament_size < 1:
            raise ValueError("tournament_size must be >= 1")

        if abs(sum(self.fitness_weights.values()) - 1.0) > 1e-6:
            raise ValueError("fitness_weights must sum to 1.0")

        missing = [vehicle for vehicle in VehicleType if vehicle not in self.max_active_tasks]
        if missing:
            raise ValueError(f"max_active_tasks missing vehicles: {missing}")

        missing = [vehicle for vehicle in VehicleType if vehicle not in self.max_task_size]
        if missing:
            raise ValueError(f"max_task_size missing vehicles: {missing}")

        if not self.retry_delays_seconds or any(delay <= 0 for delay in self.retry_delays_seconds):
            raise ValueError("retry_delays_seconds must be non-empty and positive")

        if self.no_suitable_retry_seconds <= 0:
            raise ValueError("no_suitable_retry_seconds must be > 0")

        if self.max_retry_attempts < 1:
            raise ValueError("max_retry_attempts must be >= 1")

        if self.emergency_scan_limit < 1:
            raise ValueError("emergency_scan_limit must be >= 1")

        if self.search_radius_km <= 0:
            raise ValueError("search_radius_km must be > 0")


def default_volunteer_policy() -> VolunteerPolicy:
    """
    Convenience factory for the default policy.
    """
    p = VolunteerPolicy()
    p.validate()
    return p
