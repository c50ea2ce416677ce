"""
Purpose: Scalar fitness of a (courier, pickup) pair for the genetic search.
What it does:

fitness = .25 distance + .20 vehicle + .15 availability + .15 workload
        + .10 urgency + .10 fuel + .05 (1 - traffic_multiplier)

distance = 1 / (1 + meters * traffic_multiplier / 1000)
workload = max(0, 1 - 0.2 * active_tasks)
fuel     = vehicle base efficiency, halved for long trips on bike / foot

A courier without a location gets a flat, very low fitness (still
selectable by mutation, rarely the winner).

Rule: travel numbers come from the GeoTrafficOracle, which already degrades
to conservative defaults; this module never calls HTTP itself.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple

from donations.models import Urgency
from routing.traffic_service import GeoTrafficOracle

from .models import VehicleType, Volunteer
from .policy import VolunteerPolicy, default_volunteer_policy

LatLon = Tuple[float, float]


@dataclass(frozen=True)
class FitnessBreakdown:
    volunteer_id: str
    fitness: float
    has_location: bool
    distance_m: float = 0.0
    traffic_multiplier: float = 1.0
    distance: float = 0.0
    vehicle: float = 0.0
    availability: float = 0.0
    workload: float = 0.0
    urgency: float = 0.0
    fuel: float = 0.0
    traffic: float = 0.0


class VolunteerFitnessModel:
    def __init__(
        self,
        oracle: Optional[GeoTrafficOracle] = None,
        policy: Optional[VolunteerPolicy] = None,
        store=None,
    ):
        # no OSRM client -> every lookup uses the oracle's fallback constants
        self.oracle = oracle or GeoTrafficOracle()
        self.policy = policy or default_volunteer_policy()
        self.store = store

    def fitness(
        self,
        volunteer: Volunteer,
        pickup: Optional[LatLon],
        urgency: Urgency = Urgency.NORMAL,
        active_task_count: Optional[int] = None,
    ) -> float:
        return self.breakdown(volunteer, pickup, urgency, active_task_count).fitness

    def breakdown(
        self,
        volunteer: Volunteer,
        pickup: Optional[LatLon],
        urgency: Urgency = Urgency.NORMAL,
        active_task_count: Optional[int] = None,
        departure_time: Optional[datetime] = None,
    ) -> FitnessBreakdown:
        if volunteer.location is None:
            return FitnessBreakdown(
                volunteer_id=volunteer.id,
                fitness=self.policy.no_location_fitness,
                has_location=False,
            )

        if active_task_count is None:
            active_task_count = self.store.active_task_count(volunteer.id) if self.store is not None else 0

        estimate = self.oracle.distance(volunteer.location, pickup, departure_time)
        multiplier = estimate.traffic_multiplier

        scores = {
            "distance": 1.0 / (1.0 + estimate.meters * multiplier / 1000.0),
            "vehicle": self.policy.vehicle_scores.get(volunteer.vehicle_type, 0.5),
            "availability": 1.0 if volunteer.is_available else self.policy.unavailable_score,
            "workload": max(0.0, 1.0 - self.policy.workload_step * active_task_count),
            "urgency": self.policy.urgency_scores.get(urgency, 1.0),
            "fuel": self.fuel_score(volunteer.vehicle_type, estimate.meters / 1000.0),
            "traffic": 1.0 - multiplier,
        }
        weights = self.policy.fitness_weights
        fitness = sum(weights[name] * value for name, value in scores.items())

        return FitnessBreakdown(
            volunteer_id=volunteer.id,
            fitness=fitness,
            has_location=True,
            distance_m=estimate.meters,
            traffic_multiplier=multiplier,
            **scores,
        )

    def fuel_score(self, vehicle_type: VehicleType, trip_km: float) -> float:
        score = self.policy.fuel_efficiency.get(vehicle_type, 0.5)
        if vehicle_type == VehicleType.BIKE and trip_km > self.policy.bike_comfort_km:
            score *= self.policy.long_trip_fuel_factor
        elif vehicle_type == VehicleType.NONE and trip_km > self.policy.walking_comfort_km:
            score *= self.policy.long_trip_fuel_factor
        return score
