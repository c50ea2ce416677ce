#Marks volunteers as a package.
#Re-exports the courier side of assignment: models, policy, eligibility,
#fitness model, genetic planner and the performance report.
#Must never import donations.store (the store imports volunteers.models).

from .models import VehicleType, Volunteer, VolunteerStatus
from .policy import EmergencyPolicy, VolunteerPolicy, default_volunteer_policy
from .selection import (
    VolunteerCapacityError,
    VolunteerDirectory,
    VolunteerNotFoundError,
    can_accept_task,
    filter_available_volunteers,
    haversine_km,
)
from .fitness import FitnessBreakdown, VolunteerFitnessModel
from .planner import NoAvailableVolunteersError, NoSuitableVolunteerError, PlanResult, VolunteerAssignmentPlanner
from .performance import PerformanceReport, performance_report

__all__ = [
    "VehicleType",
    "Volunteer",
    "VolunteerStatus",
    "EmergencyPolicy",
    "VolunteerPolicy",
    "default_volunteer_policy",
    "VolunteerCapacityError",
    "VolunteerDirectory",
    "VolunteerNotFoundError",
    "can_accept_task",
    "filter_available_volunteers",
    "haversine_km",
    "FitnessBreakdown",
    "VolunteerFitnessModel",
    "NoAvailableVolunteersError",
    "NoSuitableVolunteerError",
    "PlanResult",
    "VolunteerAssignmentPlanner",
    "PerformanceReport",
    "performance_report",
]
