"""
Purpose: Core data models for the volunteers (couriers) domain.
What it does:
Defines the structure of a Volunteer, their vehicle and account status
without relying on any ORM constraints.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

LatLon = Tuple[float, float]


class VehicleType(str, Enum):
    BIKE = "bike"
    CAR = "car"
    VAN = "van"
    TRUCK = "truck"
    NONE = "none"  # on foot


class VolunteerStatus(str, Enum):
    """
    Account state. Availability (on shift or not) is tracked separately
    by Volunteer.is_available.
    """
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


@dataclass(frozen=True)
class Volunteer:
    """
    A purely stateless representation of a courier at a specific point in time.
    """
    id: str
    name: str = ""
    vehicle_type: VehicleType = VehicleType.NONE
    location: Optional[LatLon] = None
    is_available: bool = True
    status: VolunteerStatus = VolunteerStatus.ACTIVE

    availability_reason: str = ""
    last_location_update: Optional[datetime] = None
    last_status_update: Optional[datetime] = None

    @classmethod
    def new(
        cls,
        volunteer_id: str,
        lat: Optional[float] = None,
        lon: Optional[float] = None,
        vehicle_type: str | VehicleType = VehicleType.NONE,
        is_available: bool = True,
        status: str | VolunteerStatus = VolunteerStatus.ACTIVE,
        name: str = "",
    ) -> Volunteer:
        if isinstance(vehicle_type, str):
            vehicle_type = VehicleType(vehicle_type)
        if isinstance(status, str):
            status = VolunteerStatus(status)

        location = (lat, lon) if lat is not None and lon is not None else None
        return cls(
            id=volunteer_id,
            name=name,
            vehicle_type=vehicle_type,
            location=location,
            is_available=is_available,
            status=status,
            last_location_update=datetime.utcnow() if location else None,
        )
