"""
Purpose: Domain models for the Donations capability.
What it does:
- Defines core data structures:
- Donation (id, donor, location, categories/tags, urgency, offers, acceptance)
- Offer (one ranked or manual match between a donation and a recipient)
- RecipientCandidate (read-only view of a recipient organization for scoring)
- Task (the courier job created once a donation is accepted)
- Waypoint / OptimizedRoute (derived multi-stop route data)

Defines enums/constants:
- DonationStatus = PENDING | PROCESSING | ACTIVE | MATCHED | SCHEDULED | PICKED_UP | DELIVERED | CANCELLED
- OfferStatus = OFFERED | ACCEPTED | DECLINED
- TaskStatus = PENDING | ASSIGNED | PICKED_UP | IN_TRANSIT | DELIVERED | CANCELLED
- Urgency = NORMAL | HIGH | CRITICAL
- TaskSize = SMALL | MEDIUM | LARGE | XLARGE

Rule: No routing calls, no scoring logic. Models only.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple
import uuid

# Internal coordinate type: (lat, lon)
LatLon = Tuple[float, float]


class DonationStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    ACTIVE = "active"
    MATCHED = "matched"
    SCHEDULED = "scheduled"
    PICKED_UP = "picked_up"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class DonationType(str, Enum):
    NORMAL = "normal"
    BULK = "bulk"


class Urgency(str, Enum):
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"


class OfferStatus(str, Enum):
    OFFERED = "offered"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class TaskStatus(str, Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class TaskSize(str, Enum):
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"
    XLARGE = "xlarge"


class VerificationStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class OrganizationType(str, Enum):
    SHELTER = "shelter"
    COMMUNITY_KITCHEN = "community_kitchen"
    FOOD_BANK = "food_bank"
    RELIGIOUS = "religious"
    OTHER = "other"


class StopType(str, Enum):
    PICKUP = "pickup"
    DROPOFF = "dropoff"


# ordering used by TaskSize comparisons (capacity checks)
TASK_SIZE_ORDER: List[TaskSize] = [TaskSize.SMALL, TaskSize.MEDIUM, TaskSize.LARGE, TaskSize.XLARGE]


@dataclass
class Quantity:
    amount: float = 1
    unit: str = "units"

    def task_size(self) -> TaskSize:
        """
        Bucket the physical amount into a courier task size.
        """
        if self.amount <= 5:
            return TaskSize.SMALL
        if self.amount <= 20:
            return TaskSize.MEDIUM
        if self.amount <= 50:
            return TaskSize.LARGE
        return TaskSize.XLARGE


@dataclass
class Offer:
    """
    One entry of a donation's matched_recipients list.
    """
    recipient_id: str
    score: float
    status: OfferStatus = OfferStatus.OFFERED
    method: str = "fallback"
    responded_at: Optional[datetime] = None
    decline_reason: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class Donation:
    """
    A perishable food donation travelling through matching and assignment.

    categories / tags / allergens / freshness_score / urgency are filled in
    upstream (image analysis) before the donation becomes ACTIVE.
    """
    id: str
    donor_id: str
    location: Optional[LatLon] = None
    type: DonationType = DonationType.NORMAL
    status: DonationStatus = DonationStatus.PENDING
    urgency: Urgency = Urgency.NORMAL

    description: str = ""
    ai_description: str = ""
    categories: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    allergens: List[str] = field(default_factory=list)
    freshness_score: Optional[float] = None
    quantity: Quantity = field(default_factory=Quantity)
    pickup_address: str = ""

    matched_recipients: List[Offer] = field(default_factory=list)
    accepted_by: Optional[str] = None
    assigned_volunteer: Optional[str] = None

    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)
    matching_started_at: Optional[datetime] = None
    matching_completed_at: Optional[datetime] = None
    pickup_time: Optional[datetime] = None
    delivery_time: Optional[datetime] = None

    @staticmethod
    def new(
        donor_id: str,
        lat: Optional[float] = None,
        lon: Optional[float] = None,
        **details,
    ) -> Donation:
        location = (lat, lon) if lat is not None and lon is not None else None
        return Donation(id=str(uuid.uuid4()), donor_id=donor_id, location=location, **details)

    def offer_for(self, recipient_id: str) -> Optional[Offer]:
        for offer in self.matched_recipients:
            if offer.recipient_id == recipient_id:
                return offer
        return None

    def accepted_offers(self) -> List[Offer]:
        return [offer for offer in self.matched_recipients if offer.status == OfferStatus.ACCEPTED]

    def matching_text(self) -> str:
        """Free text used by the embedding strategy."""
        parts = [self.ai_description or self.description]
        parts.extend(self.categories)
        parts.extend(self.tags)
        return " ".join(part for part in parts if part).strip()


@dataclass(frozen=True)
class RecipientCandidate:
    """
    Read-only view of a recipient organization, as the scoring layer consumes it.
    current load is not stored here; it is counted live from accepted donations.
    """
    id: str
    organization_name: str = ""
    organization_type: OrganizationType = OrganizationType.OTHER
    capacity: Optional[int] = None
    dietary_restrictions: Tuple[str, ...] = ()
    preferred_categories: Tuple[str, ...] = ()
    location: Optional[LatLon] = None
    verification_status: VerificationStatus = VerificationStatus.PENDING
    is_active: bool = True

    @property
    def is_verified(self) -> bool:
        return self.verification_status == VerificationStatus.VERIFIED

    def profile_text(self) -> str:
        parts = [self.organization_name, self.organization_type.value.replace("_", " ")]
        parts.extend(self.dietary_restrictions)
        parts.extend(self.preferred_categories)
        return " ".join(part for part in parts if part).strip()


@dataclass(frozen=True)
class Waypoint:
    """
    A stop in a courier route. A task's PICKUP must be visited before its DROPOFF.
    """
    task_id: str
    stop_type: StopType
    location: LatLon
    urgency: Urgency = Urgency.NORMAL
    address: str = ""


@dataclass
class OptimizedRoute:
    """
    Derived, recomputable route data. Never authoritative.
    optimized=False means the input order was kept (oracle unavailable).
    """
    waypoints: List[Waypoint]
    ordered_indices: List[int]
    total_distance_m: float = 0.0
    total_duration_s: float = 0.0
    polyline: Optional[str] = None
    optimized: bool = False
    computed_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class Task:
    """
    Courier job for one accepted donation (pickup at donor, dropoff at recipient).
    """
    id: str
    donation_id: str
    pickup_location: Optional[LatLon]
    dropoff_location: Optional[LatLon]
    status: TaskStatus = TaskStatus.PENDING
    volunteer_id: Optional[str] = None
    urgency: Urgency = Urgency.NORMAL
    size: TaskSize = TaskSize.MEDIUM

    optimized_route: Optional[OptimizedRoute] = None

    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)
    assigned_at: Optional[datetime] = None
    actual_pickup_time: Optional[datetime] = None
    actual_delivery_time: Optional[datetime] = None
    completion_time_s: Optional[float] = None
    cancellation_notes: Optional[str] = None
    cancelled_at: Optional[datetime] = None

    @staticmethod
    def for_donation(donation: Donation, dropoff_location: Optional[LatLon]) -> Task:
        return Task(
            id=str(uuid.uuid4()),
            donation_id=donation.id,
            pickup_location=donation.location,
            dropoff_location=dropoff_location,
            urgency=donation.urgency,
            size=donation.quantity.task_size(),
        )
