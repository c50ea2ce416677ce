"""
Purpose: Package entry + stable exports.
What it does:

Marks donations as a Python package.

Donations domain package.

Public API:
- Domain models: Donation, Offer, RecipientCandidate, Task, Waypoint, OptimizedRoute
- Enums: DonationStatus, OfferStatus, TaskStatus, Urgency, TaskSize

Should not contain business logic.
"""
from .models import (
    Donation,
    DonationStatus,
    DonationType,
    Offer,
    OfferStatus,
    OptimizedRoute,
    OrganizationType,
    Quantity,
    RecipientCandidate,
    StopType,
    Task,
    TaskSize,
    TaskStatus,
    Urgency,
    VerificationStatus,
    Waypoint,
)

__all__ = [
    "Donation",
    "DonationStatus",
    "DonationType",
    "Offer",
    "OfferStatus",
    "OptimizedRoute",
    "OrganizationType",
    "Quantity",
    "RecipientCandidate",
    "StopType",
    "Task",
    "TaskSize",
    "TaskStatus",
    "Urgency",
    "VerificationStatus",
    "Waypoint",
]
