from datetime import datetime
from typing import Optional

from donations.models import Donation, DonationStatus


class DonationStateException(Exception):
    """Raised when an invalid donation transition is attempted."""
    pass


# Forward-only lifecycle. CANCELLED sits outside the sequence.
DONATION_SEQUENCE = [
    DonationStatus.PENDING,
    DonationStatus.PROCESSING,
    DonationStatus.ACTIVE,
    DonationStatus.MATCHED,
    DonationStatus.SCHEDULED,
    DonationStatus.PICKED_UP,
    DonationStatus.DELIVERED,
]

TERMINAL_DONATION_STATUSES = {DonationStatus.DELIVERED, DonationStatus.CANCELLED}


def can_transition_donation(current: DonationStatus, new: DonationStatus) -> bool:
    """
    Monotonic forward progression; cancellation from any non-terminal state.
    """
    if current in TERMINAL_DONATION_STATUSES:
        return False
    if new == DonationStatus.CANCELLED:
        return True
    return DONATION_SEQUENCE.index(new) > DONATION_SEQUENCE.index(current)


def transition_donation(donation: Donation, new_status: DonationStatus, now: Optional[datetime] = None) -> Donation:
    """
    Moves a donation to `new_status` and stamps the pickup/delivery times.
    Mutates and returns the same instance (call it inside a store update).
    """
    if not can_transition_donation(donation.status, new_status):
        raise DonationStateException(
            f"Cannot transition donation {donation.id} from {donation.status.value} to {new_status.value}"
        )

    now = now or datetime.utcnow()
    donation.status = new_status

    if new_status == DonationStatus.PICKED_UP and donation.pickup_time is None:
        donation.pickup_time = now
    elif new_status == DonationStatus.DELIVERED and donation.delivery_time is None:
        donation.delivery_time = now

    return donation
