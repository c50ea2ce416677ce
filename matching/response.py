"""
Purpose: Recipient accept / decline protocol (the single-winner guard).
What it does:

accept(donation_id, recipient_id)
- existing OFFERED offer -> ACCEPTED
- no offer yet but donation still ACTIVE -> new ACCEPTED offer at the manual score
- sets accepted_by, donation -> MATCHED
- every other OFFERED offer -> DECLINED ("Another recipient accepted the donation")
- accepting an already accepted offer again is a no-op
- the recipient must exist, be verified and active, and have spare capacity

decline(donation_id, recipient_id, reason=None)
- only valid against an OFFERED offer of that recipient

Rule: acceptance is one conditional update keyed on accepted_by being unset,
never read-modify-write. Two concurrent accepts produce exactly one winner.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from donations.models import Donation, DonationStatus, Offer, OfferStatus
from donations.state_machines import transition_donation

from .policy import MatchingPolicy, default_matching_policy
from .scoring import ScoringMethod

logger = logging.getLogger(__name__)

ANOTHER_RECIPIENT_ACCEPTED = "Another recipient accepted the donation"


class StateConflictError(Exception):
    """Raised when an accept/decline hits a donation in the wrong state."""
    pass


class OfferNotFoundError(Exception):
    """Raised when a decline targets an offer that is not open."""
    pass


class DonationNotFoundError(Exception):
    """Raised when the donation does not exist."""
    pass


@dataclass(frozen=True)
class AcceptanceResult:
    donation_id: str
    recipient_id: str
    offer: Offer
    declined_recipient_ids: List[str] = field(default_factory=list)
    manual: bool = False
    # True when this call was a repeat of an acceptance that already happened
    already_accepted: bool = False


class ResponseResolver:
    """
    Applies recipient responses to a donation's offer list.

    on_accepted is called once per fresh acceptance (not on idempotent
    repeats), typically to start courier assignment.
    """
    def __init__(
        self,
        store,
        policy: Optional[MatchingPolicy] = None,
        on_accepted: Optional[Callable[[AcceptanceResult], None]] = None,
    ):
        self.store = store
        self.policy = policy or default_matching_policy()
        self.on_accepted = on_accepted

    def accept(self, donation_id: str, recipient_id: str, now: Optional[datetime] = None) -> AcceptanceResult:
        now = now or datetime.utcnow()
        self._check_recipient_eligible(donation_id, recipient_id)
        outcome = {"manual": False, "declined": []}

        def apply(donation: Donation) -> None:
            offer = donation.offer_for(recipient_id)
            if offer is None:
                # acceptance outside the ranked offers
                offer = Offer(
                    recipient_id=recipient_id,
                    score=self.policy.manual_accept_score,
                    status=OfferStatus.ACCEPTED,
                    method=ScoringMethod.MANUAL.value,
                    responded_at=now,
                )
                donation.matched_recipients.append(offer)
                outcome["manual"] = True
            elif offer.status == OfferStatus.OFFERED:
                offer.status = OfferStatus.ACCEPTED
                offer.responded_at = now
            else:
                raise StateConflictError(
                    f"Recipient {recipient_id} already declined donation {donation.id}"
                )

            donation.accepted_by = recipient_id
            transition_donation(donation, DonationStatus.MATCHED, now)

            for other in donation.matched_recipients:
                if other is offer or other.status != OfferStatus.OFFERED:
                    continue
                other.status = OfferStatus.DECLINED
                other.decline_reason = ANOTHER_RECIPIENT_ACCEPTED
                other.responded_at = now
                outcome["declined"].append(other.recipient_id)

        updated = self.store.update_donation(
            donation_id,
            apply,
            expected=lambda d: d.accepted_by is None and d.status == DonationStatus.ACTIVE,
        )

        if updated is None:
            return self._resolve_rejected_accept(donation_id, recipient_id, now)

        result = AcceptanceResult(
            donation_id=donation_id,
            recipient_id=recipient_id,
            offer=updated.offer_for(recipient_id),
            declined_recipient_ids=outcome["declined"],
            manual=outcome["manual"],
        )
        logger.info(
            "Donation %s accepted by %s (manual=%s, declined %d other offers)",
            donation_id, recipient_id, result.manual, len(result.declined_recipient_ids),
        )

        if self.on_accepted is not None:
            try:
                self.on_accepted(result)
            except Exception:
                # acceptance is already committed; follow-up work is best effort
                logger.exception("Post-acceptance hook failed for donation %s", donation_id)

        return result

    def _check_recipient_eligible(self, donation_id: str, recipient_id: str) -> None:
        """
        Only an open donation is checked; repeats and lost races are sorted
        out after the conditional update.
        """
        donation = self.store.get_donation(donation_id)
        if donation is None or donation.accepted_by is not None or donation.status != DonationStatus.ACTIVE:
            return

        recipient = self.store.get_recipient(recipient_id)
        if recipient is None:
            raise StateConflictError(f"Recipient {recipient_id} not found")
        if not recipient.is_verified:
            raise StateConflictError(f"Recipient {recipient_id} is not verified")
        if not recipient.is_active:
            raise StateConflictError(f"Recipient {recipient_id} is not active")

        capacity = recipient.capacity if recipient.capacity is not None else self.policy.default_recipient_capacity
        load = self.store.recipient_load(recipient_id)
        if load >= capacity:
            raise StateConflictError(f"Recipient {recipient_id} at capacity: {load}/{capacity}")

    def _resolve_rejected_accept(self, donation_id: str, recipient_id: str, now: datetime) -> AcceptanceResult:
        """
        The conditional update did not apply. Work out whether this was a
        repeat, a lost race, or a donation that is simply not open.
        """
        current = self.store.get_donation(donation_id)
        if current is None:
            raise DonationNotFoundError(f"Donation {donation_id} not found")

        offer = current.offer_for(recipient_id)
        if current.accepted_by == recipient_id and offer is not None and offer.status == OfferStatus.ACCEPTED:
            return AcceptanceResult(
                donation_id=donation_id,
                recipient_id=recipient_id,
                offer=offer,
                already_accepted=True,
            )

        if current.accepted_by is not None:
            self._record_lost_acceptance(donation_id, recipient_id, now)
            raise StateConflictError(f"Donation {donation_id} was already accepted by another recipient")

        raise StateConflictError(f"Donation {donation_id} is {current.status.value}, not active")

    def _record_lost_acceptance(self, donation_id: str, recipient_id: str, now: datetime) -> None:
        """
        The loser of an accept race ends with a declined offer carrying the
        standard reason, even if it came in through the manual path.
        """
        def apply(donation: Donation) -> None:
            offer = donation.offer_for(recipient_id)
            if offer is None:
                donation.matched_recipients.append(Offer(
                    recipient_id=recipient_id,
                    score=self.policy.manual_accept_score,
                    status=OfferStatus.DECLINED,
                    method=ScoringMethod.MANUAL.value,
                    responded_at=now,
                    decline_reason=ANOTHER_RECIPIENT_ACCEPTED,
                ))
            elif offer.status == OfferStatus.OFFERED:
                offer.status = OfferStatus.DECLINED
                offer.decline_reason = ANOTHER_RECIPIENT_ACCEPTED
                offer.responded_at = now

        self.store.update_donation(
            donation_id,
            apply,
            expected=lambda d: d.accepted_by is not None and d.accepted_by != recipient_id,
        )

    def decline(
        self,
        donation_id: str,
        recipient_id: str,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Offer:
        now = now or datetime.utcnow()

        def apply(donation: Donation) -> None:
            offer = donation.offer_for(recipient_id)
            if offer is None or offer.status != OfferStatus.OFFERED:
                raise OfferNotFoundError(
                    f"No open offer for recipient {recipient_id} on donation {donation.id}"
                )
            offer.status = OfferStatus.DECLINED
            offer.decline_reason = reason
            offer.responded_at = now

        updated = self.store.update_donation(donation_id, apply)
        if updated is None:
            raise DonationNotFoundError(f"Donation {donation_id} not found")

        logger.info("Recipient %s declined donation %s", recipient_id, donation_id)
        return updated.offer_for(recipient_id)
