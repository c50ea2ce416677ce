"""
Purpose: Offer selection for one ACTIVE donation.
What it does:

1) fetch verified, active recipients that still have spare capacity
2) score each one through a ScoringEngine (one bad candidate never aborts the batch)
3) drop totals <= min_total_score, sort descending, keep the top N
4) write the winners as OFFERED offers with one conditional update
5) notify each newly offered recipient

If an embedding run qualifies nobody, the whole pool is re-scored with the
fallback strategy before giving up. With zero qualifying recipients the
donation simply stays ACTIVE without offers.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple

from dispatch.notifications import NotificationKind, dispatch_notification
from donations.models import Donation, DonationStatus, Offer, OfferStatus, RecipientCandidate

from .policy import MatchingPolicy, default_matching_policy
from .response import DonationNotFoundError
from .scoring import MatchScore, RecipientAtCapacityError, ScoringEngine, ScoringMethod

logger = logging.getLogger(__name__)


@dataclass
class MatchResult:
    donation_id: str
    offers: List[MatchScore] = field(default_factory=list)
    method: Optional[ScoringMethod] = None
    candidates_scored: int = 0
    candidates_skipped: int = 0
    persisted: bool = False

    @property
    def matched(self) -> bool:
        return bool(self.offers)


class MatchSelector:
    def __init__(
        self,
        store,
        embedder=None,
        policy: Optional[MatchingPolicy] = None,
        notifier=None,
    ):
        self.store = store
        self.embedder = embedder
        self.policy = policy or default_matching_policy()
        self.notifier = notifier

    def find_matches(self, donation_id: str) -> MatchResult:
        donation = self.store.get_donation(donation_id)
        if donation is None:
            raise DonationNotFoundError(f"Donation {donation_id} not found")

        result = MatchResult(donation_id=donation_id)
        if donation.status != DonationStatus.ACTIVE or donation.accepted_by is not None:
            logger.info("Donation %s is %s, skipping matching", donation_id, donation.status.value)
            return result

        started_at = datetime.utcnow()
        engine = ScoringEngine(self.embedder, self.policy)
        candidates = self.eligible_recipients(donation, engine)

        ranked, skipped = self.rank(engine, donation, candidates)
        if not ranked and self.embedder is not None:
            logger.info("No embedding matches for donation %s, re-scoring with fallback", donation_id)
            engine = ScoringEngine(None, self.policy)
            ranked, skipped = self.rank(engine, donation, candidates)

        result.method = engine.method
        result.candidates_scored = len(candidates) - skipped
        result.candidates_skipped = skipped
        result.offers = ranked[: self.policy.max_offers]

        new_offers = self._persist(donation_id, result.offers, started_at)
        result.persisted = new_offers is not None

        for offer in new_offers or []:
            dispatch_notification(self.notifier, offer.recipient_id, NotificationKind.DONATION_OFFER, {
                "donation_id": donation_id,
                "score": offer.score,
                "method": offer.method,
                "description": donation.ai_description or donation.description,
            })

        if result.offers:
            logger.info(
                "Donation %s: %d offers via %s (%d candidates)",
                donation_id, len(result.offers), engine.method.value, len(candidates),
            )
        else:
            logger.info("Donation %s: no qualifying recipients, left active", donation_id)
        return result

    def eligible_recipients(
        self, donation: Donation, engine: ScoringEngine
    ) -> List[Tuple[RecipientCandidate, int]]:
        """
        Verified, active recipients with spare capacity that were not already
        offered this donation, each paired with its live load.
        """
        already_offered = {offer.recipient_id for offer in donation.matched_recipients}

        eligible: List[Tuple[RecipientCandidate, int]] = []
        for recipient in self.store.find_recipients(verified_only=True, active_only=True):
            if recipient.id in already_offered:
                continue
            load = self.store.recipient_load(recipient.id)
            if load >= engine.capacity_of(recipient):
                continue
            eligible.append((recipient, load))
        return eligible

    def rank(
        self,
        engine: ScoringEngine,
        donation: Donation,
        candidates: List[Tuple[RecipientCandidate, int]],
    ) -> Tuple[List[MatchScore], int]:
        """
        Returns (qualifying scores best first, number of skipped candidates).
        """
        scored: List[MatchScore] = []
        skipped = 0
        for recipient, load in candidates:
            try:
                match = engine.score(donation, recipient, load)
            except RecipientAtCapacityError:
                skipped += 1
                continue
            except Exception:
                logger.exception("Failed to score recipient %s for donation %s", recipient.id, donation.id)
                skipped += 1
                continue

            if engine.qualifies(match):
                scored.append(match)

        # deterministic tie-break on recipient id
        scored.sort(key=lambda match: (-match.total_score, match.recipient_id))
        return scored, skipped

    def _persist(
        self, donation_id: str, matches: List[MatchScore], started_at: datetime
    ) -> Optional[List[Offer]]:
        """
        Writes offers only while the donation is still open. Returns the
        offers actually added, or None when the donation moved on meanwhile.
        """
        added: List[Offer] = []

        def write_offers(donation: Donation) -> None:
            existing = {offer.recipient_id for offer in donation.matched_recipients}
            for match in matches:
                if match.recipient_id in existing:
                    continue
                offer = Offer(
                    recipient_id=match.recipient_id,
                    score=match.total_score,
                    status=OfferStatus.OFFERED,
                    method=match.method.value,
                )
                donation.matched_recipients.append(offer)
                added.append(offer)
            donation.matching_started_at = started_at
            donation.matching_completed_at = datetime.utcnow()

        updated = self.store.update_donation(
            donation_id,
            write_offers,
            expected=lambda d: d.status == DonationStatus.ACTIVE and d.accepted_by is None,
        )
        if updated is None:
            logger.info("Donation %s changed during matching, offers not written", donation_id)
            return None
        return added
