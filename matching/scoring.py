"""
Purpose: Ranking model (the "who should receive this donation" layer).
What it does:

Scores one donation against one eligible recipient and returns named
sub-scores plus a total in [0, 1].

Two interchangeable strategies behind one interface:
- EMBEDDING: semantic similarity of donation text vs recipient profile
  total = .35 similarity + .25 proximity + .25 dietary + .15 capacity
- FALLBACK: rule based keyword overlap + organization affinity
  total = .30 keyword + .25 proximity + .20 dietary + .15 capacity + .10 organization

The ScoringEngine starts on EMBEDDING when an embedder is configured and
switches to FALLBACK for the rest of its life the first time the embedder
fails (fail-open).

Rule: Scoring never touches the store. Capacity exclusion happens before a
candidate is scored.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from donations.models import Donation, DonationType, OrganizationType, RecipientCandidate, Urgency

from .embeddings import EmbeddingError
from .policy import MatchingPolicy, default_matching_policy

logger = logging.getLogger(__name__)

LatLon = Tuple[float, float]


class ScoringMethod(str, Enum):
    EMBEDDING = "embedding"
    FALLBACK = "fallback"
    MANUAL = "manual"


class RecipientAtCapacityError(Exception):
    """Raised when a recipient with no spare capacity reaches the scorer."""
    pass


# Relative value of a preferred-category hit, by category.
KEYWORD_WEIGHTS: Dict[str, float] = {
    "prepared-meal": 1.0,
    "fruits": 0.8,
    "vegetables": 0.8,
    "baked-goods": 0.9,
    "dairy": 0.7,
    "meat": 0.6,
    "seafood": 0.6,
    "grains": 0.7,
    "beverages": 0.5,
    "vegetarian": 0.9,
    "vegan": 0.9,
    "gluten-free": 0.8,
    "dairy-free": 0.8,
    "nut-free": 0.7,
    "halal": 0.8,
    "kosher": 0.8,
}
DEFAULT_KEYWORD_WEIGHT = 0.5

# restriction -> donation terms that violate it
DIETARY_CONFLICTS: Dict[str, Tuple[str, ...]] = {
    "vegetarian": ("meat", "poultry", "seafood", "fish"),
    "vegan": ("meat", "poultry", "seafood", "fish", "dairy", "eggs", "honey"),
    "halal": ("pork", "alcohol"),
    "kosher": ("pork", "shellfish"),
    "gluten-free": ("wheat", "barley", "rye", "gluten"),
    "dairy-free": ("dairy", "milk", "cheese", "butter"),
    "nut-free": ("nuts", "peanuts", "almonds", "walnuts"),
}

ORGANIZATION_PREFERENCES: Dict[OrganizationType, Dict[str, Tuple[str, ...]]] = {
    OrganizationType.SHELTER: {
        "types": ("normal", "bulk"),
        "categories": ("prepared-meal", "baked-goods"),
    },
    OrganizationType.COMMUNITY_KITCHEN: {
        "types": ("normal",),
        "categories": ("prepared-meal", "vegetables", "grains"),
    },
    OrganizationType.FOOD_BANK: {
        "types": ("bulk", "normal"),
        "categories": ("grains", "canned-goods", "beverages"),
    },
    OrganizationType.RELIGIOUS: {
        "types": ("normal", "bulk"),
        "categories": ("prepared-meal", "baked-goods"),
    },
    OrganizationType.OTHER: {
        "types": ("normal", "bulk"),
        "categories": (),
    },
}


@dataclass(frozen=True)
class MatchScore:
    """
    Scored candidate. Strategy specific sub-scores are None when unused.
    """
    recipient_id: str
    method: ScoringMethod
    total_score: float
    proximity: float
    dietary: float
    capacity: float
    similarity: Optional[float] = None
    keyword: Optional[float] = None
    organization: Optional[float] = None
    current_load: int = 0
    capacity_limit: int = 0

    def sub_scores(self) -> Dict[str, float]:
        scores = {
            "similarity": self.similarity,
            "keyword": self.keyword,
            "proximity": self.proximity,
            "dietary": self.dietary,
            "capacity": self.capacity,
            "organization": self.organization,
        }
        return {name: value for name, value in scores.items() if value is not None}


# -------------------------
# Shared sub-scores
# -------------------------

def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def donation_terms(donation: Donation) -> List[str]:
    """Every label describing what is in the donation, lowercased."""
    return [term.lower().strip() for term in (*donation.categories, *donation.tags, *donation.allergens) if term]


def has_dietary_conflict(items: Iterable[str], restriction: str) -> bool:
    """
    True when any item mentions a term the restriction forbids.
    "Free-from" labels (e.g. "dairy-free") never count as a conflict.
    """
    conflicts = DIETARY_CONFLICTS.get(restriction.lower().strip(), ())
    if not conflicts:
        return False

    for item in items:
        normalized = item.lower().strip()
        if normalized.endswith("-free") or normalized.endswith(" free"):
            continue
        if any(conflict in normalized for conflict in conflicts):
            return True
    return False


def violated_restrictions(donation: Donation, recipient: RecipientCandidate) -> List[str]:
    terms = donation_terms(donation)
    return [restriction for restriction in recipient.dietary_restrictions if has_dietary_conflict(terms, restriction)]


def planar_distance_degrees(origin: LatLon, destination: LatLon) -> float:
    # Fast pythagorean approximation, degrees
    return math.sqrt((origin[0] - destination[0]) ** 2 + (origin[1] - destination[1]) ** 2)


def proximity_score(origin: Optional[LatLon], destination: Optional[LatLon], policy: MatchingPolicy) -> float:
    if origin is None or destination is None:
        return policy.missing_location_proximity

    distance = planar_distance_degrees(origin, destination)
    proximity = max(0.0, 1.0 - distance / policy.proximity_cap_degrees)

    if proximity > 0.8:
        return 1.0
    if proximity > 0.6:
        return 0.8
    if proximity > 0.4:
        return 0.6
    if proximity > 0.2:
        return 0.4
    return 0.2


def dietary_score(donation: Donation, recipient: RecipientCandidate, policy: MatchingPolicy) -> float:
    compatibility = 1.0
    for _ in violated_restrictions(donation, recipient):
        compatibility *= policy.dietary_conflict_penalty
    return _clamp(compatibility)


def capacity_score(current_load: int, capacity: int, method: ScoringMethod = ScoringMethod.FALLBACK) -> float:
    """
    Step function of utilization. The embedding variant has a 0.5 step at
    half capacity where the fallback variant has a 0.4 step at 60%.
    """
    if not capacity:
        return 0.5

    utilization = current_load / capacity
    if utilization >= 1.0:
        return 0.0
    if utilization >= 0.8:
        return 0.2
    if method == ScoringMethod.EMBEDDING:
        if utilization >= 0.5:
            return 0.5
    elif utilization >= 0.6:
        return 0.4
    if utilization >= 0.4:
        return 0.6
    if utilization >= 0.2:
        return 0.8
    return 1.0


def keyword_score(donation: Donation, recipient: RecipientCandidate, policy: MatchingPolicy) -> float:
    """
    Normalized overlap between what the donation is (categories, or tags when
    it has no categories) and what the recipient prefers, plus a small boost
    for the share of terms matched. Each violated restriction multiplies the
    result by the dietary penalty.
    """
    preferred = {category.lower().strip() for category in recipient.preferred_categories}
    terms = [category.lower().strip() for category in donation.categories if category]
    if not terms:
        terms = [tag.lower().strip() for tag in donation.tags if tag]

    if terms:
        weighted = 0.0
        matched = 0
        for term in terms:
            if term in preferred:
                weighted += KEYWORD_WEIGHTS.get(term, DEFAULT_KEYWORD_WEIGHT)
                matched += 1
        score = weighted / len(terms) + (matched / len(terms)) * 0.3
    else:
        score = 0.5

    for _ in violated_restrictions(donation, recipient):
        score *= policy.dietary_conflict_penalty

    return _clamp(score)


def organization_affinity(donation: Donation, recipient: RecipientCandidate) -> float:
    preferences = ORGANIZATION_PREFERENCES.get(
        recipient.organization_type, ORGANIZATION_PREFERENCES[OrganizationType.OTHER]
    )

    score = 0.5
    if donation.type.value in preferences["types"]:
        score += 0.2

    categories = [category.lower().strip() for category in donation.categories if category]
    if categories:
        matching = [category for category in categories if category in preferences["categories"]]
        score += (len(matching) / len(categories)) * 0.3

    return _clamp(score)


def cosine_similarity(vector_a: Sequence[float], vector_b: Sequence[float]) -> float:
    """
    Cosine similarity clamped to [0, 1] (opposite meaning scores as no match).
    """
    a = np.asarray(vector_a, dtype=float)
    b = np.asarray(vector_b, dtype=float)
    if a.shape != b.shape:
        raise ValueError(f"Embedding dimensions differ: {a.shape} vs {b.shape}")

    norm = float(np.linalg.norm(a) * np.linalg.norm(b))
    if norm == 0.0:
        return 0.0
    return _clamp(float(np.dot(a, b)) / norm)


def _weighted_total(weights: Dict[str, float], scores: Dict[str, float]) -> float:
    return _clamp(sum(weight * scores[name] for name, weight in weights.items()))


# -------------------------
# Strategies
# -------------------------

class ScoringStrategy:
    """
    One way of scoring a (donation, recipient) pair.
    """
    method: ScoringMethod

    def score(
        self,
        donation: Donation,
        recipient: RecipientCandidate,
        current_load: int,
        capacity_limit: int,
    ) -> MatchScore:
        raise NotImplementedError


class FallbackScoringStrategy(ScoringStrategy):
    method = ScoringMethod.FALLBACK

    def __init__(self, policy: MatchingPolicy):
        self.policy = policy

    def weights_for(self, donation: Donation) -> Dict[str, float]:
        if self.policy.use_specialized_profiles:
            if donation.urgency == Urgency.CRITICAL:
                return self.policy.urgent_weights
            if donation.type == DonationType.BULK:
                return self.policy.bulk_weights
        return self.policy.fallback_weights

    def score(self, donation, recipient, current_load, capacity_limit) -> MatchScore:
        scores = {
            "keyword": keyword_score(donation, recipient, self.policy),
            "proximity": proximity_score(donation.location, recipient.location, self.policy),
            "dietary": dietary_score(donation, recipient, self.policy),
            "capacity": capacity_score(current_load, capacity_limit, self.method),
            "organization": organization_affinity(donation, recipient),
        }
        return MatchScore(
            recipient_id=recipient.id,
            method=self.method,
            total_score=_weighted_total(self.weights_for(donation), scores),
            proximity=scores["proximity"],
            dietary=scores["dietary"],
            capacity=scores["capacity"],
            keyword=scores["keyword"],
            organization=scores["organization"],
            current_load=current_load,
            capacity_limit=capacity_limit,
        )


class EmbeddingScoringStrategy(ScoringStrategy):
    method = ScoringMethod.EMBEDDING

    def __init__(self, embedder, policy: MatchingPolicy):
        self.embedder = embedder
        self.policy = policy
        self._donation_vectors: Dict[str, List[float]] = {}

    def _embed(self, text: str) -> List[float]:
        try:
            return self.embedder.embed(text)
        except EmbeddingError:
            raise
        except Exception as exc:
            raise EmbeddingError(f"Embedding oracle failed: {exc}") from exc

    def _donation_vector(self, donation: Donation) -> List[float]:
        # one donation is scored against many recipients; embed it once
        if donation.id not in self._donation_vectors:
            self._donation_vectors[donation.id] = self._embed(donation.matching_text())
        return self._donation_vectors[donation.id]

    def score(self, donation, recipient, current_load, capacity_limit) -> MatchScore:
        # mismatched vector lengths raise ValueError for this recipient only
        similarity = cosine_similarity(self._donation_vector(donation), self._embed(recipient.profile_text()))

        scores = {
            "similarity": similarity,
            "proximity": proximity_score(donation.location, recipient.location, self.policy),
            "dietary": dietary_score(donation, recipient, self.policy),
            "capacity": capacity_score(current_load, capacity_limit, self.method),
        }
        return MatchScore(
            recipient_id=recipient.id,
            method=self.method,
            total_score=_weighted_total(self.policy.embedding_weights, scores),
            proximity=scores["proximity"],
            dietary=scores["dietary"],
            capacity=scores["capacity"],
            similarity=similarity,
            current_load=current_load,
            capacity_limit=capacity_limit,
        )


class ScoringEngine:
    """
    Selects the strategy at construction time (embedding when an embedder is
    given) and degrades to the fallback strategy on the first oracle error.
    Create one engine per matching run.
    """
    def __init__(self, embedder=None, policy: Optional[MatchingPolicy] = None):
        self.policy = policy or default_matching_policy()
        self.fallback = FallbackScoringStrategy(self.policy)
        self.strategy: ScoringStrategy = (
            EmbeddingScoringStrategy(embedder, self.policy) if embedder is not None else self.fallback
        )

    @property
    def method(self) -> ScoringMethod:
        return self.strategy.method

    def capacity_of(self, recipient: RecipientCandidate) -> int:
        if recipient.capacity is None:
            return self.policy.default_recipient_capacity
        return recipient.capacity

    def score(self, donation: Donation, recipient: RecipientCandidate, current_load: int) -> MatchScore:
        capacity_limit = self.capacity_of(recipient)
        if current_load >= capacity_limit:
            raise RecipientAtCapacityError(
                f"Recipient {recipient.id} at capacity: {current_load}/{capacity_limit}"
            )

        if self.strategy is not self.fallback:
            try:
                return self.strategy.score(donation, recipient, current_load, capacity_limit)
            except EmbeddingError as exc:
                logger.warning("Embedding scoring unavailable, switching to fallback: %s", exc)
                self.strategy = self.fallback

        return self.fallback.score(donation, recipient, current_load, capacity_limit)

    def qualifies(self, match: MatchScore) -> bool:
        return match.total_score > self.policy.min_total_score


def explain_match(donation: Donation, recipient: RecipientCandidate, match: MatchScore) -> Dict[str, object]:
    """
    Debug view of one matching decision.
    """
    return {
        "donation_id": donation.id,
        "recipient_id": recipient.id,
        "recipient_name": recipient.organization_name,
        "method": match.method.value,
        "scores": {**match.sub_scores(), "total": match.total_score},
        "factors": {
            "categories": list(donation.categories),
            "tags": list(donation.tags),
            "allergens": list(donation.allergens),
            "recipient_restrictions": list(recipient.dietary_restrictions),
            "violated_restrictions": violated_restrictions(donation, recipient),
            "recipient_preferences": list(recipient.preferred_categories),
            "current_load": match.current_load,
            "capacity": match.capacity_limit,
            "organization_type": recipient.organization_type.value,
        },
    }
