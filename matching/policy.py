"""
Purpose: Central configuration for recipient matching (single source of truth).
What it does:

Stores all tunable weights/thresholds:

EMBEDDING WEIGHTS = similarity .35, proximity .25, dietary .25, capacity .15
FALLBACK WEIGHTS = keyword .30, proximity .25, dietary .20, capacity .15, organization .10

MIN_TOTAL_SCORE = 0.3

MAX_OFFERS = 3

MANUAL_ACCEPT_SCORE = 0.5

Rule: No logic here, just parameters so you can tune without rewriting code.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict


@dataclass(frozen=True)
class MatchingPolicy:
    """
    Central configuration for scoring and offer selection.

    Notes:
    - weights of each profile must sum to 1.0 so totals stay in [0, 1].
    - specialized profiles (urgent / bulk) only apply to the fallback strategy
      and only when `use_specialized_profiles` is on.
    """

    # --- Strategy weights ---
    embedding_weights: Dict[str, float] = field(default_factory=lambda: {
        "similarity": 0.35,
        "proximity": 0.25,
        "dietary": 0.25,
        "capacity": 0.15,
    })
    fallback_weights: Dict[str, float] = field(default_factory=lambda: {
        "keyword": 0.30,
        "proximity": 0.25,
        "dietary": 0.20,
        "capacity": 0.15,
        "organization": 0.10,
    })

    # --- Specialized fallback profiles ---
    # Critical donations: get it somewhere close with room, fast.
    # Bulk donations: capacity matters most.
    use_specialized_profiles: bool = False
    urgent_weights: Dict[str, float] = field(default_factory=lambda: {
        "proximity": 0.40,
        "capacity": 0.30,
        "keyword": 0.15,
        "dietary": 0.10,
        "organization": 0.05,
    })
    bulk_weights: Dict[str, float] = field(default_factory=lambda: {
        "capacity": 0.40,
        "keyword": 0.20,
        "proximity": 0.15,
        "organization": 0.15,
        "dietary": 0.10,
    })

    # --- Thresholds ---
    # Candidates scoring at or below this are dropped.
    min_total_score: float = 0.3
    # How many ranked offers a donation receives.
    max_offers: int = 3
    # Score recorded for an acceptance outside the ranked offers.
    manual_accept_score: float = 0.5

    # --- Proximity ---
    # Planar distance (degrees) at which proximity bottoms out, ~55km.
    proximity_cap_degrees: float = 0.5
    missing_location_proximity: float = 0.5

    # --- Dietary ---
    # Multiplicative penalty per violated restriction.
    dietary_conflict_penalty: float = 0.1

    # --- Capacity ---
    # Used when a recipient never filled in a capacity.
    default_recipient_capacity: int = 50

    def validate(self) -> None:
        """
        Basic sanity checks. Call once at startup if you want.
        """
        profiles = {
            "embedding_weights": self.embedding_weights,
            "fallback_weights": self.fallback_weights,
            "urgent_weights": self.urgent_weights,
            "bulk_weights": self.bulk_weights,
        }
        for name, weights in profiles.items():
            if any(weight < 0 for weight in weights.values()):
                raise ValueError(f"{name} must not contain negative weights")
            if abs(sum(weights.values()) - 1.0) > 1e-6:
                raise ValueError(f"{name} must sum to 1.0")

        if not 0.0 <= self.min_total_score < 1.0:
            raise ValueError("min_total_score must be in [0, 1)")

        if self.max_offers < 1:
            raise ValueError("max_offers must be >= 1")

        if not 0.0 <= self.manual_accept_score <= 1.0:
            raise ValueError("manual_accept_score must be in [0, 1]")

        if self.proximity_cap_degrees <= 0:
            raise ValueError("proximity_cap_degrees must be > 0")

        if not 0.0 <= self.dietary_conflict_penalty <= 1.0:
            raise ValueError("dietary_conflict_penalty must be in [0, 1]")

        if self.default_recipient_capacity < 0:
            raise ValueError("default_recipient_capacity must be >= 0")


def default_matching_policy() -> MatchingPolicy:
    """
    Convenience factory for the default policy.
    """
    p = MatchingPolicy()
    p.validate()
    return p


def specialized_matching_policy() -> MatchingPolicy:
    """
    Example: urgency / bulk aware ranking for the fallback strategy.
    """
    p = MatchingPolicy(use_specialized_profiles=True)
    p.validate()
    return p
