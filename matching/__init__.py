#Expose the recipient matching pipeline:
#Scoring (two strategies behind one engine)
#Offer selection
#Accept / decline protocol

from .embeddings import EmbeddingError, HuggingFaceEmbeddingClient
from .policy import MatchingPolicy, default_matching_policy, specialized_matching_policy
from .scoring import MatchScore, RecipientAtCapacityError, ScoringEngine, ScoringMethod, explain_match
from .response import (
    ANOTHER_RECIPIENT_ACCEPTED,
    AcceptanceResult,
    DonationNotFoundError,
    OfferNotFoundError,
    ResponseResolver,
    StateConflictError,
)
from .selector import MatchResult, MatchSelector

__all__ = [
    "EmbeddingError",
    "HuggingFaceEmbeddingClient",
    "MatchingPolicy",
    "default_matching_policy",
    "specialized_matching_policy",
    "MatchScore",
    "RecipientAtCapacityError",
    "ScoringEngine",
    "ScoringMethod",
    "explain_match",
    "ANOTHER_RECIPIENT_ACCEPTED",
    "AcceptanceResult",
    "DonationNotFoundError",
    "OfferNotFoundError",
    "ResponseResolver",
    "StateConflictError",
    "MatchResult",
    "MatchSelector",
]
