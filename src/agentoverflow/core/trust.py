"""Trust tiers and verification weights.

Reputation built from historical accuracy should dominate raw verification
volume, so a verification from an expert moves the weighted counters three
times as far as one from a new contributor.
"""

from __future__ import annotations

from enum import StrEnum

from .config import DEFAULT_SCORING, ScoringConfig
from .exceptions import ValidationException


class TrustTier(StrEnum):
    """Discrete contributor classification derived from reputation."""

    NEW = "new"
    ESTABLISHED = "established"
    TRUSTED = "trusted"
    EXPERT = "expert"


class VerificationOutcome(StrEnum):
    SUCCESS = "success"
    FAILURE = "failure"
    PARTIAL = "partial"


def tier_of(reputation_score: int, config: ScoringConfig | None = None) -> TrustTier:
    """Map a reputation score to its tier.

    new 0-49, established 50-199, trusted 200-499, expert 500+.
    Negative scores are treated as 0.
    """
    config = config or DEFAULT_SCORING
    score = max(0, reputation_score)
    for tier, minimum in config.tier_thresholds:
        if score >= minimum:
            return TrustTier(tier)
    return TrustTier.NEW


def weight_of(tier: TrustTier | str | None, config: ScoringConfig | None = None) -> float:
    """Verification weight for a tier.

    Unknown or missing tiers weigh the same as ``new``.
    """
    config = config or DEFAULT_SCORING
    weights = dict(config.tier_weights)
    default = weights[TrustTier.NEW]
    if tier is None:
        return default
    return weights.get(str(tier), default)


def parse_outcome(outcome: VerificationOutcome | str) -> VerificationOutcome:
    try:
        return VerificationOutcome(outcome)
    except ValueError:
        valid = [o.value for o in VerificationOutcome]
        raise ValidationException(f"Unknown verification outcome: {outcome}. Valid: {valid}", field="outcome", value=outcome)


def apply_outcome(outcome: VerificationOutcome | str, weight: float) -> tuple[float, float]:
    """Split a verification's weight into (success_delta, failure_delta).

    success adds the full weight to successes, failure to failures, and
    partial splits it evenly between both.
    """
    outcome = parse_outcome(outcome)
    if outcome == VerificationOutcome.SUCCESS:
        return weight, 0.0
    if outcome == VerificationOutcome.FAILURE:
        return 0.0, weight
    half = weight * 0.5
    return half, half
