"""Confidence scoring for solutions.

A solution's confidence is a single bounded score built from the weighted
outcomes of its verifications and how recently it was last verified:

    base_score   = 0.3 + 0.7 × success_rate × count_factor
    count_factor = min(1, log10(verification_count + 1) / 2)
    decay_factor = 0.5 ^ (days_since_last_verification / 180)
    confidence   = clamp(base_score × decay_factor, 0.1, 0.99)

An unverified solution sits at the 0.3 prior: visible but unproven.
count_factor saturates near 99 verifications, so a single verification
cannot swing confidence to an extreme. Stale evidence loses half its
weight every 180 days.

Constants come from ``ScoringConfig``.
"""

from __future__ import annotations

import math
from datetime import UTC, datetime

from .config import DEFAULT_SCORING, ScoringConfig

SECONDS_PER_DAY = 86400.0


def _finite_non_negative(value: float) -> float:
    """Coerce NaN, infinities and negatives to 0."""
    value = float(value)
    if math.isnan(value) or math.isinf(value) or value < 0:
        return 0.0
    return value


def days_since(timestamp: datetime, now: datetime | None = None) -> float:
    """Elapsed days from ``timestamp`` to ``now``; future timestamps count as 0.

    Naive datetimes are taken to be UTC.
    """
    now = now or datetime.now(UTC)
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=UTC)
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)
    return max(0.0, (now - timestamp).total_seconds() / SECONDS_PER_DAY)


def decay_factor(
    last_verified_at: datetime | None,
    now: datetime | None = None,
    config: ScoringConfig | None = None,
) -> float:
    config = config or DEFAULT_SCORING
    if last_verified_at is None:
        return 1.0
    return 0.5 ** (days_since(last_verified_at, now) / config.half_life_days)


def base_score(
    verification_count: int,
    success_count: float,
    config: ScoringConfig | None = None,
) -> float:
    """Score from verification outcomes alone, before time decay."""
    config = config or DEFAULT_SCORING
    count = _finite_non_negative(verification_count)
    if count == 0:
        return config.prior

    success_rate = _finite_non_negative(success_count) / count
    count_factor = min(1.0, math.log10(count + 1) / config.count_saturation)
    return config.prior + config.gain * success_rate * count_factor


def calculate_confidence(
    verification_count: int,
    success_count: float,
    last_verified_at: datetime | None,
    now: datetime | None = None,
    config: ScoringConfig | None = None,
) -> float:
    """Calculate the confidence score of a solution.

    Pure: every input is supplied by the caller and nothing external is read
    apart from the clock when ``now`` is omitted.

    Args:
        verification_count: Number of verifications recorded (not weighted)
        success_count: Weighted success count; may exceed verification_count
            when high-tier contributors verified
        last_verified_at: Time of the most recent verification, None if never
        now: Reference time (defaults to the current UTC time)
        config: Scoring constants

    Returns:
        Confidence in [floor, ceiling], 0.1 to 0.99 by default. Malformed
        counters are clamped rather than propagated.
    """
    config = config or DEFAULT_SCORING
    score = base_score(verification_count, success_count, config) * decay_factor(last_verified_at, now, config)
    if math.isnan(score):
        score = config.floor
    return min(config.ceiling, max(config.floor, score))


def is_solved(confidence: float, config: ScoringConfig | None = None) -> bool:
    """Whether a confidence score is high enough to mark its issue solved."""
    config = config or DEFAULT_SCORING
    return confidence >= config.solved_threshold


def confidence_label(confidence: float) -> str:
    """Get a human-readable label for a confidence value."""
    if confidence >= 0.8:
        return "high"
    elif confidence >= 0.5:
        return "medium"
    else:
        return "low"
