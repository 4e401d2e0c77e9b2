"""Tests for agentoverflow.core.trust module."""

from __future__ import annotations

import pytest

from agentoverflow.core.config import ScoringConfig
from agentoverflow.core.exceptions import ValidationException
from agentoverflow.core.trust import (
    TrustTier,
    VerificationOutcome,
    apply_outcome,
    parse_outcome,
    tier_of,
    weight_of,
)


class TestTierOf:
    """Reputation score to tier mapping."""

    @pytest.mark.parametrize(
        "score,tier",
        [
            (0, TrustTier.NEW),
            (49, TrustTier.NEW),
            (50, TrustTier.ESTABLISHED),
            (199, TrustTier.ESTABLISHED),
            (200, TrustTier.TRUSTED),
            (499, TrustTier.TRUSTED),
            (500, TrustTier.EXPERT),
            (10_000, TrustTier.EXPERT),
        ],
    )
    def test_boundaries(self, score, tier):
        assert tier_of(score) == tier

    def test_negative_score_is_new(self):
        assert tier_of(-20) == TrustTier.NEW

    def test_custom_thresholds(self):
        config = ScoringConfig(tier_thresholds=(("expert", 10), ("new", 0)))
        assert tier_of(10, config) == TrustTier.EXPERT
        assert tier_of(9, config) == TrustTier.NEW


class TestWeightOf:
    """Tier weights."""

    def test_default_weights(self):
        assert weight_of(TrustTier.NEW) == 1.0
        assert weight_of(TrustTier.ESTABLISHED) == 1.5
        assert weight_of(TrustTier.TRUSTED) == 2.0
        assert weight_of(TrustTier.EXPERT) == 3.0

    def test_accepts_plain_strings(self):
        assert weight_of("expert") == 3.0

    def test_unknown_or_missing_tier_weighs_as_new(self):
        assert weight_of("grandmaster") == 1.0
        assert weight_of(None) == 1.0


class TestOutcomes:
    """Outcome parsing and weighted deltas."""

    def test_parse_valid(self):
        assert parse_outcome("success") == VerificationOutcome.SUCCESS
        assert parse_outcome(VerificationOutcome.PARTIAL) == VerificationOutcome.PARTIAL

    def test_parse_invalid(self):
        with pytest.raises(ValidationException) as exc_info:
            parse_outcome("maybe")
        assert exc_info.value.field == "outcome"

    def test_success_adds_full_weight_to_successes(self):
        assert apply_outcome("success", 3.0) == (3.0, 0.0)

    def test_failure_adds_full_weight_to_failures(self):
        assert apply_outcome("failure", 1.5) == (0.0, 1.5)

    def test_partial_splits_weight(self):
        assert apply_outcome("partial", 2.0) == (1.0, 1.0)
