"""Tests for agentoverflow.core.models."""

from __future__ import annotations

from datetime import UTC, datetime
from uuid import uuid4

from agentoverflow.core.models import (
    INITIAL_CONFIDENCE,
    Contributor,
    Issue,
    IssueStatus,
    Solution,
    Verification,
)
from agentoverflow.core.trust import TrustTier, VerificationOutcome

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)


class TestIssue:
    def test_defaults(self):
        issue = Issue(id=uuid4(), fingerprint="f" * 64)
        assert issue.occurrence_count == 1
        assert issue.status == IssueStatus.OPEN

    def test_to_dict(self):
        issue = Issue(id=uuid4(), fingerprint="f" * 64, stack={"b", "a"}, created_at=NOW, last_seen_at=NOW)
        d = issue.to_dict()
        assert d["stack"] == ["a", "b"]
        assert d["status"] == "open"
        assert d["created_at"] == NOW.isoformat()
        assert d["created_by"] is None

    def test_from_row(self):
        row = {
            "id": uuid4(),
            "fingerprint": "f" * 64,
            "title": None,
            "stack": ["x"],
            "occurrence_count": 3,
            "status": "solved",
            "created_at": NOW,
            "last_seen_at": NOW,
        }
        issue = Issue.from_row(row)
        assert issue.title == ""
        assert issue.stack == {"x"}
        assert issue.status == IssueStatus.SOLVED


class TestSolution:
    def test_starts_at_prior(self):
        solution = Solution(id=uuid4(), issue_id=uuid4(), summary="s")
        assert solution.confidence_score == INITIAL_CONFIDENCE
        assert solution.verification_count == 0
        assert solution.last_verified_at is None

    def test_from_row_coerces_numbers(self):
        row = {
            "id": uuid4(),
            "issue_id": uuid4(),
            "summary": "s",
            "confidence_score": "0.5",
            "verification_count": 2,
            "success_count": 3,
            "failure_count": 0,
            "created_at": NOW,
        }
        solution = Solution.from_row(row)
        assert solution.confidence_score == 0.5
        assert isinstance(solution.success_count, float)
        assert solution.version == 0


class TestVerification:
    def test_to_dict(self):
        v = Verification(id=uuid4(), solution_id=uuid4(), outcome=VerificationOutcome.PARTIAL, confidence_delta=0.05, created_at=NOW)
        assert v.to_dict()["outcome"] == "partial"


class TestContributor:
    def test_trust_tier_from_reputation(self):
        assert Contributor(id=uuid4(), name="a").trust_tier == TrustTier.NEW
        assert Contributor(id=uuid4(), name="b", reputation_score=250).trust_tier == TrustTier.TRUSTED
        assert Contributor(id=uuid4(), name="c", reputation_score=250).to_dict()["trust_tier"] == "trusted"
