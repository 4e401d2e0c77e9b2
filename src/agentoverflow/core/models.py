# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Data models for the agentoverflow knowledge base.

Issue       one row per distinct error fingerprint
Solution    a proposed fix for an issue, carrying weighted verification counters
Verification  an immutable outcome report for a solution
Contributor   an agent or human, with reputation-derived trust tier
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import UUID, uuid4

from .trust import TrustTier, VerificationOutcome, tier_of

INITIAL_CONFIDENCE = 0.3


def utcnow() -> datetime:
    return datetime.now(UTC)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _str_or_none(value: UUID | None) -> str | None:
    return str(value) if value else None


class IssueStatus(StrEnum):
    OPEN = "open"
    SOLVED = "solved"
    STALE = "stale"


class ContributorType(StrEnum):
    AGENT = "agent"
    HUMAN = "human"


class ActionKind(StrEnum):
    """Mutation kinds gated by quotas and cooldowns."""

    ISSUE = "issue"
    SOLUTION = "solution"
    VERIFICATION = "verification"


@dataclass
class Issue:
    """A distinct error, identified by its fingerprint."""

    id: UUID
    fingerprint: str
    title: str = ""
    error_type: str | None = None
    error_message: str | None = None
    stack: set[str] = field(default_factory=set)
    runtime: str | None = None
    occurrence_count: int = 1
    status: IssueStatus = IssueStatus.OPEN
    created_at: datetime = field(default_factory=utcnow)
    last_seen_at: datetime = field(default_factory=utcnow)
    created_by: UUID | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "fingerprint": self.fingerprint,
            "title": self.title,
            "error_type": self.error_type,
            "error_message": self.error_message,
            "stack": sorted(self.stack),
            "runtime": self.runtime,
            "occurrence_count": self.occurrence_count,
            "status": self.status.value,
            "created_at": _iso(self.created_at),
            "last_seen_at": _iso(self.last_seen_at),
            "created_by": _str_or_none(self.created_by),
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Issue:
        return cls(
            id=row["id"],
            fingerprint=row["fingerprint"],
            title=row.get("title") or "",
            error_type=row.get("error_type"),
            error_message=row.get("error_message"),
            stack=set(row.get("stack") or []),
            runtime=row.get("runtime"),
            occurrence_count=row.get("occurrence_count", 1),
            status=IssueStatus(row.get("status", "open")),
            created_at=row["created_at"],
            last_seen_at=row["last_seen_at"],
            created_by=row.get("created_by"),
        )


@dataclass
class Solution:
    """A proposed fix and its verification counters.

    ``success_count`` and ``failure_count`` are weighted by the verifier's
    trust tier, so they may be fractional and may exceed
    ``verification_count``. ``version`` increases on every counter update.
    """

    id: UUID
    issue_id: UUID
    summary: str
    root_cause: str = ""
    fix_description: str = ""
    commands: list[str] = field(default_factory=list)
    confidence_score: float = INITIAL_CONFIDENCE
    verification_count: int = 0
    success_count: float = 0.0
    failure_count: float = 0.0
    last_verified_at: datetime | None = None
    created_at: datetime = field(default_factory=utcnow)
    created_by: UUID | None = None
    version: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "issue_id": str(self.issue_id),
            "summary": self.summary,
            "root_cause": self.root_cause,
            "fix_description": self.fix_description,
            "commands": list(self.commands),
            "confidence_score": self.confidence_score,
            "verification_count": self.verification_count,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "last_verified_at": _iso(self.last_verified_at),
            "created_at": _iso(self.created_at),
            "created_by": _str_or_none(self.created_by),
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Solution:
        return cls(
            id=row["id"],
            issue_id=row["issue_id"],
            summary=row["summary"],
            root_cause=row.get("root_cause") or "",
            fix_description=row.get("fix_description") or "",
            commands=list(row.get("commands") or []),
            confidence_score=float(row["confidence_score"]),
            verification_count=int(row["verification_count"]),
            success_count=float(row["success_count"]),
            failure_count=float(row["failure_count"]),
            last_verified_at=row.get("last_verified_at"),
            created_at=row["created_at"],
            created_by=row.get("created_by"),
            version=int(row.get("version", 0)),
        )


@dataclass(frozen=True)
class Verification:
    """An outcome report for a solution. Immutable once recorded."""

    id: UUID
    solution_id: UUID
    outcome: VerificationOutcome
    confidence_delta: float
    created_by: UUID | None = None
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "solution_id": str(self.solution_id),
            "outcome": self.outcome.value,
            "confidence_delta": self.confidence_delta,
            "created_by": _str_or_none(self.created_by),
            "created_at": _iso(self.created_at),
        }


@dataclass
class Contributor:
    id: UUID
    name: str
    type: ContributorType = ContributorType.AGENT
    reputation_score: int = 0
    coins: int = 0

    @property
    def trust_tier(self) -> TrustTier:
        return tier_of(self.reputation_score)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "name": self.name,
            "type": self.type.value,
            "reputation_score": self.reputation_score,
            "trust_tier": self.trust_tier.value,
            "coins": self.coins,
        }


@dataclass
class IssueContent:
    """Fields of an incoming issue report."""

    error_type: str | None = None
    error_message: str | None = None
    runtime: str | None = None
    title: str = ""
    stack: list[str] = field(default_factory=list)


@dataclass
class SolutionContent:
    """Fields of an incoming solution proposal."""

    issue_id: UUID
    summary: str
    root_cause: str = ""
    fix_description: str = ""
    commands: list[str] = field(default_factory=list)


def new_id() -> UUID:
    return uuid4()
