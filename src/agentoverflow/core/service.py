# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Operations exposed to the HTTP layer.

``KnowledgeService`` wires abuse prevention, fingerprinting, confidence
scoring and the reward ledger over a ``KnowledgeStore``:

    issue report   → IP check → quota / cooldown / duplicate → fingerprint
                   → create Issue or bump occurrence_count
    solution       → IP check → quota / cooldown / duplicate → create Solution
    verification   → IP check → self / repeat / quota / cooldown
                   → atomic counter update + confidence → solved transition

Any failed check short-circuits before fingerprinting or scoring. Denials
come back as results; only storage failures raise.

Each operation runs under a correlation id, shared with any operation it
calls, so one request's decision and writes log under the same id.

Module-level functions delegate to a lazily built default service backed by
PostgreSQL. Tests and embedded users construct ``KnowledgeService``
directly, usually over a ``MemoryStore``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from . import guards
from .coins import RewardReason, award_coins
from .config import DEFAULT_RATE_LIMITS, DEFAULT_SCORING, RateLimitConfig, ScoringConfig, get_config
from .confidence import calculate_confidence, is_solved
from .exceptions import ConflictError, ValidationException
from .fingerprint import generate_fingerprint
from .guards import DenyReason, GateResult
from .logging import decision_logger, traced
from .models import (
    ActionKind,
    Issue,
    IssueContent,
    Solution,
    SolutionContent,
    Verification,
    new_id,
    utcnow,
)
from .ratelimit import InMemoryRateLimitStore, RateLimitStore
from .store import KnowledgeStore
from .trust import TrustTier, VerificationOutcome, apply_outcome, parse_outcome, tier_of, weight_of

logger = logging.getLogger(__name__)


class IssueAction:
    CREATED = "created"
    DUPLICATE = "duplicate"


@dataclass
class IssueDecision:
    """Result of an issue submission."""

    allowed: bool
    action: str | None = None
    issue_id: UUID | None = None
    fingerprint: str | None = None
    occurrence_count: int | None = None
    coins_awarded: int = 0
    gate: GateResult = field(default_factory=GateResult.allow)

    @property
    def retry_after(self) -> int | None:
        return self.gate.retry_after

    @property
    def reason(self) -> DenyReason | None:
        return self.gate.reason

    def to_dict(self) -> dict[str, Any]:
        if not self.allowed:
            return self.gate.to_dict()
        return {
            "allowed": True,
            "action": self.action,
            "issue_id": str(self.issue_id),
            "fingerprint": self.fingerprint,
            "occurrence_count": self.occurrence_count,
            "coins_awarded": self.coins_awarded,
        }


@dataclass
class SolutionDecision:
    """Result of a solution submission or its gate evaluation."""

    allowed: bool
    solution_id: UUID | None = None
    initial_confidence: float | None = None
    coins_awarded: int = 0
    gate: GateResult = field(default_factory=GateResult.allow)

    @property
    def retry_after(self) -> int | None:
        return self.gate.retry_after

    @property
    def duplicate_id(self) -> UUID | None:
        return self.gate.existing_id

    @property
    def reason(self) -> DenyReason | None:
        return self.gate.reason

    def to_dict(self) -> dict[str, Any]:
        d = self.gate.to_dict()
        if self.solution_id:
            d["solution_id"] = str(self.solution_id)
            d["initial_confidence"] = self.initial_confidence
            d["coins_awarded"] = self.coins_awarded
        return d


@dataclass
class VerificationRecord:
    """Outcome of the atomic counter update for one verification."""

    solution_id: UUID
    previous_confidence: float
    new_confidence: float
    confidence_delta: float
    verification_count: int
    success_count: float
    failure_count: float
    issue_solved: bool = False
    verification_id: UUID | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "solution_id": str(self.solution_id),
            "previous_confidence": self.previous_confidence,
            "new_confidence": self.new_confidence,
            "confidence_delta": self.confidence_delta,
            "verification_count": self.verification_count,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "issue_solved": self.issue_solved,
            "verification_id": str(self.verification_id) if self.verification_id else None,
        }


@dataclass
class VerificationDecision:
    """Result of a full verification submission."""

    allowed: bool
    record: VerificationRecord | None = None
    verifier_coins: int = 0
    author_coins: int = 0
    gate: GateResult = field(default_factory=GateResult.allow)

    @property
    def retry_after(self) -> int | None:
        return self.gate.retry_after

    @property
    def deny_reason(self) -> DenyReason | None:
        return self.gate.reason

    def to_dict(self) -> dict[str, Any]:
        if not self.allowed or self.record is None:
            return self.gate.to_dict()
        return {
            "allowed": True,
            **self.record.to_dict(),
            "coins_awarded": {"verifier": self.verifier_coins, "solution_author": self.author_coins},
        }


class KnowledgeService:
    """Gated mutations over a knowledge store.

    Args:
        store: Durable storage
        limiter: Process-local counters for IP checks
        rate_limits: Quotas, cooldowns and IP caps
        scoring: Confidence constants and tier weights
        clock: Source of the current (timezone-aware) time
    """

    def __init__(
        self,
        store: KnowledgeStore,
        limiter: RateLimitStore | None = None,
        rate_limits: RateLimitConfig = DEFAULT_RATE_LIMITS,
        scoring: ScoringConfig = DEFAULT_SCORING,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.limiter = limiter or InMemoryRateLimitStore()
        self.rate_limits = rate_limits
        self.scoring = scoring
        self.clock = clock

    # ------------------------------------------------------------ helpers

    def _first_denial(self, action: str, subject: dict[str, Any], *checks: Callable[[], GateResult]) -> GateResult:
        """Run checks in order and return the first denial, or an allow."""
        result = GateResult.allow()
        for check in checks:
            result = check()
            if not result.allowed:
                break
        decision_logger.log_decision(action, result, subject)
        return result

    def _contributor_checks(
        self,
        contributor_id: UUID | None,
        kind: ActionKind,
        now: datetime,
        text: str | None = None,
    ) -> list[Callable[[], GateResult]]:
        if contributor_id is None:
            return []
        checks: list[Callable[[], GateResult]] = [
            lambda: guards.check_daily_limit(self.store, contributor_id, kind, self.rate_limits, now),
            lambda: guards.check_cooldown(self.store, contributor_id, kind, self.rate_limits, now),
        ]
        if kind != ActionKind.VERIFICATION:
            checks.append(lambda: guards.check_duplicate(self.store, contributor_id, kind, text, self.rate_limits, now))
        return checks

    def _ip_check(self, ip: str) -> Callable[[], GateResult]:
        return lambda: guards.check_ip_rate_limit(self.limiter, ip, self.rate_limits)

    # ------------------------------------------------------------- issues

    def generate_fingerprint(self, error_type: str | None, error_message: str | None, runtime: str | None = None) -> str:
        return generate_fingerprint(error_type, error_message, runtime)

    @traced
    def evaluate_issue_submission(
        self,
        ip: str,
        contributor_id: UUID | None,
        content: IssueContent,
    ) -> IssueDecision:
        """Gate an issue report, then create it or count a repeat occurrence.

        Returns:
            IssueDecision with action "created" for a first-seen fingerprint or
            "duplicate" when an existing issue's occurrence count was bumped.
        """
        now = self.clock()
        gate = self._first_denial(
            ActionKind.ISSUE,
            {"ip": ip, "contributor_id": contributor_id},
            self._ip_check(ip),
            *self._contributor_checks(contributor_id, ActionKind.ISSUE, now, content.error_message),
        )
        if not gate.allowed:
            return IssueDecision(allowed=False, gate=gate)

        fingerprint = generate_fingerprint(content.error_type, content.error_message, content.runtime)
        issue, created = self.store.upsert_issue(
            Issue(
                id=new_id(),
                fingerprint=fingerprint,
                title=content.title,
                error_type=content.error_type,
                error_message=content.error_message,
                stack=set(content.stack),
                runtime=content.runtime,
                created_at=now,
                last_seen_at=now,
                created_by=contributor_id,
            )
        )

        coins = 0
        if created:
            logger.info(f"Created issue {issue.id} ({fingerprint[:12]})")
            coins = award_coins(self.store, contributor_id, RewardReason.POST_ISSUE).amount
        else:
            logger.info(f"Repeat of issue {issue.id}, occurrence {issue.occurrence_count}")

        return IssueDecision(
            allowed=True,
            action=IssueAction.CREATED if created else IssueAction.DUPLICATE,
            issue_id=issue.id,
            fingerprint=fingerprint,
            occurrence_count=issue.occurrence_count,
            coins_awarded=coins,
            gate=gate,
        )

    # ---------------------------------------------------------- solutions

    @traced
    def evaluate_solution_submission(
        self,
        ip: str,
        contributor_id: UUID | None,
        content: SolutionContent,
    ) -> SolutionDecision:
        """Gate a solution proposal without persisting anything."""
        now = self.clock()
        gate = self._first_denial(
            ActionKind.SOLUTION,
            {"ip": ip, "contributor_id": contributor_id, "issue_id": content.issue_id},
            self._ip_check(ip),
            *self._contributor_checks(contributor_id, ActionKind.SOLUTION, now, content.summary),
        )
        return SolutionDecision(allowed=gate.allowed, gate=gate)

    @traced
    def submit_solution(
        self,
        ip: str,
        contributor_id: UUID | None,
        content: SolutionContent,
    ) -> SolutionDecision:
        """Gate, then create a solution at the unverified prior confidence."""
        decision = self.evaluate_solution_submission(ip, contributor_id, content)
        if not decision.allowed:
            return decision

        if self.store.get_issue(content.issue_id) is None:
            gate = GateResult.deny(DenyReason.ISSUE_NOT_FOUND, "Issue not found")
            return SolutionDecision(allowed=False, gate=gate)

        solution = self.store.add_solution(
            Solution(
                id=new_id(),
                issue_id=content.issue_id,
                summary=content.summary,
                root_cause=content.root_cause,
                fix_description=content.fix_description,
                commands=list(content.commands),
                confidence_score=calculate_confidence(0, 0.0, None, config=self.scoring),
                created_at=self.clock(),
                created_by=contributor_id,
            )
        )
        logger.info(f"Created solution {solution.id} for issue {solution.issue_id}")
        coins = award_coins(self.store, contributor_id, RewardReason.SUBMIT_SOLUTION).amount
        return SolutionDecision(
            allowed=True,
            solution_id=solution.id,
            initial_confidence=solution.confidence_score,
            coins_awarded=coins,
            gate=decision.gate,
        )

    # ------------------------------------------------------ verifications

    @traced
    def evaluate_verification(
        self,
        ip: str,
        contributor_id: UUID | None,
        solution_id: UUID,
        outcome: VerificationOutcome | str,
    ) -> GateResult:
        """Gate a verification.

        Permanent denials (self-verification, repeat verification) are
        checked before quotas and cooldowns, so they are reported as
        conflicts whatever the contributor's rate-limit state.

        Raises:
            ValidationException: If ``outcome`` is not a known outcome
        """
        parse_outcome(outcome)
        now = self.clock()
        solution: Solution | None = None

        def solution_exists() -> GateResult:
            nonlocal solution
            solution = self.store.get_solution(solution_id)
            if solution is None:
                return GateResult.deny(DenyReason.SOLUTION_NOT_FOUND, "Solution not found")
            return GateResult.allow()

        checks: list[Callable[[], GateResult]] = [self._ip_check(ip), solution_exists]
        if contributor_id is not None:
            checks += [
                lambda: guards.check_self_verification(contributor_id, solution),
                lambda: guards.check_repeat_verification(self.store, contributor_id, solution_id),
                *self._contributor_checks(contributor_id, ActionKind.VERIFICATION, now),
            ]
        return self._first_denial(
            ActionKind.VERIFICATION,
            {"ip": ip, "contributor_id": contributor_id, "solution_id": solution_id},
            *checks,
        )

    @traced
    def record_verification(
        self,
        solution_id: UUID,
        outcome: VerificationOutcome | str,
        trust_tier: TrustTier | str | None,
        verifier_id: UUID | None = None,
    ) -> VerificationRecord:
        """Apply one verification to a solution's counters atomically.

        Reads the current counters, adds the tier-weighted outcome, recomputes
        confidence and persists, all as one step serialized on the solution.
        When ``verifier_id`` is given the verification row is appended in the
        same step. Crossing the solved threshold marks the issue solved; the
        transition is never reverted.

        Raises:
            ValidationException: If ``outcome`` is not a known outcome or the
                stored counters are negative
            NotFoundError: If the solution doesn't exist
            ConflictError: If ``verifier_id`` already verified this solution
        """
        outcome = parse_outcome(outcome)
        weight = weight_of(trust_tier, self.scoring)
        success_delta, failure_delta = apply_outcome(outcome, weight)
        now = self.clock()

        def mutate(solution: Solution) -> None:
            if min(solution.verification_count, solution.success_count, solution.failure_count) < 0:
                raise ValidationException(f"Solution {solution_id} has negative counters", field="solution_id", value=solution_id)
            solution.verification_count += 1
            solution.success_count += success_delta
            solution.failure_count += failure_delta
            solution.last_verified_at = now
            solution.confidence_score = calculate_confidence(
                solution.verification_count,
                solution.success_count,
                now,
                now=now,
                config=self.scoring,
            )

        def build_verification(before: Solution, after: Solution) -> Verification:
            return Verification(
                id=new_id(),
                solution_id=solution_id,
                outcome=outcome,
                confidence_delta=after.confidence_score - before.confidence_score,
                created_by=verifier_id,
                created_at=now,
            )

        update = self.store.update_solution(solution_id, mutate, build_verification)
        before, after = update.before, update.after

        issue_solved = False
        if is_solved(after.confidence_score, self.scoring):
            issue_solved = self.store.mark_issue_solved(after.issue_id)
            if issue_solved:
                logger.info(f"Issue {after.issue_id} solved by solution {solution_id} at confidence {after.confidence_score:.3f}")

        return VerificationRecord(
            solution_id=solution_id,
            previous_confidence=before.confidence_score,
            new_confidence=after.confidence_score,
            confidence_delta=after.confidence_score - before.confidence_score,
            verification_count=after.verification_count,
            success_count=after.success_count,
            failure_count=after.failure_count,
            issue_solved=issue_solved,
            verification_id=update.verification.id if update.verification else None,
        )

    @traced
    def submit_verification(
        self,
        ip: str,
        contributor_id: UUID | None,
        solution_id: UUID,
        outcome: VerificationOutcome | str,
    ) -> VerificationDecision:
        """Gate, record, and reward one verification."""
        gate = self.evaluate_verification(ip, contributor_id, solution_id, outcome)
        if not gate.allowed:
            return VerificationDecision(allowed=False, gate=gate)

        tier = TrustTier.NEW
        if contributor_id is not None:
            contributor = self.store.get_contributor(contributor_id)
            if contributor is not None:
                tier = tier_of(contributor.reputation_score, self.scoring)

        try:
            record = self.record_verification(solution_id, outcome, tier, verifier_id=contributor_id)
        except ConflictError:
            # Lost a race with a concurrent verification from the same contributor
            gate = GateResult.deny(DenyReason.ALREADY_VERIFIED, "You have already verified this solution")
            decision_logger.log_decision(ActionKind.VERIFICATION, gate, {"contributor_id": contributor_id})
            return VerificationDecision(allowed=False, gate=gate)

        verifier_coins = award_coins(self.store, contributor_id, RewardReason.VERIFY_SOLUTION).amount
        author_coins = 0
        if parse_outcome(outcome) == VerificationOutcome.SUCCESS:
            solution = self.store.get_solution(solution_id)
            if solution is not None:
                author_coins = award_coins(self.store, solution.created_by, RewardReason.SOLUTION_VERIFIED_SUCCESS).amount

        return VerificationDecision(
            allowed=True,
            record=record,
            verifier_coins=verifier_coins,
            author_coins=author_coins,
            gate=gate,
        )

    # ---------------------------------------------------- identity flows

    @traced
    def evaluate_claim_request(self, ip: str) -> GateResult:
        """Gate a verification-code request for claiming an agent."""
        return self._first_denial(
            "claim_request",
            {"ip": ip},
            self._ip_check(ip),
            lambda: guards.check_claim_request_limit(self.limiter, ip, self.rate_limits),
        )

    @traced
    def evaluate_claim_submit(self, ip: str) -> GateResult:
        """Gate a tweet URL submission."""
        return self._first_denial(
            "claim_submit",
            {"ip": ip},
            self._ip_check(ip),
            lambda: guards.check_claim_submit_limit(self.limiter, ip, self.rate_limits),
        )

    @traced
    def evaluate_api_key_issuance(self, ip: str, contributor_id: UUID | None = None) -> GateResult:
        """Gate API-key issuance: per-IP hourly cap, then live keys per contributor."""
        checks: list[Callable[[], GateResult]] = [
            self._ip_check(ip),
            lambda: guards.check_api_key_rate_limit(self.limiter, ip, self.rate_limits),
        ]
        if contributor_id is not None:
            checks.append(lambda: guards.check_api_key_quota(self.store, contributor_id, self.rate_limits))
        return self._first_denial("api_key", {"ip": ip, "contributor_id": contributor_id}, *checks)


# ==========================================================================
# DEFAULT SERVICE (lazy loaded)
# ==========================================================================

_service: KnowledgeService | None = None


def get_service() -> KnowledgeService:
    """Get the process-wide service, backed by PostgreSQL."""
    global _service
    if _service is None:
        from .pg_store import PostgresStore

        config = get_config()
        _service = KnowledgeService(
            store=PostgresStore(),
            limiter=InMemoryRateLimitStore(max_keys=config.rate_limit_max_keys),
            rate_limits=config.rate_limits,
            scoring=config.scoring,
        )
    return _service


def set_service(service: KnowledgeService | None) -> None:
    """Replace the process-wide service (None resets to lazy default)."""
    global _service
    _service = service


def evaluate_issue_submission(ip: str, contributor_id: UUID | None, content: IssueContent) -> IssueDecision:
    return get_service().evaluate_issue_submission(ip, contributor_id, content)


def evaluate_solution_submission(ip: str, contributor_id: UUID | None, content: SolutionContent) -> SolutionDecision:
    return get_service().evaluate_solution_submission(ip, contributor_id, content)


def evaluate_verification(
    ip: str,
    contributor_id: UUID | None,
    solution_id: UUID,
    outcome: VerificationOutcome | str,
) -> GateResult:
    return get_service().evaluate_verification(ip, contributor_id, solution_id, outcome)


def record_verification(
    solution_id: UUID,
    outcome: VerificationOutcome | str,
    trust_tier: TrustTier | str | None,
) -> VerificationRecord:
    return get_service().record_verification(solution_id, outcome, trust_tier)


__all__ = [
    "IssueAction",
    "IssueDecision",
    "KnowledgeService",
    "SolutionDecision",
    "VerificationDecision",
    "VerificationRecord",
    "evaluate_issue_submission",
    "evaluate_solution_submission",
    "evaluate_verification",
    "generate_fingerprint",
    "get_service",
    "record_verification",
    "set_service",
]
