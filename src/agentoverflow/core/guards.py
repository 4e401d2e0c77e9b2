"""Abuse-prevention checks gating every mutation.

Every check returns a ``GateResult``. Expected business denials (rate
limited, duplicate content, self-verification, repeat verification) are
results, never exceptions, so callers can render a specific message with an
accurate retry hint. Only storage failures propagate, as
``StorageUnavailableError``.

Two families of checks:

- Process-local, keyed by IP, via a ``RateLimitStore``: the global per-IP
  limit and the stricter claim / API-key buckets. Cheap; run these first.
- Storage-backed, keyed by contributor: daily quotas, cooldowns, duplicate
  content, self-verification and one-verification-per-pair. These count
  durable rows, so they hold across instances.

The rules are exact-match and threshold checks, not anomaly detection.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from enum import StrEnum
from typing import Any
from uuid import UUID

from .config import DEFAULT_RATE_LIMITS, RateLimitConfig
from .exceptions import ConflictError, ErrorKind, NotFoundError, RateLimitedError
from .models import ActionKind, Solution
from .ratelimit import RateLimitDecision, RateLimitStore
from .store import KnowledgeStore

HOUR = 3600


class DenyReason(StrEnum):
    """Machine-readable reasons for a denied action."""

    IP_RATE_LIMITED = "ip_rate_limited"
    DAILY_LIMIT_REACHED = "daily_limit_reached"
    COOLDOWN = "cooldown"
    DUPLICATE_CONTENT = "duplicate_content"
    SELF_VERIFICATION = "self_verification"
    ALREADY_VERIFIED = "already_verified"
    ISSUE_NOT_FOUND = "issue_not_found"
    SOLUTION_NOT_FOUND = "solution_not_found"
    CLAIM_REQUEST_LIMITED = "claim_request_limited"
    CLAIM_SUBMIT_LIMITED = "claim_submit_limited"
    API_KEY_RATE_LIMITED = "api_key_rate_limited"
    API_KEY_LIMIT_REACHED = "api_key_limit_reached"


_REASON_KINDS: dict[DenyReason, ErrorKind] = {
    DenyReason.IP_RATE_LIMITED: ErrorKind.RATE_LIMITED,
    DenyReason.DAILY_LIMIT_REACHED: ErrorKind.RATE_LIMITED,
    DenyReason.COOLDOWN: ErrorKind.RATE_LIMITED,
    DenyReason.DUPLICATE_CONTENT: ErrorKind.CONFLICT,
    DenyReason.SELF_VERIFICATION: ErrorKind.CONFLICT,
    DenyReason.ALREADY_VERIFIED: ErrorKind.CONFLICT,
    DenyReason.ISSUE_NOT_FOUND: ErrorKind.NOT_FOUND,
    DenyReason.SOLUTION_NOT_FOUND: ErrorKind.NOT_FOUND,
    DenyReason.CLAIM_REQUEST_LIMITED: ErrorKind.RATE_LIMITED,
    DenyReason.CLAIM_SUBMIT_LIMITED: ErrorKind.RATE_LIMITED,
    DenyReason.API_KEY_RATE_LIMITED: ErrorKind.RATE_LIMITED,
    DenyReason.API_KEY_LIMIT_REACHED: ErrorKind.CONFLICT,
}


@dataclass
class GateResult:
    """Allow/deny decision for one gated action.

    Attributes:
        allowed: True when the action may proceed
        reason: Why the action was denied (None when allowed)
        message: Human-readable explanation
        retry_after: Seconds until a retry can succeed, for transient denials
        existing_id: Id of the row a duplicate collides with
        remaining: Quota left in the current period, when known
        limit: Quota size, when known
        resets_at: When the quota resets, when known
    """

    allowed: bool
    reason: DenyReason | None = None
    message: str | None = None
    retry_after: int | None = None
    existing_id: UUID | None = None
    remaining: int | None = None
    limit: int | None = None
    resets_at: datetime | None = None

    @property
    def kind(self) -> ErrorKind | None:
        return _REASON_KINDS[self.reason] if self.reason else None

    @classmethod
    def allow(cls, **kwargs: Any) -> GateResult:
        return cls(allowed=True, **kwargs)

    @classmethod
    def deny(cls, reason: DenyReason, message: str, **kwargs: Any) -> GateResult:
        return cls(allowed=False, reason=reason, message=message, **kwargs)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"allowed": self.allowed}
        if self.reason:
            d["reason"] = self.reason.value
            d["kind"] = self.kind.value
        if self.message:
            d["message"] = self.message
        if self.retry_after is not None:
            d["retry_after"] = self.retry_after
        if self.existing_id:
            d["existing_id"] = str(self.existing_id)
        if self.remaining is not None:
            d["remaining"] = self.remaining
        if self.limit is not None:
            d["limit"] = self.limit
        if self.resets_at:
            d["resets_at"] = self.resets_at.isoformat()
        return d

    def raise_for_denial(self, subject_id: UUID | str | None = None) -> None:
        """Raise the exception matching a denial; no-op when allowed.

        For callers that handle errors rather than results. Rate-limit
        denials keep their retry hint and conflicts keep the colliding id.
        ``subject_id`` names the missing row in a not-found error.
        """
        if self.allowed:
            return
        message = self.message or str(self.reason)
        if self.kind == ErrorKind.RATE_LIMITED:
            raise RateLimitedError(message, retry_after=self.retry_after)
        if self.kind == ErrorKind.CONFLICT:
            raise ConflictError(message, existing_id=str(self.existing_id) if self.existing_id else None)
        resource = "Issue" if self.reason == DenyReason.ISSUE_NOT_FOUND else "Solution"
        raise NotFoundError(resource, str(subject_id) if subject_id else "unknown")


def _now(now: datetime | None) -> datetime:
    return now or datetime.now(UTC)


def _local_start_of(day: date) -> datetime:
    # A naive midnight takes the offset in force at that instant, not now
    return datetime(day.year, day.month, day.day).astimezone()


def local_midnight(now: datetime | None = None) -> datetime:
    """Start of the current calendar day in the process's local time zone."""
    return _local_start_of(_now(now).astimezone().date())


def next_local_midnight(now: datetime | None = None) -> datetime:
    return _local_start_of(_now(now).astimezone().date() + timedelta(days=1))


# =============================================================================
# PROCESS-LOCAL (IP) CHECKS
# =============================================================================


def _from_window(decision: RateLimitDecision, reason: DenyReason, message: str) -> GateResult:
    if decision.allowed:
        return GateResult.allow(remaining=decision.remaining, limit=decision.limit)
    return GateResult.deny(
        reason,
        message,
        retry_after=decision.retry_after,
        remaining=decision.remaining,
        limit=decision.limit,
    )


def check_ip_rate_limit(
    limiter: RateLimitStore,
    ip: str,
    config: RateLimitConfig = DEFAULT_RATE_LIMITS,
) -> GateResult:
    """Global fixed-window request cap per IP (60 per 60 s by default)."""
    decision = limiter.check_and_increment(f"ip:{ip}", config.ip_window, config.requests_per_window)
    return _from_window(decision, DenyReason.IP_RATE_LIMITED, "Too many requests")


def check_claim_request_limit(
    limiter: RateLimitStore,
    ip: str,
    config: RateLimitConfig = DEFAULT_RATE_LIMITS,
) -> GateResult:
    """Verification-code requests: 5 per hour per IP, 300 s apart."""
    decision = limiter.check_and_increment(
        f"claim_request:{ip}",
        HOUR,
        config.claim_requests_per_hour,
        cooldown_seconds=config.claim_request_cooldown,
    )
    return _from_window(
        decision,
        DenyReason.CLAIM_REQUEST_LIMITED,
        "Too many verification requests. Please wait before requesting another code.",
    )


def check_claim_submit_limit(
    limiter: RateLimitStore,
    ip: str,
    config: RateLimitConfig = DEFAULT_RATE_LIMITS,
) -> GateResult:
    """Tweet URL submissions: 10 per hour per IP, 60 s apart."""
    decision = limiter.check_and_increment(
        f"claim_submit:{ip}",
        HOUR,
        config.claim_submits_per_hour,
        cooldown_seconds=config.claim_submit_cooldown,
    )
    return _from_window(
        decision,
        DenyReason.CLAIM_SUBMIT_LIMITED,
        "Too many verification attempts. Please wait before trying again.",
    )


def check_api_key_rate_limit(
    limiter: RateLimitStore,
    ip: str,
    config: RateLimitConfig = DEFAULT_RATE_LIMITS,
) -> GateResult:
    """API-key issuance: 3 per hour per IP."""
    decision = limiter.check_and_increment(f"api_key:{ip}", HOUR, config.api_keys_per_hour)
    return _from_window(
        decision,
        DenyReason.API_KEY_RATE_LIMITED,
        "Too many API key creation requests. Try again later.",
    )


# =============================================================================
# STORAGE-BACKED (CONTRIBUTOR) CHECKS
# =============================================================================


def check_api_key_quota(
    store: KnowledgeStore,
    contributor_id: UUID,
    config: RateLimitConfig = DEFAULT_RATE_LIMITS,
) -> GateResult:
    """At most ``max_api_keys_per_contributor`` live keys per contributor."""
    limit = config.max_api_keys_per_contributor
    live = store.count_live_api_keys(contributor_id)
    if live >= limit:
        return GateResult.deny(
            DenyReason.API_KEY_LIMIT_REACHED,
            f"Maximum API keys limit reached ({limit} per contributor)",
            remaining=0,
            limit=limit,
        )
    return GateResult.allow(remaining=limit - live, limit=limit)


def check_daily_limit(
    store: KnowledgeStore,
    contributor_id: UUID,
    kind: ActionKind,
    config: RateLimitConfig = DEFAULT_RATE_LIMITS,
    now: datetime | None = None,
) -> GateResult:
    """Count the contributor's rows of ``kind`` since local midnight."""
    now = _now(now)
    limit = config.daily_limit(kind)
    count = store.count_created_since(kind, contributor_id, local_midnight(now))
    resets_at = next_local_midnight(now)
    remaining = max(0, limit - count)

    if count >= limit:
        return GateResult.deny(
            DenyReason.DAILY_LIMIT_REACHED,
            f"Daily {kind} limit reached ({limit}/day)",
            retry_after=max(1, math.ceil((resets_at - now).total_seconds())),
            remaining=0,
            limit=limit,
            resets_at=resets_at,
        )
    return GateResult.allow(remaining=remaining, limit=limit, resets_at=resets_at)


def check_cooldown(
    store: KnowledgeStore,
    contributor_id: UUID,
    kind: ActionKind,
    config: RateLimitConfig = DEFAULT_RATE_LIMITS,
    now: datetime | None = None,
) -> GateResult:
    """Minimum spacing between the contributor's own actions of one kind."""
    now = _now(now)
    cooldown = config.cooldown(kind)
    last_action = store.latest_created_at(kind, contributor_id)
    if last_action is None:
        return GateResult.allow()

    elapsed = (now - last_action).total_seconds()
    if elapsed < cooldown:
        return GateResult.deny(
            DenyReason.COOLDOWN,
            f"Please wait before submitting another {kind}",
            retry_after=math.ceil(cooldown - elapsed),
        )
    return GateResult.allow()


def check_duplicate(
    store: KnowledgeStore,
    contributor_id: UUID,
    kind: ActionKind,
    text: str | None,
    config: RateLimitConfig = DEFAULT_RATE_LIMITS,
    now: datetime | None = None,
) -> GateResult:
    """Identical error message (issues) or summary (solutions) within the hour.

    Exact string equality only. Empty content is never a duplicate.
    """
    if not text or kind == ActionKind.VERIFICATION:
        return GateResult.allow()

    since = _now(now) - timedelta(seconds=config.duplicate_window)
    existing_id = store.find_recent_duplicate(kind, contributor_id, text, since)
    if existing_id is not None:
        return GateResult.deny(
            DenyReason.DUPLICATE_CONTENT,
            f"You already submitted a similar {kind} recently",
            existing_id=existing_id,
        )
    return GateResult.allow()


def check_self_verification(contributor_id: UUID, solution: Solution) -> GateResult:
    """A contributor may not verify their own solution."""
    if solution.created_by is not None and solution.created_by == contributor_id:
        return GateResult.deny(DenyReason.SELF_VERIFICATION, "You cannot verify your own solution")
    return GateResult.allow()


def check_repeat_verification(
    store: KnowledgeStore,
    contributor_id: UUID,
    solution_id: UUID,
) -> GateResult:
    """At most one verification per (contributor, solution), ever."""
    if store.has_verified(contributor_id, solution_id):
        return GateResult.deny(DenyReason.ALREADY_VERIFIED, "You have already verified this solution")
    return GateResult.allow()


def rate_limit_headers(remaining: int, limit: int, resets_at: datetime) -> dict[str, str]:
    """``X-RateLimit-*`` headers for the HTTP layer."""
    return {
        "X-RateLimit-Limit": str(limit),
        "X-RateLimit-Remaining": str(remaining),
        "X-RateLimit-Reset": str(math.floor(resets_at.timestamp())),
    }
