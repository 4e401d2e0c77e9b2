"""Process-local fixed-window rate limiting.

Counters are held in memory and reset on restart. This is correct for a
single instance only: several instances behind a load balancer each keep
their own counters. A deployment that needs shared limits provides another
``RateLimitStore`` backed by a shared atomic counter store.

Windows are fixed, not sliding: the first request for a key opens a window
of ``window_seconds`` and the counter resets fully when it rolls over. A
client can therefore burst up to twice the cap across a window boundary.
Memory is one small record per key, bounded by ``max_keys`` with
least-recently-used eviction.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

DEFAULT_MAX_KEYS = 100_000


@dataclass
class RateLimitRecord:
    """Counter state for one key within its current window."""

    count: int
    reset_at: float
    last_action_at: float


@dataclass
class RateLimitDecision:
    """Result of a windowed rate-limit check."""

    allowed: bool
    key: str
    count: int
    limit: int
    reset_at: float
    retry_after: int | None = None

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.count)

    def to_dict(self) -> dict[str, Any]:
        return {
            "allowed": self.allowed,
            "key": self.key,
            "count": self.count,
            "limit": self.limit,
            "remaining": self.remaining,
            "retry_after": self.retry_after,
        }


def _seconds_until(deadline: float, now: float) -> int:
    return max(1, math.ceil(deadline - now))


@runtime_checkable
class RateLimitStore(Protocol):
    """Atomic check-and-increment over keyed counters."""

    def check_and_increment(
        self,
        key: str,
        window_seconds: float,
        cap: int,
        cooldown_seconds: float = 0,
    ) -> RateLimitDecision:
        """Count one action against ``key`` if it is within limits.

        Denied calls do not consume capacity.
        """
        ...

    def reset(self, key: str | None = None) -> None: ...


class InMemoryRateLimitStore:
    """Thread-safe in-memory ``RateLimitStore``.

    Example:
        store = InMemoryRateLimitStore()
        decision = store.check_and_increment("ip:203.0.113.7", 60, 60)
        if not decision.allowed:
            retry_in = decision.retry_after
    """

    def __init__(
        self,
        max_keys: int = DEFAULT_MAX_KEYS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._records: OrderedDict[str, RateLimitRecord] = OrderedDict()
        self._lock = threading.Lock()
        self._max_keys = max_keys
        self._clock = clock

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def check_and_increment(
        self,
        key: str,
        window_seconds: float,
        cap: int,
        cooldown_seconds: float = 0,
    ) -> RateLimitDecision:
        with self._lock:
            now = self._clock()
            record = self._records.get(key)

            if record is None or now > record.reset_at:
                record = RateLimitRecord(count=1, reset_at=now + window_seconds, last_action_at=now)
                self._store(key, record)
                return RateLimitDecision(True, key, record.count, cap, record.reset_at)

            self._records.move_to_end(key)

            if cooldown_seconds:
                elapsed = now - record.last_action_at
                if elapsed < cooldown_seconds:
                    return RateLimitDecision(
                        False,
                        key,
                        record.count,
                        cap,
                        record.reset_at,
                        retry_after=math.ceil(cooldown_seconds - elapsed),
                    )

            if record.count >= cap:
                return RateLimitDecision(
                    False,
                    key,
                    record.count,
                    cap,
                    record.reset_at,
                    retry_after=_seconds_until(record.reset_at, now),
                )

            record.count += 1
            record.last_action_at = now
            return RateLimitDecision(True, key, record.count, cap, record.reset_at)

    def reset(self, key: str | None = None) -> None:
        """Drop one key, or every key when ``key`` is None."""
        with self._lock:
            if key is None:
                self._records.clear()
            else:
                self._records.pop(key, None)

    def _store(self, key: str, record: RateLimitRecord) -> None:
        self._records[key] = record
        self._records.move_to_end(key)
        while len(self._records) > self._max_keys:
            evicted, _ = self._records.popitem(last=False)
            logger.debug(f"Evicted rate-limit record {evicted}")


def extract_real_ip(headers: Mapping[str, str]) -> str:
    """Best-effort client address from proxy headers.

    Order: first entry of ``x-forwarded-for``, ``x-real-ip``,
    ``cf-connecting-ip``; ``"unknown"`` when none is present.
    Header names are matched case-insensitively.
    """
    lowered = {name.lower(): value for name, value in headers.items()}

    forwarded_for = lowered.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    for name in ("x-real-ip", "cf-connecting-ip"):
        value = lowered.get(name)
        if value:
            return value.strip()

    return "unknown"
