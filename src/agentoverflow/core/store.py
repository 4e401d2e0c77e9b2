"""Storage interface for the knowledge base, plus an in-memory backend.

The core consumes durable storage through ``KnowledgeStore``: point
lookups, counts with filters, most-recent-first lookups, and one atomic
read-modify-write of a solution's counters. ``PostgresStore``
(``agentoverflow.core.pg_store``) is the production backend;
``MemoryStore`` serves tests and single-process deployments.
"""

from __future__ import annotations

import copy
import logging
import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from .exceptions import ConflictError, NotFoundError, StorageUnavailableError
from .models import (
    ActionKind,
    Contributor,
    Issue,
    IssueStatus,
    Solution,
    Verification,
)

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT = 10.0

SolutionMutator = Callable[[Solution], None]
VerificationBuilder = Callable[[Solution, Solution], Verification]


@dataclass
class SolutionUpdate:
    """Before/after snapshots of one atomic solution update."""

    before: Solution
    after: Solution
    verification: Verification | None = None


class KnowledgeStore(ABC):
    """Abstract durable store consumed by the core.

    Implementations must make ``upsert_issue`` and ``update_solution``
    atomic, and must raise ``StorageUnavailableError`` rather than block
    indefinitely.
    """

    # ---------------------------------------------------------------- issues

    @abstractmethod
    def get_issue(self, issue_id: UUID) -> Issue | None:
        pass

    @abstractmethod
    def get_issue_by_fingerprint(self, fingerprint: str) -> Issue | None:
        pass

    @abstractmethod
    def upsert_issue(self, issue: Issue) -> tuple[Issue, bool]:
        """Insert ``issue`` or bump the existing row with the same fingerprint.

        An existing row gets ``occurrence_count + 1`` and a fresh
        ``last_seen_at``; nothing else changes.

        Returns:
            (stored issue, True if a new row was created)
        """
        pass

    @abstractmethod
    def mark_issue_solved(self, issue_id: UUID) -> bool:
        """Move an open issue to solved. Returns False if it was not open."""
        pass

    # ------------------------------------------------------------- solutions

    @abstractmethod
    def get_solution(self, solution_id: UUID) -> Solution | None:
        pass

    @abstractmethod
    def add_solution(self, solution: Solution) -> Solution:
        pass

    @abstractmethod
    def update_solution(
        self,
        solution_id: UUID,
        mutate: SolutionMutator,
        build_verification: VerificationBuilder | None = None,
    ) -> SolutionUpdate:
        """Atomically read, mutate and persist a solution.

        ``mutate`` receives a private copy of the current row and edits it in
        place. When ``build_verification`` is given, the verification row it
        returns is appended in the same atomic step; a second verification for
        the same (contributor, solution) pair raises ``ConflictError`` and
        leaves the solution untouched.

        Raises:
            NotFoundError: If the solution doesn't exist
            ConflictError: If the verification violates pair uniqueness
        """
        pass

    # --------------------------------------------------------- verifications

    @abstractmethod
    def has_verified(self, contributor_id: UUID, solution_id: UUID) -> bool:
        pass

    @abstractmethod
    def list_verifications(self, solution_id: UUID) -> list[Verification]:
        pass

    # ------------------------------------------------------- abuse queries

    @abstractmethod
    def count_created_since(self, kind: ActionKind, contributor_id: UUID, since: datetime) -> int:
        """Rows of ``kind`` created by the contributor at or after ``since``."""
        pass

    @abstractmethod
    def latest_created_at(self, kind: ActionKind, contributor_id: UUID) -> datetime | None:
        """Timestamp of the contributor's most recent row of ``kind``."""
        pass

    @abstractmethod
    def find_recent_duplicate(
        self,
        kind: ActionKind,
        contributor_id: UUID,
        text: str,
        since: datetime,
    ) -> UUID | None:
        """Id of a row with identical content by the same contributor since ``since``.

        Issues compare ``error_message``; solutions compare ``summary``.
        """
        pass

    # --------------------------------------------------------- contributors

    @abstractmethod
    def get_contributor(self, contributor_id: UUID) -> Contributor | None:
        pass

    @abstractmethod
    def get_contributor_by_name(self, name: str) -> Contributor | None:
        pass

    @abstractmethod
    def add_contributor(self, contributor: Contributor) -> Contributor:
        pass

    @abstractmethod
    def increment_coins(self, contributor_id: UUID, amount: int) -> int:
        """Add to a contributor's coin balance and return the new balance."""
        pass

    @abstractmethod
    def count_live_api_keys(self, contributor_id: UUID) -> int:
        pass


class MemoryStore(KnowledgeStore):
    """Thread-safe in-memory ``KnowledgeStore``.

    Solution updates are serialized per solution id; everything else
    shares one store-wide lock. Lock acquisition is bounded by
    ``lock_timeout`` and surfaces ``StorageUnavailableError`` on expiry.
    """

    def __init__(self, lock_timeout: float = DEFAULT_LOCK_TIMEOUT) -> None:
        self._lock_timeout = lock_timeout
        self._lock = threading.RLock()
        self._solution_locks: dict[UUID, threading.Lock] = defaultdict(threading.Lock)

        self._issues: dict[UUID, Issue] = {}
        self._issues_by_fingerprint: dict[str, UUID] = {}
        self._solutions: dict[UUID, Solution] = {}
        self._verifications: list[Verification] = []
        self._verified_pairs: set[tuple[UUID, UUID]] = set()
        self._contributors: dict[UUID, Contributor] = {}
        self._api_keys: dict[UUID, int] = defaultdict(int)

    @contextmanager
    def _locked(self, lock: threading.Lock | threading.RLock | None = None) -> Iterator[None]:
        lock = lock or self._lock
        if not lock.acquire(timeout=self._lock_timeout):
            logger.error(f"Store lock not acquired within {self._lock_timeout}s")
            raise StorageUnavailableError(f"Store lock timeout after {self._lock_timeout} seconds")
        try:
            yield
        finally:
            lock.release()

    # ---------------------------------------------------------------- issues

    def get_issue(self, issue_id: UUID) -> Issue | None:
        with self._locked():
            issue = self._issues.get(issue_id)
            return copy.deepcopy(issue) if issue else None

    def get_issue_by_fingerprint(self, fingerprint: str) -> Issue | None:
        with self._locked():
            issue_id = self._issues_by_fingerprint.get(fingerprint)
            return copy.deepcopy(self._issues[issue_id]) if issue_id else None

    def upsert_issue(self, issue: Issue) -> tuple[Issue, bool]:
        with self._locked():
            existing_id = self._issues_by_fingerprint.get(issue.fingerprint)
            if existing_id is not None:
                existing = self._issues[existing_id]
                existing.occurrence_count += 1
                existing.last_seen_at = max(existing.last_seen_at, issue.last_seen_at)
                return copy.deepcopy(existing), False

            stored = copy.deepcopy(issue)
            self._issues[stored.id] = stored
            self._issues_by_fingerprint[stored.fingerprint] = stored.id
            return copy.deepcopy(stored), True

    def mark_issue_solved(self, issue_id: UUID) -> bool:
        with self._locked():
            issue = self._issues.get(issue_id)
            if issue is None or issue.status != IssueStatus.OPEN:
                return False
            issue.status = IssueStatus.SOLVED
            return True

    # ------------------------------------------------------------- solutions

    def get_solution(self, solution_id: UUID) -> Solution | None:
        with self._locked():
            solution = self._solutions.get(solution_id)
            return copy.deepcopy(solution) if solution else None

    def add_solution(self, solution: Solution) -> Solution:
        with self._locked():
            if solution.issue_id not in self._issues:
                raise NotFoundError("Issue", str(solution.issue_id))
            self._solutions[solution.id] = copy.deepcopy(solution)
            return copy.deepcopy(solution)

    def update_solution(
        self,
        solution_id: UUID,
        mutate: SolutionMutator,
        build_verification: VerificationBuilder | None = None,
    ) -> SolutionUpdate:
        with self._locked():
            solution_lock = self._solution_locks[solution_id]

        with self._locked(solution_lock):
            with self._locked():
                current = self._solutions.get(solution_id)
                if current is None:
                    raise NotFoundError("Solution", str(solution_id))
                before = copy.deepcopy(current)

            after = copy.deepcopy(before)
            mutate(after)
            after.version = before.version + 1

            verification = build_verification(before, after) if build_verification else None

            with self._locked():
                if verification is not None and verification.created_by is not None:
                    pair = (verification.created_by, solution_id)
                    if pair in self._verified_pairs:
                        raise ConflictError("Solution already verified by this contributor", existing_id=str(solution_id))
                    self._verified_pairs.add(pair)
                if verification is not None:
                    self._verifications.append(verification)
                self._solutions[solution_id] = copy.deepcopy(after)

        return SolutionUpdate(before=before, after=after, verification=verification)

    # --------------------------------------------------------- verifications

    def has_verified(self, contributor_id: UUID, solution_id: UUID) -> bool:
        with self._locked():
            return (contributor_id, solution_id) in self._verified_pairs

    def list_verifications(self, solution_id: UUID) -> list[Verification]:
        with self._locked():
            return [v for v in self._verifications if v.solution_id == solution_id]

    # ------------------------------------------------------- abuse queries

    def _rows(self, kind: ActionKind) -> list[tuple[UUID, UUID | None, datetime, str | None]]:
        """(id, created_by, created_at, duplicate-check text) for every row of ``kind``."""
        if kind == ActionKind.ISSUE:
            return [(i.id, i.created_by, i.created_at, i.error_message) for i in self._issues.values()]
        if kind == ActionKind.SOLUTION:
            return [(s.id, s.created_by, s.created_at, s.summary) for s in self._solutions.values()]
        return [(v.id, v.created_by, v.created_at, None) for v in self._verifications]

    def count_created_since(self, kind: ActionKind, contributor_id: UUID, since: datetime) -> int:
        with self._locked():
            return sum(1 for _, author, created, _ in self._rows(kind) if author == contributor_id and created >= since)

    def latest_created_at(self, kind: ActionKind, contributor_id: UUID) -> datetime | None:
        with self._locked():
            times = [created for _, author, created, _ in self._rows(kind) if author == contributor_id]
            return max(times) if times else None

    def find_recent_duplicate(
        self,
        kind: ActionKind,
        contributor_id: UUID,
        text: str,
        since: datetime,
    ) -> UUID | None:
        with self._locked():
            for row_id, author, created, content in self._rows(kind):
                if author == contributor_id and created >= since and content == text:
                    return row_id
            return None

    # --------------------------------------------------------- contributors

    def get_contributor(self, contributor_id: UUID) -> Contributor | None:
        with self._locked():
            contributor = self._contributors.get(contributor_id)
            return copy.deepcopy(contributor) if contributor else None

    def get_contributor_by_name(self, name: str) -> Contributor | None:
        with self._locked():
            for contributor in self._contributors.values():
                if contributor.name == name:
                    return copy.deepcopy(contributor)
            return None

    def add_contributor(self, contributor: Contributor) -> Contributor:
        with self._locked():
            self._contributors[contributor.id] = copy.deepcopy(contributor)
            return copy.deepcopy(contributor)

    def increment_coins(self, contributor_id: UUID, amount: int) -> int:
        with self._locked():
            contributor = self._contributors.get(contributor_id)
            if contributor is None:
                raise NotFoundError("Contributor", str(contributor_id))
            contributor.coins += amount
            return contributor.coins

    def count_live_api_keys(self, contributor_id: UUID) -> int:
        with self._locked():
            return self._api_keys[contributor_id]

    def register_api_key(self, contributor_id: UUID) -> None:
        """Record one live key for a contributor (issuance happens elsewhere)."""
        with self._locked():
            self._api_keys[contributor_id] += 1
