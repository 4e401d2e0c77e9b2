"""Global test fixtures for the agentoverflow test suite."""

from __future__ import annotations

import os
from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest

from agentoverflow.core.config import RateLimitConfig
from agentoverflow.core.models import Contributor, ContributorType, Issue, Solution
from agentoverflow.core.ratelimit import InMemoryRateLimitStore
from agentoverflow.core.service import KnowledgeService
from agentoverflow.core.store import MemoryStore

# ============================================================================
# PostgreSQL Availability Detection
# ============================================================================


def _check_postgres_available() -> tuple[bool, str | None]:
    """Check if PostgreSQL is available for integration tests.

    Returns:
        Tuple of (is_available, error_message)
    """
    try:
        import psycopg2
    except ImportError:
        return False, "psycopg2 not installed"

    try:
        conn = psycopg2.connect(
            host=os.environ.get("AGENTOVERFLOW_DB_HOST", "localhost"),
            port=int(os.environ.get("AGENTOVERFLOW_DB_PORT", "5432")),
            dbname=os.environ.get("AGENTOVERFLOW_DB_NAME", "agentoverflow"),
            user=os.environ.get("AGENTOVERFLOW_DB_USER", "agentoverflow"),
            password=os.environ.get("AGENTOVERFLOW_DB_PASSWORD", ""),
            connect_timeout=3,
        )
        conn.close()
        return True, None
    except psycopg2.OperationalError as e:
        return False, f"PostgreSQL connection failed: {e}"


POSTGRES_AVAILABLE, POSTGRES_ERROR = _check_postgres_available()


def pytest_collection_modifyitems(config, items):
    """Skip tests that need PostgreSQL when no database is reachable."""
    if POSTGRES_AVAILABLE:
        return

    skip_postgres = pytest.mark.skip(reason=f"PostgreSQL not available: {POSTGRES_ERROR}")
    for item in items:
        if "requires_postgres" in item.keywords or "integration" in item.keywords:
            item.add_marker(skip_postgres)


# ============================================================================
# Environment Fixtures
# ============================================================================


@pytest.fixture
def clean_env(monkeypatch):
    """Remove all AGENTOVERFLOW_ environment variables."""
    for key in list(os.environ.keys()):
        if key.startswith("AGENTOVERFLOW_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture(autouse=True)
def reset_config():
    """Drop the cached settings and default service around each test."""
    from agentoverflow.core import service
    from agentoverflow.core.config import clear_config_cache

    clear_config_cache()
    service.set_service(None)
    yield
    clear_config_cache()
    service.set_service(None)


# ============================================================================
# Clock Fixtures
# ============================================================================


class FakeClock:
    """Manually advanced clock usable as both a datetime and a float source."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 3, 10, 12, 0, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def timestamp(self) -> float:
        return self.now.timestamp()

    def advance(self, seconds: float = 0, days: float = 0) -> datetime:
        self.now += timedelta(seconds=seconds, days=days)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


# ============================================================================
# Store / Service Fixtures
# ============================================================================


@pytest.fixture
def store():
    return MemoryStore(lock_timeout=5.0)


@pytest.fixture
def limiter(clock):
    return InMemoryRateLimitStore(clock=clock.timestamp)


@pytest.fixture
def service(store, limiter, clock):
    """Service over an in-memory store with a generous IP cap."""
    return KnowledgeService(
        store=store,
        limiter=limiter,
        rate_limits=RateLimitConfig(requests_per_window=10_000),
        clock=clock,
    )


@pytest.fixture
def make_contributor(store):
    """Factory adding a contributor to the store."""

    def _make(name: str = "agent", reputation: int = 0, type: ContributorType = ContributorType.AGENT) -> Contributor:
        return store.add_contributor(Contributor(id=uuid4(), name=name, type=type, reputation_score=reputation))

    return _make


@pytest.fixture
def issue(store, clock):
    stored, _ = store.upsert_issue(
        Issue(
            id=uuid4(),
            fingerprint="a" * 64,
            title="Connection refused",
            error_type="ECONNREFUSED",
            error_message="connect ECONNREFUSED 127.0.0.1:5432",
            created_at=clock(),
            last_seen_at=clock(),
        )
    )
    return stored


@pytest.fixture
def make_solution(store, issue, clock):
    """Factory adding a solution for ``issue``."""

    def _make(author=None, summary: str = "Start the database", **counters) -> Solution:
        return store.add_solution(
            Solution(
                id=uuid4(),
                issue_id=issue.id,
                summary=summary,
                created_at=clock(),
                created_by=author,
                **counters,
            )
        )

    return _make
