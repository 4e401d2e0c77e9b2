"""Tests for agentoverflow.core.pg_store - PostgreSQL-backed store.

Unit tests patch ``get_cursor``; the integration class runs against a real
database when one is reachable.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from datetime import UTC, datetime
from unittest.mock import MagicMock, patch
from uuid import uuid4

import psycopg2.errors
import pytest

from agentoverflow.core.exceptions import ConflictError, NotFoundError
from agentoverflow.core.models import ActionKind, Issue, Solution, Verification
from agentoverflow.core.pg_store import PostgresStore
from agentoverflow.core.service import KnowledgeService
from agentoverflow.core.trust import TrustTier, VerificationOutcome

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)


@pytest.fixture
def cursor():
    mock_cursor = MagicMock()

    @contextmanager
    def fake_get_cursor():
        yield mock_cursor

    with patch("agentoverflow.core.pg_store.get_cursor", fake_get_cursor):
        yield mock_cursor


def _solution_row(**overrides):
    row = {
        "id": uuid4(),
        "issue_id": uuid4(),
        "summary": "Start postgres",
        "root_cause": "",
        "fix_description": "",
        "commands": [],
        "confidence_score": 0.3,
        "verification_count": 0,
        "success_count": 0.0,
        "failure_count": 0.0,
        "last_verified_at": None,
        "created_at": NOW,
        "created_by": None,
        "version": 0,
    }
    row.update(overrides)
    return row


def _issue_row(**overrides):
    row = {
        "id": uuid4(),
        "fingerprint": "f" * 64,
        "title": "",
        "error_type": "TypeError",
        "error_message": "boom",
        "stack": [],
        "runtime": "node@20",
        "occurrence_count": 1,
        "status": "open",
        "created_at": NOW,
        "last_seen_at": NOW,
        "created_by": None,
    }
    row.update(overrides)
    return row


class TestIssues:
    def test_upsert_created(self, cursor):
        cursor.fetchone.return_value = {**_issue_row(), "inserted": True}

        issue, created = PostgresStore().upsert_issue(Issue(id=uuid4(), fingerprint="f" * 64))

        assert created
        assert issue.fingerprint == "f" * 64
        sql = cursor.execute.call_args[0][0]
        assert "ON CONFLICT (fingerprint)" in sql
        assert "occurrence_count = issues.occurrence_count + 1" in sql

    def test_upsert_existing(self, cursor):
        cursor.fetchone.return_value = {**_issue_row(occurrence_count=4), "inserted": False}

        issue, created = PostgresStore().upsert_issue(Issue(id=uuid4(), fingerprint="f" * 64))

        assert not created
        assert issue.occurrence_count == 4

    def test_mark_solved_only_from_open(self, cursor):
        cursor.rowcount = 0
        assert PostgresStore().mark_issue_solved(uuid4()) is False
        assert "status = 'open'" in cursor.execute.call_args[0][0]


class TestSolutions:
    def test_add_solution_for_missing_issue(self, cursor):
        cursor.execute.side_effect = psycopg2.errors.ForeignKeyViolation("issue_id")
        with pytest.raises(NotFoundError):
            PostgresStore().add_solution(Solution(id=uuid4(), issue_id=uuid4(), summary="s"))

    def test_update_locks_row(self, cursor):
        row = _solution_row()
        cursor.fetchone.return_value = row

        def mutate(s):
            s.verification_count += 1

        update = PostgresStore().update_solution(row["id"], mutate)

        first_sql = cursor.execute.call_args_list[0][0][0]
        assert "FOR UPDATE" in first_sql
        assert update.before.verification_count == 0
        assert update.after.verification_count == 1
        assert update.after.version == 1

    def test_update_missing_solution(self, cursor):
        cursor.fetchone.return_value = None
        with pytest.raises(NotFoundError):
            PostgresStore().update_solution(uuid4(), lambda s: None)

    def test_repeat_verification_conflict(self, cursor):
        row = _solution_row()
        cursor.fetchone.return_value = row

        def execute(sql, params=None):
            if "INSERT INTO verifications" in sql:
                raise psycopg2.errors.UniqueViolation("uq_verifications_contributor_solution")

        cursor.execute.side_effect = execute

        def build(before, after):
            return Verification(
                id=uuid4(),
                solution_id=row["id"],
                outcome=VerificationOutcome.SUCCESS,
                confidence_delta=0.0,
                created_by=uuid4(),
            )

        with pytest.raises(ConflictError):
            PostgresStore().update_solution(row["id"], lambda s: None, build)


class TestAbuseQueries:
    def test_count_created_since(self, cursor):
        cursor.fetchone.return_value = {"count": 7}
        assert PostgresStore().count_created_since(ActionKind.SOLUTION, uuid4(), NOW) == 7

    def test_latest_created_at_none(self, cursor):
        cursor.fetchone.return_value = None
        assert PostgresStore().latest_created_at(ActionKind.ISSUE, uuid4()) is None

    def test_no_duplicate_check_for_verifications(self, cursor):
        assert PostgresStore().find_recent_duplicate(ActionKind.VERIFICATION, uuid4(), "x", NOW) is None
        cursor.execute.assert_not_called()

    def test_increment_coins_unknown_contributor(self, cursor):
        cursor.fetchone.return_value = None
        with pytest.raises(NotFoundError):
            PostgresStore().increment_coins(uuid4(), 5)


@pytest.mark.requires_postgres
class TestPostgresIntegration:
    """Round trips against a real database."""

    @pytest.fixture
    def pg_store(self):
        from agentoverflow.core.db import close_pool, init_schema

        init_schema()
        yield PostgresStore()
        close_pool()

    def test_upsert_and_verify(self, pg_store):
        fingerprint = uuid4().hex * 2
        issue, created = pg_store.upsert_issue(Issue(id=uuid4(), fingerprint=fingerprint))
        assert created
        again, created = pg_store.upsert_issue(Issue(id=uuid4(), fingerprint=fingerprint))
        assert not created
        assert again.id == issue.id
        assert again.occurrence_count == 2

        solution = pg_store.add_solution(Solution(id=uuid4(), issue_id=issue.id, summary="fix"))

        def bump(s):
            s.verification_count += 1

        update = pg_store.update_solution(solution.id, bump)
        assert update.after.version == solution.version + 1
        assert pg_store.get_solution(solution.id).verification_count == 1

    def test_concurrent_verifications_share_the_pool(self, pg_store):
        """More concurrent updates than pooled connections all land."""
        issue, _ = pg_store.upsert_issue(Issue(id=uuid4(), fingerprint=uuid4().hex * 2))
        solution = pg_store.add_solution(Solution(id=uuid4(), issue_id=issue.id, summary="fix"))
        service = KnowledgeService(pg_store)
        errors: list[Exception] = []

        def verify():
            try:
                service.record_verification(solution.id, VerificationOutcome.SUCCESS, TrustTier.NEW)
            except Exception as e:  # noqa: BLE001
                errors.append(e)

        threads = [threading.Thread(target=verify) for _ in range(50)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        stored = pg_store.get_solution(solution.id)
        assert stored.verification_count == 50
        assert stored.success_count == pytest.approx(50.0)
