# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""PostgreSQL implementation of ``KnowledgeStore``.

Atomicity:
- ``upsert_issue`` is a single ``INSERT ... ON CONFLICT (fingerprint)``
  statement, so concurrent first reports of one error create one row.
- ``update_solution`` runs in one transaction holding a row lock
  (``SELECT ... FOR UPDATE``) on the solution, so concurrent
  verifications are serialized on the solution id and no update is lost.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any
from uuid import UUID

import psycopg2.errors
from psycopg2 import sql

from .db import get_cursor
from .exceptions import ConflictError, NotFoundError
from .models import (
    ActionKind,
    Contributor,
    ContributorType,
    Issue,
    Solution,
    Verification,
)
from .store import KnowledgeStore, SolutionMutator, SolutionUpdate, VerificationBuilder
from .trust import VerificationOutcome

logger = logging.getLogger(__name__)

# table, duplicate-check column
_KIND_TABLES: dict[ActionKind, tuple[str, str | None]] = {
    ActionKind.ISSUE: ("issues", "error_message"),
    ActionKind.SOLUTION: ("solutions", "summary"),
    ActionKind.VERIFICATION: ("verifications", None),
}


def _verification_from_row(row: dict[str, Any]) -> Verification:
    return Verification(
        id=row["id"],
        solution_id=row["solution_id"],
        outcome=VerificationOutcome(row["outcome"]),
        confidence_delta=float(row["confidence_delta"]),
        created_by=row.get("created_by"),
        created_at=row["created_at"],
    )


def _contributor_from_row(row: dict[str, Any]) -> Contributor:
    return Contributor(
        id=row["id"],
        name=row["name"],
        type=ContributorType(row["type"]),
        reputation_score=row["reputation_score"],
        coins=row["coins"],
    )


class PostgresStore(KnowledgeStore):
    """``KnowledgeStore`` over the pooled psycopg2 connections in ``db``."""

    # ---------------------------------------------------------------- issues

    def get_issue(self, issue_id: UUID) -> Issue | None:
        with get_cursor() as cur:
            cur.execute("SELECT * FROM issues WHERE id = %s", (issue_id,))
            row = cur.fetchone()
            return Issue.from_row(row) if row else None

    def get_issue_by_fingerprint(self, fingerprint: str) -> Issue | None:
        with get_cursor() as cur:
            cur.execute("SELECT * FROM issues WHERE fingerprint = %s", (fingerprint,))
            row = cur.fetchone()
            return Issue.from_row(row) if row else None

    def upsert_issue(self, issue: Issue) -> tuple[Issue, bool]:
        with get_cursor() as cur:
            cur.execute(
                """
                INSERT INTO issues (
                    id, fingerprint, title, error_type, error_message, stack,
                    runtime, occurrence_count, status, created_at, last_seen_at, created_by
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, 1, %s, %s, %s, %s)
                ON CONFLICT (fingerprint) DO UPDATE SET
                    occurrence_count = issues.occurrence_count + 1,
                    last_seen_at = GREATEST(issues.last_seen_at, EXCLUDED.last_seen_at)
                RETURNING *, (xmax = 0) AS inserted
                """,
                (
                    issue.id,
                    issue.fingerprint,
                    issue.title,
                    issue.error_type,
                    issue.error_message,
                    sorted(issue.stack),
                    issue.runtime,
                    issue.status.value,
                    issue.created_at,
                    issue.last_seen_at,
                    issue.created_by,
                ),
            )
            row = cur.fetchone()
            return Issue.from_row(row), bool(row["inserted"])

    def mark_issue_solved(self, issue_id: UUID) -> bool:
        with get_cursor() as cur:
            cur.execute(
                "UPDATE issues SET status = 'solved' WHERE id = %s AND status = 'open'",
                (issue_id,),
            )
            return cur.rowcount > 0

    # ------------------------------------------------------------- solutions

    def get_solution(self, solution_id: UUID) -> Solution | None:
        with get_cursor() as cur:
            cur.execute("SELECT * FROM solutions WHERE id = %s", (solution_id,))
            row = cur.fetchone()
            return Solution.from_row(row) if row else None

    def add_solution(self, solution: Solution) -> Solution:
        with get_cursor() as cur:
            try:
                cur.execute(
                    """
                    INSERT INTO solutions (
                        id, issue_id, root_cause, summary, fix_description, commands,
                        confidence_score, verification_count, success_count, failure_count,
                        last_verified_at, version, created_at, created_by
                    )
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    RETURNING *
                    """,
                    (
                        solution.id,
                        solution.issue_id,
                        solution.root_cause,
                        solution.summary,
                        solution.fix_description,
                        list(solution.commands),
                        solution.confidence_score,
                        solution.verification_count,
                        solution.success_count,
                        solution.failure_count,
                        solution.last_verified_at,
                        solution.version,
                        solution.created_at,
                        solution.created_by,
                    ),
                )
            except psycopg2.errors.ForeignKeyViolation as e:
                raise NotFoundError("Issue", str(solution.issue_id)) from e
            return Solution.from_row(cur.fetchone())

    def update_solution(
        self,
        solution_id: UUID,
        mutate: SolutionMutator,
        build_verification: VerificationBuilder | None = None,
    ) -> SolutionUpdate:
        with get_cursor() as cur:
            cur.execute("SELECT * FROM solutions WHERE id = %s FOR UPDATE", (solution_id,))
            row = cur.fetchone()
            if row is None:
                raise NotFoundError("Solution", str(solution_id))

            before = Solution.from_row(row)
            after = Solution.from_row(row)
            mutate(after)
            after.version = before.version + 1

            cur.execute(
                """
                UPDATE solutions SET
                    confidence_score = %s,
                    verification_count = %s,
                    success_count = %s,
                    failure_count = %s,
                    last_verified_at = %s,
                    version = %s
                WHERE id = %s
                """,
                (
                    after.confidence_score,
                    after.verification_count,
                    after.success_count,
                    after.failure_count,
                    after.last_verified_at,
                    after.version,
                    solution_id,
                ),
            )

            verification = build_verification(before, after) if build_verification else None
            if verification is not None:
                try:
                    cur.execute(
                        """
                        INSERT INTO verifications (id, solution_id, outcome, confidence_delta, created_at, created_by)
                        VALUES (%s, %s, %s, %s, %s, %s)
                        """,
                        (
                            verification.id,
                            verification.solution_id,
                            verification.outcome.value,
                            verification.confidence_delta,
                            verification.created_at,
                            verification.created_by,
                        ),
                    )
                except psycopg2.errors.UniqueViolation as e:
                    logger.info(f"Repeat verification of {solution_id} by {verification.created_by} rejected by unique index")
                    raise ConflictError(
                        "Solution already verified by this contributor",
                        existing_id=str(solution_id),
                    ) from e

        return SolutionUpdate(before=before, after=after, verification=verification)

    # --------------------------------------------------------- verifications

    def has_verified(self, contributor_id: UUID, solution_id: UUID) -> bool:
        with get_cursor() as cur:
            cur.execute(
                "SELECT 1 FROM verifications WHERE created_by = %s AND solution_id = %s LIMIT 1",
                (contributor_id, solution_id),
            )
            return cur.fetchone() is not None

    def list_verifications(self, solution_id: UUID) -> list[Verification]:
        with get_cursor() as cur:
            cur.execute(
                "SELECT * FROM verifications WHERE solution_id = %s ORDER BY created_at",
                (solution_id,),
            )
            return [_verification_from_row(row) for row in cur.fetchall()]

    # ------------------------------------------------------- abuse queries

    def count_created_since(self, kind: ActionKind, contributor_id: UUID, since: datetime) -> int:
        table, _ = _KIND_TABLES[kind]
        query = sql.SQL("SELECT COUNT(*) AS count FROM {} WHERE created_by = %s AND created_at >= %s").format(sql.Identifier(table))
        with get_cursor() as cur:
            cur.execute(query, (contributor_id, since))
            row = cur.fetchone()
            return int(row["count"]) if row else 0

    def latest_created_at(self, kind: ActionKind, contributor_id: UUID) -> datetime | None:
        table, _ = _KIND_TABLES[kind]
        query = sql.SQL("SELECT created_at FROM {} WHERE created_by = %s ORDER BY created_at DESC LIMIT 1").format(sql.Identifier(table))
        with get_cursor() as cur:
            cur.execute(query, (contributor_id,))
            row = cur.fetchone()
            return row["created_at"] if row else None

    def find_recent_duplicate(
        self,
        kind: ActionKind,
        contributor_id: UUID,
        text: str,
        since: datetime,
    ) -> UUID | None:
        table, column = _KIND_TABLES[kind]
        if column is None:
            return None
        query = sql.SQL("SELECT id FROM {} WHERE created_by = %s AND created_at >= %s AND {} = %s ORDER BY created_at DESC LIMIT 1").format(
            sql.Identifier(table), sql.Identifier(column)
        )
        with get_cursor() as cur:
            cur.execute(query, (contributor_id, since, text))
            row = cur.fetchone()
            return row["id"] if row else None

    # --------------------------------------------------------- contributors

    def get_contributor(self, contributor_id: UUID) -> Contributor | None:
        with get_cursor() as cur:
            cur.execute("SELECT * FROM contributors WHERE id = %s", (contributor_id,))
            row = cur.fetchone()
            return _contributor_from_row(row) if row else None

    def get_contributor_by_name(self, name: str) -> Contributor | None:
        with get_cursor() as cur:
            cur.execute("SELECT * FROM contributors WHERE name = %s ORDER BY created_at LIMIT 1", (name,))
            row = cur.fetchone()
            return _contributor_from_row(row) if row else None

    def add_contributor(self, contributor: Contributor) -> Contributor:
        with get_cursor() as cur:
            cur.execute(
                """
                INSERT INTO contributors (id, name, type, reputation_score, coins)
                VALUES (%s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    contributor.id,
                    contributor.name,
                    contributor.type.value,
                    contributor.reputation_score,
                    contributor.coins,
                ),
            )
            return _contributor_from_row(cur.fetchone())

    def increment_coins(self, contributor_id: UUID, amount: int) -> int:
        with get_cursor() as cur:
            cur.execute(
                "UPDATE contributors SET coins = coins + %s WHERE id = %s RETURNING coins",
                (amount, contributor_id),
            )
            row = cur.fetchone()
            if row is None:
                raise NotFoundError("Contributor", str(contributor_id))
            return int(row["coins"])

    def count_live_api_keys(self, contributor_id: UUID) -> int:
        with get_cursor() as cur:
            cur.execute(
                "SELECT COUNT(*) AS count FROM api_keys WHERE contributor_id = %s AND revoked_at IS NULL",
                (contributor_id,),
            )
            row = cur.fetchone()
            return int(row["count"]) if row else 0
