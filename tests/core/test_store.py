"""Tests for agentoverflow.core.store - MemoryStore semantics."""

from __future__ import annotations

import threading
from uuid import uuid4

import pytest

from agentoverflow.core.exceptions import ConflictError, NotFoundError, StorageUnavailableError
from agentoverflow.core.models import Contributor, Issue, IssueStatus, Solution, Verification
from agentoverflow.core.store import KnowledgeStore, MemoryStore
from agentoverflow.core.trust import VerificationOutcome


def _verification(solution_id, created_by=None):
    return lambda before, after: Verification(
        id=uuid4(),
        solution_id=solution_id,
        outcome=VerificationOutcome.SUCCESS,
        confidence_delta=after.confidence_score - before.confidence_score,
        created_by=created_by,
    )


class TestIssues:
    """Fingerprint upsert and status."""

    def test_is_a_knowledge_store(self, store):
        assert isinstance(store, KnowledgeStore)

    def test_upsert_creates_then_counts(self, store, clock):
        first, created = store.upsert_issue(Issue(id=uuid4(), fingerprint="f" * 64, created_at=clock(), last_seen_at=clock()))
        assert created
        assert first.occurrence_count == 1

        later = clock.advance(seconds=90)
        second, created = store.upsert_issue(Issue(id=uuid4(), fingerprint="f" * 64, created_at=later, last_seen_at=later))
        assert not created
        assert second.id == first.id
        assert second.occurrence_count == 2
        assert second.last_seen_at == later

    def test_concurrent_first_reports_create_one_issue(self, store):
        created_flags: list[bool] = []
        lock = threading.Lock()

        def report():
            _, created = store.upsert_issue(Issue(id=uuid4(), fingerprint="c" * 64))
            with lock:
                created_flags.append(created)

        threads = [threading.Thread(target=report) for _ in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert created_flags.count(True) == 1
        assert store.get_issue_by_fingerprint("c" * 64).occurrence_count == 20

    def test_mark_solved_is_one_way(self, store, issue):
        assert store.mark_issue_solved(issue.id)
        assert store.get_issue(issue.id).status == IssueStatus.SOLVED
        assert not store.mark_issue_solved(issue.id)

    def test_returned_issue_is_a_copy(self, store, issue):
        fetched = store.get_issue(issue.id)
        fetched.occurrence_count = 99
        assert store.get_issue(issue.id).occurrence_count == 1


class TestSolutions:
    def test_add_requires_issue(self, store):
        with pytest.raises(NotFoundError):
            store.add_solution(Solution(id=uuid4(), issue_id=uuid4(), summary="s"))

    def test_update_missing_solution(self, store):
        with pytest.raises(NotFoundError):
            store.update_solution(uuid4(), lambda s: None)

    def test_update_bumps_version(self, store, make_solution):
        solution = make_solution()

        def mutate(s):
            s.verification_count += 1

        update = store.update_solution(solution.id, mutate)
        assert update.before.version == 0
        assert update.after.version == 1
        assert store.get_solution(solution.id).verification_count == 1

    def test_verification_appended_in_same_step(self, store, make_solution):
        solution = make_solution()
        verifier = uuid4()
        update = store.update_solution(solution.id, lambda s: None, _verification(solution.id, verifier))

        assert update.verification is not None
        assert store.list_verifications(solution.id) == [update.verification]
        assert store.has_verified(verifier, solution.id)

    def test_repeat_pair_conflicts_and_leaves_solution_untouched(self, store, make_solution):
        solution = make_solution()
        verifier = uuid4()

        def bump(s):
            s.verification_count += 1

        store.update_solution(solution.id, bump, _verification(solution.id, verifier))
        with pytest.raises(ConflictError):
            store.update_solution(solution.id, bump, _verification(solution.id, verifier))

        assert store.get_solution(solution.id).verification_count == 1
        assert len(store.list_verifications(solution.id)) == 1

    def test_anonymous_verifications_not_pair_limited(self, store, make_solution):
        solution = make_solution()
        store.update_solution(solution.id, lambda s: None, _verification(solution.id))
        store.update_solution(solution.id, lambda s: None, _verification(solution.id))
        assert len(store.list_verifications(solution.id)) == 2

    def test_lock_timeout_surfaces_storage_unavailable(self):
        store = MemoryStore(lock_timeout=0.05)
        issue, _ = store.upsert_issue(Issue(id=uuid4(), fingerprint="t" * 64))
        solution = store.add_solution(Solution(id=uuid4(), issue_id=issue.id, summary="s"))

        entered = threading.Event()
        release = threading.Event()

        def slow(s):
            entered.set()
            release.wait(2)

        worker = threading.Thread(target=store.update_solution, args=(solution.id, slow))
        worker.start()
        entered.wait(2)
        try:
            with pytest.raises(StorageUnavailableError):
                store.update_solution(solution.id, lambda s: None)
        finally:
            release.set()
            worker.join()


class TestContributors:
    def test_coins(self, store):
        contributor = store.add_contributor(Contributor(id=uuid4(), name="bot"))
        assert store.increment_coins(contributor.id, 5) == 5
        assert store.increment_coins(contributor.id, 10) == 15

    def test_coins_unknown_contributor(self, store):
        with pytest.raises(NotFoundError):
            store.increment_coins(uuid4(), 5)

    def test_lookup_by_name(self, store):
        contributor = store.add_contributor(Contributor(id=uuid4(), name="bot"))
        assert store.get_contributor_by_name("bot").id == contributor.id
        assert store.get_contributor_by_name("nobody") is None
