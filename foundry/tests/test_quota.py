"""Tests for the message quota ledger."""
from __future__ import annotations

import threading
from datetime import UTC, datetime

import pytest

from foundry import quota
from foundry.errors import RateLimited, ValidationError

DAY_ONE = datetime(2026, 3, 9, 23, 59, tzinfo=UTC)
DAY_TWO = datetime(2026, 3, 10, 0, 1, tzinfo=UTC)


class TestVentureDaily:
    def test_thirty_then_rejected(self, session):
        policy = quota.venture_daily("v1", DAY_ONE)
        for n in range(1, 31):
            grant = quota.consume(session, policy)
            assert grant.used == n
        with pytest.raises(RateLimited) as exc:
            quota.consume(session, policy)
        assert exc.value.remaining == 0
        assert exc.value.limit == 30
        assert quota.peek(session, policy).used == 30

    def test_rejection_does_not_advance(self, session):
        policy = quota.venture_daily("v1", DAY_ONE)
        quota.try_consume(session, policy.scope_key, policy.limit, policy.window_key, cost=28)
        grant = quota.try_consume(session, policy.scope_key, policy.limit, policy.window_key, cost=3)
        assert grant.granted is False
        assert grant.used == 28
        assert quota.peek(session, policy).used == 28

    def test_resets_on_next_utc_day(self, session):
        first = quota.venture_daily("v1", DAY_ONE)
        quota.try_consume(session, first.scope_key, first.limit, first.window_key, cost=30)
        assert quota.try_consume(session, first.scope_key, first.limit, first.window_key).granted is False

        second = quota.venture_daily("v1", DAY_TWO)
        assert quota.peek(session, second).used == 0
        grant = quota.consume(session, second)
        assert grant.used == 1 and grant.remaining == 29

    def test_scopes_are_independent(self, session):
        a = quota.venture_daily("a", DAY_ONE)
        b = quota.venture_daily("b", DAY_ONE)
        quota.try_consume(session, a.scope_key, a.limit, a.window_key, cost=30)
        assert quota.consume(session, b).used == 1

    def test_status_payload(self, session):
        policy = quota.venture_daily("v1", DAY_ONE)
        quota.consume(session, policy, cost=3)
        status = quota.venture_status(session, "v1", DAY_ONE)
        assert status == {
            "messages_used": 3,
            "messages_limit": 30,
            "remaining_today": 27,
            "resets_at": "2026-03-10T00:00:00+00:00",
        }

    def test_cost_must_be_positive(self, session):
        with pytest.raises(ValidationError):
            quota.try_consume(session, "venture:x", 30, "", cost=0)


class TestTrialLifetime:
    def test_three_messages_forever(self, session):
        policy = quota.trial_lifetime("tok")
        assert [quota.consume(session, policy).remaining for _ in range(3)] == [2, 1, 0]
        for _ in range(2):
            with pytest.raises(RateLimited):
                quota.consume(session, policy)
        assert quota.peek(session, policy).used == 3


class TestRelease:
    def test_release_returns_units(self, session):
        policy = quota.venture_daily("v1", DAY_ONE)
        quota.consume(session, policy, cost=3)
        quota.release(session, policy, cost=3)
        assert quota.peek(session, policy).used == 0

    def test_release_ignores_rolled_over_window(self, session):
        old = quota.venture_daily("v1", DAY_ONE)
        new = quota.venture_daily("v1", DAY_TWO)
        quota.consume(session, old)
        quota.consume(session, new)
        quota.release(session, old)
        assert quota.peek(session, new).used == 1


def test_concurrent_consumers_never_exceed_limit(file_sessions):
    policy = quota.trial_lifetime("race")
    granted: list[bool] = []
    barrier = threading.Barrier(10)

    def run():
        sess = file_sessions()
        try:
            barrier.wait()
            grant = quota.try_consume(sess, policy.scope_key, policy.limit, policy.window_key)
            granted.append(grant.granted)
        finally:
            sess.close()

    threads = [threading.Thread(target=run) for _ in range(10)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert granted.count(True) == 3
    check = file_sessions()
    try:
        assert quota.peek(check, policy).used == 3
    finally:
        check.close()
