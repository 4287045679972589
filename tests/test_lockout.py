from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from lernbase_auth.domain.lockout import LockoutPolicy, LockoutState, LoginEvent

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def policy() -> LockoutPolicy:
    return LockoutPolicy(max_attempts=5, lock_duration=timedelta(hours=2))


def test_failures_below_threshold_only_count(policy):
    state = LockoutState()
    for _ in range(4):
        state = policy.apply(state, LoginEvent.failure, NOW)

    assert state.login_attempts == 4
    assert state.lock_until is None


def test_fifth_failure_locks_for_two_hours(policy):
    state = LockoutState(login_attempts=4)

    state = policy.apply(state, LoginEvent.failure, NOW)

    assert state.login_attempts == 5
    assert state.lock_until == NOW + timedelta(hours=2)


def test_failure_during_lock_keeps_original_expiry(policy):
    locked = LockoutState(login_attempts=5, lock_until=NOW + timedelta(hours=1))

    state = policy.apply(locked, LoginEvent.failure, NOW)

    assert state.login_attempts == 6
    assert state.lock_until == NOW + timedelta(hours=1)


def test_failure_after_lock_expired_restarts_count(policy):
    stale = LockoutState(login_attempts=5, lock_until=NOW - timedelta(seconds=1))

    state = policy.apply(stale, LoginEvent.failure, NOW)

    assert state.login_attempts == 1
    assert state.lock_until is None


def test_lock_expiring_exactly_now_counts_as_expired(policy):
    boundary = LockoutState(login_attempts=5, lock_until=NOW)

    state = policy.apply(boundary, LoginEvent.failure, NOW)

    assert state == LockoutState(login_attempts=1, lock_until=None)


def test_success_clears_state_and_stamps_last_login(policy):
    state = policy.apply(LockoutState(login_attempts=3), LoginEvent.success, NOW)

    assert state == LockoutState(login_attempts=0, lock_until=None, last_login=NOW)


def test_retry_after_seconds(policy):
    assert policy.retry_after_seconds(None, NOW) == 0
    assert policy.retry_after_seconds(NOW - timedelta(minutes=1), NOW) == 0
    assert policy.retry_after_seconds(NOW + timedelta(seconds=90), NOW) == 91


def test_threshold_is_configurable():
    policy = LockoutPolicy(max_attempts=2, lock_duration=timedelta(minutes=5))

    state = policy.apply(LockoutState(), LoginEvent.failure, NOW)
    state = policy.apply(state, LoginEvent.failure, NOW)

    assert state.lock_until == NOW + timedelta(minutes=5)
