"""Time-boxed lockout after repeated failed logins.

The lock is advisory: it expires on its own instead of waiting for an
administrator, so a locked user regains access once ``lock_until`` passes.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum


class LoginEvent(str, Enum):
    success = "success"
    failure = "failure"


@dataclass(frozen=True, slots=True)
class LockoutState:
    """The slice of an account record the lockout policy reads and writes."""

    login_attempts: int = 0
    lock_until: datetime | None = None
    last_login: datetime | None = None


def is_locked(lock_until: datetime | None, now: datetime) -> bool:
    return lock_until is not None and lock_until > now


@dataclass(frozen=True, slots=True)
class LockoutPolicy:
    """Pure transition function over ``(login_attempts, lock_until, now)``."""

    max_attempts: int = 5
    lock_duration: timedelta = timedelta(hours=2)

    def apply(self, state: LockoutState, event: LoginEvent, now: datetime) -> LockoutState:
        """Return the state that follows ``event`` at ``now``."""
        if event is LoginEvent.success:
            return LockoutState(login_attempts=0, lock_until=None, last_login=now)

        if state.lock_until is not None and state.lock_until <= now:
            # Stale lock: restart the count rather than continuing from the threshold.
            return LockoutState(login_attempts=1, lock_until=None, last_login=state.last_login)

        attempts = state.login_attempts + 1
        lock_until = state.lock_until
        if lock_until is None and attempts >= self.max_attempts:
            lock_until = now + self.lock_duration
        return LockoutState(login_attempts=attempts, lock_until=lock_until, last_login=state.last_login)

    def retry_after_seconds(self, lock_until: datetime | None, now: datetime) -> int:
        if not is_locked(lock_until, now):
            return 0
        return int((lock_until - now).total_seconds()) + 1  # type: ignore[operator]
