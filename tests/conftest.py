from __future__ import annotations

import uuid
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from threading import Lock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from lernbase_auth.api import routes
from lernbase_auth.config import get_settings
from lernbase_auth.delivery.messaging import DeliveryService, VerificationMessage
from lernbase_auth.domain.account import Account
from lernbase_auth.domain.clock import utc_now
from lernbase_auth.domain.contracts import NewAccountRecord
from lernbase_auth.domain.errors import DuplicateIdentityError
from lernbase_auth.domain.lockout import LockoutPolicy, LockoutState, LoginEvent
from lernbase_auth.main import attach_services, include_routers


class FakeRepository:
    """In-memory repository mimicking the conditional updates of the Postgres store."""

    def __init__(self) -> None:
        self._accounts: dict[str, Account] = {}
        self._lock = Lock()

    def _snapshot(self, account: Account | None) -> Account | None:
        return replace(account) if account is not None else None

    def _update(self, account_id: str, now: datetime, **changes) -> Account | None:
        account = self._accounts.get(account_id)
        if account is None:
            return None
        updated = replace(account, updated_at=now, **changes)
        self._accounts[account_id] = updated
        return replace(updated)

    def find_by_identity(self, *, email: str | None = None, phone: str | None = None):
        for account in self._accounts.values():
            if (email and account.email == email) or (phone and account.phone == phone):
                return self._snapshot(account)
        return None

    def find_by_email(self, email: str):
        return self.find_by_identity(email=email)

    def find_by_phone(self, phone: str):
        return self.find_by_identity(phone=phone)

    def get_account(self, account_id: str):
        return self._snapshot(self._accounts.get(account_id))

    def create_account(self, record: NewAccountRecord, *, now: datetime) -> Account:
        with self._lock:
            if self.find_by_identity(email=record.email, phone=record.phone) is not None:
                raise DuplicateIdentityError()
            account = Account(
                account_id=str(uuid.uuid4()),
                email=record.email,
                phone=record.phone,
                password_hash=record.password_hash,
                role=record.role,
                profile=dict(record.profile),
                created_at=now,
                updated_at=now,
                verification_code=record.verification_code,
                verification_code_expires=record.verification_code_expires,
            )
            self._accounts[account.account_id] = account
            return replace(account)

    def record_login_failure(self, account_id: str, *, now: datetime, policy: LockoutPolicy):
        with self._lock:
            account = self._accounts.get(account_id)
            if account is None:
                return None
            state = policy.apply(
                LockoutState(account.login_attempts, account.lock_until, account.last_login),
                LoginEvent.failure,
                now,
            )
            return self._update(
                account_id, now, login_attempts=state.login_attempts, lock_until=state.lock_until
            )

    def record_login_success(self, account_id: str, *, now: datetime, policy: LockoutPolicy):
        with self._lock:
            account = self._accounts.get(account_id)
            if account is None:
                return None
            state = policy.apply(LockoutState(), LoginEvent.success, now)
            return self._update(
                account_id,
                now,
                login_attempts=state.login_attempts,
                lock_until=state.lock_until,
                last_login=state.last_login,
            )

    def mark_email_verified(self, account_id: str, *, now: datetime):
        with self._lock:
            return self._update(account_id, now, email_verified=True)

    def store_phone_challenge(self, account_id: str, *, code: str, expires_at: datetime, now: datetime):
        with self._lock:
            account = self._accounts.get(account_id)
            if account is None or account.phone_verified:
                return None
            return self._update(
                account_id, now, verification_code=code, verification_code_expires=expires_at
            )

    def redeem_phone_code(self, account_id: str, *, code: str, now: datetime):
        with self._lock:
            account = self._accounts.get(account_id)
            if (
                account is None
                or account.verification_code != code
                or account.verification_code_expires is None
                or account.verification_code_expires <= now
            ):
                return None
            return self._update(
                account_id,
                now,
                phone_verified=True,
                verification_code=None,
                verification_code_expires=None,
            )

    def set_password_hash(self, account_id: str, *, password_hash: str, now: datetime):
        with self._lock:
            return self._update(account_id, now, password_hash=password_hash)

    def set_role(self, account_id: str, *, role, now: datetime):
        with self._lock:
            return self._update(account_id, now, role=role)

    def update_profile(self, account_id: str, *, changes: dict, now: datetime):
        with self._lock:
            account = self._accounts.get(account_id)
            if account is None:
                return None
            return self._update(account_id, now, profile={**account.profile, **changes})

    def deactivate(self, account_id: str, *, now: datetime):
        with self._lock:
            return self._update(account_id, now, is_active=False)


class FakeClock:
    """Controllable clock for lockout windows and code expiry."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingSender:
    def __init__(self) -> None:
        self.sent: list[tuple[str, VerificationMessage]] = []

    def send(self, destination: str, message: VerificationMessage) -> None:
        self.sent.append((destination, message))

    def last(self, kind: str) -> tuple[str, VerificationMessage]:
        for destination, message in reversed(self.sent):
            if message.kind == kind:
                return destination, message
        raise AssertionError(f"no {kind} message was sent")

    def token_from(self, kind: str) -> str:
        _, message = self.last(kind)
        return message.body.split("token=", 1)[1].split()[0]


@pytest.fixture
def settings():
    return replace(get_settings(), bcrypt_rounds=4)


@pytest.fixture
def api_client(settings):
    """Provide a FastAPI test client with isolated state."""
    repository = FakeRepository()
    clock = FakeClock()
    sender = RecordingSender()
    delivery = DeliveryService(email_sender=sender, sms_sender=sender)

    app = FastAPI()
    include_routers(app, settings.api_prefix)
    # Tokens are checked against wall-clock time by PyJWT, so only domain state follows the fake clock.
    attach_services(
        app,
        repository,
        settings=settings,
        delivery=delivery,
        clock=clock,
        token_clock=utc_now,
    )

    original_limiter = routes.rate_limiter
    routes.rate_limiter = routes.SlidingWindowRateLimiter(max_requests=1000, window_seconds=60)

    with TestClient(app) as client:
        yield client, repository, clock, sender

    routes.rate_limiter = original_limiter
