from __future__ import annotations

import time

import pytest
from fastapi import FastAPI

from conftest import FakeClock, FakeRepository
from lernbase_auth.delivery.messaging import DeliveryService
from lernbase_auth.domain.account import Principal, Role
from lernbase_auth.domain.clock import utc_now
from lernbase_auth.domain.contracts import RegisterAccountInput
from lernbase_auth.domain.errors import (
    AuthenticationError,
    AuthorizationError,
    InvalidCredentialsError,
    NotFoundError,
    ValidationError,
)
from lernbase_auth.main import attach_services


class SlowSender:
    def __init__(self, delay: float) -> None:
        self.delay = delay
        self.sent = []

    def send(self, destination, message) -> None:
        time.sleep(self.delay)
        self.sent.append((destination, message))


class BrokenSender:
    def send(self, destination, message) -> None:
        raise TimeoutError("gateway timed out")


@pytest.fixture
def services(settings):
    app = FastAPI()
    repository = FakeRepository()
    attach_services(
        app,
        repository,
        settings=settings,
        delivery=DeliveryService(email_sender=BrokenSender(), sms_sender=BrokenSender()),
        clock=FakeClock(),
        token_clock=utc_now,
    )
    return app.state.auth_service, app.state.verification_service, repository


def _input(role: Role = Role.employer) -> RegisterAccountInput:
    return RegisterAccountInput(
        email="chidi@example.com",
        phone="+2349031234567",
        password="Str0ng!Pass",
        role=role,
        profile={"firstName": "Chidi", "lastName": "Eze"},
    )


def test_registration_survives_delivery_failure(services):
    auth, verification, repository = services

    result = auth.register(_input())

    kinds = [delivery.message.kind for delivery in result.challenge.deliveries]
    assert kinds == ["email_verification", "phone_code"]
    assert verification.dispatch(result.challenge.deliveries) == 0
    assert result.challenge.phone_code == repository.get_account(result.account.account_id).verification_code
    assert result.account.is_verified is False


def test_admin_role_cannot_be_self_registered(services):
    auth, _, _ = services

    with pytest.raises(ValidationError):
        auth.register(_input(role=Role.admin))


def test_unknown_identity_is_invalid_credentials(services):
    auth, _, _ = services

    with pytest.raises(InvalidCredentialsError):
        auth.login("ghost@example.com", "Str0ng!Pass")
    with pytest.raises(InvalidCredentialsError):
        auth.login("not-an-identity", "Str0ng!Pass")


def test_update_role_checks_actor_and_target(services):
    auth, _, _ = services
    account = auth.register(_input()).account
    employer = Principal.from_account(account)
    admin = Principal(account_id="admin-1", email="a@example.com", phone="", role=Role.admin, is_verified=True)

    with pytest.raises(AuthorizationError):
        auth.update_role(employer, account.account_id, Role.admin)
    with pytest.raises(NotFoundError):
        auth.update_role(admin, "missing-id", Role.student)
    assert auth.update_role(admin, account.account_id, Role.artisan).role is Role.artisan


def test_password_reset_for_unknown_email_returns_nothing(services):
    _, verification, _ = services

    assert verification.request_password_reset("ghost@example.com") == []


def test_generated_codes_have_fixed_width(services):
    _, verification, _ = services

    codes = {verification.generate_code() for _ in range(200)}

    assert all(len(code) == 6 and code.isdigit() and code[0] != "0" for code in codes)


def test_password_reset_returns_before_any_message_is_sent(settings):
    app = FastAPI()
    repository = FakeRepository()
    sender = SlowSender(delay=0.5)
    attach_services(
        app,
        repository,
        settings=settings,
        delivery=DeliveryService(email_sender=sender, sms_sender=sender),
        clock=FakeClock(),
        token_clock=utc_now,
    )
    auth, verification = app.state.auth_service, app.state.verification_service
    auth.register(_input())

    started = time.perf_counter()
    known = verification.request_password_reset("chidi@example.com")
    unknown = verification.request_password_reset("ghost@example.com")
    elapsed = time.perf_counter() - started

    assert elapsed < 0.2
    assert sender.sent == []
    assert unknown == []
    assert [delivery.message.kind for delivery in known] == ["password_reset"]
    assert verification.dispatch(known) == 1
    assert sender.sent[0][0] == "chidi@example.com"


@pytest.mark.parametrize("token", [None, ""])
def test_refresh_requires_a_token(services, token):
    auth, _, _ = services

    with pytest.raises(AuthenticationError, match="Refresh token is required"):
        auth.refresh(token)


def test_profile_update_merges_into_existing_profile(services):
    auth, _, repository = services
    account = auth.register(_input()).account

    updated = auth.update_profile(
        Principal.from_account(account), {"lastName": "Okafor", "gender": "male"}
    )

    assert updated.profile == {"firstName": "Chidi", "lastName": "Okafor", "gender": "male"}
    assert repository.get_account(account.account_id).profile["lastName"] == "Okafor"
    assert auth.update_profile(Principal.from_account(account), {}).profile == updated.profile
