"""Account service orchestrating registration, login, token refresh and admin updates."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any
import logging

from .account import Account, Principal, Role, SELF_REGISTERABLE_ROLES
from .clock import Clock, utc_now
from .contracts import NewAccountRecord, RegisterAccountInput
from .errors import (
    AccountDeactivatedError,
    AuthenticationError,
    AuthorizationError,
    DuplicateIdentityError,
    InvalidCredentialsError,
    InvalidTokenError,
    LockedError,
    NotFoundError,
    TokenExpiredError,
    ValidationError,
)
from .identity import redact, split_identity
from .lockout import LockoutPolicy
from .verification import VerificationChallenge, VerificationService
from ..repository import AccountRepository
from ..security.passwords import PasswordHasher
from ..security.tokens import TokenDomain, TokenPair, TokenService, TokenStatus

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RegistrationResult:
    """Outcome of a registration: the stored account, its tokens and verification challenge."""

    account: Account
    tokens: TokenPair
    challenge: VerificationChallenge


@dataclass(slots=True)
class LoginResult:
    account: Account
    tokens: TokenPair


class AuthService:
    """Credential workflows backed by the account repository.

    Password hashing is an explicit call on every path that sets a password;
    the repository only ever receives digests.
    """

    def __init__(
        self,
        repository: AccountRepository,
        *,
        tokens: TokenService,
        hasher: PasswordHasher,
        lockout: LockoutPolicy,
        verification: VerificationService,
        clock: Clock = utc_now,
    ) -> None:
        """Store dependencies used to orchestrate persistence and token issuance."""
        self._repository = repository
        self._tokens = tokens
        self._hasher = hasher
        self._lockout = lockout
        self._verification = verification
        self._clock = clock

    def register(self, payload: RegisterAccountInput) -> RegistrationResult:
        """Create a pending account, start verification and issue a token pair."""
        if payload.role not in SELF_REGISTERABLE_ROLES:
            raise ValidationError("Invalid role selected")
        if self._repository.find_by_identity(email=payload.email, phone=payload.phone) is not None:
            raise DuplicateIdentityError()

        password_hash = self._hasher.hash(payload.password)
        now = self._clock()
        code, code_expires = self._verification.new_phone_challenge(now)
        account = self._repository.create_account(
            NewAccountRecord(
                email=payload.email,
                phone=payload.phone,
                password_hash=password_hash,
                role=payload.role,
                profile=payload.profile,
                verification_code=code,
                verification_code_expires=code_expires,
            ),
            now=now,
        )
        challenge = self._verification.start(account)
        tokens = self._tokens.issue_pair(account.account_id)
        logger.info("new account registered: %s (%s)", account.account_id, account.role.value)
        return RegistrationResult(account=account, tokens=tokens, challenge=challenge)

    def login(self, email_or_phone: str, password: str) -> LoginResult:
        """Authenticate by email or phone and password.

        A locked account is refused before the password is checked, so even
        the correct password yields ``LockedError`` inside the lock window.
        """
        email, phone = split_identity(email_or_phone)
        account = None
        if email or phone:
            account = self._repository.find_by_identity(email=email, phone=phone)
        if account is None:
            self._hasher.burn(password)
            logger.warning("login attempt for unknown identity %s", redact(email_or_phone))
            raise InvalidCredentialsError()

        now = self._clock()
        if account.is_locked(now):
            logger.warning("login attempt on locked account %s", account.account_id)
            raise LockedError(self._lockout.retry_after_seconds(account.lock_until, now))
        if not account.is_active:
            logger.warning("login attempt on deactivated account %s", account.account_id)
            raise AccountDeactivatedError()

        if not self._hasher.verify(password, account.password_hash):
            updated = self._repository.record_login_failure(account.account_id, now=now, policy=self._lockout)
            if updated is not None and updated.is_locked(now):
                logger.warning(
                    "account %s locked until %s after %d failed attempts",
                    updated.account_id,
                    updated.lock_until.isoformat() if updated.lock_until else None,
                    updated.login_attempts,
                )
            else:
                logger.warning("failed login for account %s", account.account_id)
            raise InvalidCredentialsError()

        updated = self._repository.record_login_success(account.account_id, now=now, policy=self._lockout)
        tokens = self._tokens.issue_pair(account.account_id)
        logger.info("account %s logged in", account.account_id)
        return LoginResult(account=updated or account, tokens=tokens)

    def refresh(self, refresh_token: str | None) -> TokenPair:
        """Exchange a refresh token for a fresh pair.

        The presented token is not revoked; it stays valid until it expires.
        """
        if not refresh_token:
            raise AuthenticationError("Refresh token is required")
        result = self._tokens.verify(refresh_token, TokenDomain.refresh)
        if result.status is TokenStatus.expired:
            raise TokenExpiredError("Refresh token has expired")
        if not result.ok:
            logger.warning("refresh token rejected: %s", result.status.value)
            raise InvalidTokenError("Invalid refresh token", reason=result.status.value)

        account = self._repository.get_account(result.claims["sub"])
        if account is None:
            logger.warning("refresh token subject %s not found", result.claims["sub"])
            raise InvalidTokenError("Invalid refresh token", reason="unknown_subject")
        if not account.is_active:
            raise AccountDeactivatedError()
        return self._tokens.issue_pair(account.account_id)

    def logout(self, principal: Principal) -> None:
        # Tokens are stateless; nothing is revoked server-side.
        logger.info("account %s logged out", principal.account_id)

    def get_account(self, account_id: str) -> Account:
        account = self._repository.get_account(account_id)
        if account is None:
            raise NotFoundError()
        return account

    def update_profile(self, principal: Principal, changes: dict[str, Any]) -> Account:
        """Update the caller's own profile with the fields supplied."""
        if not changes:
            return self.get_account(principal.account_id)
        account = self._repository.update_profile(principal.account_id, changes=changes, now=self._clock())
        if account is None:
            raise NotFoundError()
        logger.info("profile updated for account %s", account.account_id)
        return account

    def update_role(self, actor: Principal, account_id: str, role: Role) -> Account:
        """Change an account's role. Only admins may do this."""
        if actor.role is not Role.admin:
            raise AuthorizationError()
        account = self._repository.set_role(account_id, role=role, now=self._clock())
        if account is None:
            raise NotFoundError()
        logger.info("role of account %s set to %s by %s", account_id, role.value, actor.account_id)
        return account

    def deactivate(self, principal: Principal) -> Account:
        """Soft-delete the caller's account; authentication refuses it from then on."""
        account = self._repository.deactivate(principal.account_id, now=self._clock())
        if account is None:
            raise NotFoundError()
        logger.info("account %s deactivated", account.account_id)
        return account
