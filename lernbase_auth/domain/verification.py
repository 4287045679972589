"""Out-of-band verification: email tokens, phone codes and password reset."""

from __future__ import annotations

import hmac
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable

from .account import Account
from .clock import Clock, utc_now
from .errors import VerificationError, VerificationExpiredError
from .identity import normalize_email, normalize_phone, redact
from ..config import Settings
from ..delivery.messaging import (
    DeliveryService,
    PendingDelivery,
    email_verification_message,
    password_reset_message,
    phone_code_message,
)
from ..repository import AccountRepository
from ..security.passwords import PasswordHasher
from ..security.tokens import TokenPurpose, TokenService, TokenStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class VerificationChallenge:
    """Credentials minted for a new account and the messages that will carry them."""

    email_token: str
    phone_code: str | None
    deliveries: tuple[PendingDelivery, ...] = ()


class VerificationService:
    """Moves accounts from pending to verified and handles password resets.

    ``is_verified`` is never written: it is derived from ``email_verified`` and
    ``phone_verified`` on every read, so completion order does not matter.
    Lookups by email or phone answer uniformly so callers cannot tell which
    identifiers are registered.
    """

    def __init__(
        self,
        repository: AccountRepository,
        *,
        tokens: TokenService,
        hasher: PasswordHasher,
        delivery: DeliveryService,
        settings: Settings,
        clock: Clock = utc_now,
    ) -> None:
        self._repository = repository
        self._tokens = tokens
        self._hasher = hasher
        self._delivery = delivery
        self._clock = clock
        self._code_length = settings.phone_code_length
        self._code_ttl = timedelta(seconds=settings.phone_code_ttl_seconds)
        self._frontend_url = settings.frontend_url

    def generate_code(self) -> str:
        """Return a random numeric code of the configured length without a leading zero."""
        low = 10 ** (self._code_length - 1)
        return str(low + secrets.randbelow(9 * low))

    def new_phone_challenge(self, now: datetime | None = None) -> tuple[str, datetime]:
        issued_at = now or self._clock()
        return self.generate_code(), issued_at + self._code_ttl

    def start(self, account: Account) -> VerificationChallenge:
        """Issue the email token and queue it with the stored phone code for delivery."""
        email_token = self._tokens.issue_purpose_token(account.account_id, TokenPurpose.email_verification)
        deliveries = [
            PendingDelivery(
                account.email,
                email_verification_message(account.first_name, email_token, self._frontend_url),
            )
        ]
        if account.verification_code:
            deliveries.append(
                PendingDelivery(
                    account.phone,
                    phone_code_message(account.verification_code, self._code_ttl_minutes),
                )
            )
        return VerificationChallenge(
            email_token=email_token,
            phone_code=account.verification_code,
            deliveries=tuple(deliveries),
        )

    def dispatch(self, deliveries: Iterable[PendingDelivery]) -> int:
        """Send queued messages; meant to run after the response has been returned."""
        return self._delivery.dispatch(deliveries)

    @property
    def _code_ttl_minutes(self) -> int:
        return int(self._code_ttl.total_seconds() // 60)

    def verify_email(self, token: str) -> Account:
        """Redeem an email-verification token; any other purpose is rejected."""
        result = self._tokens.verify_purpose(token, TokenPurpose.email_verification)
        if result.status is TokenStatus.expired:
            raise VerificationExpiredError("Verification token has expired")
        if not result.ok:
            logger.warning("email verification token rejected: %s", result.status.value)
            raise VerificationError("Invalid verification token")

        account = self._repository.mark_email_verified(result.claims["sub"], now=self._clock())
        if account is None:
            logger.warning("email verification token for unknown account %s", result.claims["sub"])
            raise VerificationError("Invalid verification token")
        logger.info("email verified for account %s", account.account_id)
        return account

    def resend_phone_code(self, phone: str) -> list[PendingDelivery]:
        """Store a fresh phone code and return the SMS to send; empty when nothing applies."""
        normalized = normalize_phone(phone)
        account = self._repository.find_by_phone(normalized) if normalized else None
        if account is None or account.phone_verified or not account.is_active:
            logger.info("phone code resend ignored for %s", redact(phone))
            return []

        now = self._clock()
        code, expires_at = self.new_phone_challenge(now)
        updated = self._repository.store_phone_challenge(
            account.account_id, code=code, expires_at=expires_at, now=now
        )
        if updated is None:
            return []
        return [PendingDelivery(updated.phone, phone_code_message(code, self._code_ttl_minutes))]

    def verify_phone(self, phone: str, code: str) -> Account:
        """Redeem a phone code: it must match exactly and must not have expired."""
        normalized = normalize_phone(phone)
        account = self._repository.find_by_phone(normalized) if normalized else None
        if (
            account is None
            or account.verification_code is None
            or not hmac.compare_digest(code.encode("utf-8"), account.verification_code.encode("utf-8"))
        ):
            raise VerificationError("Invalid verification code")

        now = self._clock()
        expires = account.verification_code_expires
        if expires is None or expires <= now:
            logger.info("expired phone code presented for account %s", account.account_id)
            raise VerificationExpiredError("Verification code has expired")

        updated = self._repository.redeem_phone_code(account.account_id, code=code, now=now)
        if updated is None:
            raise VerificationError("Invalid verification code")
        logger.info("phone verified for account %s", updated.account_id)
        return updated

    def request_password_reset(self, email: str) -> list[PendingDelivery]:
        """Issue a reset token when ``email`` is registered and return the email carrying it.

        The caller responds identically either way and sends the result after
        responding, so neither the body nor the timing depends on the answer.
        """
        account = self._repository.find_by_email(normalize_email(email))
        if account is None:
            logger.info("password reset requested for unknown email %s", redact(email))
            return []

        token = self._tokens.issue_purpose_token(account.account_id, TokenPurpose.password_reset)
        logger.info("password reset requested for account %s", account.account_id)
        message = password_reset_message(account.first_name, token, self._frontend_url)
        return [PendingDelivery(account.email, message)]

    def reset_password(self, token: str, new_password: str) -> Account:
        """Replace the password hash of the account named by a reset token."""
        result = self._tokens.verify_purpose(token, TokenPurpose.password_reset)
        if result.status is TokenStatus.expired:
            raise VerificationExpiredError("Reset token has expired")
        if not result.ok:
            logger.warning("password reset token rejected: %s", result.status.value)
            raise VerificationError("Invalid reset token")

        password_hash = self._hasher.hash(new_password)
        account = self._repository.set_password_hash(
            result.claims["sub"], password_hash=password_hash, now=self._clock()
        )
        if account is None:
            raise VerificationError("Invalid reset token")
        logger.info("password reset for account %s", account.account_id)
        return account
