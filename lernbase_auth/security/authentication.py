"""Per-request authentication pipeline.

``extract -> verify -> load -> gate``: each stage either hands over to the
next or stops with a typed error the API layer maps to a status code.
"""

from __future__ import annotations

import logging

from ..domain.account import Principal
from ..domain.clock import Clock, utc_now
from ..domain.errors import (
    AccountDeactivatedError,
    AuthError,
    AuthenticationError,
    InvalidTokenError,
    LockedError,
    StorageUnavailableError,
    TokenExpiredError,
)
from ..domain.lockout import LockoutPolicy
from ..repository import AccountRepository
from .tokens import TokenDomain, TokenService, TokenStatus

logger = logging.getLogger(__name__)


def extract_bearer_token(authorization: str | None) -> str | None:
    """Return the token from an ``Authorization: Bearer <token>`` header value."""
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    token = token.strip()
    return token or None


class RequestAuthenticator:
    def __init__(
        self,
        repository: AccountRepository,
        *,
        tokens: TokenService,
        lockout: LockoutPolicy,
        clock: Clock = utc_now,
    ) -> None:
        self._repository = repository
        self._tokens = tokens
        self._lockout = lockout
        self._clock = clock

    def authenticate(self, authorization: str | None) -> Principal:
        """Run the full pipeline and return the principal, or raise at the failing stage."""
        token = extract_bearer_token(authorization)
        if token is None:
            raise AuthenticationError("Access token is required")

        result = self._tokens.verify(token, TokenDomain.access)
        if result.status is TokenStatus.expired:
            raise TokenExpiredError()
        if not result.ok:
            logger.warning("access token rejected: %s", result.status.value)
            raise InvalidTokenError(reason=result.status.value)

        subject = result.claims["sub"]
        account = self._repository.get_account(subject)
        if account is None:
            # Reported to the caller like any other bad token.
            logger.warning("access token subject %s not found", subject)
            raise InvalidTokenError(reason="unknown_subject")

        now = self._clock()
        if not account.is_active:
            raise AccountDeactivatedError()
        if account.is_locked(now):
            raise LockedError(self._lockout.retry_after_seconds(account.lock_until, now))
        return Principal.from_account(account)

    def try_authenticate(self, authorization: str | None) -> Principal | None:
        """Optional variant: any failure yields ``None`` and the request continues anonymously."""
        try:
            return self.authenticate(authorization)
        except StorageUnavailableError:
            logger.warning("credential store unavailable; continuing anonymously")
            return None
        except AuthError as exc:
            logger.debug("optional authentication fell back to anonymous: %s", exc.message)
            return None
