"""Utilities for issuing and validating application JWTs."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import logging
import secrets
from typing import Any

import jwt

from ..config import Settings
from ..domain.clock import Clock, utc_now

logger = logging.getLogger(__name__)

_ALGORITHM = "HS256"


class TokenDomain(str, Enum):
    """Independent signing domains. A token only verifies in the domain that issued it."""

    access = "access"
    refresh = "refresh"
    purpose = "purpose"


class TokenPurpose(str, Enum):
    email_verification = "verification:email"
    password_reset = "password_reset"


class TokenStatus(str, Enum):
    valid = "valid"
    expired = "expired"
    invalid = "invalid"
    malformed = "malformed"


@dataclass(frozen=True, slots=True)
class TokenVerification:
    """Outcome of verifying a token; callers branch on ``status``."""

    status: TokenStatus
    claims: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status is TokenStatus.valid

    @property
    def subject(self) -> str | None:
        return self.claims.get("sub") if self.ok else None


@dataclass(frozen=True, slots=True)
class TokenPair:
    """Access/refresh pair returned to API consumers."""

    access_token: str
    access_expires_in: int
    refresh_token: str
    refresh_expires_in: int


@dataclass(frozen=True, slots=True)
class _SigningDomain:
    secret: str
    ttl_seconds: int


class TokenService:
    """Issue and verify HS256 tokens across the access, refresh and purpose domains.

    Access and single-purpose tokens share ``JWT_SECRET`` but are kept apart by
    the ``typ`` claim; refresh tokens are signed with ``JWT_REFRESH_SECRET``.
    Refresh tokens are stateless: exchanging one does not revoke it.
    """

    def __init__(self, settings: Settings, clock: Clock = utc_now) -> None:
        self._issuer = settings.jwt_issuer
        self._clock = clock
        self._domains = {
            TokenDomain.access: _SigningDomain(settings.jwt_secret, settings.access_ttl_seconds),
            TokenDomain.refresh: _SigningDomain(settings.jwt_refresh_secret, settings.refresh_ttl_seconds),
            TokenDomain.purpose: _SigningDomain(settings.jwt_secret, settings.email_verification_ttl_seconds),
        }
        self._purpose_ttls = {
            TokenPurpose.email_verification: settings.email_verification_ttl_seconds,
            TokenPurpose.password_reset: settings.password_reset_ttl_seconds,
        }

    def issue(
        self,
        subject: str,
        domain: TokenDomain,
        ttl_seconds: int | None = None,
        extra_claims: dict[str, Any] | None = None,
    ) -> tuple[str, int]:
        """Create a signed JWT for ``subject`` in ``domain``.

        Parameters
        ----------
        subject:
            Account identifier embedded in the ``sub`` claim.
        domain:
            Signing domain; selects the secret and default TTL.
        ttl_seconds:
            Lifetime override. Expiry is fixed here from the server clock.
        extra_claims:
            Additional claims. Reserved claims cannot be overridden.

        Returns
        -------
        tuple[str, int]
            The encoded token and its TTL in seconds.
        """

        signing = self._domains[domain]
        expires_in = signing.ttl_seconds if ttl_seconds is None else ttl_seconds
        now = int(self._clock().timestamp())
        payload: dict[str, Any] = dict(extra_claims or {})
        payload.update(
            {
                "iss": self._issuer,
                "sub": subject,
                "typ": domain.value,
                "iat": now,
                "exp": now + expires_in,
                "jti": secrets.token_hex(8),
            }
        )
        return jwt.encode(payload, signing.secret, algorithm=_ALGORITHM), expires_in

    def verify(self, token: str, domain: TokenDomain) -> TokenVerification:
        """Verify signature, issuer, expiry and domain of ``token``.

        Never raises; expired tokens are only reported as ``expired`` once the
        signature has been checked, so a forged token cannot pose as stale.
        """

        signing = self._domains[domain]
        try:
            claims = jwt.decode(
                token,
                signing.secret,
                algorithms=[_ALGORITHM],
                issuer=self._issuer,
                options={"require": ["exp", "iat", "sub", "typ"]},
            )
        except jwt.ExpiredSignatureError:
            return TokenVerification(TokenStatus.expired)
        except jwt.InvalidSignatureError:
            return TokenVerification(TokenStatus.invalid)
        except jwt.DecodeError:
            return TokenVerification(TokenStatus.malformed)
        except jwt.InvalidTokenError as exc:
            logger.debug("token rejected in %s domain: %s", domain.value, exc)
            return TokenVerification(TokenStatus.invalid)

        if claims.get("typ") != domain.value:
            return TokenVerification(TokenStatus.invalid)
        return TokenVerification(TokenStatus.valid, claims)

    def issue_pair(self, subject: str) -> TokenPair:
        access_token, access_ttl = self.issue(subject, TokenDomain.access)
        refresh_token, refresh_ttl = self.issue(subject, TokenDomain.refresh)
        return TokenPair(
            access_token=access_token,
            access_expires_in=access_ttl,
            refresh_token=refresh_token,
            refresh_expires_in=refresh_ttl,
        )

    def issue_purpose_token(self, subject: str, purpose: TokenPurpose) -> str:
        token, _ = self.issue(
            subject,
            TokenDomain.purpose,
            ttl_seconds=self._purpose_ttls[purpose],
            extra_claims={"purpose": purpose.value},
        )
        return token

    def verify_purpose(self, token: str, purpose: TokenPurpose) -> TokenVerification:
        """Verify a single-purpose token and require its ``purpose`` claim to match."""
        result = self.verify(token, TokenDomain.purpose)
        if result.ok and result.claims.get("purpose") != purpose.value:
            return TokenVerification(TokenStatus.invalid)
        return result
