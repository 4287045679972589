"""Typed failures raised by the credential core and mapped to HTTP by the API layer."""

from __future__ import annotations


class AuthError(Exception):
    """Base class for authentication, authorization and storage failures."""

    status_code: int = 500
    message: str = "Authentication failed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.message
        super().__init__(self.message)


class ValidationError(AuthError):
    """Malformed caller input."""

    status_code = 400
    message = "Validation failed"


class DuplicateIdentityError(ValidationError):
    message = "User with this email or phone number already exists"


class AuthenticationError(AuthError):
    """Bad credentials or an unusable bearer token."""

    status_code = 401
    message = "Authentication required"


class InvalidCredentialsError(AuthenticationError):
    message = "Invalid credentials"


class AccountDeactivatedError(AuthenticationError):
    message = "Account is deactivated"


class InvalidTokenError(AuthenticationError):
    """Token failed verification for a reason other than expiry."""

    message = "Invalid token"

    def __init__(self, message: str | None = None, *, reason: str = "invalid") -> None:
        self.reason = reason
        super().__init__(message)


class ExpiredError(AuthError):
    """Marker for expiry failures; the message always names expiry."""

    message = "Credential has expired"


class TokenExpiredError(InvalidTokenError, ExpiredError):
    message = "Token has expired"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message, reason="expired")


class LockedError(AuthError):
    """Account is temporarily locked. Clears itself once the lock window passes."""

    status_code = 423
    message = "Account is temporarily locked due to multiple failed login attempts"

    def __init__(self, retry_after_seconds: int, message: str | None = None) -> None:
        self.retry_after_seconds = max(int(retry_after_seconds), 1)
        super().__init__(message)


class AuthorizationError(AuthError):
    status_code = 403
    message = "Insufficient permissions"


class NotFoundError(AuthError):
    """Record lookup failed.

    At the authentication boundary this is reported as ``AuthenticationError``
    so callers cannot tell which identifiers exist.
    """

    status_code = 404
    message = "User not found"


class VerificationError(ValidationError):
    """Verification token or code rejected."""

    message = "Invalid verification token"


class VerificationExpiredError(VerificationError, ExpiredError):
    message = "Verification code has expired"


class RateLimitedError(AuthError):
    status_code = 429
    message = "Too many requests, please try again later"

    def __init__(self, retry_after_seconds: int = 0, message: str | None = None) -> None:
        self.retry_after_seconds = max(int(retry_after_seconds), 0)
        super().__init__(message)


class StorageUnavailableError(AuthError):
    """Credential store unreachable after the bounded retry."""

    status_code = 503
    message = "Service temporarily unavailable"
