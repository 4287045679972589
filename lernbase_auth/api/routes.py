"""HTTP route definitions for the authentication endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Request, status

from ..config import get_settings
from ..domain.account import Principal
from ..domain.contracts import RegisterAccountInput
from ..domain.errors import RateLimitedError
from ..domain.service import AuthService
from ..domain.verification import VerificationService
from ..security.rate_limiter import SlidingWindowRateLimiter
from ..security.redis_rate_limiter import RedisSlidingWindowRateLimiter
from .dependencies import (
    current_principal,
    get_auth_service,
    get_verification_service,
    optional_principal,
)
from .schemas import (
    Envelope,
    ForgotPasswordRequest,
    LoginRequest,
    RefreshRequest,
    RegisterRequest,
    ResendPhoneCodeRequest,
    ResetPasswordRequest,
    TokenView,
    UserView,
    VerifyEmailRequest,
    VerifyPhoneRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

FORGOT_PASSWORD_MESSAGE = "If an account with that email exists, a password reset link has been sent"
RESEND_CODE_MESSAGE = "If that phone number is awaiting verification, a new code has been sent"

settings = get_settings()


def _build_rate_limiter() -> SlidingWindowRateLimiter | RedisSlidingWindowRateLimiter:
    """Instantiate the configured rate limiter backend, preferring Redis when available."""
    if settings.rate_limit_backend == "redis" and settings.redis_url:
        try:
            import redis

            client = redis.from_url(settings.redis_url)
            # ensure connectivity early to fail fast and fall back
            client.ping()
            logger.info("rate limiter configured for redis backend at %s", settings.redis_url)
            return RedisSlidingWindowRateLimiter(
                client,
                max_requests=settings.rate_limit_requests,
                window_seconds=settings.rate_limit_window_seconds,
            )
        except Exception as exc:  # pragma: no cover - depends on a live redis
            logger.warning("redis rate limiter unavailable, falling back to in-memory: %s", exc)

    logger.info("rate limiter using in-memory backend")
    return SlidingWindowRateLimiter(
        max_requests=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )


rate_limiter = _build_rate_limiter()


def _enforce_rate_limit(action: str, request: Request) -> None:
    client = request.client.host if request.client else "unknown"
    key = f"{action}:{client}"
    if not rate_limiter.allow(key):
        logger.warning("rate limit exceeded for %s from %s", action, client)
        raise RateLimitedError(rate_limiter.retry_after(key))


@router.post(
    "/register",
    response_model=Envelope,
    status_code=status.HTTP_201_CREATED,
    response_model_exclude_unset=True,
)
def register(
    request: Request,
    payload: RegisterRequest,
    background_tasks: BackgroundTasks,
    service: AuthService = Depends(get_auth_service),
    verification: VerificationService = Depends(get_verification_service),
) -> Envelope:
    """Register a pending account and return it with a token pair.

    The verification email and SMS go out after the response is sent.
    """
    _enforce_rate_limit("register", request)
    result = service.register(
        RegisterAccountInput(
            email=payload.email,
            phone=payload.phone,
            password=payload.password,
            role=payload.role,
            profile=payload.profile.model_dump(mode="json", by_alias=True, exclude_none=True),
        )
    )
    background_tasks.add_task(verification.dispatch, result.challenge.deliveries)
    return Envelope.ok(
        message="User registered successfully",
        data={
            "user": UserView.from_domain(result.account).dump(),
            "tokens": TokenView.from_pair(result.tokens).dump(),
        },
    )


@router.post("/login", response_model=Envelope, response_model_exclude_unset=True)
def login(
    request: Request,
    payload: LoginRequest,
    service: AuthService = Depends(get_auth_service),
) -> Envelope:
    _enforce_rate_limit("login", request)
    result = service.login(payload.email_or_phone, payload.password)
    return Envelope.ok(
        message="Login successful",
        data={
            "user": UserView.from_domain(result.account).dump(),
            "tokens": TokenView.from_pair(result.tokens).dump(),
        },
    )


@router.post("/refresh", response_model=Envelope, response_model_exclude_unset=True)
def refresh(
    payload: RefreshRequest,
    service: AuthService = Depends(get_auth_service),
) -> Envelope:
    """Exchange a refresh token for a new access/refresh pair."""
    pair = service.refresh(payload.refresh_token)
    return Envelope.ok("Token refreshed successfully", data={"tokens": TokenView.from_pair(pair).dump()})


@router.post("/logout", response_model=Envelope, response_model_exclude_unset=True)
def logout(
    principal: Principal = Depends(current_principal),
    service: AuthService = Depends(get_auth_service),
) -> Envelope:
    service.logout(principal)
    return Envelope.ok("Logout successful")


@router.get("/me", response_model=Envelope, response_model_exclude_unset=True)
def whoami(principal: Principal | None = Depends(optional_principal)) -> Envelope:
    """Describe the caller; anonymous requests are answered rather than rejected."""
    if principal is None:
        return Envelope.ok("Anonymous", data={"authenticated": False})
    return Envelope.ok(
        message="Authenticated",
        data={
            "authenticated": True,
            "user": {
                "id": principal.account_id,
                "email": principal.email,
                "role": principal.role.value,
                "isVerified": principal.is_verified,
            },
        },
    )


@router.post("/verify-email", response_model=Envelope, response_model_exclude_unset=True)
def verify_email(
    payload: VerifyEmailRequest,
    verification: VerificationService = Depends(get_verification_service),
) -> Envelope:
    account = verification.verify_email(payload.token)
    return Envelope.ok("Email verified successfully", data={"isVerified": account.is_verified})


@router.post("/verify-phone", response_model=Envelope, response_model_exclude_unset=True)
def verify_phone(
    request: Request,
    payload: VerifyPhoneRequest,
    verification: VerificationService = Depends(get_verification_service),
) -> Envelope:
    _enforce_rate_limit("verify-phone", request)
    account = verification.verify_phone(payload.phone, payload.code)
    return Envelope.ok("Phone number verified successfully", data={"isVerified": account.is_verified})


@router.post("/resend-phone-code", response_model=Envelope, response_model_exclude_unset=True)
def resend_phone_code(
    request: Request,
    payload: ResendPhoneCodeRequest,
    background_tasks: BackgroundTasks,
    verification: VerificationService = Depends(get_verification_service),
) -> Envelope:
    _enforce_rate_limit("resend-phone-code", request)
    background_tasks.add_task(verification.dispatch, verification.resend_phone_code(payload.phone))
    return Envelope.ok(RESEND_CODE_MESSAGE)


@router.post("/forgot-password", response_model=Envelope, response_model_exclude_unset=True)
def forgot_password(
    request: Request,
    payload: ForgotPasswordRequest,
    background_tasks: BackgroundTasks,
    verification: VerificationService = Depends(get_verification_service),
) -> Envelope:
    """Always answers the same way so callers cannot learn which emails are registered."""
    _enforce_rate_limit("forgot-password", request)
    background_tasks.add_task(verification.dispatch, verification.request_password_reset(payload.email))
    return Envelope.ok(FORGOT_PASSWORD_MESSAGE)


@router.post("/reset-password", response_model=Envelope, response_model_exclude_unset=True)
def reset_password(
    payload: ResetPasswordRequest,
    verification: VerificationService = Depends(get_verification_service),
) -> Envelope:
    verification.reset_password(payload.token, payload.password)
    return Envelope.ok("Password reset successfully")
