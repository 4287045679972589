"""FastAPI application wiring for the authentication service."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import timedelta
import logging

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from psycopg_pool import ConnectionPool
import uvicorn

from .api.error_handling import register_exception_handlers
from .api.routes import router as auth_router
from .api.users import router as users_router
from .config import Settings, get_settings
from .delivery.messaging import DeliveryService, build_delivery_service
from .domain.clock import Clock, utc_now
from .domain.lockout import LockoutPolicy
from .domain.service import AuthService
from .domain.verification import VerificationService
from .repository import AccountRepository
from .security.authentication import RequestAuthenticator
from .security.passwords import PasswordHasher
from .security.tokens import TokenService

logger = logging.getLogger(__name__)

settings = get_settings()


def attach_services(
    app: FastAPI,
    repository: AccountRepository,
    *,
    settings: Settings,
    delivery: DeliveryService,
    clock: Clock = utc_now,
    token_clock: Clock | None = None,
) -> None:
    """Build the credential components once and publish them on ``app.state``."""
    tokens = TokenService(settings, clock=token_clock or clock)
    hasher = PasswordHasher(rounds=settings.bcrypt_rounds)
    lockout = LockoutPolicy(
        max_attempts=settings.max_login_attempts,
        lock_duration=timedelta(seconds=settings.lockout_seconds),
    )
    verification = VerificationService(
        repository,
        tokens=tokens,
        hasher=hasher,
        delivery=delivery,
        settings=settings,
        clock=clock,
    )
    app.state.verification_service = verification
    app.state.auth_service = AuthService(
        repository,
        tokens=tokens,
        hasher=hasher,
        lockout=lockout,
        verification=verification,
        clock=clock,
    )
    app.state.authenticator = RequestAuthenticator(repository, tokens=tokens, lockout=lockout, clock=clock)


def include_routers(app: FastAPI, prefix: str) -> None:
    register_exception_handlers(app)
    app.include_router(auth_router, prefix=prefix)
    app.include_router(users_router, prefix=prefix)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialise shared resources (Postgres pool, services) for the app lifecycle."""
    pool = ConnectionPool(settings.database_url, open=False)
    pool.open()
    app.state.pool = pool
    attach_services(
        app,
        AccountRepository(pool, retry_attempts=settings.storage_retry_attempts),
        settings=settings,
        delivery=build_delivery_service(settings),
    )
    logger.info("%s %s started", settings.app_name, settings.version)
    try:
        yield
    finally:
        pool.close()
        pool.wait_close()


app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=600,
)


@app.get("/healthz", tags=["health"])
def healthz() -> dict[str, str]:
    """Return a minimal readiness indicator used by orchestration systems."""
    return {"status": "ok"}


include_routers(app, settings.api_prefix)


@app.get("/metrics", tags=["health"])
def metrics() -> Response:
    """Expose Prometheus metrics for scrapes."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


def main() -> None:
    """Serve the application with uvicorn on the configured host and port."""
    uvicorn.run(app, host=settings.http_host, port=settings.http_port)


if __name__ == "__main__":
    main()
