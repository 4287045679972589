"""FastAPI ``Depends()`` helpers: service lookup, authentication gate and authorization.

``current_principal`` is the hard gate (rejects with 401/423);
``optional_principal`` is the soft variant that yields ``None``. Both hand the
route an explicit ``Principal`` parameter instead of mutating the request.
"""

from __future__ import annotations

from typing import Callable

from fastapi import Depends, Header, Request

from ..domain.account import Principal, Role
from ..domain.service import AuthService
from ..domain.verification import VerificationService
from ..security.authentication import RequestAuthenticator
from ..security.authorization import require_owner_or_admin, require_role


def get_auth_service(request: Request) -> AuthService:
    """Resolve the `AuthService` stored on the FastAPI application state."""
    service: AuthService = request.app.state.auth_service
    return service


def get_verification_service(request: Request) -> VerificationService:
    service: VerificationService = request.app.state.verification_service
    return service


def get_authenticator(request: Request) -> RequestAuthenticator:
    authenticator: RequestAuthenticator = request.app.state.authenticator
    return authenticator


def current_principal(
    authorization: str | None = Header(default=None),
    authenticator: RequestAuthenticator = Depends(get_authenticator),
) -> Principal:
    return authenticator.authenticate(authorization)


def optional_principal(
    authorization: str | None = Header(default=None),
    authenticator: RequestAuthenticator = Depends(get_authenticator),
) -> Principal | None:
    return authenticator.try_authenticate(authorization)


def require_roles(*roles: Role) -> Callable[..., Principal]:
    """Build a dependency admitting only principals whose role is in ``roles``."""
    allowed = frozenset(roles)

    def dependency(principal: Principal = Depends(current_principal)) -> Principal:
        return require_role(principal, allowed)

    return dependency


def require_owner(field: str = "user_id") -> Callable[..., object]:
    """Build a dependency admitting admins or the principal whose id matches ``field``.

    ``field`` is looked up in the path parameters first, then in a JSON body.
    """

    async def dependency(request: Request, principal: Principal = Depends(current_principal)) -> Principal:
        owner_id = request.path_params.get(field)
        if owner_id is None and request.headers.get("content-type", "").startswith("application/json"):
            try:
                body = await request.json()
            except ValueError:
                body = None
            if isinstance(body, dict):
                owner_id = body.get(field)
        return require_owner_or_admin(principal, owner_id)

    return dependency
