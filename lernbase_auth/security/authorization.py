"""Role and ownership predicates evaluated after authentication succeeds."""

from __future__ import annotations

from collections.abc import Iterable

from ..domain.account import Principal, Role
from ..domain.errors import AuthorizationError


def has_role(principal: Principal, allowed: Iterable[Role]) -> bool:
    return principal.role in set(allowed)


def owns_or_admin(principal: Principal, resource_owner_id: str | None) -> bool:
    if principal.role is Role.admin:
        return True
    return resource_owner_id is not None and principal.account_id == str(resource_owner_id)


def require_role(principal: Principal, allowed: Iterable[Role]) -> Principal:
    if not has_role(principal, allowed):
        raise AuthorizationError()
    return principal


def require_owner_or_admin(principal: Principal, resource_owner_id: str | None) -> Principal:
    if not owns_or_admin(principal, resource_owner_id):
        raise AuthorizationError("Access denied to this resource")
    return principal
