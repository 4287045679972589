"""Account routes guarded by the role and ownership policies."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from ..domain.account import Principal, Role
from ..domain.service import AuthService
from .dependencies import current_principal, get_auth_service, require_owner, require_roles
from .schemas import Envelope, ProfileUpdateRequest, RoleUpdateRequest, UserView

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/profile", response_model=Envelope, response_model_exclude_unset=True)
def get_profile(
    principal: Principal = Depends(current_principal),
    service: AuthService = Depends(get_auth_service),
) -> Envelope:
    account = service.get_account(principal.account_id)
    return Envelope.ok("Profile retrieved", data={"user": UserView.from_domain(account).dump()})


@router.put("/profile", response_model=Envelope, response_model_exclude_unset=True)
def update_profile(
    payload: ProfileUpdateRequest,
    principal: Principal = Depends(current_principal),
    service: AuthService = Depends(get_auth_service),
) -> Envelope:
    """Merge the supplied profile fields into the caller's profile."""
    account = service.update_profile(principal, payload.changes())
    return Envelope.ok("Profile updated successfully", data={"user": UserView.from_domain(account).dump()})


@router.delete("/account", response_model=Envelope, response_model_exclude_unset=True)
def delete_account(
    principal: Principal = Depends(current_principal),
    service: AuthService = Depends(get_auth_service),
) -> Envelope:
    """Soft-delete the caller's account."""
    service.deactivate(principal)
    return Envelope.ok("Account deleted successfully")


@router.get("/{user_id}", response_model=Envelope, response_model_exclude_unset=True)
def get_user(
    user_id: str,
    principal: Principal = Depends(require_owner("user_id")),
    service: AuthService = Depends(get_auth_service),
) -> Envelope:
    account = service.get_account(user_id)
    return Envelope.ok("User retrieved", data={"user": UserView.from_domain(account).dump()})


@router.put("/{user_id}/role", response_model=Envelope, response_model_exclude_unset=True)
def update_role(
    user_id: str,
    payload: RoleUpdateRequest,
    principal: Principal = Depends(require_roles(Role.admin)),
    service: AuthService = Depends(get_auth_service),
) -> Envelope:
    account = service.update_role(principal, user_id, payload.role)
    return Envelope.ok("User role updated successfully", data={"user": UserView.from_domain(account).dump()})
