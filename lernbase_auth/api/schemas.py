"""Request and response models for the HTTP surface.

Field names on the wire are camelCase; the Python attributes stay snake_case.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

from ..domain.account import Account, Role, SELF_REGISTERABLE_ROLES
from ..domain.identity import normalize_email, normalize_phone, password_problems
from ..security.tokens import TokenPair


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _strong_password(value: str) -> str:
    problems = password_problems(value)
    if problems:
        raise ValueError("; ".join(problems))
    return value


def _stripped(value: Any) -> Any:
    return value.strip() if isinstance(value, str) else value


def _nigerian_phone(value: str) -> str:
    normalized = normalize_phone(value)
    if normalized is None:
        raise ValueError("Please enter a valid Nigerian phone number")
    return normalized


class Envelope(BaseModel):
    """Uniform response wrapper shared by every route."""

    success: bool = True
    message: str
    data: dict[str, Any] | None = None

    @classmethod
    def ok(cls, message: str, data: dict[str, Any] | None = None) -> "Envelope":
        """Successful envelope; ``data`` is omitted from the body when not given."""
        if data is None:
            return cls(success=True, message=message)
        return cls(success=True, message=message, data=data)


class Address(_CamelModel):
    street: str | None = None
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    country: str = "Nigeria"


class Profile(_CamelModel):
    first_name: str = Field(..., min_length=2, max_length=50)
    last_name: str = Field(..., min_length=2, max_length=50)
    date_of_birth: date
    gender: Literal["male", "female", "other"]
    address: Address

    @field_validator("first_name", "last_name", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> Any:
        return _stripped(value)


class AddressUpdate(_CamelModel):
    street: str | None = None
    city: str | None = Field(default=None, min_length=1)
    state: str | None = Field(default=None, min_length=1)
    country: str | None = None


class ProfileUpdate(_CamelModel):
    """Partial profile; only the fields present in the request are changed."""

    first_name: str | None = Field(default=None, min_length=2, max_length=50)
    last_name: str | None = Field(default=None, min_length=2, max_length=50)
    date_of_birth: date | None = None
    gender: Literal["male", "female", "other"] | None = None
    address: AddressUpdate | None = None

    @field_validator("first_name", "last_name", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> Any:
        return _stripped(value)


class ProfileUpdateRequest(BaseModel):
    profile: ProfileUpdate = Field(default_factory=ProfileUpdate)

    def changes(self) -> dict[str, Any]:
        """Supplied profile fields in their stored camelCase form."""
        return self.profile.model_dump(mode="json", by_alias=True, exclude_unset=True, exclude_none=True)


class RegisterRequest(_CamelModel):
    email: EmailStr
    phone: str
    password: str
    role: Role
    profile: Profile

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: str) -> str:
        return normalize_email(value)

    @field_validator("phone")
    @classmethod
    def _normalize_phone(cls, value: str) -> str:
        return _nigerian_phone(value)

    @field_validator("password")
    @classmethod
    def _check_password(cls, value: str) -> str:
        return _strong_password(value)

    @field_validator("role")
    @classmethod
    def _check_role(cls, value: Role) -> Role:
        if value not in SELF_REGISTERABLE_ROLES:
            raise ValueError("Invalid role selected")
        return value


class LoginRequest(_CamelModel):
    email_or_phone: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class RefreshRequest(_CamelModel):
    refresh_token: str | None = None


class VerifyEmailRequest(BaseModel):
    token: str = Field(..., min_length=1)


class VerifyPhoneRequest(BaseModel):
    phone: str = Field(..., min_length=1)
    code: str = Field(..., min_length=1, max_length=12)


class ResendPhoneCodeRequest(BaseModel):
    phone: str = Field(..., min_length=1)


class ForgotPasswordRequest(BaseModel):
    email: str = Field(..., min_length=1)


class ResetPasswordRequest(BaseModel):
    token: str = Field(..., min_length=1)
    password: str

    @field_validator("password")
    @classmethod
    def _check_password(cls, value: str) -> str:
        return _strong_password(value)


class RoleUpdateRequest(BaseModel):
    role: Role


class UserView(_CamelModel):
    """Outward representation of an account; credential and lockout fields are never included."""

    id: str
    email: str
    phone: str
    role: Role
    profile: dict[str, Any]
    is_verified: bool
    email_verified: bool
    phone_verified: bool
    created_at: str
    updated_at: str

    @classmethod
    def from_domain(cls, account: Account) -> "UserView":
        """Build a response model from the domain aggregate."""
        return cls(
            id=account.account_id,
            email=account.email,
            phone=account.phone,
            role=account.role,
            profile=account.profile,
            is_verified=account.is_verified,
            email_verified=account.email_verified,
            phone_verified=account.phone_verified,
            created_at=account.created_at.isoformat(),
            updated_at=account.updated_at.isoformat(),
        )

    def dump(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class TokenView(_CamelModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    refresh_expires_in: int

    @classmethod
    def from_pair(cls, pair: TokenPair) -> "TokenView":
        return cls(
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            expires_in=pair.access_expires_in,
            refresh_expires_in=pair.refresh_expires_in,
        )

    def dump(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)
