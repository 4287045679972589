from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class Role(str, Enum):
    student = "student"
    artisan = "artisan"
    employer = "employer"
    admin = "admin"


SELF_REGISTERABLE_ROLES = frozenset({Role.student, Role.artisan, Role.employer})


@dataclass(slots=True)
class Account:
    """Aggregate root for a platform user's credentials and verification state."""

    account_id: str
    email: str
    phone: str
    password_hash: str
    role: Role
    created_at: datetime
    updated_at: datetime
    profile: dict[str, Any] = field(default_factory=dict)
    is_active: bool = True
    email_verified: bool = False
    phone_verified: bool = False
    login_attempts: int = 0
    lock_until: datetime | None = None
    last_login: datetime | None = None
    verification_code: str | None = None
    verification_code_expires: datetime | None = None

    @property
    def is_verified(self) -> bool:
        return self.email_verified and self.phone_verified

    def is_locked(self, now: datetime) -> bool:
        """Return ``True`` while a lock expiry is set and still in the future."""
        return self.lock_until is not None and self.lock_until > now

    @property
    def first_name(self) -> str:
        return str(self.profile.get("firstName") or "")


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated identity handed to route handlers after the request gate."""

    account_id: str
    email: str
    phone: str
    role: Role
    is_verified: bool

    @classmethod
    def from_account(cls, account: Account) -> "Principal":
        return cls(
            account_id=account.account_id,
            email=account.email,
            phone=account.phone,
            role=account.role,
            is_verified=account.is_verified,
        )
