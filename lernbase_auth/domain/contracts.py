"""Domain-level request contracts shared by multiple layers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .account import Role


@dataclass(slots=True)
class RegisterAccountInput:
    """Validated inputs required to register an account.

    ``email`` and ``phone`` arrive already normalised; ``password`` is plaintext
    and only ever handed to the password hasher.
    """

    email: str
    phone: str
    password: str
    role: Role
    profile: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class NewAccountRecord:
    """Row values the credential store persists for a fresh registration."""

    email: str
    phone: str
    password_hash: str
    role: Role
    profile: dict[str, Any]
    verification_code: str | None = None
    verification_code_expires: datetime | None = None
