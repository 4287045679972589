"""Normalisation of the identifiers a user can log in with."""

from __future__ import annotations

import re

# +234 / 234 / 0 prefix, then a 7/8/9 network digit, a 0/1 digit and eight more digits.
_NIGERIAN_PHONE = re.compile(r"^(?:\+234|234|0)?([789][01]\d{8})$")
_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_PASSWORD_SPECIALS = "@$!%*?&"


def normalize_email(email: str) -> str:
    return email.strip().lower()


def normalize_phone(phone: str) -> str | None:
    """Return the E.164 form of a Nigerian mobile number, or ``None`` if it is not one."""
    compact = re.sub(r"[\s\-()]", "", phone)
    match = _NIGERIAN_PHONE.match(compact)
    if not match:
        return None
    return f"+234{match.group(1)}"


def looks_like_email(value: str) -> bool:
    return bool(_EMAIL.match(value.strip()))


def split_identity(email_or_phone: str) -> tuple[str | None, str | None]:
    """Split a login identifier into ``(email, phone)`` lookup keys."""
    value = email_or_phone.strip()
    if looks_like_email(value):
        return normalize_email(value), None
    return None, normalize_phone(value)


def password_problems(password: str) -> list[str]:
    """List the strength rules ``password`` violates; empty when acceptable."""
    problems: list[str] = []
    if len(password) < 8:
        problems.append("Password must be at least 8 characters long")
    if len(password.encode("utf-8")) > 72:
        problems.append("Password must not exceed 72 bytes")
    if not (
        re.search(r"[a-z]", password)
        and re.search(r"[A-Z]", password)
        and re.search(r"\d", password)
        and any(ch in _PASSWORD_SPECIALS for ch in password)
    ):
        problems.append(
            "Password must contain at least one uppercase letter, one lowercase letter, "
            "one number, and one special character"
        )
    return problems


def redact(identifier: str) -> str:
    """Mask an email or phone number for log output."""
    if "@" in identifier:
        local, domain = identifier.split("@", 1)
        return f"{local[:2]}***@{domain}"
    if len(identifier) > 4:
        return f"{identifier[:4]}***{identifier[-2:]}"
    return "***"
