"""Database repository for account credentials and verification state."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Callable, TypeVar

import psycopg
from psycopg import Connection
from psycopg.errors import UniqueViolation
from psycopg.rows import tuple_row
from psycopg.types.json import Json
from psycopg_pool import ConnectionPool, PoolTimeout

from .domain.account import Account, Role
from .domain.contracts import NewAccountRecord
from .domain.errors import DuplicateIdentityError, StorageUnavailableError
from .domain.lockout import LockoutPolicy, LockoutState, LoginEvent

logger = logging.getLogger(__name__)

T = TypeVar("T")

_COLUMNS = """
    account_id::text, email, phone, password_hash, role, profile, is_active,
    email_verified, phone_verified, login_attempts, lock_until, last_login,
    verification_code, verification_code_expires, created_at, updated_at
"""

_TRANSIENT_ERRORS = (psycopg.OperationalError, PoolTimeout)


class AccountRepository:
    """Postgres-backed credential store.

    Every mutation commits as one statement or one row-locked transaction
    scoped to the account's primary key, so concurrent logins cannot lose
    increments and an aborted request never leaves a half-applied change behind.
    """

    def __init__(self, pool: ConnectionPool, *, retry_attempts: int = 1) -> None:
        """Store the connection pool and the transient-error retry budget."""
        self._pool = pool
        self._retry_attempts = max(0, retry_attempts)

    def _run(self, operation: str, work: Callable[[Connection], T], *, idempotent: bool = True) -> T:
        """Run ``work`` on a pooled connection, retrying connectivity failures only.

        Non-idempotent writes are attempted once: a connection lost at commit
        leaves their outcome unknown, and replaying them could apply the change twice.
        """
        attempts = self._retry_attempts + 1 if idempotent else 1
        for attempt in range(1, attempts + 1):
            try:
                with self._pool.connection() as conn:
                    return work(conn)
            except _TRANSIENT_ERRORS as exc:
                if attempt >= attempts:
                    logger.error("credential store unavailable during %s: %s", operation, exc)
                    raise StorageUnavailableError() from exc
                logger.warning(
                    "transient credential store error during %s (attempt %d/%d): %s",
                    operation,
                    attempt,
                    attempts,
                    exc,
                )
        raise StorageUnavailableError()  # pragma: no cover - loop always returns or raises

    def _fetch_one(
        self, operation: str, query: str, params: dict[str, Any], *, idempotent: bool = True
    ) -> Account | None:
        def work(conn: Connection) -> Account | None:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(query, params)
                row = cur.fetchone()
            conn.commit()
            return self._map_record(row) if row else None

        return self._run(operation, work, idempotent=idempotent)

    def find_by_identity(self, *, email: str | None = None, phone: str | None = None) -> Account | None:
        """Return the account whose email or phone matches either identifier."""
        if not email and not phone:
            return None
        return self._fetch_one(
            "find_by_identity",
            f"SELECT {_COLUMNS} FROM accounts WHERE email = %(email)s OR phone = %(phone)s LIMIT 1",
            {"email": email, "phone": phone},
        )

    def find_by_email(self, email: str) -> Account | None:
        return self._fetch_one(
            "find_by_email",
            f"SELECT {_COLUMNS} FROM accounts WHERE email = %(email)s",
            {"email": email},
        )

    def find_by_phone(self, phone: str) -> Account | None:
        return self._fetch_one(
            "find_by_phone",
            f"SELECT {_COLUMNS} FROM accounts WHERE phone = %(phone)s",
            {"phone": phone},
        )

    def get_account(self, account_id: str) -> Account | None:
        """Fetch an account by identifier or return ``None``."""
        try:
            uuid.UUID(account_id)
        except ValueError:
            return None
        return self._fetch_one(
            "get_account",
            f"SELECT {_COLUMNS} FROM accounts WHERE account_id = %(account_id)s",
            {"account_id": account_id},
        )

    def create_account(self, record: NewAccountRecord, *, now: datetime) -> Account:
        """Insert a new account; unique-index conflicts surface as duplicate identity."""

        def work(conn: Connection) -> Account:
            with conn.cursor(row_factory=tuple_row) as cur:
                try:
                    cur.execute(
                        f"""
                        INSERT INTO accounts (
                            account_id, email, phone, password_hash, role, profile,
                            verification_code, verification_code_expires, created_at, updated_at
                        )
                        VALUES (
                            %(account_id)s, %(email)s, %(phone)s, %(password_hash)s, %(role)s, %(profile)s,
                            %(code)s, %(code_expires)s, %(now)s, %(now)s
                        )
                        RETURNING {_COLUMNS}
                        """,
                        {
                            "account_id": str(uuid.uuid4()),
                            "email": record.email,
                            "phone": record.phone,
                            "password_hash": record.password_hash,
                            "role": record.role.value,
                            "profile": Json(record.profile),
                            "code": record.verification_code,
                            "code_expires": record.verification_code_expires,
                            "now": now,
                        },
                    )
                except UniqueViolation as exc:
                    conn.rollback()
                    raise DuplicateIdentityError() from exc
                row = cur.fetchone()
            conn.commit()
            return self._map_record(row)

        return self._run("create_account", work, idempotent=False)

    def _apply_login_event(
        self, account_id: str, event: LoginEvent, *, now: datetime, policy: LockoutPolicy
    ) -> Account | None:
        """Run ``policy.apply`` against the row while holding its lock.

        ``SELECT ... FOR UPDATE`` serialises concurrent logins for the same
        account, so the read, the transition and the write commit together and
        no increment is lost.
        """

        def work(conn: Connection) -> Account | None:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    """
                    SELECT login_attempts, lock_until, last_login
                    FROM accounts
                    WHERE account_id = %(account_id)s
                    FOR UPDATE
                    """,
                    {"account_id": account_id},
                )
                current = cur.fetchone()
                if current is None:
                    conn.rollback()
                    return None
                state = policy.apply(LockoutState(*current), event, now)
                cur.execute(
                    f"""
                    UPDATE accounts
                    SET login_attempts = %(login_attempts)s,
                        lock_until = %(lock_until)s,
                        last_login = %(last_login)s,
                        updated_at = %(now)s
                    WHERE account_id = %(account_id)s
                    RETURNING {_COLUMNS}
                    """,
                    {
                        "account_id": account_id,
                        "login_attempts": state.login_attempts,
                        "lock_until": state.lock_until,
                        "last_login": state.last_login,
                        "now": now,
                    },
                )
                row = cur.fetchone()
            conn.commit()
            return self._map_record(row) if row else None

        return self._run(f"record_login_{event.value}", work, idempotent=event is LoginEvent.success)

    def record_login_failure(self, account_id: str, *, now: datetime, policy: LockoutPolicy) -> Account | None:
        """Count a failed login; reaching ``policy.max_attempts`` sets ``lock_until``.

        A stale lock restarts the count at 1 instead of continuing from the threshold.
        """
        return self._apply_login_event(account_id, LoginEvent.failure, now=now, policy=policy)

    def record_login_success(self, account_id: str, *, now: datetime, policy: LockoutPolicy) -> Account | None:
        return self._apply_login_event(account_id, LoginEvent.success, now=now, policy=policy)

    def mark_email_verified(self, account_id: str, *, now: datetime) -> Account | None:
        return self._fetch_one(
            "mark_email_verified",
            f"""
            UPDATE accounts
            SET email_verified = TRUE, updated_at = %(now)s
            WHERE account_id = %(account_id)s
            RETURNING {_COLUMNS}
            """,
            {"account_id": account_id, "now": now},
        )

    def store_phone_challenge(
        self, account_id: str, *, code: str, expires_at: datetime, now: datetime
    ) -> Account | None:
        return self._fetch_one(
            "store_phone_challenge",
            f"""
            UPDATE accounts
            SET verification_code = %(code)s, verification_code_expires = %(expires_at)s, updated_at = %(now)s
            WHERE account_id = %(account_id)s AND phone_verified = FALSE
            RETURNING {_COLUMNS}
            """,
            {"account_id": account_id, "code": code, "expires_at": expires_at, "now": now},
        )

    def redeem_phone_code(self, account_id: str, *, code: str, now: datetime) -> Account | None:
        """Consume a matching, unexpired phone challenge. ``None`` if it no longer applies."""
        return self._fetch_one(
            "redeem_phone_code",
            f"""
            UPDATE accounts
            SET phone_verified = TRUE,
                verification_code = NULL,
                verification_code_expires = NULL,
                updated_at = %(now)s
            WHERE account_id = %(account_id)s
              AND verification_code = %(code)s
              AND verification_code_expires > %(now)s
            RETURNING {_COLUMNS}
            """,
            {"account_id": account_id, "code": code, "now": now},
            idempotent=False,
        )

    def set_password_hash(self, account_id: str, *, password_hash: str, now: datetime) -> Account | None:
        return self._fetch_one(
            "set_password_hash",
            f"""
            UPDATE accounts
            SET password_hash = %(password_hash)s, updated_at = %(now)s
            WHERE account_id = %(account_id)s
            RETURNING {_COLUMNS}
            """,
            {"account_id": account_id, "password_hash": password_hash, "now": now},
        )

    def set_role(self, account_id: str, *, role: Role, now: datetime) -> Account | None:
        return self._fetch_one(
            "set_role",
            f"""
            UPDATE accounts
            SET role = %(role)s, updated_at = %(now)s
            WHERE account_id = %(account_id)s
            RETURNING {_COLUMNS}
            """,
            {"account_id": account_id, "role": role.value, "now": now},
        )

    def update_profile(self, account_id: str, *, changes: dict[str, Any], now: datetime) -> Account | None:
        """Merge ``changes`` into the stored profile; keys not present are kept."""
        return self._fetch_one(
            "update_profile",
            f"""
            UPDATE accounts
            SET profile = COALESCE(profile, '{{}}'::jsonb) || %(changes)s, updated_at = %(now)s
            WHERE account_id = %(account_id)s
            RETURNING {_COLUMNS}
            """,
            {"account_id": account_id, "changes": Json(changes), "now": now},
        )

    def deactivate(self, account_id: str, *, now: datetime) -> Account | None:
        return self._fetch_one(
            "deactivate",
            f"""
            UPDATE accounts
            SET is_active = FALSE, updated_at = %(now)s
            WHERE account_id = %(account_id)s
            RETURNING {_COLUMNS}
            """,
            {"account_id": account_id, "now": now},
        )

    def _map_record(self, row: tuple) -> Account:
        """Convert a raw database tuple into the domain ``Account`` dataclass."""
        return Account(
            account_id=row[0],
            email=row[1],
            phone=row[2],
            password_hash=row[3],
            role=Role(row[4]),
            profile=row[5] or {},
            is_active=row[6],
            email_verified=row[7],
            phone_verified=row[8],
            login_attempts=row[9],
            lock_until=row[10],
            last_login=row[11],
            verification_code=row[12],
            verification_code_expires=row[13],
            created_at=row[14],
            updated_at=row[15],
        )
