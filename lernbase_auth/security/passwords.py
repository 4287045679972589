"""bcrypt password hashing.

bcrypt is used directly rather than through passlib. Its cost factor comes from
``Settings.bcrypt_rounds`` and ``checkpw`` compares digests in constant time.
Inputs longer than 72 bytes are rejected at the API layer because bcrypt only
reads the first 72.
"""

from __future__ import annotations

import logging

import bcrypt

logger = logging.getLogger(__name__)

MAX_PASSWORD_BYTES = 72


class PasswordHasher:
    """One-way salted hash and verify primitive."""

    def __init__(self, rounds: int = 12) -> None:
        self._rounds = rounds
        self._dummy_hash: str | None = None

    def hash(self, plaintext: str) -> str:
        """Return a bcrypt digest. Failures propagate to the calling operation."""
        salt = bcrypt.gensalt(rounds=self._rounds)
        return bcrypt.hashpw(plaintext.encode("utf-8"), salt).decode("utf-8")

    def verify(self, plaintext: str, digest: str) -> bool:
        """Return ``True`` when ``plaintext`` matches ``digest``; never raises."""
        try:
            return bcrypt.checkpw(plaintext.encode("utf-8"), digest.encode("utf-8"))
        except ValueError:
            logger.warning("password digest could not be parsed")
            return False

    def burn(self, plaintext: str) -> None:
        """Run a verification against a throwaway digest.

        Called when the identity is unknown so the response time does not
        reveal whether the account exists.
        """
        if self._dummy_hash is None:
            self._dummy_hash = self.hash("lernbase-timing-equaliser")
        self.verify(plaintext, self._dummy_hash)
