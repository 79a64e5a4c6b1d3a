"""
auth/passwords.py -- bcrypt password hashing.

bcrypt only looks at the first 72 bytes of a password, and bcrypt 5 refuses
longer inputs outright. hash() rejects them with a ValidationError; compare()
treats them as a mismatch since no stored hash can have come from one.

A malformed stored hash is data corruption, not bad input, so compare()
raises ServerError instead of returning False.
"""

from __future__ import annotations

import logging

import bcrypt

from auth.errors import ServerError, ValidationError

logger = logging.getLogger("forcemap.auth")

BCRYPT_MAX_BYTES = 72

_DUMMY_PASSWORD = "forcemap_timing_dummy"


class PasswordHasher:
    """Salted one-way hashing and constant-time verification.

    Usage:
        hasher = PasswordHasher(rounds=12)
        stored = hasher.hash("S3cret!pass")
        hasher.compare("S3cret!pass", stored)  # True
    """

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds
        # Placeholder for timing equalization. Computed once here so the
        # first unknown-identifier login is not measurably slower than later ones.
        self._dummy_hash = self.hash(_DUMMY_PASSWORD)

    def hash(self, plain: str) -> str:
        """Return a bcrypt hash of plain. Each call uses a fresh salt."""
        encoded = plain.encode("utf-8")
        if len(encoded) > BCRYPT_MAX_BYTES:
            raise ValidationError(f"Password must be at most {BCRYPT_MAX_BYTES} bytes.")
        return bcrypt.hashpw(encoded, bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def compare(self, plain: str, hashed: str) -> bool:
        """Return True if plain matches hashed.

        Never raises on mismatch. Raises ServerError if hashed is not a valid
        bcrypt hash.
        """
        encoded = plain.encode("utf-8")
        if len(encoded) > BCRYPT_MAX_BYTES:
            # Still spend the bcrypt work so the response time does not
            # reveal that the input was rejected early.
            self.dummy_compare(_DUMMY_PASSWORD)
            return False
        try:
            return bcrypt.checkpw(encoded, hashed.encode("utf-8"))
        except ValueError as exc:
            logger.error("Stored password hash is malformed")
            raise ServerError(cause=exc) from exc

    def dummy_compare(self, plain: str) -> None:
        """Run a full bcrypt comparison against the placeholder hash and discard the result."""
        encoded = plain.encode("utf-8")[:BCRYPT_MAX_BYTES]
        bcrypt.checkpw(encoded, self._dummy_hash.encode("utf-8"))
