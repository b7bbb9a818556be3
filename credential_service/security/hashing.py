"""bcrypt-backed password hashing."""

from __future__ import annotations

import base64
import hashlib
from threading import Lock

import bcrypt

# bcrypt only consumes the first 72 bytes of its input.
_BCRYPT_MAX_BYTES = 72


class BcryptSecretHasher:
    """One-way password hashing with a per-call salt."""

    def __init__(self, rounds: int = 12) -> None:
        self._rounds = rounds
        self._dummy_hash: bytes | None = None
        self._lock = Lock()

    def hash(self, password: str) -> str:
        """Hash a password for storage."""
        digest = bcrypt.hashpw(_prepare(password), bcrypt.gensalt(rounds=self._rounds))
        return digest.decode("ascii")

    def verify(self, password: str, password_hash: str) -> bool:
        """Verify a password against its hash."""
        try:
            return bcrypt.checkpw(_prepare(password), password_hash.encode("ascii"))
        except ValueError:
            # malformed stored hash
            return False

    def verify_dummy(self, password: str) -> bool:
        """Run a full bcrypt comparison against a throwaway hash; always ``False``."""
        bcrypt.checkpw(_prepare(password), self._get_dummy_hash())
        return False

    def _get_dummy_hash(self) -> bytes:
        with self._lock:
            if self._dummy_hash is None:
                self._dummy_hash = bcrypt.hashpw(b"dummy-password", bcrypt.gensalt(rounds=self._rounds))
            return self._dummy_hash


def _prepare(password: str) -> bytes:
    """Encode a password, pre-hashing inputs that bcrypt would silently truncate."""
    raw = password.encode("utf-8")
    if len(raw) <= _BCRYPT_MAX_BYTES:
        return raw
    return base64.b64encode(hashlib.sha256(raw).digest())
