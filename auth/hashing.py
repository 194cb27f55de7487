"""
auth/hashing.py -- Pluggable password hashing strategies.

Password storage changed over the service's life (plaintext, then salted
iterative digests, then memory-hard hashes), so hashing is a strategy chosen
per credential rather than one global algorithm. Every CredentialRecord
carries the tag of the strategy that wrote it; verification dispatches on that
tag, and the configured default only decides how NEW hashes are written.

Strategies:
  plaintext      -- INSECURE historical baseline. Direct constant-time
                    comparison of the stored password. Unsuitable for
                    production: it can only write new records when
                    ALLOW_INSECURE_HASHING=true, and every use is logged.
                    Legacy plaintext records stay verifiable so they can be
                    rehashed on the next successful login.
  pbkdf2_sha256  -- per-user 16-byte random salt + PBKDF2-HMAC-SHA256. Salt
                    and iteration count are stored next to the digest.
  argon2id       -- argon2-cffi encoded hash; salt and cost parameters are
                    embedded in the hash string. Default for new records.
  bcrypt         -- self-contained bcrypt hash (direct bcrypt usage, no
                    passlib wrapper). Kept so older bcrypt records verify.

Layer rule: no imports from docstore/, votes/ or content/.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import secrets
from abc import ABC, abstractmethod
from typing import Optional

import bcrypt
from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError

from core.errors import InvalidInput

from auth.models import CredentialRecord

logger = logging.getLogger("threadboard.auth.hashing")


class HashStrategy(ABC):
    """hash(plaintext) -> CredentialRecord; verify(plaintext, record) -> bool."""

    algorithm: str = ""

    @abstractmethod
    def hash(self, plaintext: str) -> CredentialRecord: ...

    @abstractmethod
    def verify(self, plaintext: str, record: CredentialRecord) -> bool: ...

    def needs_rehash(self, record: CredentialRecord) -> bool:
        """True when record was written with weaker parameters than ours."""
        return False


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


class InsecurePlaintext(HashStrategy):
    """Stores the password as-is. Historical baseline -- never use in production."""

    algorithm = "plaintext"

    def __init__(self, allow_hashing: bool = False) -> None:
        self.allow_hashing = allow_hashing

    def hash(self, plaintext: str) -> CredentialRecord:
        if not self.allow_hashing:
            raise RuntimeError("Plaintext password storage is disabled (set ALLOW_INSECURE_HASHING=true to enable).")
        logger.warning("Storing a password with the INSECURE plaintext strategy")
        return CredentialRecord(algorithm=self.algorithm, hash=plaintext)

    def verify(self, plaintext: str, record: CredentialRecord) -> bool:
        logger.warning("Verifying a legacy plaintext credential")
        return hmac.compare_digest(plaintext.encode("utf-8"), record.hash.encode("utf-8"))

    def needs_rehash(self, record: CredentialRecord) -> bool:
        return record.algorithm != self.algorithm


class SaltedPbkdf2(HashStrategy):
    """Random per-user salt + iterated PBKDF2-HMAC-SHA256."""

    algorithm = "pbkdf2_sha256"
    salt_bytes = 16

    def __init__(self, iterations: int = 600_000) -> None:
        if iterations < 1:
            raise ValueError("iterations must be positive")
        self.iterations = iterations

    @staticmethod
    def _derive(plaintext: str, salt: bytes, iterations: int) -> bytes:
        return hashlib.pbkdf2_hmac("sha256", plaintext.encode("utf-8"), salt, iterations)

    def hash(self, plaintext: str) -> CredentialRecord:
        salt = secrets.token_bytes(self.salt_bytes)
        digest = self._derive(plaintext, salt, self.iterations)
        return CredentialRecord(
            algorithm=self.algorithm,
            hash=base64.b64encode(digest).decode("ascii"),
            salt=base64.b64encode(salt).decode("ascii"),
            iterations=self.iterations,
        )

    def verify(self, plaintext: str, record: CredentialRecord) -> bool:
        if not record.salt or not record.iterations:
            return False
        try:
            salt = base64.b64decode(record.salt)
            expected = base64.b64decode(record.hash)
        except (ValueError, TypeError):
            return False
        return hmac.compare_digest(self._derive(plaintext, salt, record.iterations), expected)

    def needs_rehash(self, record: CredentialRecord) -> bool:
        return (record.iterations or 0) < self.iterations


class Argon2Memory(HashStrategy):
    """Memory-hard argon2id hash with embedded salt and parameters."""

    algorithm = "argon2id"

    def __init__(self, hasher: Optional[PasswordHasher] = None) -> None:
        self._hasher = hasher or PasswordHasher()

    def hash(self, plaintext: str) -> CredentialRecord:
        return CredentialRecord(algorithm=self.algorithm, hash=self._hasher.hash(plaintext))

    def verify(self, plaintext: str, record: CredentialRecord) -> bool:
        try:
            return self._hasher.verify(record.hash, plaintext)
        except (VerificationError, InvalidHashError):
            return False

    def needs_rehash(self, record: CredentialRecord) -> bool:
        try:
            return self._hasher.check_needs_rehash(record.hash)
        except InvalidHashError:
            return True


class Bcrypt(HashStrategy):
    """bcrypt with the cost factor embedded in the hash."""

    algorithm = "bcrypt"

    max_bytes = 72

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds

    def hash(self, plaintext: str) -> CredentialRecord:
        secret = plaintext.encode("utf-8")
        if len(secret) > self.max_bytes:
            raise InvalidInput(f"Password must be at most {self.max_bytes} bytes with the bcrypt scheme.")
        hashed = bcrypt.hashpw(secret, bcrypt.gensalt(rounds=self.rounds))
        return CredentialRecord(algorithm=self.algorithm, hash=hashed.decode("utf-8"))

    def verify(self, plaintext: str, record: CredentialRecord) -> bool:
        try:
            return bcrypt.checkpw(plaintext.encode("utf-8"), record.hash.encode("utf-8"))
        except ValueError:
            return False

    def needs_rehash(self, record: CredentialRecord) -> bool:
        try:
            return int(record.hash.split("$")[2]) < self.rounds
        except (IndexError, ValueError):
            return True


# ---------------------------------------------------------------------------
# Policy -- default strategy for writes, tag dispatch for reads
# ---------------------------------------------------------------------------


class HashingPolicy:
    """Writes with one strategy, verifies with whichever strategy a record names.

    Usage:
        policy = HashingPolicy.from_settings(settings)
        record = policy.hash("s3cret!")
        policy.verify("s3cret!", record)   # True
        policy.needs_rehash(record)        # False while the default is unchanged
    """

    def __init__(self, strategies: list[HashStrategy], default: str) -> None:
        self._strategies = {s.algorithm: s for s in strategies}
        if default not in self._strategies:
            raise ValueError(f"Unknown default password scheme: {default!r}")
        self.default = default

    @classmethod
    def from_settings(cls, settings) -> "HashingPolicy":
        return cls(
            [
                Argon2Memory(),
                SaltedPbkdf2(settings.pbkdf2_iterations),
                Bcrypt(),
                InsecurePlaintext(allow_hashing=settings.allow_insecure_hashing),
            ],
            default=settings.password_scheme,
        )

    def strategy(self, algorithm: str) -> Optional[HashStrategy]:
        return self._strategies.get(algorithm)

    def hash(self, plaintext: str) -> CredentialRecord:
        return self._strategies[self.default].hash(plaintext)

    def verify(self, plaintext: str, record: Optional[CredentialRecord]) -> bool:
        """Dispatch on record.algorithm. Unknown tags fail closed."""
        if record is None:
            return False
        strategy = self._strategies.get(record.algorithm)
        if strategy is None:
            logger.error("Credential uses unknown algorithm %r; refusing to verify", record.algorithm)
            return False
        return strategy.verify(plaintext, record)

    def needs_rehash(self, record: CredentialRecord) -> bool:
        if record.algorithm != self.default:
            return True
        return self._strategies[self.default].needs_rehash(record)
