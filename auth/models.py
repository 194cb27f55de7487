"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Stores and the
pipeline do the work; these types own the shape.

Layer rule: no imports from votes/ or content/.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Optional


@dataclass
class CredentialRecord:
    """Stored representation of a user's password.

    algorithm selects the HashStrategy used to verify it, so records written
    by different strategies can live side by side during a migration.

    salt / iterations are only set by strategies that keep their parameters
    outside the hash (pbkdf2_sha256). Self-contained formats (argon2id,
    bcrypt) embed them in `hash` and leave these None.
    """

    algorithm: str
    hash: str
    salt: Optional[str] = None  # base64
    iterations: Optional[int] = None

    def to_doc(self) -> dict:
        return {k: v for k, v in asdict(self).items() if v is not None}

    @classmethod
    def from_doc(cls, doc: Optional[dict]) -> Optional["CredentialRecord"]:
        if not doc or "algorithm" not in doc or "hash" not in doc:
            return None
        return cls(
            algorithm=doc["algorithm"],
            hash=doc["hash"],
            salt=doc.get("salt"),
            iterations=doc.get("iterations"),
        )


@dataclass
class User:
    """Public view of a user. Never carries credential material.

    id is uuid5(NAMESPACE_URL, username): registering the same username
    always derives the same id.
    """

    id: str
    username: str
    image: Optional[str] = None
    description: str = ""

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_doc(cls, doc: dict) -> "User":
        return cls(
            id=doc["id"],
            username=doc["username"],
            image=doc.get("image"),
            description=doc.get("description", ""),
        )
