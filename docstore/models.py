"""
docstore/models.py -- Value types and exceptions for the document store.

Pattern: Data class (pure data containers, minimal logic). The store does the
work; these types describe what is asked of it.

Patch replaces runtime flattening of nested update objects. Callers spell out
every dot-path they want to touch, and the store applies exactly those paths,
so a nested assignment never clobbers its siblings:

    Patch().set("profile.bio", "x")         # profile.image survives
    Patch({"profile.bio": "x", "edited": 1})
    Patch().unset("legacy.flag")

Layer rule: docstore/ is the leaf layer. No imports from core/, auth/,
votes/ or content/.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Optional

_PATH_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)*$")
_COLLECTION_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}$")


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class StoreError(Exception):
    """Any failure raised by the document store backend."""


class DuplicateKey(StoreError):
    """The id, or a value covered by a unique index, already exists."""


class DocumentNotFound(StoreError):
    """update() targeted a missing document without upsert."""


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def check_path(path: str) -> str:
    """Return path unchanged if it is a plain dot-path, else raise ValueError.

    Paths end up inside JSON path expressions and index DDL, so only
    identifier segments are accepted.
    """
    if not isinstance(path, str) or not _PATH_RE.match(path):
        raise ValueError(f"Invalid document path: {path!r}")
    return path


def check_collection(name: str) -> str:
    if not isinstance(name, str) or not _COLLECTION_RE.match(name):
        raise ValueError(f"Invalid collection name: {name!r}")
    return name


def json_path(path: str) -> str:
    """Translate a dot-path into a SQLite JSON path ('a.b' -> '$.a.b')."""
    return "$." + check_path(path)


# ---------------------------------------------------------------------------
# Patch
# ---------------------------------------------------------------------------


@dataclass
class Patch:
    """An explicit set of dot-path assignments and removals.

    Values are stored verbatim at their path. A dict value replaces whatever
    was at that path (use it for wholesale replacement, e.g. a credential
    record); to merge, list the leaf paths individually.
    """

    sets: dict[str, Any] = field(default_factory=dict)
    unsets: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        for path in self.sets:
            self._check_writable(path)
        for path in self.unsets:
            self._check_writable(path)

    @staticmethod
    def _check_writable(path: str) -> None:
        check_path(path)
        if path == "id" or path.startswith("id."):
            raise ValueError("The document id cannot be patched.")

    def set(self, path: str, value: Any) -> "Patch":
        self._check_writable(path)
        self.sets[path] = value
        return self

    def unset(self, path: str) -> "Patch":
        self._check_writable(path)
        if path not in self.unsets:
            self.unsets.append(path)
        return self

    def is_empty(self) -> bool:
        return not self.sets and not self.unsets

    def expand(self) -> dict:
        """Build a fresh nested document from the assignments (used by upsert)."""
        doc: dict = {}
        for path, value in self.sets.items():
            node = doc
            *parents, leaf = path.split(".")
            for part in parents:
                child = node.get(part)
                if not isinstance(child, dict):
                    child = {}
                    node[part] = child
                node = child
            node[leaf] = value
        return doc


# ---------------------------------------------------------------------------
# Pagination
# ---------------------------------------------------------------------------


@dataclass
class Cursor:
    """Resume point for descending pagination: items with key < value."""

    key: str
    value: Any = None  # None = start from the top


@dataclass
class Page:
    items: list[dict]
    loaded_all: bool
    next_cursor: Optional[Cursor] = None


# ---------------------------------------------------------------------------
# Indexes
# ---------------------------------------------------------------------------

INDEX_KINDS = ("unique", "equality", "text")


@dataclass(frozen=True)
class IndexSpec:
    """A secondary index a collection needs before its first write.

    kind:
      unique   -- one document per value tuple (store-level uniqueness)
      equality -- plain lookup index
      text     -- field participates in search(); indexed on its lowercase form
    """

    name: str
    fields: tuple[str, ...]
    kind: str = "equality"

    def __post_init__(self) -> None:
        if self.kind not in INDEX_KINDS:
            raise ValueError(f"Unknown index kind: {self.kind!r}")
        if not self.fields:
            raise ValueError("An index needs at least one field.")
        for path in self.fields:
            check_path(path)
        if not re.match(r"^[A-Za-z_][A-Za-z0-9_]*$", self.name):
            raise ValueError(f"Invalid index name: {self.name!r}")
