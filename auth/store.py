"""
auth/store.py -- Credential persistence: registration, login, profile fields.

Pattern: Repository over the document store. CredentialStore is the only
component that reads or writes the `credential` field of a user document;
every value it hands back is a stripped User view.

Security:
  Username uniqueness is enforced by a unique index on `username` (and the id
  itself is uuid5(NAMESPACE_URL, username)), so two concurrent registrations
  of the same name cannot both succeed -- there is no check-then-insert.

  login() runs a full verification against a dummy credential when the user
  does not exist, so response time does not reveal which usernames are taken.

  Error messages never echo the password or the stored hash.

Migration:
  A successful login re-hashes the password with the configured scheme when
  the stored record uses a different algorithm or weaker parameters. The new
  CredentialRecord replaces the old one wholesale.

Layer rule: no imports from votes/ or content/.
"""

from __future__ import annotations

import logging
import re
import uuid
from typing import Optional

from auth.hashing import HashingPolicy
from auth.models import CredentialRecord, User
from core.errors import Conflict, InvalidInput, NotFound, Unauthorized, store_boundary
from docstore.models import DocumentNotFound, DuplicateKey, IndexSpec, Patch
from docstore.store import DocumentStore

logger = logging.getLogger("threadboard.auth")

USERS = "users"

USERNAME_RE = re.compile(r"^[0-9A-Za-z]{1,20}$")
MIN_PASSWORD_LENGTH = 6
DESCRIPTION_MAX_LENGTH = 500

USER_INDEXES = [
    IndexSpec("id", ("id",), "unique"),
    IndexSpec("username", ("username",), "unique"),
]


def user_id_for(username: str) -> str:
    """Deterministic id: the same username always maps to the same id."""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, username))


def default_image(username: str) -> str:
    return f"https://robohash.org/{username}"


def _validate_username(username) -> str:
    if not isinstance(username, str) or not USERNAME_RE.match(username):
        raise InvalidInput("Username must be 1-20 letters or digits.")
    return username


def _validate_password(password) -> str:
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise InvalidInput(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    return password


class CredentialStore:
    """Register and authenticate users against the `users` collection.

    Usage:
        creds = CredentialStore(store, HashingPolicy.from_settings(settings))
        user = creds.register("alice", "hunter22")
        same = creds.login("alice", "hunter22")
    """

    def __init__(self, store: DocumentStore, policy: HashingPolicy) -> None:
        self.store = store
        self.policy = policy
        store.register_indexes(USERS, USER_INDEXES)
        # Computed once so the first failed lookup is not measurably faster
        # than later ones.
        self._dummy: CredentialRecord = policy.hash("threadboard_timing_dummy")

    # ------------------------------------------------------------------
    # Registration / login
    # ------------------------------------------------------------------

    def register(self, username: str, password: str) -> User:
        """Create a user. Raises InvalidInput, Conflict or InternalError."""
        _validate_username(username)
        _validate_password(password)
        user_id = user_id_for(username)
        record = self.policy.hash(password)
        fields = {
            "username": username,
            "credential": record.to_doc(),
            "image": default_image(username),
            "description": "",
        }
        with store_boundary("register"):
            try:
                doc = self.store.create(USERS, user_id, fields)
            except DuplicateKey as exc:
                raise Conflict(f"Username {username!r} is already taken.") from exc
        logger.info("Registered user %s (%s) with %s", username, user_id, record.algorithm)
        return User.from_doc(doc)

    def login(self, username: str, password: str) -> User:
        """Verify a username/password pair. Raises NotFound or Unauthorized."""
        if not isinstance(username, str) or not isinstance(password, str):
            raise InvalidInput("Username and password are required.")
        with store_boundary("login"):
            doc = self.store.find_one(USERS, {"username": username})
        if doc is None:
            # Equalize timing -- do NOT return before running a verification.
            self.policy.verify(password, self._dummy)
            raise NotFound("User not found.")

        record = CredentialRecord.from_doc(doc.get("credential"))
        if not self.policy.verify(password, record):
            logger.info("Failed login for %s", username)
            raise Unauthorized("Invalid username or password.")

        if self.policy.needs_rehash(record):
            self._replace_credential(doc["id"], self.policy.hash(password), "rehash")
            logger.info("Migrated credential for %s from %s to %s", username, record.algorithm, self.policy.default)
        return User.from_doc(doc)

    def change_password(self, user_id: str, old_password: str, new_password: str) -> User:
        """Replace the credential after verifying the current password."""
        _validate_password(new_password)
        doc = self._get_doc(user_id)
        if not self.policy.verify(old_password, CredentialRecord.from_doc(doc.get("credential"))):
            raise Unauthorized("Current password is incorrect.")
        self._replace_credential(user_id, self.policy.hash(new_password), "change_password")
        return User.from_doc(doc)

    def _replace_credential(self, user_id: str, record: CredentialRecord, operation: str) -> None:
        with store_boundary(operation):
            try:
                self.store.update(USERS, user_id, Patch().set("credential", record.to_doc()))
            except DocumentNotFound as exc:
                raise NotFound("User not found.") from exc

    # ------------------------------------------------------------------
    # Lookups / profile
    # ------------------------------------------------------------------

    def _get_doc(self, user_id: str) -> dict:
        with store_boundary("get_user"):
            doc = self.store.get(USERS, user_id)
        if doc is None:
            raise NotFound("User not found.")
        return doc

    def get_user(self, user_id: str) -> User:
        return User.from_doc(self._get_doc(user_id))

    def exists(self, user_id: str) -> bool:
        with store_boundary("user_exists"):
            return self.store.has(USERS, user_id)

    def get_by_username(self, username: str) -> Optional[User]:
        with store_boundary("get_by_username"):
            doc = self.store.find_one(USERS, {"username": username})
        return User.from_doc(doc) if doc else None

    def update_profile(self, user_id: str, image: Optional[str] = None, description: Optional[str] = None) -> User:
        """Set image and/or description, leaving every other field untouched."""
        patch = Patch()
        if image is not None:
            if not isinstance(image, str):
                raise InvalidInput("image must be a string.")
            patch.set("image", image)
        if description is not None:
            if not isinstance(description, str) or len(description) > DESCRIPTION_MAX_LENGTH:
                raise InvalidInput(f"description must be a string of at most {DESCRIPTION_MAX_LENGTH} characters.")
            patch.set("description", description)
        if patch.is_empty():
            return self.get_user(user_id)
        with store_boundary("update_profile"):
            try:
                doc = self.store.update(USERS, user_id, patch)
            except DocumentNotFound as exc:
                raise NotFound("User not found.") from exc
        return User.from_doc(doc)
