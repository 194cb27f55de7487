"""
core/service.py -- Process-scoped ServiceContext: build, hold and release.

Pattern: Composition root. init() builds every component from Settings in
dependency order and shutdown() releases the store engine. The only state
shared across calls is what this object holds: the engine (inside the
DocumentStore) and the signing secret (inside the TokenIssuer). Both are fixed
once init() returns and never reloaded.

Startup order matters:
  1. DocumentStore first -- every other component registers its indexes on it.
  2. TokenIssuer -- needs only the secret.
  3. CredentialStore -- computes its timing-equalisation dummy hash.
  4. AuthenticationPipeline and VoteLedger -- depend on the above.

Usage:
    with ServiceContext(get_settings()) as ctx:
        user = ctx.credentials.register("alice", "hunter22")
        token = ctx.tokens.issue(user.id)
"""

from __future__ import annotations

import logging
from typing import Optional

from auth.hashing import HashingPolicy
from auth.pipeline import AuthenticationPipeline
from auth.store import CredentialStore
from auth.tokens import TokenIssuer
from core.config import Settings, get_settings
from docstore.store import DocumentStore
from votes.ledger import VoteLedger

logger = logging.getLogger("threadboard.service")

LOG_FORMAT = "%(asctime)s %(levelname)-5s %(name)s %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: str = "INFO") -> None:
    """Apply the process-wide logging format. Call once from an entry point."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
    )


class ServiceContext:
    """Holds every core component for the lifetime of the process."""

    def __init__(self, settings: Optional[Settings] = None, policy: Optional[HashingPolicy] = None) -> None:
        self.settings = settings or get_settings()
        self._policy = policy
        self.store: Optional[DocumentStore] = None
        self.tokens: Optional[TokenIssuer] = None
        self.credentials: Optional[CredentialStore] = None
        self.auth: Optional[AuthenticationPipeline] = None
        self.votes: Optional[VoteLedger] = None

    @property
    def started(self) -> bool:
        return self.store is not None

    def init(self) -> "ServiceContext":
        if self.started:
            return self
        settings = self.settings
        logger.info("Threadboard starting up")
        self.store = DocumentStore(settings.database_url, page_size_max=settings.page_size_max)
        self.tokens = TokenIssuer(settings.secret_key, expire_seconds=settings.token_expire_seconds)
        if settings.token_expire_seconds == 0:
            logger.warning("TOKEN_EXPIRE_SECONDS=0 -- issued tokens never expire and cannot be revoked")
        policy = self._policy or HashingPolicy.from_settings(settings)
        if policy.default == "plaintext":
            logger.warning("PASSWORD_SCHEME=plaintext -- new passwords are stored WITHOUT hashing")
        self.credentials = CredentialStore(self.store, policy)
        self.auth = AuthenticationPipeline(self.tokens, self.credentials)
        self.votes = VoteLedger(self.store)
        logger.info("Threadboard ready (password scheme %s)", policy.default)
        return self

    def shutdown(self) -> None:
        if self.store is not None:
            self.store.close()
        self.store = self.tokens = self.credentials = self.auth = self.votes = None
        logger.info("Threadboard shutdown complete")

    def __enter__(self) -> "ServiceContext":
        return self.init()

    def __exit__(self, *exc_info) -> None:
        self.shutdown()
