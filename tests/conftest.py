"""
tests/conftest.py -- Shared test fixtures for Threadboard tests.

This module provides:
  - settings: a Settings instance built from explicit values (no .env lookup)
  - fast_policy: a HashingPolicy with minimum cost parameters so tests stay fast
  - store: an empty in-memory DocumentStore
  - ctx: a started ServiceContext over its own in-memory store
  - register_user: helper fixture returning (user, token) for a new account

Design: plain sqlite:///:memory: is enough here because every call runs on the
test thread. SQLAlchemy keeps one connection per thread for memory databases,
so the schema and rows survive between store calls within a test.

SECRET_KEY and DATABASE_URL are exported before any project import so code
that calls get_settings() (the CLI) can build Settings without a .env file.
"""

from __future__ import annotations

import itertools
import os
from collections.abc import Callable, Generator

os.environ.setdefault("SECRET_KEY", "test-secret-key-that-is-long-enough-for-hs256")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest
from argon2 import PasswordHasher

from auth.hashing import Argon2Memory, Bcrypt, HashingPolicy, InsecurePlaintext, SaltedPbkdf2
from auth.models import User
from core.config import Settings
from core.service import ServiceContext
from docstore.store import DocumentStore

TEST_SECRET = "test-secret-key-that-is-long-enough-for-hs256"


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        secret_key=TEST_SECRET,
        database_url="sqlite:///:memory:",
        password_scheme="argon2id",
        pbkdf2_iterations=1_000,
        page_size_max=20,
    )


@pytest.fixture
def fast_policy() -> HashingPolicy:
    """Every strategy at its cheapest legal parameters. Default: argon2id."""
    return HashingPolicy(
        [
            Argon2Memory(PasswordHasher(time_cost=1, memory_cost=8, parallelism=1)),
            SaltedPbkdf2(iterations=1_000),
            Bcrypt(rounds=4),
            InsecurePlaintext(allow_hashing=True),
        ],
        default="argon2id",
    )


@pytest.fixture
def store() -> Generator[DocumentStore, None, None]:
    s = DocumentStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def ctx(settings: Settings, fast_policy: HashingPolicy) -> Generator[ServiceContext, None, None]:
    context = ServiceContext(settings, policy=fast_policy).init()
    yield context
    context.shutdown()


@pytest.fixture
def register_user(ctx: ServiceContext) -> Callable[..., tuple[User, str]]:
    """Return a helper that registers a user and issues a token for them."""

    def _register(username: str = "alice", password: str = "hunter22") -> tuple[User, str]:
        user = ctx.credentials.register(username, password)
        return user, ctx.tokens.issue(user.id)

    return _register


@pytest.fixture
def clock() -> Callable[[], int]:
    """Strictly increasing fake epoch-millisecond clock."""
    counter = itertools.count(1_700_000_000_000, 1_000)
    return lambda: next(counter)
