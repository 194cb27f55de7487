"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Threadboard happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() or
receive a Settings instance from the ServiceContext instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. A missing signing secret or store URL is a
      hard startup failure -- there is no auto-generated fallback key.

Security notes:
  SECRET_KEY shorter than 32 chars is rejected outright. JWT signing relies on
  key entropy -- a short key weakens every issued token.

Layer rule: core/ is the kernel. This module may not import from auth/,
docstore/, votes/ or content/.
"""

import logging
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("threadboard.config")

PASSWORD_SCHEMES = ("argon2id", "pbkdf2_sha256", "bcrypt", "plaintext")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    Environment variable name mapping: field names are uppercased automatically.
    E.g. `secret_key` reads from SECRET_KEY, `database_url` from DATABASE_URL.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False  # forces DEBUG log level
    log_level: str = "INFO"
    # Empty string is the sentinel for "not configured". The validator below
    # raises, so callers never see "".
    secret_key: str = ""
    database_url: str = ""

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    password_scheme: str = "argon2id"
    # The plaintext scheme is a historical baseline. It can always verify
    # legacy records, but only hashes new ones when this is switched on.
    allow_insecure_hashing: bool = False
    pbkdf2_iterations: int = 600_000

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    # 0 = tokens never expire (matches the deployed behaviour). A warning is
    # logged at startup while this stays at 0.
    token_expire_seconds: int = 0

    # ------------------------------------------------------------------
    # Pagination
    # ------------------------------------------------------------------

    page_size_max: int = 20

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_required(self) -> "Settings":
        """Refuse to build settings without a signing secret or store URL.

        Both values are established once at process start and never reloaded,
        so a missing one must stop the process rather than surface later as a
        confusing runtime failure.
        """
        if not self.secret_key:
            raise ValueError("SECRET_KEY is required. Set SECRET_KEY in your environment or .env file.")
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        if not self.database_url:
            raise ValueError("DATABASE_URL is required. Set DATABASE_URL in your environment or .env file.")
        if self.password_scheme not in PASSWORD_SCHEMES:
            raise ValueError(f"PASSWORD_SCHEME must be one of {', '.join(PASSWORD_SCHEMES)}.")
        if self.password_scheme == "plaintext" and not self.allow_insecure_hashing:
            raise ValueError("PASSWORD_SCHEME=plaintext requires ALLOW_INSECURE_HASHING=true.")
        if self.token_expire_seconds < 0:
            raise ValueError("TOKEN_EXPIRE_SECONDS must be >= 0.")
        if self.page_size_max < 1:
            raise ValueError("PAGE_SIZE_MAX must be >= 1.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables, or build Settings(...) directly.
    """
    return Settings()
