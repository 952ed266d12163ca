"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for farmvet happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. access_token_secret -> ACCESS_TOKEN_SECRET).

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Dev mode generates missing signing secrets
      with a warning; production mode refuses to start without them.

Security notes:
  [S1] Signing secrets shorter than 32 chars are rejected outright.
  [S2] Access and refresh tokens are signed with distinct secrets. A refresh
       token must never verify as an access token and vice versa, so the two
       secrets are required to differ.
  [S3] Outside debug mode the refresh cookie is always marked Secure.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, cache/, or search/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("farmvet.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'farmvet.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    production-safety rules at startup.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    database_url: str = _DEFAULT_DB_URL
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]

    # ------------------------------------------------------------------
    # Session tokens
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev secret or raises, so callers never see "".
    access_token_secret: str = ""
    refresh_token_secret: str = ""
    access_token_expire_seconds: int = 30 * 60
    refresh_token_expire_seconds: int = 7 * 24 * 3600
    # False keeps the embedded role claims of the presented refresh token.
    # True re-reads memberships from the store on every refresh.
    refresh_reresolve_roles: bool = False

    secure_cookies: bool = False

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    register_rate_limit: str = "20/hour"

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    capability_cache_ttl_seconds: int = 3600
    search_min_query_length: int = 3
    search_min_token_length: int = 2
    search_fuzzy_min_token_length: int = 3
    search_fuzzy_threshold: float = 0.3
    search_default_page_size: int = 20
    search_max_page_size: int = 100
    search_max_page: int = 10_000

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce the signing-secret policy [S1][S2][S3].

        Dev mode (DEBUG=true): auto-generate missing secrets with a warning.
            Sessions will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if either
            secret is missing, and force Secure cookies.
        """
        for name in ("access_token_secret", "refresh_token_secret"):
            value = getattr(self, name)
            if not value:
                if not self.debug:
                    raise ValueError(
                        f"{name.upper()} is required in production mode. "
                        "Set it in your environment or .env file. "
                        "To run in development mode, set DEBUG=true."
                    )
                setattr(self, name, secrets.token_hex(32))
                logger.warning("Using auto-generated %s. Sessions will not persist across restarts.", name.upper())
            elif len(value) < 32:
                raise ValueError(f"{name.upper()} must be at least 32 characters.")
        if self.access_token_secret == self.refresh_token_secret:
            raise ValueError("ACCESS_TOKEN_SECRET and REFRESH_TOKEN_SECRET must differ.")
        if not self.debug:
            self.secure_cookies = True
        if self.search_default_page_size > self.search_max_page_size:
            raise ValueError("SEARCH_DEFAULT_PAGE_SIZE cannot exceed SEARCH_MAX_PAGE_SIZE.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
