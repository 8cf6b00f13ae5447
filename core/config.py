"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for InsightShield happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. analysis_base_url -> ANALYSIS_BASE_URL).

  @model_validator(mode="after"): cross-field validation once every field is
      resolved. Dev mode generates a SECRET_KEY with a warning, production mode
      refuses to start without one.

Security notes:
  SECRET_KEY shorter than 32 chars is rejected outright. The JWT signature and
  the session cookie signature both rely on it.

Layer rule: core/ is the kernel. This module may not import from api/, web/,
auth/, reports/, or cache/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("insightshield.config")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
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
    # Empty string is the "not configured" sentinel; the validator replaces it
    # or raises, so callers never see "".
    secret_key: str = ""

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    token_expire_seconds: int = 3600

    # The role table has exactly two entries. Only the addresses are
    # configurable; the roles they map to are fixed.
    superuser_email: str = "superuser@insightshield.com"
    normaluser_email: str = "normaluser@insightshield.com"

    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    # Empty means "use the SQLite file next to the store module".
    database_url: str = ""
    auth_database_url: str = ""
    cache_ttl_seconds: int = 300

    # ------------------------------------------------------------------
    # Analysis backend
    # ------------------------------------------------------------------

    analysis_base_url: str = "http://localhost:8000"
    analysis_timeout_seconds: float = 600.0
    max_upload_bytes: int = 50 * 1024 * 1024

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost", "testserver"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        DEBUG=true: auto-generate a random key with a warning. Sessions do
            not survive a restart, which is fine for local work.

        Otherwise: refuse to start without SECRET_KEY.

        Both modes reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Sessions will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @property
    def allowed_users(self) -> dict[str, str]:
        """Email -> role name for the two principals allowed to sign in."""
        return {
            self.superuser_email: "superuser",
            self.normaluser_email: "normaluser",
        }


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
