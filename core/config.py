"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for credgate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Dev mode generates a throwaway signing
      secret; production mode leaves an absent secret empty so that
      auth.keys.SigningKey.from_secret() fails startup with ConfigurationError.

Security notes:
  SECRET_KEY is the base64 encoding of the HMAC-SHA256 signing key. It must
  decode to at least 256 bits; the check lives in auth/keys.py so that every
  caller building a key goes through the same rule.

  TTLs are milliseconds, matching the unit the session token claims are
  carried in.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import base64
import logging
import secrets
from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("credgate.config")

_HOUR_MS = 60 * 60 * 1000


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.

    Environment variable name mapping: field names are uppercased automatically.
    E.g. `session_ttl_ms` reads from SESSION_TTL_MS, `debug` reads from DEBUG.
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
    # Base64 signing secret. Empty string is the sentinel for "not configured".
    secret_key: str = ""
    database_url: str = "sqlite:///credgate.db"

    # ------------------------------------------------------------------
    # Token lifetimes (milliseconds)
    # ------------------------------------------------------------------

    session_ttl_ms: int = Field(default=24 * _HOUR_MS, gt=0)
    verification_token_ttl_ms: int = Field(default=24 * _HOUR_MS, gt=0)
    password_reset_token_ttl_ms: int = Field(default=_HOUR_MS // 2, gt=0)
    invite_token_ttl_ms: int = Field(default=24 * _HOUR_MS, gt=0)

    # ------------------------------------------------------------------
    # Links handed to the notifier
    # ------------------------------------------------------------------

    # Verification links point at the API itself; invite links point at the
    # frontend page that collects the new password.
    public_base_url: str = "http://localhost:8090"
    frontend_base_url: str = "http://localhost:3000"

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def default_dev_secret(self) -> "Settings":
        """Generate a throwaway SECRET_KEY in dev mode.

        Dev mode (DEBUG=true): auto-generate a random 256-bit key with a
            warning. Sessions will not survive restart -- acceptable for local dev.

        Production mode: leave the value untouched. An absent or weak key is
            rejected when the signing key is built at startup.
        """
        if not self.secret_key and self.debug:
            self.secret_key = base64.b64encode(secrets.token_bytes(32)).decode("ascii")
            logger.warning("WARNING: Using auto-generated SECRET_KEY. Sessions will not persist across restarts.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    All modules should call get_settings() rather than constructing Settings() directly.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
