"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for AuthKeeper happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. jwt_access_secret -> JWT_ACCESS_SECRET).

  @model_validator(mode="after"): Cross-field validation once every field is
      resolved. Dev mode generates missing signing secrets with a warning,
      production mode refuses to start without them.

Security notes:
  [M6] Signing secrets shorter than 32 chars are rejected outright.

  [M7] In production mode (DEBUG not set or false), a missing signing secret
       is a hard startup failure.

  [M8] The access and refresh secrets must differ. Sharing one key would let
       a refresh token pass access-token verification and vice versa.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.durations import ConfigurationError, parse_duration

logger = logging.getLogger("authkeeper.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'authkeeper.db'}"


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

    # ------------------------------------------------------------------
    # Token signing
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    jwt_access_secret: str = ""
    jwt_refresh_secret: str = ""
    jwt_access_expires_in: str = "15m"
    jwt_refresh_expires_in: str = "30d"

    # ------------------------------------------------------------------
    # Account protection
    # ------------------------------------------------------------------

    bcrypt_rounds: int = Field(default=10, ge=4, le=31)
    max_failed_login_attempts: int = Field(default=5, ge=1)
    lock_duration_seconds: int = Field(default=15 * 60, ge=1)

    # ------------------------------------------------------------------
    # Rate limiting / housekeeping
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    token_purge_interval_seconds: int = Field(default=6 * 60 * 60, ge=60)

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("jwt_access_expires_in", "jwt_refresh_expires_in")
    @classmethod
    def validate_expiry(cls, value: str) -> str:
        """Reject expiry strings that parse_duration() cannot read, or that are not positive."""
        try:
            millis = parse_duration(value)
        except ConfigurationError as exc:
            raise ValueError(str(exc)) from exc
        if millis < 1000:
            raise ValueError(f"Token expiry must be at least one second: {value!r}")
        return value

    @model_validator(mode="after")
    def validate_signing_secrets(self) -> "Settings":
        """Enforce signing secret policy [M6] [M7] [M8].

        Dev mode (DEBUG=true): auto-generate any missing secret with a warning.
            Tokens will not survive restart -- acceptable for local dev.

        Production mode: refuse to start if either secret is missing.
        """
        for name in ("jwt_access_secret", "jwt_refresh_secret"):
            if not getattr(self, name):
                if self.debug:
                    setattr(self, name, secrets.token_hex(32))
                    logger.warning(
                        "WARNING: Using auto-generated %s. Tokens will not persist across restarts.",
                        name.upper(),
                    )
                else:
                    raise ValueError(
                        f"{name.upper()} is required in production mode. "
                        "Set it in your environment or .env file. "
                        "To run in development mode, set DEBUG=true."
                    )
            if len(getattr(self, name)) < 32:
                raise ValueError(f"{name.upper()} must be at least 32 characters.")
        if self.jwt_access_secret == self.jwt_refresh_secret:
            raise ValueError("JWT_ACCESS_SECRET and JWT_REFRESH_SECRET must be different.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
