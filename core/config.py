"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for AuditDesk happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Settings is a pydantic-settings BaseSettings: each field is read from the
environment variable of the same name in upper case (secret_key ->
SECRET_KEY), falling back to .env and then to the default. get_settings()
builds it once and caches it. The SECRET_KEY policy runs in a model_validator
once every field is resolved.

Security notes:
  [S1] Production mode (DEBUG not set or false) refuses to start without a
       SECRET_KEY, and refuses the well-known development key as well.

  [S2] Development mode (DEBUG=true) falls back to the well-known development
       key and logs a warning every time the settings are built. Tokens signed
       with it are forgeable by anyone who has read this file.

  [S3] SECRET_KEY shorter than 32 chars is rejected outright.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, or audit/.
"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("auditdesk.config")

# Public on purpose: tests and the validator compare against it.
DEV_SECRET_KEY = "auditdesk-development-only-secret-key-not-for-production"

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auditdesk.db'}"


class Settings(BaseSettings):
    """AuditDesk settings. Every field has a default except SECRET_KEY outside DEBUG."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured".
    secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    # 8 hours, the session length of the audit workday.
    token_expire_seconds: int = 8 * 3600
    # Cost 11 keeps a hash around 100-150ms on commodity hardware.
    bcrypt_rounds: int = 11

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    cors_origins: list[str] = ["http://localhost:3000"]
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost", "testserver"]

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    rate_limit_enabled: bool = True
    login_rate_limit: str = "10/minute"
    default_rate_limit: str = "100/15minutes"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy [S1] [S2] [S3]."""
        if not self.secret_key:
            if self.debug:
                self.secret_key = DEV_SECRET_KEY
                logger.warning(
                    "WARNING: SECRET_KEY is not set -- using the well-known development key. "
                    "Never run with this key outside local development."
                )
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        elif self.secret_key == DEV_SECRET_KEY and not self.debug:
            raise ValueError("The development SECRET_KEY cannot be used in production mode.")
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        if not 4 <= self.bcrypt_rounds <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the cached Settings. Tests that change the environment call get_settings.cache_clear()."""
    return Settings()
