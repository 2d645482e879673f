"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for TaskFlow happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY, bcrypt_rounds -> BCRYPT_ROUNDS).

  @model_validator(mode="after"): cross-field rules that depend on DEBUG
      (secret key generation, Secure cookie default).

Security notes:
  SECRET_KEY shorter than 32 chars is rejected outright. Access and refresh
  tokens are both HS256-signed; a short key weakens both.

  In production mode (DEBUG not set or false), a missing SECRET_KEY is a
  hard startup failure.

  REFRESH_SECRET_KEY is optional. When unset, refresh tokens are signed with
  SECRET_KEY and kept apart from access tokens only by their "type" claim.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("taskflow.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'taskflow_auth.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file (given DEBUG=true).
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
    # Empty string is the sentinel for "not configured".
    secret_key: str = ""
    refresh_secret_key: str = ""
    log_level: str = "INFO"
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Tokens and cookies
    # ------------------------------------------------------------------

    access_token_expire_seconds: int = Field(default=15 * 60, gt=0)
    refresh_token_expire_seconds: int = Field(default=7 * 24 * 60 * 60, gt=0)
    bcrypt_rounds: int = Field(default=10, ge=4, le=31)
    # None -> Secure in production, plain in DEBUG (resolved below).
    secure_cookies: Optional[bool] = None
    refresh_cookie_name: str = "refreshToken"
    rotate_refresh_tokens: bool = False

    # ------------------------------------------------------------------
    # HTTP surface
    # ------------------------------------------------------------------

    auth_rate_limit: str = "20/15 minutes"
    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:3000"]
    allowed_hosts: list[str] = ["*"]

    # ------------------------------------------------------------------
    # First-run admin account (all optional)
    # ------------------------------------------------------------------

    bootstrap_admin_email: str = "admin@taskflow.com"
    bootstrap_admin_username: str = "admin"
    bootstrap_admin_password: str = ""

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the signing key policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Tokens will not survive a restart.

        Production mode: refuse to start if SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Tokens will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        if self.refresh_secret_key and len(self.refresh_secret_key) < 32:
            raise ValueError("REFRESH_SECRET_KEY must be at least 32 characters.")
        return self

    @model_validator(mode="after")
    def resolve_secure_cookies(self) -> "Settings":
        if self.secure_cookies is None:
            self.secure_cookies = not self.debug
        return self

    @property
    def refresh_signing_key(self) -> str:
        """Key used for refresh tokens; falls back to SECRET_KEY."""
        return self.refresh_secret_key or self.secret_key


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
