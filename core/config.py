"""
core/config.py -- ForceMap auth settings, read once from the environment.

Every knob (keys, token lifetimes, limiter thresholds, bcrypt cost, database
URL, HTTP host and origin lists) is a field on Settings. Names map to upper-case
environment variables: access_token_expire_seconds <- ACCESS_TOKEN_EXPIRE_SECONDS.
A .env file in the working directory is honoured too.

get_settings() is lru_cached and only the HTTP layer (api/) and the main.py
CLI call it. Components in auth/ get the Settings object through
auth.container.build_container(), never by reaching for the cache.

Key policy:
  SECRET_KEY / REFRESH_SECRET_KEY shorter than 32 chars are rejected outright.
  JWT signing and token digests both rely on key entropy.

  In production mode (DEBUG not set or false), a missing SECRET_KEY is a hard
  startup failure.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("forcemap.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'forcemap_auth.db'}"


class Settings(BaseSettings):
    """Runtime configuration. Every field has a default; only SECRET_KEY is
    mandatory outside DEBUG mode."""

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
    # Falls back to secret_key when empty.
    refresh_secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Tokens and sessions
    # ------------------------------------------------------------------

    token_issuer: str = "forcemap-api"
    token_audience: str = "forcemap-client"
    access_token_expire_seconds: int = Field(default=15 * 60, gt=0)
    refresh_token_expire_seconds: int = Field(default=7 * 24 * 3600, gt=0)
    session_expire_seconds: int = Field(default=7 * 24 * 3600, gt=0)
    # A new login deactivates every other active session of the same user.
    single_session: bool = True
    # A refresh from an address other than the one that logged in closes the session.
    bind_refresh_to_ip: bool = True

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    bcrypt_rounds: int = Field(default=12, ge=4, le=31)

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    rate_limit_ip_max_attempts: int = Field(default=10, gt=0)
    rate_limit_identifier_max_attempts: int = Field(default=5, gt=0)
    rate_limit_window_seconds: int = Field(default=15 * 60, gt=0)
    # Coarse slowapi limit in front of the login route, independent of the
    # per-identifier counters kept by auth.ratelimit.
    login_rate_limit: str = "30/minute"

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_keys(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        DEBUG=true with no key: generate one and warn. Issued tokens die
            with the process.

        Production mode: refuse to start if SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("WARNING: Using auto-generated SECRET_KEY. Tokens will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        if not self.refresh_secret_key:
            self.refresh_secret_key = self.secret_key
        if len(self.refresh_secret_key) < 32:
            raise ValueError("REFRESH_SECRET_KEY must be at least 32 characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Process-wide Settings. Tests that change the environment must call
    get_settings.cache_clear() or build Settings(...) themselves."""
    return Settings()
