"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the auth service happen here. No module
should call os.getenv() or os.environ.get() directly -- import get_settings()
instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. google_client_id -> GOOGLE_CLIENT_ID). List fields are read as JSON
      (e.g. ALLOWED_ORIGINS='["https://fragrancecollect.com"]').

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved. Dev mode tolerates a missing Google client ID with a
      warning; production mode refuses to start without one.

Weak consistency note:
  key_cache_ttl_seconds and rate_limit_storage_uri="memory://" describe
  per-process state. With several instances behind a load balancer each one
  keeps its own key ring and its own rate-limit counters. Point
  RATE_LIMIT_STORAGE_URI at a shared store (e.g. redis://) to make limits global.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
or identity/.
"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("fragrancecollect.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'fragrancecollect_auth.db'}"

_DEFAULT_ORIGINS = [
    "https://fragrancecollect.com",
    "https://www.fragrancecollect.com",
    "https://fragrance-collect.pages.dev",
    "https://fragrance-collect.github.io",
    "http://localhost:3000",
    "http://localhost:5173",
    "http://localhost:8000",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:5500",
    "http://127.0.0.1:8000",
]


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file (DEBUG=true is still required
    when GOOGLE_CLIENT_ID is unset).
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
    log_level: str = "INFO"
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Identity provider (Google Sign-In)
    # ------------------------------------------------------------------

    # Expected "aud" claim. Empty string is the "not configured" sentinel.
    google_client_id: str = ""
    google_certs_url: str = "https://www.googleapis.com/oauth2/v3/certs"
    # Google issues both forms depending on token version.
    google_issuers: list[str] = ["https://accounts.google.com", "accounts.google.com"]
    # Origin of the page that form-POSTs the credential in redirect mode.
    google_redirect_origins: list[str] = ["https://accounts.google.com"]
    key_cache_ttl_seconds: int = 3600
    key_fetch_timeout_seconds: float = 5.0

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    session_ttl_seconds: int = 24 * 60 * 60
    session_cookie_name: str = "session_token"
    secure_cookies: bool = True

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10 per 15 minutes"
    signup_rate_limit: str = "10 per 15 minutes"
    rate_limit_storage_uri: str = "memory://"

    # Peers (IPs, CIDR ranges, or hostnames) whose CF-Connecting-IP /
    # X-Forwarded-For headers are believed. Empty: only the socket peer counts.
    trusted_proxies: list[str] = []

    # ------------------------------------------------------------------
    # CORS
    # ------------------------------------------------------------------

    allowed_origins: list[str] = _DEFAULT_ORIGINS

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_google_client_id(self) -> "Settings":
        """Refuse to start in production without an expected audience.

        Dev mode (DEBUG=true): warn and continue. Third-party logins will then
            fail closed on the audience check, which is acceptable locally.

        Production mode: raise. Without a client ID every Google login would
            be rejected and the failure would look like a security event.
        """
        if not self.google_client_id:
            if self.debug:
                logger.warning("GOOGLE_CLIENT_ID is not set -- Google sign-in will reject every token.")
            else:
                raise ValueError(
                    "GOOGLE_CLIENT_ID is required in production mode. "
                    "Set it in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if self.session_ttl_seconds <= 0:
            raise ValueError("SESSION_TTL_SECONDS must be positive.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
