"""
core/config.py -- Kavyakala settings, read from the environment and .env.

Every env var the service understands is a field on Settings; field names
map to upper-case variables (smtp_host -> SMTP_HOST). Code asks
get_settings() for values instead of reading os.environ.

get_settings() is cached, so the first call fixes the configuration for the
life of the process. Modules that read settings at import time (auth.tokens,
auth.verification, api.main) see whatever the environment held then; tests
set their variables before importing anything from the package.

SECRET_KEY signs session JWTs and keys the HMAC over verification tokens.
Without it the process refuses to start unless DEBUG=true, in which case a
throwaway key is generated: sessions and pending verification links die
with the process.

Layer rule: core/ is the kernel. This module may not import from api/, auth/
or notify/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("kavyakala.config")


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
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    log_level: str = "INFO"
    database_url: str = "sqlite:///kavyakala_auth.db"

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    # Session JWT lifetime -- 7 days. No refresh; clients log in again.
    token_expire_seconds: int = 7 * 24 * 3600
    verification_token_ttl_seconds: int = 24 * 3600
    bcrypt_rounds: int = Field(default=10, ge=4, le=31)

    # ------------------------------------------------------------------
    # URLs
    # ------------------------------------------------------------------

    # Frontend origin; verifyEmail redirects to {app_base_url}/auth/callback.
    app_base_url: str = "http://localhost:8080"
    # Public base of this API, used in verification links. Empty means
    # "derive from the incoming request".
    api_base_url: str = ""

    # ------------------------------------------------------------------
    # Mail (empty smtp_host = log-only mode for local development)
    # ------------------------------------------------------------------

    smtp_host: str = ""
    smtp_port: int = 465
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_from: str = ""
    smtp_timeout_seconds: int = 10

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:8080"]
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    rate_limit_enabled: bool = True
    login_rate_limit: str = "10/minute"
    signup_rate_limit: str = "5/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Generate a dev key under DEBUG, otherwise require one; 32 chars minimum."""
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning(
                    "WARNING: Using auto-generated SECRET_KEY. "
                    "Sessions and verification links will not persist across restarts."
                )
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide Settings, built on first call."""
    return Settings()
