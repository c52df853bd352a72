"""
core/config.py -- Tourbook settings, read once from the environment.

Every environment variable the API understands is a field on Settings. Field
names map to upper-case variable names (token_expire_seconds ->
TOKEN_EXPIRE_SECONDS), and a .env file in the working directory is read too.
Nothing else in the tree touches os.environ.

get_settings() is wrapped in lru_cache, so the first call fixes the values for
the life of the process. Tests set variables before the first import and call
get_settings.cache_clear() when they need different ones.

Components never read Settings ad hoc. The composition root (api/main.py
lifespan) turns Settings into the narrower config objects each component
takes at construction (e.g. auth.flow.AuthConfig).

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, or docstore/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("tourbook.config")


class Settings(BaseSettings):
    """Every tunable of the API. Only SECRET_KEY lacks a usable default."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    # DEBUG=true is the development mode: auto-generated SECRET_KEY and full
    # error detail (message + traceback) in 500 responses.
    debug: bool = False
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    database_url: str = "sqlite:///./tourbook.db"

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    token_expire_seconds: int = 90 * 24 * 60 * 60
    password_reset_expire_seconds: int = 10 * 60
    bcrypt_rounds: int = 12
    # When true, POST /users/forgot-password answers an unknown email with the
    # same success message as a known one instead of a 404.
    mask_unknown_reset_email: bool = False
    # Base used to build the reset link in the email. Empty means "derive from
    # the incoming request".
    public_base_url: str = ""

    # ------------------------------------------------------------------
    # Query features
    # ------------------------------------------------------------------

    default_page_size: int = 100

    # ------------------------------------------------------------------
    # Mail (empty smtp_host -> messages are written to the log instead)
    # ------------------------------------------------------------------

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_starttls: bool = True
    smtp_timeout_seconds: float = 10.0
    mail_from: str = "Tourbook <noreply@tourbook.local>"

    # ------------------------------------------------------------------
    # HTTP surface
    # ------------------------------------------------------------------

    rate_limit_enabled: bool = True
    api_rate_limit: str = "100/hour"
    login_rate_limit: str = "10/minute"
    allowed_hosts: list[str] = ["*"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """SECRET_KEY signs every JWT, so it must exist and be at least 32 characters.

        With DEBUG=true a missing key is replaced by a random one (tokens then
        die with the process). Without DEBUG a missing key stops startup.
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
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
