"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the S4 API happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. jwt_secret -> JWT_SECRET).

  @model_validator(mode="after"): fills in the JWT secret when none is
      configured. A generated secret lives only as long as the process, so
      tokens signed before a restart stop verifying after it. That is the
      accepted trade-off for zero-config deployments.

Auth modes:
  simple -- UI_USERNAME and UI_PASSWORD are both set. Login issues JWTs.
  none   -- no local credentials. If DISABLE_AUTH is not explicitly "false"
            the API trusts an upstream authenticating proxy and every request
            runs as a fixed admin identity. With DISABLE_AUTH=false the API
            still demands a JWT (standalone JWT mode).

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import hmac
import logging
import secrets
from functools import lru_cache
from typing import Any, Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("s4.config")

AUTH_COOKIE_NAME = "s4_auth_token"

DEFAULT_JWT_EXPIRATION_HOURS = 8

# /api is matched exactly (health check). The others also cover a trailing
# slash and any sub-path.
HEALTH_ROUTE = "/api"
PUBLIC_ROUTES: tuple[str, ...] = (HEALTH_ROUTE, "/api/auth/info", "/api/auth/login")


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

    environment: Literal["development", "production", "test"] = "development"
    log_level: str = "INFO"

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    ui_username: str = ""
    ui_password: str = ""
    disable_auth: bool = True

    # Empty string is the sentinel for "not configured". The model_validator
    # below generates a process-lifetime secret, so callers never see "".
    jwt_secret: str = ""
    cookie_secret: str = ""
    jwt_expiration_hours: int = DEFAULT_JWT_EXPIRATION_HOURS
    cookie_require_https: bool = True

    # ------------------------------------------------------------------
    # One-time streaming tickets
    # ------------------------------------------------------------------

    sse_ticket_ttl_seconds: int = 60
    ticket_sweep_interval_seconds: float = 60.0

    # ------------------------------------------------------------------
    # Rate limiting (events per minute per client address)
    # ------------------------------------------------------------------

    login_rate_limit: int = 5
    ticket_rate_limit: int = 20

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    audit_log_enabled: bool = True

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("jwt_expiration_hours", mode="before")
    @classmethod
    def fallback_expiration(cls, value: Any) -> int:
        """Unparseable, zero, or negative JWT_EXPIRATION_HOURS falls back to 8."""
        try:
            hours = int(value)
        except (TypeError, ValueError):
            logger.warning("Invalid JWT_EXPIRATION_HOURS %r, using %d", value, DEFAULT_JWT_EXPIRATION_HOURS)
            return DEFAULT_JWT_EXPIRATION_HOURS
        if hours <= 0:
            logger.warning("Non-positive JWT_EXPIRATION_HOURS %r, using %d", value, DEFAULT_JWT_EXPIRATION_HOURS)
            return DEFAULT_JWT_EXPIRATION_HOURS
        return hours

    @model_validator(mode="after")
    def ensure_secrets(self) -> "Settings":
        if not self.jwt_secret:
            self.jwt_secret = secrets.token_hex(32)
            logger.warning("JWT_SECRET not set; using a generated secret. Sessions will not survive a restart.")
        if not self.cookie_secret:
            self.cookie_secret = self.jwt_secret
        return self

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def auth_mode(self) -> str:
        return "simple" if self.ui_username and self.ui_password else "none"

    @property
    def auth_enabled(self) -> bool:
        return self.auth_mode == "simple"

    @property
    def auth_disabled(self) -> bool:
        """True when every request should run as the proxy identity.

        Simple auth always wins. Otherwise auth stays disabled unless
        DISABLE_AUTH is explicitly false.
        """
        if self.auth_enabled:
            return False
        return self.disable_auth

    @property
    def jwt_expiration_seconds(self) -> int:
        return self.jwt_expiration_hours * 60 * 60

    def auth_cookie_options(self) -> dict[str, Any]:
        """Keyword arguments for Response.set_cookie() on the auth cookie.

        Production hardens the cookie: secure (unless COOKIE_REQUIRE_HTTPS is
        false, e.g. TLS terminated upstream) and samesite=strict.
        """
        production = self.environment == "production"
        return {
            "httponly": True,
            "path": "/",
            "secure": production and self.cookie_require_https,
            "samesite": "strict" if production else "lax",
            "max_age": self.jwt_expiration_seconds,
        }

    def validate_credentials(self, username: str, password: str) -> bool:
        """Constant-time check of a login attempt against UI_USERNAME / UI_PASSWORD.

        Both comparisons always run so timing does not reveal which field was
        wrong.
        """
        if not self.auth_enabled or not username or not password:
            return False
        user_ok = hmac.compare_digest(username.encode("utf-8"), self.ui_username.encode("utf-8"))
        pass_ok = hmac.compare_digest(password.encode("utf-8"), self.ui_password.encode("utf-8"))
        return user_ok and pass_ok


def is_public_route(url: str) -> bool:
    """Return True if url (path, optionally with a query string) needs no auth."""
    path = url.split("?", 1)[0]
    if path == HEALTH_ROUTE:
        return True
    for route in PUBLIC_ROUTES:
        if route == HEALTH_ROUTE:
            continue
        if path == route or path.startswith(route + "/"):
            return True
    return False


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
