"""Configuration settings using Pydantic Settings."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

PLACEHOLDER_SECRETS = frozenset(
    {
        "dev-secret-change-in-production",
        "your-secret-key-change-in-production",
        "change-me",
        "changeme",
        "secret",
    }
)
MIN_SECRET_LENGTH = 32
MIN_PRODUCTION_BCRYPT_ROUNDS = 10


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)

    environment: Literal["development", "production"] = "development"
    api_docs_enabled: bool | None = None
    database_url: str
    # Statements slower than this are logged; 0 disables the listener
    slow_query_ms: float = 0

    # Tokens for school accounts. Refresh tokens get their own secret.
    jwt_secret: str
    jwt_refresh_secret: str | None = None
    jwt_algorithm: str = "HS256"
    jwt_access_token_expire_minutes: int = 60
    jwt_refresh_token_expire_days: int = 7
    bcrypt_rounds: int = 12

    # Platform operator; credentials come from the environment, never the database
    system_admin_email: str | None = None
    system_admin_password_hash: str | None = None
    system_admin_jwt_secret: str | None = None
    system_admin_session_timeout_seconds: int = 8 * 60 * 60

    # Refresh token cookie, scoped to the auth routes
    refresh_cookie_name: str = "refresh_token"
    refresh_cookie_path: str = "/api/auth"
    refresh_cookie_domain: str | None = None
    refresh_cookie_samesite: Literal["lax", "strict", "none"] = "lax"
    refresh_cookie_secure: bool | None = None

    cors_allow_origins: list[str] = ["http://localhost:3000"]
    cors_allow_methods: list[str] = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]
    cors_allow_headers: list[str] = [
        "Accept",
        "Authorization",
        "Content-Type",
        "X-Request-ID",
        "X-Correlation-ID",
        "X-Metrics-Token",
    ]
    cors_allow_credentials: bool = True

    invitation_expiry_hours: int = 72
    # Base URL of the web app; login and reset links in emails point here
    frontend_url: str = "http://localhost:3000"

    redis_enabled: bool = False
    redis_url: str = "redis://localhost:6379/0"
    cache_ttl_invitation: int = 300
    cache_ttl_session: int = 86400
    cache_ttl_dashboard: int = 900

    email_enabled: bool = True
    smtp_host: str = "localhost"
    smtp_port: int = 1025
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_from: str = "noreply@educonnect.local"
    smtp_use_tls: bool = False

    metrics_token: str | None = None

    @field_validator(
        "cors_allow_origins",
        "cors_allow_methods",
        "cors_allow_headers",
        mode="before",
    )
    @classmethod
    def _parse_csv_lists(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def refresh_secret(self) -> str:
        """Secret used for refresh tokens (derived from jwt_secret when unset)."""
        return self.jwt_refresh_secret or f"{self.jwt_secret}:refresh"

    @property
    def system_admin_secret(self) -> str:
        return self.system_admin_jwt_secret or self.jwt_secret

    @property
    def cookie_secure(self) -> bool:
        if self.refresh_cookie_secure is not None:
            return self.refresh_cookie_secure
        return self.is_production

    def _production_problems(self) -> list[str]:
        problems = []
        if self.jwt_secret in PLACEHOLDER_SECRETS or len(self.jwt_secret) < MIN_SECRET_LENGTH:
            problems.append("JWT_SECRET must be a strong secret in production")
        if not self.jwt_refresh_secret or self.jwt_refresh_secret == self.jwt_secret:
            problems.append(
                "JWT_REFRESH_SECRET must be set and differ from JWT_SECRET in production"
            )
        if self.bcrypt_rounds < MIN_PRODUCTION_BCRYPT_ROUNDS:
            problems.append(
                f"BCRYPT_ROUNDS must be at least {MIN_PRODUCTION_BCRYPT_ROUNDS} in production"
            )
        for name in ("cors_allow_origins", "cors_allow_methods", "cors_allow_headers"):
            if "*" in getattr(self, name):
                problems.append(f"{name.upper()} cannot contain '*' in production")
        if self.refresh_cookie_samesite == "none" and not self.cookie_secure:
            problems.append("REFRESH_COOKIE_SECURE must be true when REFRESH_COOKIE_SAMESITE=none")
        return problems

    @model_validator(mode="after")
    def _validate_production_settings(self) -> Settings:
        if self.is_production:
            problems = self._production_problems()
            if problems:
                raise ValueError("; ".join(problems))
        return self


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
