"""Configuration management for the Refund Review service.

Configuration is loaded from environment variables, one prefix per group.
"""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

POSTGRESQL_PREFIX = "postgresql://"
ASYNCPG_DRIVER = "+asyncpg"
SQLITE_PREFIX = "sqlite"
DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./refund_review.db"


class AppEnvironment(str, Enum):
    LOCAL = "local"
    TEST = "test"
    PROD = "prod"


class LogLevel(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class AppConfig(BaseSettings):
    name: str = Field(default="refund-review-service")
    env: AppEnvironment = Field(default=AppEnvironment.LOCAL)
    version: str = Field(default="0.1.0")
    log_level: LogLevel = Field(default=LogLevel.INFO)

    model_config = SettingsConfigDict(env_prefix="APP_")

    @field_validator("env", mode="before")
    @classmethod
    def validate_env(cls, v: str | AppEnvironment) -> AppEnvironment:
        if isinstance(v, AppEnvironment):
            return v
        return AppEnvironment(v)

    @field_validator("log_level", mode="before")
    @classmethod
    def validate_log_level(cls, v: str | LogLevel) -> LogLevel:
        if isinstance(v, LogLevel):
            return v
        return LogLevel(v.upper())


class ServerConfig(BaseSettings):
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8080)

    model_config = SettingsConfigDict(env_prefix="SERVER_")


class DatabaseConfig(BaseSettings):
    url_app: str = Field(default=DEFAULT_DATABASE_URL, alias="database_url_app")
    echo: bool = Field(default=False)
    pool_size: int = Field(default=10)
    max_overflow: int = Field(default=20)
    pool_timeout: int = Field(default=30)
    pool_recycle: int = Field(default=1800)

    # When false, the primary write and its audit entry are committed separately
    # and a failed audit append surfaces as PartialWriteFailureError.
    atomic_audit_writes: bool = Field(default=True)

    model_config = SettingsConfigDict(
        env_prefix="DATABASE_",
        populate_by_name=True,
    )

    @property
    def is_sqlite(self) -> bool:
        return self.url_app.startswith(SQLITE_PREFIX)

    @property
    def async_url(self) -> str:
        """Build async database URL."""
        url = self.url_app
        if url.startswith(POSTGRESQL_PREFIX) and ASYNCPG_DRIVER not in url:
            new_prefix = POSTGRESQL_PREFIX.removesuffix("://") + ASYNCPG_DRIVER + "://"
            url = url.replace(POSTGRESQL_PREFIX, new_prefix, 1)
        return url


class Auth0Config(BaseSettings):
    domain: str = Field(default="")
    audience: str = Field(default="")
    algorithms: str = Field(default="RS256")
    jwks_cache_ttl: int = Field(default=600)

    model_config = SettingsConfigDict(env_prefix="AUTH0_")

    @property
    def jwks_url(self) -> str:
        """Build JWKS URL."""
        return f"https://{self.domain}/.well-known/jwks.json"

    @property
    def issuer_url(self) -> str:
        """Build issuer URL."""
        return f"https://{self.domain}/"

    @property
    def algorithms_list(self) -> list[str]:
        return [algo.strip() for algo in self.algorithms.split(",")]


class ObservabilityConfig(BaseSettings):
    service_name: str = Field(default="refund-review-service")
    otlp_endpoint: str | None = Field(default=None)
    otlp_insecure: bool = Field(default=True)
    log_record_format: str = Field(default="json")

    model_config = SettingsConfigDict(env_prefix="OTEL_")


class SecurityConfig(BaseSettings):
    cors_allowed_origins: str = Field(default="http://localhost:3000")
    cors_allow_credentials: bool = Field(default=True)
    cors_allow_methods: list[str] = Field(default=["GET", "POST"])
    cors_allow_headers: list[str] = Field(default=["Authorization", "Content-Type"])

    # SECURITY: ONLY allowed in local environment. Will raise error in test/prod.
    skip_jwt_validation: bool = Field(default=False)
    dev_reviewer_id: str = Field(default="local-dev-reviewer")

    model_config = SettingsConfigDict(env_prefix="SECURITY_")

    @field_validator("cors_allowed_origins", mode="after")
    @classmethod
    def validate_cors_allowed_origins(cls, v: str | list[str]) -> list[str]:
        """Parse comma-separated string into list of origins."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    @field_validator("skip_jwt_validation", mode="before")
    @classmethod
    def parse_skip_jwt_validation(cls, v: bool | str) -> bool:
        if isinstance(v, str):
            return v.lower() in ("true", "1", "yes", "on")
        return v


class NotificationsConfig(BaseSettings):
    feed_limit: int = Field(default=25, ge=1)
    notify_on_escalation: bool = Field(default=True)

    model_config = SettingsConfigDict(env_prefix="NOTIFICATIONS_")


class TransactionsConfig(BaseSettings):
    page_size: int = Field(default=25, ge=1)
    max_page_size: int = Field(default=200, ge=1)

    model_config = SettingsConfigDict(env_prefix="TRANSACTIONS_")


class Settings(BaseSettings):
    app: AppConfig = Field(default_factory=AppConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    auth0: Auth0Config = Field(default_factory=Auth0Config)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    notifications: NotificationsConfig = Field(default_factory=NotificationsConfig)
    transactions: TransactionsConfig = Field(default_factory=TransactionsConfig)

    @model_validator(mode="after")
    def validate_security_settings(self) -> Settings:
        """Validate security settings after all configs are loaded."""
        if self.security.skip_jwt_validation and self.app.env != AppEnvironment.LOCAL:
            raise ValueError(
                "SECURITY_SKIP_JWT_VALIDATION can only be set in local environment. "
                f"Current environment: {self.app.env.value}"
            )
        return self


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
