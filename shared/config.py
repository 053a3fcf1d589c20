"""
Shared configuration management for the property invites access layer.
"""

from typing import List

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEV_INVITE_HASH_KEY = "dev-invite-hash-key-change-me"

# Origins accepted in addition to the allowlist when allow_dev_origins is on.
DEV_ORIGIN_PATTERN = (
    r"^(https?://(localhost|127\.0\.0\.1|10\.\d{1,3}\.\d{1,3}\.\d{1,3}|192\.168\.\d{1,3}\.\d{1,3}"
    r"|172\.(1[6-9]|2\d|3[01])\.\d{1,3}\.\d{1,3})(:\d+)?|exp://.+)$"
)


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="INVITES_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Storage
    database_url: str = Field(default="sqlite+aiosqlite:///./invites.db")
    database_pool_size: int = Field(default=10)
    database_echo: bool = Field(default=False)
    database_busy_timeout_seconds: float = Field(default=30.0)

    # External services
    auth_service_url: str = Field(default="http://localhost:8010")

    # Credential scheme
    invite_hash_key: str = Field(default=DEV_INVITE_HASH_KEY)
    invite_max_uses_limit: int = Field(default=50)
    invite_default_max_uses: int = Field(default=1)
    invite_min_ttl_days: int = Field(default=1)
    invite_max_ttl_days: int = Field(default=365)
    invite_default_ttl_days: int = Field(default=7)
    expiry_grace_seconds: float = Field(default=300.0)

    # Garbage collection
    token_retention_days: int = Field(default=7)
    revoked_retention_days: int = Field(default=30)
    rate_limit_idle_seconds: float = Field(default=86400.0)
    cleanup_interval_seconds: float = Field(default=3600.0)

    # Request handling
    operation_timeout_seconds: float = Field(default=5.0)
    transient_retry_attempts: int = Field(default=3)

    # Origin guard
    allowed_origins: str = Field(default="https://myailandlord.app,https://www.myailandlord.app")
    allow_dev_origins: bool = Field(default=False)

    # Rate limiting (capacity = burst, refill = tokens per second)
    rate_limit_validate_capacity: int = Field(default=30)
    rate_limit_validate_refill_per_second: float = Field(default=0.5)
    rate_limit_accept_capacity: int = Field(default=20)
    rate_limit_accept_refill_per_second: float = Field(default=20 / 60)
    rate_limit_issue_capacity: int = Field(default=10)
    rate_limit_issue_refill_per_second: float = Field(default=10 / 60)
    rate_limit_revoke_capacity: int = Field(default=20)
    rate_limit_revoke_refill_per_second: float = Field(default=20 / 60)
    rate_limit_fail_open: bool = Field(default=True)

    @field_validator("invite_hash_key")
    @classmethod
    def _hash_key_not_empty(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("invite_hash_key must not be empty")
        return value

    @field_validator(
        "rate_limit_validate_capacity",
        "rate_limit_accept_capacity",
        "rate_limit_issue_capacity",
        "rate_limit_revoke_capacity",
        "invite_max_uses_limit",
    )
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    @field_validator(
        "rate_limit_validate_refill_per_second",
        "rate_limit_accept_refill_per_second",
        "rate_limit_issue_refill_per_second",
        "rate_limit_revoke_refill_per_second",
        "operation_timeout_seconds",
    )
    @classmethod
    def _positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be positive")
        return value

    @field_validator("expiry_grace_seconds", "cleanup_interval_seconds", "rate_limit_idle_seconds")
    @classmethod
    def _non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("must not be negative")
        return value

    @model_validator(mode="after")
    def _hash_key_set_outside_local(self) -> "BaseConfig":
        if self.env != "local" and self.invite_hash_key == DEV_INVITE_HASH_KEY:
            raise ValueError("invite_hash_key must be set when env is not 'local'")
        return self

    @property
    def allowed_origins_list(self) -> List[str]:
        """Return the configured origin allowlist, normalised to lower case."""
        if not self.allowed_origins:
            return []
        return [origin.strip().lower() for origin in self.allowed_origins.split(",") if origin.strip()]

    def rate_limit_for(self, operation: str) -> tuple:
        """Return ``(capacity, refill_per_second)`` for a gated operation."""
        capacity = getattr(self, f"rate_limit_{operation}_capacity", None)
        refill = getattr(self, f"rate_limit_{operation}_refill_per_second", None)
        if capacity is None or refill is None:
            raise KeyError(f"No rate limit configured for operation '{operation}'")
        return capacity, refill


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service.

    Keyword overrides take precedence over environment variables.
    """
    return ServiceConfig(service_name=service_name, port=port, **overrides)
