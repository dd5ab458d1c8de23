# driveschool/core/config.py
import logging
import os
from typing import Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


def is_running_tests() -> bool:
    """
    Detect if code is running under pytest.

    PYTEST_CURRENT_TEST is set automatically by pytest during test runs, and is
    not expected to be present in production environments.
    """
    return os.getenv("PYTEST_CURRENT_TEST") is not None


_DEFAULT_JWT_SECRET = SecretStr("dev-only-change-me-dev-only-change-me")


class Settings(BaseSettings):
    environment: str = Field(default="development", alias="ENVIRONMENT")

    # Auth: the hosted identity provider issues HS256 tokens signed with this secret
    jwt_secret: SecretStr = Field(default=_DEFAULT_JWT_SECRET, alias="JWT_SECRET")
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60
    editor_roles_raw: str = Field(default="admin,editor", alias="EDITOR_ROLES")

    # Backend store
    database_url: str = Field(default="sqlite:///./driveschool.db", alias="DATABASE_URL")
    database_echo: bool = False

    # Cache settings
    cache_backend: Literal["memory", "redis"] = Field(default="memory", alias="CACHE_BACKEND")
    redis_url: str = Field(default="redis://localhost:6379", alias="REDIS_URL")
    cache_namespace: str = "driveschool"
    # TTL tiers in seconds (short: hot reads, long: rarely-changing settings)
    cache_ttl_short: int = Field(default=300, alias="CACHE_TTL_SHORT")
    cache_ttl_medium: int = Field(default=1800, alias="CACHE_TTL_MEDIUM")
    cache_ttl_long: int = Field(default=3600, alias="CACHE_TTL_LONG")
    cache_ttl_day: int = Field(default=86400, alias="CACHE_TTL_DAY")
    cache_circuit_failure_threshold: int = 5
    cache_circuit_recovery_s: int = 60

    # Rate limiting (fixed window); per-route policies live in ratelimit/config.py
    rate_limit_enabled: bool = Field(default=True, alias="RATE_LIMIT_ENABLED")
    rate_limit_backend: Literal["memory", "redis"] = Field(
        default="memory", alias="RATE_LIMIT_BACKEND"
    )
    rate_limit_default_limit: int = Field(default=30, alias="RATE_LIMIT_DEFAULT_LIMIT")
    rate_limit_default_window_s: int = Field(default=60, alias="RATE_LIMIT_DEFAULT_WINDOW_S")

    # Request orchestration
    orchestrator_max_concurrency: int = Field(default=8, alias="ORCHESTRATOR_MAX_CONCURRENCY")
    orchestrator_max_queue: int = Field(default=1000, alias="ORCHESTRATOR_MAX_QUEUE")
    orchestrator_default_max_retries: int = Field(
        default=2, alias="ORCHESTRATOR_DEFAULT_MAX_RETRIES"
    )
    orchestrator_timeout_s: float = Field(default=10.0, alias="ORCHESTRATOR_TIMEOUT_S")
    orchestrator_backoff_base_s: float = Field(default=0.1, alias="ORCHESTRATOR_BACKOFF_BASE_S")
    orchestrator_backoff_cap_s: float = Field(default=2.0, alias="ORCHESTRATOR_BACKOFF_CAP_S")

    # Content store
    content_history_limit: int = 10
    content_max_write_attempts: int = 3

    # Scheduling lookups
    availability_slot_minutes: int = 60

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("orchestrator_max_concurrency", "orchestrator_max_queue")
    @classmethod
    def _positive_admission_bounds(cls, value: int) -> int:
        if value < 1:
            raise ValueError("admission bounds must be >= 1")
        return value

    @property
    def editor_roles(self) -> frozenset[str]:
        """Roles allowed to mutate site content and instructor schedules."""
        return frozenset(
            token.strip().lower() for token in self.editor_roles_raw.split(",") if token.strip()
        )

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() in {"prod", "production", "live"}

    def ttl_for(self, tier: str) -> int:
        """Resolve a named TTL tier (short, medium, long, day) to seconds."""
        tiers = {
            "short": self.cache_ttl_short,
            "medium": self.cache_ttl_medium,
            "long": self.cache_ttl_long,
            "day": self.cache_ttl_day,
        }
        return tiers.get(tier, self.cache_ttl_medium)


settings = Settings()

if settings.is_production and settings.jwt_secret == _DEFAULT_JWT_SECRET:
    logger.warning("[CONFIG] JWT_SECRET is using the development default in production")


__all__ = ["Settings", "settings", "is_running_tests"]
