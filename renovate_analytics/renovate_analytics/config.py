"""Analytics pipeline configuration loaded from environment variables."""

from __future__ import annotations

import logging
import random
from collections.abc import Callable
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Literal

from pydantic import Field, SecretStr, ValidationError, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

logger = logging.getLogger(__name__)

# Separator between cache key segments; kept here so the prefix can be
# validated without importing the store.
KEY_SEPARATOR = ":"

MetricKind = Literal["cache", "docker", "api", "failures"]

DEFAULT_SANITIZE_PATTERNS: tuple[str, ...] = (
    "token",
    "password",
    "secret",
    "key",
    "auth",
    "credential",
    "bearer",
    "private",
)


class LogLevel(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"

    @property
    def logging_level(self) -> int:
        return {
            LogLevel.DEBUG: logging.DEBUG,
            LogLevel.INFO: logging.INFO,
            LogLevel.WARN: logging.WARNING,
            LogLevel.ERROR: logging.ERROR,
        }[self]


class ConfigValidationError(ValueError):
    """Raised when analytics settings fail validation at startup."""

    def __init__(self, message: str, fields: tuple[str, ...] = ()) -> None:
        super().__init__(message)
        self.fields = fields


class AnalyticsSettings(BaseSettings):
    """Analytics settings loaded from environment variables with RENOVATE_ANALYTICS_ prefix."""

    model_config = SettingsConfigDict(
        env_prefix="RENOVATE_ANALYTICS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    enabled: bool = False
    log_level: LogLevel = LogLevel.INFO
    structured_logging: bool = False

    # Collection toggles
    collect_cache: bool = True
    collect_docker: bool = True
    collect_api: bool = True
    collect_failures: bool = True
    sample_rate: float = Field(default=1.0, ge=0.0, le=1.0)

    # Storage
    cache_key_prefix: str = "renovate-analytics"
    cache_dir: Path = Path(".renovate-analytics/cache")
    max_data_size: int = Field(default=10 * 1024 * 1024, gt=0)
    retention_days: int = Field(default=7, gt=0)
    max_retries: int = Field(default=3, ge=1)
    retry_delay_seconds: float = Field(default=1.0, gt=0.0)
    operation_timeout_seconds: float | None = Field(default=None, gt=0.0)

    # Sanitization
    sanitize_patterns: Annotated[tuple[str, ...], NoDecode] = DEFAULT_SANITIZE_PATTERNS
    hash_salt: SecretStr = SecretStr("renovate-analytics-salt")

    @field_validator("log_level", mode="before")
    @classmethod
    def normalise_log_level(cls, v: Any) -> Any:
        if isinstance(v, str):
            normalised = v.strip().lower()
            return "warn" if normalised == "warning" else normalised
        return v

    @field_validator("cache_key_prefix")
    @classmethod
    def check_prefix(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("cache key prefix cannot be empty")
        if KEY_SEPARATOR in v:
            raise ValueError(f"cache key prefix must not contain '{KEY_SEPARATOR}'")
        return v.strip()

    @field_validator("sanitize_patterns", mode="before")
    @classmethod
    def split_patterns(cls, v: Any) -> Any:
        if isinstance(v, str):
            return tuple(part.strip() for part in v.split(",") if part.strip())
        return v

    @field_validator("sanitize_patterns")
    @classmethod
    def check_patterns(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        cleaned = tuple(p.strip().lower() for p in v if p.strip())
        if not cleaned:
            raise ValueError("at least one sanitize pattern must be provided")
        return cleaned

    def is_metric_collection_enabled(self, kind: MetricKind) -> bool:
        if not self.enabled:
            return False
        return {
            "cache": self.collect_cache,
            "docker": self.collect_docker,
            "api": self.collect_api,
            "failures": self.collect_failures,
        }[kind]

    def should_collect_sample(self, rng: Callable[[], float] = random.random) -> bool:
        """Return True when this run falls inside the configured sample."""
        if not self.enabled:
            return False
        if self.sample_rate >= 1.0:
            return True
        if self.sample_rate <= 0.0:
            return False
        return rng() < self.sample_rate

    def summary(self) -> dict[str, Any]:
        """Loggable view of the settings without secrets."""
        return {
            "enabled": self.enabled,
            "log_level": self.log_level.value,
            "collect_cache": self.collect_cache,
            "collect_docker": self.collect_docker,
            "collect_api": self.collect_api,
            "collect_failures": self.collect_failures,
            "sample_rate": self.sample_rate,
            "cache_key_prefix": self.cache_key_prefix,
            "max_data_size": self.max_data_size,
            "retention_days": self.retention_days,
            "sanitize_patterns_count": len(self.sanitize_patterns),
        }


def load_settings(**overrides: object) -> AnalyticsSettings:
    """Load settings from environment, with optional overrides for testing.

    Raises
    ------
    ConfigValidationError
        If any setting is invalid.  Bad configuration is never replaced
        by defaults.
    """
    try:
        settings = AnalyticsSettings(**overrides)  # type: ignore[arg-type]
    except ValidationError as exc:
        fields = tuple(".".join(str(part) for part in err["loc"]) for err in exc.errors())
        details = "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors())
        raise ConfigValidationError(f"Invalid analytics configuration: {details}", fields) from exc

    logger.debug("Loaded analytics settings: %s", settings.summary())
    return settings
