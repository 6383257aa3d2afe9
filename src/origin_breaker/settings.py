from __future__ import annotations

from dataclasses import replace

import structlog
from pydantic import BaseModel, ConfigDict, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from origin_breaker.circuit_breaker.breaker import BreakerConfig
from origin_breaker.destinations import normalize_destination
from origin_breaker.logging import configure_structlog, get_log_level_value

ENV_PREFIX = "ORIGIN_BREAKER_"


def prefixed_settings_config(prefix: str) -> SettingsConfigDict:
    """Build standard Pydantic settings config for prefixed environments."""
    return SettingsConfigDict(env_prefix=prefix, case_sensitive=False)


class BreakerOverride(BaseModel):
    """Partial per-destination thresholds; unset fields use the defaults."""

    model_config = ConfigDict(extra="forbid")

    timeout_ms: int | None = None
    max_requests_closed: int | None = None
    failed_percentage: float | None = None
    half_open_max_requests: int | None = None
    half_open_percentage: float | None = None
    half_to_close_min_percentage: float | None = None
    acceptable_timeout_ms: int | None = None


class BreakerSettings(BaseSettings):
    """Environment-driven circuit breaker settings.

    ``destinations`` and ``overrides`` are read from JSON environment values, for
    example ``ORIGIN_BREAKER_DESTINATIONS='["http://10.0.0.5:5000"]'``.
    """

    model_config = prefixed_settings_config(ENV_PREFIX)

    destinations: list[str] = []
    timeout_ms: int = 10_000
    max_requests_closed: int = 50
    failed_percentage: float = 40
    half_open_max_requests: int = 100
    half_open_percentage: float = 10
    half_to_close_min_percentage: float = 80
    acceptable_timeout_ms: int = 4_500
    overrides: dict[str, BreakerOverride] = {}
    log_level: str = "INFO"

    @field_validator("destinations", mode="after")
    @classmethod
    def _normalize_destinations(cls, value: list[str]) -> list[str]:
        normalized: list[str] = []
        for destination in value:
            origin = normalize_destination(destination)
            if origin not in normalized:
                normalized.append(origin)
        return normalized

    @field_validator("overrides", mode="after")
    @classmethod
    def _normalize_override_keys(
        cls, value: dict[str, BreakerOverride]
    ) -> dict[str, BreakerOverride]:
        return {normalize_destination(key): item for key, item in value.items()}

    @field_validator("log_level", mode="after")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        get_log_level_value(value)
        return value.strip().upper()

    @model_validator(mode="after")
    def _validate_breaker_settings(self) -> BreakerSettings:
        untracked = sorted(set(self.overrides) - set(self.destinations))
        if untracked:
            raise ValueError(
                f"overrides reference untracked destinations: {', '.join(untracked)}"
            )
        # Build every config once so threshold errors surface at load time.
        self.default_config()
        self.destination_configs()
        return self

    def default_config(self) -> BreakerConfig:
        """Build the thresholds shared by destinations without an override."""
        return BreakerConfig(
            timeout_ms=self.timeout_ms,
            max_requests_closed=self.max_requests_closed,
            failed_percentage=self.failed_percentage,
            half_open_max_requests=self.half_open_max_requests,
            half_open_percentage=self.half_open_percentage,
            half_to_close_min_percentage=self.half_to_close_min_percentage,
            acceptable_timeout_ms=self.acceptable_timeout_ms,
        )

    def destination_configs(self) -> dict[str, BreakerConfig]:
        """Build one merged config per overridden destination."""
        defaults = self.default_config()
        return {
            destination: replace(defaults, **override.model_dump(exclude_none=True))
            for destination, override in self.overrides.items()
        }

    def configure_logging(self) -> structlog.stdlib.BoundLogger:
        """Configure process logging at ``log_level`` and return a breaker logger."""
        configure_structlog(log_level=self.log_level)
        return structlog.stdlib.get_logger("origin_breaker.circuit_breaker")
