"""Runtime configuration models for the replication monitor."""

from __future__ import annotations

from collections.abc import Mapping
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import Field, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from replication_monitor.utils.diagnostics import DiagnosticError


class MonitoringSettings(BaseSettings):
    """Thresholds and cadences that drive the health-monitoring engine.

    Instances are frozen: a polling cycle holds on to one value for its whole duration, and reconfiguration swaps in a
    new instance through :class:`ConfigurationStore` rather than mutating the one in flight.
    """

    max_latency_warning_threshold: float = Field(
        default=300,
        ge=0,
        description="Delivery latency (seconds) above which a subscription is reported as Warning.",
    )
    max_latency_critical_threshold: float = Field(
        default=900,
        ge=0,
        description="Delivery latency (seconds) above which a subscription is Critical. Also applies to tracer tokens.",
    )
    max_pending_commands_warning_threshold: int = Field(
        default=10_000,
        ge=0,
        description="Undelivered command backlog above which a subscription is reported as Warning.",
    )
    max_pending_commands_critical_threshold: int = Field(
        default=50_000,
        ge=0,
        description="Undelivered command backlog above which a subscription is Critical.",
    )
    polling_interval_ms: int = Field(
        default=60_000,
        ge=10,
        le=86_400_000,
        description="Cadence of health cycles. A cycle that overruns delays the next one instead of overlapping it.",
    )
    enable_tracer_tokens: bool = Field(
        default=True,
        description="Collect tracer-token round trips each cycle and post new tokens on their own cadence.",
    )
    tracer_token_interval_minutes: float = Field(
        default=15,
        gt=0,
        description="Cadence for posting tracer tokens to every publication of every monitored server.",
    )
    history_retention_count: int = Field(
        default=100,
        ge=1,
        le=10_000,
        description="Maximum number of latency points kept per (publication, subscriber, subscriber db) series.",
    )
    alert_retention_hours: float = Field(
        default=24,
        gt=0,
        description="Alerts older than this are expired at the start of the next cycle.",
    )

    model_config = SettingsConfigDict(env_prefix="REPLMON_MONITORING_", frozen=True, extra="forbid")

    @model_validator(mode="after")
    def _check_tiers(self) -> "MonitoringSettings":
        if self.max_latency_warning_threshold >= self.max_latency_critical_threshold:
            raise ValueError("latency warning threshold must be lower than the critical threshold")
        if self.max_pending_commands_warning_threshold >= self.max_pending_commands_critical_threshold:
            raise ValueError("pending-commands warning threshold must be lower than the critical threshold")
        return self

    @property
    def polling_interval_seconds(self) -> float:
        return self.polling_interval_ms / 1000.0

    @property
    def tracer_token_interval_seconds(self) -> float:
        return self.tracer_token_interval_minutes * 60.0


class DataSourceSettings(BaseSettings):
    """Settings for the HTTP replication metrics gateway each connection points at."""

    http_timeout_seconds: float = Field(
        default=10.0,
        ge=1.0,
        le=120.0,
        description=(
            "Timeout applied to every gateway call. The engine imposes no timeout of its own, so this is what keeps a "
            "hung server from stalling a whole cycle."
        ),
    )
    max_tracer_tokens_per_publication: int = Field(
        default=5,
        ge=1,
        le=100,
        description="Only the most recent tokens per publication are reported to keep cycles cheap.",
    )

    model_config = SettingsConfigDict(env_prefix="REPLMON_SOURCE_")


class TopologySettings(BaseSettings):
    """Where monitored server connections are read from."""

    file: Path | None = Field(
        default=None,
        description="YAML file listing monitored connections. When unset the monitor starts with no connections.",
    )
    cache_ttl_seconds: int = Field(
        default=5,
        ge=0,
        le=300,
        description="How long a parsed topology file is reused before the file is read again.",
    )

    model_config = SettingsConfigDict(env_prefix="REPLMON_TOPOLOGY_")


class ApiSettings(BaseSettings):
    """API-level configuration for the FastAPI application."""

    host: str = Field(default="0.0.0.0", description="Address uvicorn should bind to.")
    port: int = Field(default=4200, ge=1, le=65535, description="Port exposed for HTTP traffic.")
    enable_cors: bool = Field(
        default=True,
        description="Whether to allow cross-origin requests from a dashboard served elsewhere.",
    )
    allowed_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:5173"],
        description="Whitelisted origins if CORS is enabled.",
    )
    autostart: bool = Field(default=True, description="Start the polling scheduler when the application starts.")

    model_config = SettingsConfigDict(env_prefix="REPLMON_API_")


class Settings(BaseSettings):
    """Top-level settings container that aggregates subsystem configuration."""

    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)
    source: DataSourceSettings = Field(default_factory=DataSourceSettings)
    topology: TopologySettings = Field(default_factory=TopologySettings)
    api: ApiSettings = Field(default_factory=ApiSettings)

    model_config = SettingsConfigDict(env_prefix="REPLMON_", env_nested_delimiter="__")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the cached settings instance; tests override values by clearing the cache."""

    return Settings()


class ConfigurationStore:
    """Holds the active :class:`MonitoringSettings` and applies partial updates atomically."""

    def __init__(self, initial: MonitoringSettings | None = None) -> None:
        self._current = initial or MonitoringSettings()

    @property
    def current(self) -> MonitoringSettings:
        return self._current

    def preview(self, partial: Mapping[str, Any]) -> MonitoringSettings:
        """Validate ``partial`` merged over the current settings without applying it."""

        merged = {**self._current.model_dump(), **dict(partial)}
        try:
            return MonitoringSettings(**merged)
        except ValidationError as exc:
            raise DiagnosticError.invalid_config(exc) from exc

    def update(self, partial: Mapping[str, Any]) -> MonitoringSettings:
        """Merge ``partial`` into the active settings; on failure nothing changes."""

        candidate = self.preview(partial)
        self._current = candidate
        return candidate


__all__ = [
    "Settings",
    "get_settings",
    "MonitoringSettings",
    "DataSourceSettings",
    "TopologySettings",
    "ApiSettings",
    "ConfigurationStore",
]
