"""Monitoring configuration endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from replication_monitor.config import MonitoringSettings
from replication_monitor.services.scheduler import MonitorScheduler
from replication_monitor.utils.diagnostics import DiagnosticError

from .dependencies import scheduler_dep

router = APIRouter(prefix="/api/config", tags=["config"])


class MonitoringConfigUpdate(BaseModel):
    """Partial update; keys may be camelCase (as dashboards send them) or snake_case."""

    max_latency_warning_threshold: float | None = None
    max_latency_critical_threshold: float | None = None
    max_pending_commands_warning_threshold: int | None = None
    max_pending_commands_critical_threshold: int | None = None
    polling_interval_ms: int | None = None
    enable_tracer_tokens: bool | None = None
    tracer_token_interval_minutes: float | None = None
    history_retention_count: int | None = None
    alert_retention_hours: float | None = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


def serialize_config(config: MonitoringSettings) -> dict[str, object]:
    return {to_camel(name): value for name, value in config.model_dump().items()}


@router.get("")
async def get_config(scheduler: MonitorScheduler = Depends(scheduler_dep)) -> dict[str, object]:
    return serialize_config(scheduler.config)


@router.patch("")
async def update_config(
    update: MonitoringConfigUpdate,
    scheduler: MonitorScheduler = Depends(scheduler_dep),
) -> dict[str, object]:
    """Apply a partial configuration and restart polling with it."""

    partial = update.model_dump(exclude_unset=True)
    try:
        config = await scheduler.update_config(partial)
    except DiagnosticError as diagnostic:
        raise HTTPException(
            status_code=diagnostic.http_status,
            detail={"code": diagnostic.code, "message": diagnostic.message, "detail": diagnostic.detail},
        ) from diagnostic
    return serialize_config(config)


__all__ = ["router", "MonitoringConfigUpdate", "serialize_config"]
