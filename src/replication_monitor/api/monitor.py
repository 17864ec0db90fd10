"""Scheduler lifecycle and alert commands."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from replication_monitor.services.scheduler import MonitorScheduler
from replication_monitor.utils.diagnostics import DiagnosticError

from .dependencies import scheduler_dep
from .health import serialize_snapshot

router = APIRouter(prefix="/api", tags=["monitor"])


class TracerTokenRequest(BaseModel):
    publication: str = Field(min_length=1)


def _state(scheduler: MonitorScheduler) -> dict[str, object]:
    return {"state": scheduler.state.value, "cyclesCompleted": scheduler.cycles_completed}


@router.get("/monitor")
async def monitor_state(scheduler: MonitorScheduler = Depends(scheduler_dep)) -> dict[str, object]:
    return _state(scheduler)


@router.post("/monitor/start", status_code=status.HTTP_202_ACCEPTED)
async def start_monitor(scheduler: MonitorScheduler = Depends(scheduler_dep)) -> dict[str, object]:
    await scheduler.start()
    return _state(scheduler)


@router.post("/monitor/stop", status_code=status.HTTP_202_ACCEPTED)
async def stop_monitor(scheduler: MonitorScheduler = Depends(scheduler_dep)) -> dict[str, object]:
    await scheduler.stop()
    return _state(scheduler)


@router.post("/monitor/refresh")
async def refresh_health(scheduler: MonitorScheduler = Depends(scheduler_dep)) -> dict[str, object]:
    """Run a cycle immediately and return its snapshot."""

    snapshot = await scheduler.refresh()
    if snapshot is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Health cycle failed; check the service log.",
        )
    return serialize_snapshot(snapshot)


@router.delete("/alerts/{alert_id}")
async def clear_alert(alert_id: str, scheduler: MonitorScheduler = Depends(scheduler_dep)) -> dict[str, object]:
    """Dismiss an alert; unknown ids are accepted and reported as not removed."""

    removed = await scheduler.clear_alert(alert_id)
    return {"alertId": alert_id, "cleared": removed}


@router.post("/tracer-tokens", status_code=status.HTTP_202_ACCEPTED)
async def post_tracer_token(
    payload: TracerTokenRequest,
    scheduler: MonitorScheduler = Depends(scheduler_dep),
) -> dict[str, object]:
    try:
        connection = await scheduler.insert_tracer_token(payload.publication)
    except DiagnosticError as diagnostic:
        raise HTTPException(
            status_code=diagnostic.http_status,
            detail={"code": diagnostic.code, "message": diagnostic.message, "detail": diagnostic.detail},
        ) from diagnostic
    return {"publication": payload.publication, "connection": connection.id}


__all__ = ["router"]
