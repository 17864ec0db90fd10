"""Health dashboard endpoints."""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from datetime import datetime

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from replication_monitor.services.models import (
    AgentStatus,
    Alert,
    HealthSnapshot,
    LatencyMetric,
    PublicationStats,
    TracerTokenResult,
)
from replication_monitor.services.scheduler import MonitorScheduler

from .dependencies import scheduler_dep

router = APIRouter(prefix="/api/health", tags=["health"])

_STREAM_BACKLOG = 16


@router.get("")
async def health_snapshot(scheduler: MonitorScheduler = Depends(scheduler_dep)) -> dict[str, object]:
    """Return the latest published snapshot, or an empty healthy one before the first cycle."""

    return serialize_snapshot(scheduler.latest() or HealthSnapshot.empty())


@router.get("/stream")
async def health_stream(request: Request, scheduler: MonitorScheduler = Depends(scheduler_dep)) -> StreamingResponse:
    """Push every published snapshot as a server-sent event."""

    queue: asyncio.Queue[HealthSnapshot] = asyncio.Queue(maxsize=_STREAM_BACKLOG)

    def enqueue(snapshot: HealthSnapshot) -> None:
        if queue.full():
            # A slow client only needs the newest state.
            queue.get_nowait()
        queue.put_nowait(snapshot)

    subscription = scheduler.on_health_update(enqueue)
    latest = scheduler.latest()
    if latest is not None:
        enqueue(latest)

    async def iter_snapshots() -> AsyncIterator[str]:
        try:
            while not await request.is_disconnected():
                try:
                    snapshot = await asyncio.wait_for(queue.get(), timeout=15.0)
                except asyncio.TimeoutError:
                    yield ": keep-alive\n\n"
                    continue
                yield f"event: health\ndata: {json.dumps(serialize_snapshot(snapshot))}\n\n"
        finally:
            subscription.close()

    headers = {
        "Cache-Control": "no-cache",
        "Connection": "keep-alive",
        "X-Accel-Buffering": "no",
    }
    return StreamingResponse(iter_snapshots(), media_type="text/event-stream", headers=headers)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def serialize_alert(alert: Alert) -> dict[str, object]:
    return {
        "id": alert.id,
        "severity": alert.severity.label,
        "message": alert.message,
        "createdAt": alert.created_at.isoformat(),
        "source": {
            "publication": alert.source.publication,
            "subscriber": alert.source.subscriber,
            "subscriberDb": alert.source.subscriber_db,
            "agent": alert.source.agent,
        },
        "category": alert.category.value,
        "recommendedAction": alert.recommended_action,
    }


def _serialize_metric(metric: LatencyMetric) -> dict[str, object]:
    return {
        "publication": metric.publication,
        "subscriber": metric.subscriber,
        "subscriberDb": metric.subscriber_db,
        "latencySeconds": metric.latency_seconds,
        "pendingCommands": metric.pending_commands,
        "estimatedSecondsToDrain": metric.estimated_seconds_to_drain,
        "deliveryRate": metric.delivery_rate,
        "collectedAt": metric.collected_at.isoformat(),
        "history": [
            {"timestamp": point.timestamp.isoformat(), "latencySeconds": point.latency_seconds}
            for point in metric.history
        ],
    }


def _serialize_agent(agent: AgentStatus) -> dict[str, object]:
    return {
        "name": agent.name,
        "kind": agent.kind.value,
        "runState": agent.run_state.value,
        "lastStart": _iso(agent.last_start),
        "lastDuration": agent.last_duration_seconds,
        "lastOutcome": agent.last_outcome.value,
        "errorMessage": agent.error_message,
        "performance": {
            "commandsPerSecond": agent.performance.commands_per_second,
            "avgLatencySeconds": agent.performance.avg_latency_seconds,
            "memoryMB": agent.performance.memory_mb,
            "cpuPercent": agent.performance.cpu_percent,
        },
    }


def _serialize_token(token: TracerTokenResult) -> dict[str, object]:
    return {
        "id": token.id,
        "publication": token.publication,
        "publisherInsertTime": token.publisher_insert_time.isoformat(),
        "distributorInsertTime": _iso(token.distributor_insert_time),
        "subscriberInsertTime": _iso(token.subscriber_insert_time),
        "totalLatencySeconds": token.total_latency_seconds,
        "subscriber": token.subscriber,
        "subscriberDb": token.subscriber_db,
    }


def _serialize_publication(stats: PublicationStats) -> dict[str, object]:
    return {
        "name": stats.name,
        "subscriptionCount": stats.subscription_count,
        "articleCount": stats.article_count,
        "totalCommandsDelivered": stats.total_commands_delivered,
        "averageCommandSize": stats.average_command_size,
        "retentionHours": stats.retention_hours,
        "transactionsPerSecond": stats.transactions_per_second,
    }


def serialize_snapshot(snapshot: HealthSnapshot) -> dict[str, object]:
    summary = snapshot.agent_status_summary
    return {
        "status": snapshot.status.value,
        "takenAt": snapshot.taken_at.isoformat(),
        "alerts": [serialize_alert(alert) for alert in snapshot.alerts],
        "latencyMetrics": [_serialize_metric(metric) for metric in snapshot.latency_metrics],
        "agents": [_serialize_agent(agent) for agent in snapshot.agents],
        "agentStatusSummary": {"running": summary.running, "stopped": summary.stopped, "error": summary.error},
        "tracerTokens": [_serialize_token(token) for token in snapshot.tracer_tokens],
        "publicationStats": [_serialize_publication(stats) for stats in snapshot.publication_stats],
    }


__all__ = ["router", "serialize_snapshot", "serialize_alert"]
