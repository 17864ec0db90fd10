"""Metrics data source contract and the HTTP gateway implementation."""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

import httpx

from replication_monitor.config import DataSourceSettings
from replication_monitor.services.models import (
    AgentKind,
    AgentPerformance,
    AgentRunState,
    AgentStatus,
    Connection,
    LatencyMetric,
    PublicationStats,
    RunOutcome,
    TracerTokenResult,
    utcnow,
)
from replication_monitor.utils.diagnostics import DiagnosticError
from replication_monitor.utils.logging import Logger


class MetricsDataSource(Protocol):
    """Read (and one write) operations the engine needs from a monitored server.

    Every fetch must terminate and must return an empty sequence when there is simply nothing to report. Exceptions are
    reserved for transport or authentication failures.
    """

    async def fetch_agent_statuses(self, connection: Connection) -> Sequence[AgentStatus]: ...

    async def fetch_latency_metrics(self, connection: Connection) -> Sequence[LatencyMetric]: ...

    async def fetch_tracer_tokens(self, connection: Connection) -> Sequence[TracerTokenResult]: ...

    async def fetch_publication_stats(self, connection: Connection) -> Sequence[PublicationStats]: ...

    async def insert_tracer_token(self, connection: Connection, publication: str) -> str | None: ...


class HttpMetricsSource:
    """Reads replication metrics from the JSON gateway a connection's ``endpoint`` points at.

    The gateway fronts the distributor's monitoring procedures (``sp_replmonitorhelpsubscription``,
    ``sp_helptracertokenhistory``...) and returns their rows mostly untouched, so the raw codes are normalized here
    and nothing past this class ever branches on gateway-specific shapes.
    """

    def __init__(
        self,
        settings: DataSourceSettings,
        logger: Logger,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings
        self._logger = logger
        self._client = client

    async def aclose(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _client_instance(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._settings.http_timeout_seconds)
        return self._client

    def _url(self, connection: Connection, path: str) -> str:
        if not connection.endpoint:
            raise DiagnosticError(
                "ConnectionEndpointMissing",
                f"Connection '{connection.label}' has no metrics endpoint configured.",
            )
        return f"{connection.endpoint.rstrip('/')}/{path}"

    async def _get_records(self, connection: Connection, path: str) -> list[Mapping[str, Any]]:
        client = await self._client_instance()
        response = await client.get(self._url(connection, path))
        response.raise_for_status()
        return _records(response.json())

    async def fetch_agent_statuses(self, connection: Connection) -> list[AgentStatus]:
        rows = await self._get_records(connection, "agents")
        return [_agent_from_row(row) for row in rows if row.get("name")]

    async def fetch_latency_metrics(self, connection: Connection) -> list[LatencyMetric]:
        rows = await self._get_records(connection, "latency")
        collected_at = utcnow()
        return [_latency_from_row(row, collected_at) for row in rows if row.get("publication")]

    async def fetch_tracer_tokens(self, connection: Connection) -> list[TracerTokenResult]:
        rows = await self._get_records(connection, "tracer-tokens")
        tokens = [token for token in (_tracer_token_from_row(row) for row in rows) if token is not None]
        return _most_recent_per_publication(tokens, self._settings.max_tracer_tokens_per_publication)

    async def fetch_publication_stats(self, connection: Connection) -> list[PublicationStats]:
        rows = await self._get_records(connection, "publications")
        return [_publication_from_row(row) for row in rows if row.get("publication") or row.get("name")]

    async def insert_tracer_token(self, connection: Connection, publication: str) -> str | None:
        """Post a tracer token and return its id as reported by the publisher."""

        client = await self._client_instance()
        response = await client.post(self._url(connection, "tracer-tokens"), json={"publication": publication})
        if response.status_code == httpx.codes.NOT_FOUND:
            raise DiagnosticError(
                "PublicationNotFound",
                f"Publication '{publication}' is not published from {connection.label}.",
            )
        response.raise_for_status()
        payload = response.json() if response.content else {}
        tracer_id = payload.get("tracer_id") if isinstance(payload, Mapping) else None
        self._logger.debug(
            "tracer_token_posted",
            extra={"connection": connection.id, "publication": publication, "tracer_id": tracer_id},
        )
        return str(tracer_id) if tracer_id is not None else None


_RUN_STATE_BY_CODE = {
    1: AgentRunState.RUNNING,
    2: AgentRunState.STOPPED,
    3: AgentRunState.RETRYING,
    4: AgentRunState.FAILED,
    5: AgentRunState.COMPLETING,
}

_OUTCOME_BY_STATE_CODE = {
    1: RunOutcome.SUCCEEDED,
    2: RunOutcome.SUCCEEDED,
    3: RunOutcome.RETRY,
    4: RunOutcome.FAILED,
    5: RunOutcome.SUCCEEDED,
}

# sysjobhistory.run_status
_OUTCOME_BY_JOB_STATUS = {
    0: RunOutcome.FAILED,
    1: RunOutcome.SUCCEEDED,
    2: RunOutcome.RETRY,
    3: RunOutcome.CANCELLED,
}


def _records(payload: Any) -> list[Mapping[str, Any]]:
    """Accept either a bare list of rows or an object wrapping them."""

    if isinstance(payload, Mapping):
        for key in ("items", "rows", "data"):
            if isinstance(payload.get(key), list):
                payload = payload[key]
                break
        else:
            return []
    if not isinstance(payload, list):
        return []
    return [row for row in payload if isinstance(row, Mapping)]


def _safe_float(value: Any, default: float = 0.0) -> float:
    parsed = _optional_float(value)
    return default if parsed is None else parsed


def _optional_float(value: Any) -> float | None:
    """Parse a gateway number; ``NaN`` and infinities count as missing."""

    if value is None:
        return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    return parsed if math.isfinite(parsed) else None


def _safe_int(value: Any, default: int = 0) -> int:
    try:
        if value is None:
            return default
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return default


def _parse_timestamp(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _decode_hhmmss(value: Any) -> float:
    """Decode SQL Agent's ``HHMMSS`` integer durations (``13005`` is 1h 30m 5s)."""

    raw = _safe_int(value)
    if raw <= 0:
        return 0.0
    hours, remainder = divmod(raw, 10_000)
    minutes, seconds = divmod(remainder, 100)
    return float(hours * 3600 + minutes * 60 + seconds)


def _run_state(value: Any) -> AgentRunState:
    if isinstance(value, str) and not value.isdigit():
        for state in AgentRunState:
            if state.value.lower() == value.strip().lower():
                return state
        return AgentRunState.FAILED
    return _RUN_STATE_BY_CODE.get(_safe_int(value, default=-1), AgentRunState.FAILED)


def _run_outcome(row: Mapping[str, Any]) -> RunOutcome:
    explicit = row.get("last_run_outcome")
    if isinstance(explicit, str) and not explicit.isdigit():
        for outcome in RunOutcome:
            if outcome.value.lower() == explicit.strip().lower():
                return outcome
    elif explicit is not None:
        return _OUTCOME_BY_JOB_STATUS.get(_safe_int(explicit, default=-1), RunOutcome.FAILED)
    status = row.get("status")
    if isinstance(status, str) and not status.isdigit():
        state = _run_state(status)
        return {
            AgentRunState.FAILED: RunOutcome.FAILED,
            AgentRunState.RETRYING: RunOutcome.RETRY,
        }.get(state, RunOutcome.SUCCEEDED)
    return _OUTCOME_BY_STATE_CODE.get(_safe_int(status, default=-1), RunOutcome.FAILED)


def _agent_kind(row: Mapping[str, Any]) -> AgentKind:
    declared = str(row.get("type") or row.get("agent_type") or "").replace(" ", "").lower()
    for kind in AgentKind:
        if kind.value.lower() == declared:
            return kind
    name = str(row.get("name", "")).lower()
    if "snapshot" in name:
        return AgentKind.SNAPSHOT
    if "logreader" in name or "log reader" in name:
        return AgentKind.LOG_READER
    return AgentKind.DISTRIBUTION


def _agent_from_row(row: Mapping[str, Any]) -> AgentStatus:
    if "run_duration" in row:
        duration = _decode_hhmmss(row.get("run_duration"))
    else:
        duration = _safe_float(row.get("duration"))
    message = row.get("last_message") or row.get("error_message") or None
    return AgentStatus(
        name=str(row["name"]),
        kind=_agent_kind(row),
        run_state=_run_state(row.get("status")),
        last_outcome=_run_outcome(row),
        last_start=_parse_timestamp(row.get("start_time")),
        last_duration_seconds=duration,
        error_message=str(message) if message else None,
        performance=AgentPerformance(
            commands_per_second=_safe_float(row.get("delivery_rate")),
            avg_latency_seconds=_safe_float(row.get("delivery_latency")),
            memory_mb=_safe_float(row.get("memory_mb")),
            cpu_percent=_safe_float(row.get("cpu_percent")),
        ),
    )


def _latency_from_row(row: Mapping[str, Any], collected_at: datetime) -> LatencyMetric:
    return LatencyMetric(
        publication=str(row["publication"]),
        subscriber=str(row.get("subscriber") or ""),
        subscriber_db=str(row.get("subscriber_db") or ""),
        latency_seconds=_safe_float(row.get("latency")),
        pending_commands=_safe_int(row.get("commands_in_distrib")),
        estimated_seconds_to_drain=_safe_float(row.get("estimated_time_to_completion")),
        delivery_rate=_safe_float(row.get("delivery_rate")),
        collected_at=_parse_timestamp(row.get("collected_at")) or collected_at,
    )


def _tracer_token_from_row(row: Mapping[str, Any]) -> TracerTokenResult | None:
    committed = _parse_timestamp(row.get("publisher_commit"))
    if committed is None or row.get("tracer_id") is None or not row.get("publication"):
        return None
    distributor_latency = _optional_float(row.get("distributor_latency"))
    overall_latency = _optional_float(row.get("overall_latency"))
    return TracerTokenResult(
        id=str(row["tracer_id"]),
        publication=str(row["publication"]),
        publisher_insert_time=committed,
        total_latency_seconds=overall_latency,
        distributor_insert_time=(
            committed + timedelta(seconds=distributor_latency) if distributor_latency is not None else None
        ),
        subscriber_insert_time=committed + timedelta(seconds=overall_latency) if overall_latency is not None else None,
        subscriber=row.get("subscriber"),
        subscriber_db=row.get("subscriber_db"),
    )


def _most_recent_per_publication(tokens: list[TracerTokenResult], limit: int) -> list[TracerTokenResult]:
    """Keep rows belonging to the ``limit`` newest tracer ids of each publication."""

    newest_ids: dict[str, list[str]] = {}
    for token in sorted(tokens, key=lambda t: t.publisher_insert_time, reverse=True):
        ids = newest_ids.setdefault(token.publication, [])
        if token.id not in ids and len(ids) < limit:
            ids.append(token.id)
    return [token for token in tokens if token.id in newest_ids.get(token.publication, ())]


def _publication_from_row(row: Mapping[str, Any]) -> PublicationStats:
    return PublicationStats(
        name=str(row.get("publication") or row.get("name")),
        subscription_count=_safe_int(row.get("subscription_count")),
        article_count=_safe_int(row.get("article_count")),
        total_commands_delivered=_safe_int(row.get("delivered_commands")),
        average_command_size=_safe_float(row.get("average_command_size")),
        retention_hours=_safe_float(row.get("retention_period")),
        transactions_per_second=_safe_float(row.get("transaction_rate")),
    )


__all__ = ["MetricsDataSource", "HttpMetricsSource"]
