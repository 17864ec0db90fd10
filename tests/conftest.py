from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone

import pytest

from replication_monitor.config import MonitoringSettings
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
)
from replication_monitor.utils.diagnostics import DiagnosticError

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now = self.now + timedelta(**delta)


class FakeDataSource:
    """Scriptable metrics source keyed by connection id."""

    def __init__(self) -> None:
        self.agents: dict[str, list[AgentStatus]] = defaultdict(list)
        self.latency: dict[str, list[LatencyMetric]] = defaultdict(list)
        self.tokens: dict[str, list[TracerTokenResult]] = defaultdict(list)
        self.publications: dict[str, list[PublicationStats]] = defaultdict(list)
        self.failures: dict[tuple[str, str], Exception] = {}
        self.calls: list[tuple[str, str]] = []
        self.inserted: list[tuple[str, str]] = []
        self.delay = 0.0

    async def _fetch(self, connection: Connection, category: str, store: dict) -> list:
        self.calls.append((connection.id, category))
        if self.delay:
            await asyncio.sleep(self.delay)
        failure = self.failures.get((connection.id, category))
        if failure is not None:
            raise failure
        return list(store[connection.id])

    async def fetch_agent_statuses(self, connection: Connection) -> list[AgentStatus]:
        return await self._fetch(connection, "agents", self.agents)

    async def fetch_latency_metrics(self, connection: Connection) -> list[LatencyMetric]:
        return await self._fetch(connection, "latency", self.latency)

    async def fetch_tracer_tokens(self, connection: Connection) -> list[TracerTokenResult]:
        return await self._fetch(connection, "tracer_tokens", self.tokens)

    async def fetch_publication_stats(self, connection: Connection) -> list[PublicationStats]:
        return await self._fetch(connection, "publications", self.publications)

    async def insert_tracer_token(self, connection: Connection, publication: str) -> str | None:
        failure = self.failures.get((connection.id, "insert"))
        if failure is not None:
            raise failure
        if publication not in {stats.name for stats in self.publications[connection.id]}:
            raise DiagnosticError("PublicationNotFound", f"Publication '{publication}' is not published.")
        self.inserted.append((connection.id, publication))
        return str(len(self.inserted))


def make_agent(
    name: str = "DIST-Sales-1",
    run_state: AgentRunState = AgentRunState.RUNNING,
    cpu_percent: float = 10.0,
    error_message: str | None = None,
) -> AgentStatus:
    return AgentStatus(
        name=name,
        kind=AgentKind.DISTRIBUTION,
        run_state=run_state,
        last_outcome=RunOutcome.FAILED if run_state is AgentRunState.FAILED else RunOutcome.SUCCEEDED,
        last_start=T0,
        error_message=error_message,
        performance=AgentPerformance(commands_per_second=50.0, cpu_percent=cpu_percent),
    )


def make_metric(
    latency_seconds: float = 30.0,
    pending_commands: int = 0,
    publication: str = "SalesPub",
    subscriber: str = "SUB01",
    subscriber_db: str = "SalesReplica",
    collected_at: datetime = T0,
) -> LatencyMetric:
    return LatencyMetric(
        publication=publication,
        subscriber=subscriber,
        subscriber_db=subscriber_db,
        latency_seconds=latency_seconds,
        pending_commands=pending_commands,
        collected_at=collected_at,
    )


def make_token(tracer_id: str = "1", publication: str = "SalesPub", total: float | None = 12.0) -> TracerTokenResult:
    return TracerTokenResult(
        id=tracer_id,
        publication=publication,
        publisher_insert_time=T0,
        total_latency_seconds=total,
        distributor_insert_time=T0 + timedelta(seconds=2),
        subscriber_insert_time=T0 + timedelta(seconds=total) if total is not None else None,
    )


async def wait_until(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


@pytest.fixture
def logger() -> logging.Logger:
    return logging.getLogger("replmon.tests")


@pytest.fixture
def source() -> FakeDataSource:
    return FakeDataSource()


@pytest.fixture
def connection() -> Connection:
    return Connection(id="prod", server_name="SQLPROD01", endpoint="http://gateway/servers/SQLPROD01")


@pytest.fixture
def config() -> MonitoringSettings:
    return MonitoringSettings()
