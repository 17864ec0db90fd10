from itertools import count

import httpx
import pytest
from conftest import FakeClock, make_agent, make_metric, make_token

from replication_monitor.config import MonitoringSettings
from replication_monitor.services.aggregator import HealthAggregator, LoggingAlertNotifier
from replication_monitor.services.alert_ledger import AlertLedger
from replication_monitor.services.collector import MetricsCollector
from replication_monitor.services.history import LatencyHistoryTracker
from replication_monitor.services.models import (
    AgentRunState,
    AlertCategory,
    Connection,
    HealthState,
    PublicationStats,
    Severity,
)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def aggregator(source, logger, clock):
    ids = count(1)
    return HealthAggregator(
        collector=MetricsCollector(source, logger),
        ledger=AlertLedger(clock=clock, id_factory=lambda: f"alert-{next(ids)}"),
        history=LatencyHistoryTracker(),
        logger=logger,
    )


async def test_healthy_cycle(aggregator, source, connection, config):
    source.agents["prod"] = [make_agent()]
    source.latency["prod"] = [make_metric(latency_seconds=30)]

    snapshot = await aggregator.run_cycle([connection], config)

    assert snapshot.status is HealthState.HEALTHY
    assert snapshot.alerts == ()
    assert snapshot.agent_status_summary.running == 1


async def test_critical_latency_raises_single_latency_alert(aggregator, source, connection, config):
    source.latency["prod"] = [make_metric(latency_seconds=950)]

    snapshot = await aggregator.run_cycle([connection], config)

    assert snapshot.status is HealthState.CRITICAL
    [alert] = snapshot.alerts
    assert alert.severity is Severity.CRITICAL
    assert alert.category is AlertCategory.LATENCY
    assert alert.message == "High replication latency (16 minutes) for publication SalesPub"
    assert (alert.source.publication, alert.source.subscriber, alert.source.subscriber_db) == (
        "SalesPub",
        "SUB01",
        "SalesReplica",
    )


async def test_warning_latency_and_backlog(aggregator, source, connection, config):
    source.latency["prod"] = [make_metric(latency_seconds=400, pending_commands=60_000, subscriber="SUB02")]

    snapshot = await aggregator.run_cycle([connection], config)

    assert snapshot.status is HealthState.CRITICAL
    by_category = {alert.category: alert for alert in snapshot.alerts}
    assert by_category[AlertCategory.LATENCY].severity is Severity.WARNING
    assert by_category[AlertCategory.PERFORMANCE].severity is Severity.CRITICAL
    assert "60000" in by_category[AlertCategory.PERFORMANCE].message


async def test_failed_agent_is_critical_error(aggregator, source, connection, config):
    source.agents["prod"] = [
        make_agent("LogReader-1", AgentRunState.FAILED, error_message="Login failed"),
        make_agent("Snapshot-1", AgentRunState.STOPPED),
        make_agent("Dist-1", AgentRunState.RETRYING),
        make_agent("Dist-2"),
    ]

    snapshot = await aggregator.run_cycle([connection], config)

    assert snapshot.status is HealthState.CRITICAL
    summary = snapshot.agent_status_summary
    assert (summary.running, summary.stopped, summary.error) == (1, 2, 1)
    [alert] = snapshot.alerts
    assert alert.category is AlertCategory.ERROR
    assert alert.source.agent == "LogReader-1"
    assert alert.message == "Agent LogReader-1 failed: Login failed"


async def test_high_cpu_raises_performance_warning(aggregator, source, connection, config):
    source.agents["prod"] = [make_agent(cpu_percent=97.5)]

    snapshot = await aggregator.run_cycle([connection], config)

    assert snapshot.status is HealthState.WARNING
    [alert] = snapshot.alerts
    assert alert.category is AlertCategory.PERFORMANCE
    assert alert.severity is Severity.WARNING


async def test_slow_tracer_token_is_critical(aggregator, source, connection, config):
    source.tokens["prod"] = [make_token("1", total=1_200), make_token("2", publication="HRPub", total=None)]

    snapshot = await aggregator.run_cycle([connection], config)

    [alert] = snapshot.alerts
    assert alert.source.publication == "SalesPub"
    assert alert.source.subscriber is None
    assert alert.message == "High tracer token latency (20 minutes) for publication SalesPub"
    assert len(snapshot.tracer_tokens) == 2


async def test_tracer_tokens_ignored_when_disabled(aggregator, source, connection):
    source.tokens["prod"] = [make_token(total=1_200)]

    snapshot = await aggregator.run_cycle([connection], MonitoringSettings(enable_tracer_tokens=False))

    assert snapshot.alerts == ()
    assert snapshot.tracer_tokens == ()


async def test_persistent_condition_keeps_one_alert_across_cycles(aggregator, source, connection, config, clock):
    source.latency["prod"] = [make_metric(latency_seconds=950)]

    first = await aggregator.run_cycle([connection], config)
    for _ in range(4):
        clock.advance(minutes=1)
        snapshot = await aggregator.run_cycle([connection], config)

    assert len(snapshot.alerts) == 1
    assert snapshot.alerts[0].id == first.alerts[0].id
    assert snapshot.alerts[0].created_at == first.alerts[0].created_at
    assert len(snapshot.latency_metrics[0].history) == 5


async def test_cleared_alert_recurs_with_new_id(aggregator, source, connection, config):
    source.latency["prod"] = [make_metric(latency_seconds=950)]
    first = await aggregator.run_cycle([connection], config)

    aggregator.ledger.clear(first.alerts[0].id)
    second = await aggregator.run_cycle([connection], config)

    assert len(second.alerts) == 1
    assert second.alerts[0].id != first.alerts[0].id


async def test_alerts_expire_after_retention(aggregator, source, connection, config, clock):
    source.latency["prod"] = [make_metric(latency_seconds=950)]
    await aggregator.run_cycle([connection], config)

    source.latency["prod"] = [make_metric(latency_seconds=30)]
    clock.advance(hours=25)
    snapshot = await aggregator.run_cycle([connection], config)

    assert snapshot.alerts == ()
    assert snapshot.status is HealthState.HEALTHY


async def test_one_connection_failing_does_not_affect_another(aggregator, source, config, monkeypatch):
    healthy = Connection(id="a", server_name="SQLA")
    broken = Connection(id="b", server_name="SQLB")
    source.agents["a"] = [make_agent()]
    source.publications["a"] = [PublicationStats(name="SalesPub")]
    original = aggregator._collector.collect

    async def collect(connection, include_tracer_tokens=True):
        if connection.id == "b":
            raise httpx.ConnectError("unreachable")
        return await original(connection, include_tracer_tokens)

    monkeypatch.setattr(aggregator._collector, "collect", collect)

    snapshot = await aggregator.run_cycle([broken, healthy], config)

    assert snapshot.status is HealthState.HEALTHY
    assert [agent.name for agent in snapshot.agents] == ["DIST-Sales-1"]
    assert [stats.name for stats in snapshot.publication_stats] == ["SalesPub"]


async def test_history_follows_configured_retention(aggregator, source, connection):
    source.latency["prod"] = [make_metric()]
    config = MonitoringSettings(history_retention_count=3)

    for _ in range(5):
        snapshot = await aggregator.run_cycle([connection], config)

    assert len(snapshot.latency_metrics[0].history) == 3


async def test_notifiers_only_see_new_critical_alerts(aggregator, source, connection, config):
    notified = []
    aggregator.add_notifier(notified.append)
    source.latency["prod"] = [make_metric(latency_seconds=950), make_metric(latency_seconds=400, subscriber="SUB02")]

    await aggregator.run_cycle([connection], config)
    await aggregator.run_cycle([connection], config)

    assert [alert.severity for alert in notified] == [Severity.CRITICAL]


async def test_logging_notifier_writes_error(logger, caplog, aggregator, source, connection, config):
    aggregator.add_notifier(LoggingAlertNotifier(logger))
    source.latency["prod"] = [make_metric(latency_seconds=950)]

    with caplog.at_level("ERROR", logger="replmon.tests"):
        await aggregator.run_cycle([connection], config)

    assert any("High replication latency" in record.getMessage() for record in caplog.records)


async def test_no_connections_is_healthy(aggregator, config):
    snapshot = await aggregator.run_cycle([], config)

    assert snapshot.status is HealthState.HEALTHY
    assert snapshot.agents == ()


async def test_connection_with_unusable_metric_is_skipped(aggregator, source, config):
    good = Connection(id="good", server_name="SQLGOOD")
    bad = Connection(id="bad", server_name="SQLBAD")
    source.agents["good"] = [make_agent()]
    source.agents["bad"] = [make_agent("Dist-bad")]
    source.latency["bad"] = [make_metric(latency_seconds=float("nan"))]

    snapshot = await aggregator.run_cycle([good, bad], config)

    assert snapshot.status is HealthState.HEALTHY
    assert [agent.name for agent in snapshot.agents] == ["DIST-Sales-1"]
    assert snapshot.agent_status_summary.running == 1
    assert snapshot.latency_metrics == ()
