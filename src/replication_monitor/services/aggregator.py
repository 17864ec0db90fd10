"""One polling cycle: collect, classify, reconcile alerts, and assemble a snapshot."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field, replace

from replication_monitor.config import MonitoringSettings
from replication_monitor.services.alert_ledger import AlertLedger
from replication_monitor.services.collector import MetricsCollector
from replication_monitor.services.history import LatencyHistoryTracker
from replication_monitor.services.models import (
    AgentRunState,
    AgentStatus,
    AgentStatusSummary,
    Alert,
    AlertCandidate,
    AlertCategory,
    AlertSource,
    CollectedMetrics,
    Connection,
    HealthSnapshot,
    HealthState,
    LatencyMetric,
    LatencyPoint,
    PublicationStats,
    Severity,
    TracerTokenResult,
)
from replication_monitor.services.thresholds import (
    classify_agent,
    classify_backlog,
    classify_latency,
    classify_tracer_token,
    is_cpu_saturated,
)
from replication_monitor.utils.logging import Logger

AlertNotifier = Callable[[Alert], None]


class HealthAggregator:
    """Runs health cycles over every monitored connection.

    Connections are collected concurrently, then folded into the alert ledger and history tracker one at a time in
    connection order so alert creation stays deterministic. A connection whose collection raises contributes nothing to
    the cycle; the others are unaffected.
    """

    def __init__(
        self,
        collector: MetricsCollector,
        ledger: AlertLedger,
        history: LatencyHistoryTracker,
        logger: Logger,
        notifiers: Sequence[AlertNotifier] = (),
    ) -> None:
        self._collector = collector
        self._ledger = ledger
        self._history = history
        self._logger = logger
        self._notifiers: list[AlertNotifier] = list(notifiers)

    @property
    def ledger(self) -> AlertLedger:
        return self._ledger

    @property
    def history(self) -> LatencyHistoryTracker:
        return self._history

    def add_notifier(self, notifier: AlertNotifier) -> None:
        self._notifiers.append(notifier)

    async def run_cycle(self, connections: Sequence[Connection], config: MonitoringSettings) -> HealthSnapshot:
        self._history.resize(config.history_retention_count)
        expired = self._ledger.expire(config.alert_retention_hours)
        if expired:
            self._logger.debug("alerts_expired", extra={"count": len(expired)})

        results = await asyncio.gather(
            *(self._collector.collect(connection, config.enable_tracer_tokens) for connection in connections),
            return_exceptions=True,
        )

        cycle = _CycleState()
        for connection, result in zip(connections, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                self._logger.warning(
                    "connection_collect_failed",
                    extra={"connection": connection.id, "server": connection.server_name, "error": str(result)},
                )
                continue
            # A connection's partial results only reach the snapshot if its whole fold succeeds.
            part = _CycleState()
            try:
                self._fold(result, config, part)
            except Exception as exc:
                self._logger.warning(
                    "connection_fold_failed",
                    extra={"connection": connection.id, "server": connection.server_name, "error": str(exc)},
                )
                continue
            cycle.merge(part)

        alerts = self._ledger.snapshot_all()
        severity = max([alert.severity for alert in alerts] + [cycle.severity], default=Severity.NONE)
        snapshot = HealthSnapshot(
            status=HealthState.from_severity(severity),
            alerts=alerts,
            latency_metrics=tuple(cycle.latency_metrics),
            agents=tuple(cycle.agents),
            agent_status_summary=AgentStatusSummary(
                running=cycle.running, stopped=cycle.stopped, error=cycle.error
            ),
            tracer_tokens=tuple(cycle.tracer_tokens),
            publication_stats=tuple(cycle.publication_stats),
        )
        self._logger.info(
            "cycle_completed",
            extra={
                "status": snapshot.status.value,
                "connections": len(connections),
                "alerts": len(alerts),
                "agents": len(snapshot.agents),
                "metrics": len(snapshot.latency_metrics),
            },
        )
        return snapshot

    def _fold(self, collected: CollectedMetrics, config: MonitoringSettings, cycle: "_CycleState") -> None:
        for agent in collected.agents:
            self._check_agent(agent, cycle)
        for metric in collected.latency_metrics:
            cycle.latency_metrics.append(self._check_latency(metric, config))
        if config.enable_tracer_tokens:
            for token in collected.tracer_tokens:
                self._check_tracer_token(token, config)
            cycle.tracer_tokens.extend(collected.tracer_tokens)
        cycle.publication_stats.extend(collected.publication_stats)

    def _check_agent(self, agent: AgentStatus, cycle: "_CycleState") -> None:
        cycle.agents.append(agent)
        if agent.run_state is AgentRunState.RUNNING:
            cycle.running += 1
        elif classify_agent(agent.run_state) is Severity.CRITICAL:
            cycle.error += 1
            cycle.severity = Severity.CRITICAL
            self._raise(
                AlertCandidate(
                    severity=Severity.CRITICAL,
                    message=f"Agent {agent.name} failed: {agent.error_message or 'no error message reported'}",
                    source=AlertSource(agent=agent.name),
                    category=AlertCategory.ERROR,
                    recommended_action="Check the agent error log and restart the agent if necessary.",
                )
            )
        else:
            cycle.stopped += 1

        if is_cpu_saturated(agent.performance.cpu_percent):
            self._raise(
                AlertCandidate(
                    severity=Severity.WARNING,
                    message=f"High CPU usage ({agent.performance.cpu_percent:g}%) for agent {agent.name}",
                    source=AlertSource(agent=agent.name),
                    category=AlertCategory.PERFORMANCE,
                    recommended_action="Consider optimizing the publication or scaling up the server resources.",
                )
            )

    def _check_latency(self, metric: LatencyMetric, config: MonitoringSettings) -> LatencyMetric:
        source = AlertSource(
            publication=metric.publication,
            subscriber=metric.subscriber,
            subscriber_db=metric.subscriber_db,
        )
        minutes = round(metric.latency_seconds / 60)

        latency = classify_latency(
            metric.latency_seconds, config.max_latency_warning_threshold, config.max_latency_critical_threshold
        )
        if latency is Severity.CRITICAL:
            self._raise(
                AlertCandidate(
                    severity=latency,
                    message=f"High replication latency ({minutes} minutes) for publication {metric.publication}",
                    source=source,
                    category=AlertCategory.LATENCY,
                    recommended_action="Check network connectivity and agent status. Consider reducing the publication load.",
                )
            )
        elif latency is Severity.WARNING:
            self._raise(
                AlertCandidate(
                    severity=latency,
                    message=f"Elevated replication latency ({minutes} minutes) for publication {metric.publication}",
                    source=source,
                    category=AlertCategory.LATENCY,
                    recommended_action="Monitor the situation and prepare to take action if latency continues to increase.",
                )
            )

        backlog = classify_backlog(
            metric.pending_commands,
            config.max_pending_commands_warning_threshold,
            config.max_pending_commands_critical_threshold,
        )
        if backlog is Severity.CRITICAL:
            self._raise(
                AlertCandidate(
                    severity=backlog,
                    message=f"High number of pending commands ({metric.pending_commands}) for publication {metric.publication}",
                    source=source,
                    category=AlertCategory.PERFORMANCE,
                    recommended_action="Check for blocking processes at the subscriber and consider increasing agent resources.",
                )
            )
        elif backlog is Severity.WARNING:
            self._raise(
                AlertCandidate(
                    severity=backlog,
                    message=f"Elevated number of pending commands ({metric.pending_commands}) for publication {metric.publication}",
                    source=source,
                    category=AlertCategory.PERFORMANCE,
                    recommended_action="Monitor command backlog and prepare to scale resources if needed.",
                )
            )

        series = self._history.append(metric.series_key, LatencyPoint(metric.collected_at, metric.latency_seconds))
        return replace(metric, history=series)

    def _check_tracer_token(self, token: TracerTokenResult, config: MonitoringSettings) -> None:
        if classify_tracer_token(token.total_latency_seconds, config.max_latency_critical_threshold) is not Severity.CRITICAL:
            return
        minutes = round((token.total_latency_seconds or 0.0) / 60)
        self._raise(
            AlertCandidate(
                severity=Severity.CRITICAL,
                message=f"High tracer token latency ({minutes} minutes) for publication {token.publication}",
                source=AlertSource(publication=token.publication),
                category=AlertCategory.LATENCY,
                recommended_action="Investigate replication bottlenecks and consider optimization.",
            )
        )

    def _raise(self, candidate: AlertCandidate) -> None:
        alert = self._ledger.reconcile(candidate)
        if alert is None or alert.severity is not Severity.CRITICAL:
            return
        for notifier in self._notifiers:
            try:
                notifier(alert)
            except Exception as exc:
                self._logger.exception("alert_notifier_failed", extra={"alert_id": alert.id, "error": str(exc)})


class LoggingAlertNotifier:
    """Surfaces newly created critical alerts in the process log."""

    def __init__(self, logger: Logger) -> None:
        self._logger = logger

    def __call__(self, alert: Alert) -> None:
        self._logger.error(
            "critical_alert_raised: %s",
            alert.message,
            extra={
                "alert_id": alert.id,
                "category": alert.category.value,
                "recommended_action": alert.recommended_action,
            },
        )


@dataclass(slots=True)
class _CycleState:
    """Accumulates what one cycle observed across connections."""

    agents: list[AgentStatus] = field(default_factory=list)
    latency_metrics: list[LatencyMetric] = field(default_factory=list)
    tracer_tokens: list[TracerTokenResult] = field(default_factory=list)
    publication_stats: list[PublicationStats] = field(default_factory=list)
    running: int = 0
    stopped: int = 0
    error: int = 0
    severity: Severity = Severity.NONE

    def merge(self, other: "_CycleState") -> None:
        self.agents.extend(other.agents)
        self.latency_metrics.extend(other.latency_metrics)
        self.tracer_tokens.extend(other.tracer_tokens)
        self.publication_stats.extend(other.publication_stats)
        self.running += other.running
        self.stopped += other.stopped
        self.error += other.error
        self.severity = max(self.severity, other.severity)


__all__ = ["HealthAggregator", "AlertNotifier", "LoggingAlertNotifier"]
