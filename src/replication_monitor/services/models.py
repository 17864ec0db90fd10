"""Domain models shared across the monitoring services."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, IntEnum


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Severity(IntEnum):
    """Ordered severity used for individual alerts and for the aggregate status."""

    NONE = 0
    WARNING = 1
    CRITICAL = 2

    @property
    def label(self) -> str:
        return self.name.capitalize()


class HealthState(str, Enum):
    HEALTHY = "Healthy"
    WARNING = "Warning"
    CRITICAL = "Critical"

    @classmethod
    def from_severity(cls, severity: Severity) -> "HealthState":
        if severity is Severity.CRITICAL:
            return cls.CRITICAL
        if severity is Severity.WARNING:
            return cls.WARNING
        return cls.HEALTHY


class AgentKind(str, Enum):
    SNAPSHOT = "Snapshot"
    LOG_READER = "LogReader"
    DISTRIBUTION = "Distribution"


class AgentRunState(str, Enum):
    RUNNING = "Running"
    STOPPED = "Stopped"
    FAILED = "Failed"
    RETRYING = "Retrying"
    COMPLETING = "Completing"


class RunOutcome(str, Enum):
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    RETRY = "Retry"
    CANCELLED = "Cancelled"


class AlertCategory(str, Enum):
    LATENCY = "Latency"
    PERFORMANCE = "Performance"
    ERROR = "Error"
    CONFIGURATION = "Configuration"


@dataclass(slots=True, frozen=True)
class Connection:
    """Handle to a monitored server as provided by the topology store."""

    id: str
    server_name: str
    display_name: str | None = None
    endpoint: str | None = None

    @property
    def label(self) -> str:
        return self.display_name or self.server_name


@dataclass(slots=True, frozen=True)
class AgentPerformance:
    commands_per_second: float = 0.0
    avg_latency_seconds: float = 0.0
    memory_mb: float = 0.0
    cpu_percent: float = 0.0


@dataclass(slots=True, frozen=True)
class AgentStatus:
    """Status of one replication agent as observed in a single cycle."""

    name: str
    kind: AgentKind
    run_state: AgentRunState
    last_outcome: RunOutcome
    last_start: datetime | None = None
    last_duration_seconds: float = 0.0
    error_message: str | None = None
    performance: AgentPerformance = field(default_factory=AgentPerformance)


@dataclass(slots=True, frozen=True)
class LatencyPoint:
    timestamp: datetime
    latency_seconds: float


SeriesKey = tuple[str, str, str]


@dataclass(slots=True, frozen=True)
class LatencyMetric:
    """Delivery latency and backlog for one subscription.

    ``history`` is empty when the data source produces the metric; the aggregator replaces the value with one that
    carries the tracked series.
    """

    publication: str
    subscriber: str
    subscriber_db: str
    latency_seconds: float
    pending_commands: int
    estimated_seconds_to_drain: float = 0.0
    delivery_rate: float = 0.0
    collected_at: datetime = field(default_factory=utcnow)
    history: tuple[LatencyPoint, ...] = ()

    @property
    def series_key(self) -> SeriesKey:
        return (self.publication, self.subscriber, self.subscriber_db)


@dataclass(slots=True, frozen=True)
class TracerTokenResult:
    """One tracer-token round trip; missing insert times mean the token has not propagated that far yet."""

    id: str
    publication: str
    publisher_insert_time: datetime
    total_latency_seconds: float | None = None
    distributor_insert_time: datetime | None = None
    subscriber_insert_time: datetime | None = None
    subscriber: str | None = None
    subscriber_db: str | None = None

    @property
    def distributor_latency_seconds(self) -> float | None:
        if self.distributor_insert_time is None:
            return None
        return (self.distributor_insert_time - self.publisher_insert_time).total_seconds()

    @property
    def completed(self) -> bool:
        return self.subscriber_insert_time is not None


@dataclass(slots=True, frozen=True)
class PublicationStats:
    name: str
    subscription_count: int = 0
    article_count: int = 0
    total_commands_delivered: int = 0
    average_command_size: float = 0.0
    retention_hours: float = 0.0
    transactions_per_second: float = 0.0


@dataclass(slots=True, frozen=True)
class AlertSource:
    publication: str | None = None
    subscriber: str | None = None
    subscriber_db: str | None = None
    agent: str | None = None


AlertKey = tuple[Severity, str | None, str | None, str | None, str | None]


def alert_key(severity: Severity, source: AlertSource) -> AlertKey:
    """Identity of an alert: the same severity raised for the same source is the same alert."""

    return (severity, source.publication, source.subscriber, source.subscriber_db, source.agent)


@dataclass(slots=True, frozen=True)
class AlertCandidate:
    """A detected condition waiting to be reconciled against the ledger."""

    severity: Severity
    message: str
    source: AlertSource
    category: AlertCategory
    recommended_action: str | None = None

    @property
    def key(self) -> AlertKey:
        return alert_key(self.severity, self.source)


@dataclass(slots=True, frozen=True)
class Alert:
    id: str
    severity: Severity
    message: str
    created_at: datetime
    source: AlertSource
    category: AlertCategory
    recommended_action: str | None = None

    @property
    def key(self) -> AlertKey:
        return alert_key(self.severity, self.source)


@dataclass(slots=True, frozen=True)
class AgentStatusSummary:
    running: int = 0
    stopped: int = 0
    error: int = 0


@dataclass(slots=True, frozen=True)
class CollectedMetrics:
    """Everything gathered from one connection during one cycle."""

    connection: Connection
    agents: tuple[AgentStatus, ...] = ()
    latency_metrics: tuple[LatencyMetric, ...] = ()
    tracer_tokens: tuple[TracerTokenResult, ...] = ()
    publication_stats: tuple[PublicationStats, ...] = ()


@dataclass(slots=True, frozen=True)
class HealthSnapshot:
    """Immutable result of one health cycle, fanned out to every subscriber."""

    status: HealthState
    alerts: tuple[Alert, ...] = ()
    latency_metrics: tuple[LatencyMetric, ...] = ()
    agents: tuple[AgentStatus, ...] = ()
    agent_status_summary: AgentStatusSummary = field(default_factory=AgentStatusSummary)
    tracer_tokens: tuple[TracerTokenResult, ...] = ()
    publication_stats: tuple[PublicationStats, ...] = ()
    taken_at: datetime = field(default_factory=utcnow)

    @classmethod
    def empty(cls) -> "HealthSnapshot":
        return cls(status=HealthState.HEALTHY)


__all__ = [
    "utcnow",
    "Severity",
    "HealthState",
    "AgentKind",
    "AgentRunState",
    "RunOutcome",
    "AlertCategory",
    "Connection",
    "AgentPerformance",
    "AgentStatus",
    "LatencyPoint",
    "SeriesKey",
    "LatencyMetric",
    "TracerTokenResult",
    "PublicationStats",
    "AlertSource",
    "AlertKey",
    "alert_key",
    "AlertCandidate",
    "Alert",
    "AgentStatusSummary",
    "CollectedMetrics",
    "HealthSnapshot",
]
