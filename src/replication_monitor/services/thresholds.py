"""Pure threshold classification for replication health signals."""

from __future__ import annotations

from replication_monitor.services.models import AgentRunState, Severity

CPU_WARNING_PERCENT = 90.0


def _classify(value: float, warning: float, critical: float) -> Severity:
    # Strict comparisons: a value sitting exactly on a threshold is not elevated yet.
    if value > critical:
        return Severity.CRITICAL
    if value > warning:
        return Severity.WARNING
    return Severity.NONE


def classify_latency(seconds: float, warning: float, critical: float) -> Severity:
    """Classify a subscription's delivery latency in seconds."""

    return _classify(seconds, warning, critical)


def classify_backlog(count: int, warning: int, critical: int) -> Severity:
    """Classify the number of commands still waiting in the distribution database."""

    return _classify(count, warning, critical)


def classify_agent(run_state: AgentRunState) -> Severity:
    """A failed agent is critical regardless of any configured threshold."""

    return Severity.CRITICAL if run_state is AgentRunState.FAILED else Severity.NONE


def is_cpu_saturated(cpu_percent: float) -> bool:
    return cpu_percent > CPU_WARNING_PERCENT


def classify_tracer_token(total_latency_seconds: float | None, critical: float) -> Severity:
    """Tracer tokens only have a critical tier; a token still in flight is never classified."""

    if total_latency_seconds is None:
        return Severity.NONE
    return Severity.CRITICAL if total_latency_seconds > critical else Severity.NONE


__all__ = [
    "CPU_WARNING_PERCENT",
    "classify_latency",
    "classify_backlog",
    "classify_agent",
    "is_cpu_saturated",
    "classify_tracer_token",
]
