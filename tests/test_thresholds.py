import pytest

from replication_monitor.services.models import AgentRunState, Severity
from replication_monitor.services.thresholds import (
    classify_agent,
    classify_backlog,
    classify_latency,
    classify_tracer_token,
    is_cpu_saturated,
)


@pytest.mark.parametrize(
    ("seconds", "expected"),
    [
        (0, Severity.NONE),
        (300, Severity.NONE),
        (301, Severity.WARNING),
        (900, Severity.WARNING),
        (900.5, Severity.CRITICAL),
        (950, Severity.CRITICAL),
    ],
)
def test_latency_thresholds_are_strict(seconds, expected):
    assert classify_latency(seconds, 300, 900) is expected


@pytest.mark.parametrize(
    ("count", "expected"),
    [(10_000, Severity.NONE), (10_001, Severity.WARNING), (50_000, Severity.WARNING), (50_001, Severity.CRITICAL)],
)
def test_backlog_thresholds_are_strict(count, expected):
    assert classify_backlog(count, 10_000, 50_000) is expected


def test_only_failed_agents_are_critical():
    assert classify_agent(AgentRunState.FAILED) is Severity.CRITICAL
    for state in (AgentRunState.RUNNING, AgentRunState.STOPPED, AgentRunState.RETRYING, AgentRunState.COMPLETING):
        assert classify_agent(state) is Severity.NONE


def test_cpu_saturation_is_above_ninety_percent():
    assert not is_cpu_saturated(90.0)
    assert is_cpu_saturated(90.1)


def test_tracer_token_in_flight_is_not_classified():
    assert classify_tracer_token(None, 900) is Severity.NONE
    assert classify_tracer_token(900, 900) is Severity.NONE
    assert classify_tracer_token(901, 900) is Severity.CRITICAL


def test_severity_ordering_drives_aggregate_status():
    assert Severity.CRITICAL > Severity.WARNING > Severity.NONE
    assert Severity.WARNING.label == "Warning"
