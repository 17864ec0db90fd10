from datetime import timedelta

import pytest
from conftest import T0

from replication_monitor.services.history import LatencyHistoryTracker
from replication_monitor.services.models import LatencyPoint

KEY = ("SalesPub", "SUB01", "SalesReplica")


def _point(offset: int) -> LatencyPoint:
    return LatencyPoint(T0 + timedelta(minutes=offset), float(offset))


def test_series_is_bounded_fifo():
    tracker = LatencyHistoryTracker(retention_count=3)

    for offset in range(5):
        series = tracker.append(KEY, _point(offset))

    assert [point.latency_seconds for point in series] == [2.0, 3.0, 4.0]
    assert tracker.get(KEY) == series


def test_series_are_independent_per_subscription():
    tracker = LatencyHistoryTracker(retention_count=2)
    other = ("SalesPub", "SUB02", "SalesReplica")

    tracker.append(KEY, _point(1))
    tracker.append(other, _point(2))

    assert len(tracker.get(KEY)) == 1
    assert len(tracker.get(other)) == 1
    assert set(tracker.keys()) == {KEY, other}


def test_unknown_series_is_empty():
    assert LatencyHistoryTracker().get(KEY) == ()


def test_resize_trims_oldest_points():
    tracker = LatencyHistoryTracker(retention_count=5)
    for offset in range(5):
        tracker.append(KEY, _point(offset))

    tracker.resize(2)
    tracker.append(KEY, _point(5))

    assert [point.latency_seconds for point in tracker.get(KEY)] == [4.0, 5.0]
    assert tracker.retention_count == 2


def test_retention_must_be_positive():
    with pytest.raises(ValueError):
        LatencyHistoryTracker(retention_count=0)
    with pytest.raises(ValueError):
        LatencyHistoryTracker().resize(0)
