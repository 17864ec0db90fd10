"""Bounded per-subscription latency history used for trend lines."""

from __future__ import annotations

from collections import deque

from replication_monitor.services.models import LatencyPoint, SeriesKey


class LatencyHistoryTracker:
    """Keeps the most recent latency points per (publication, subscriber, subscriber db).

    Eviction is strict FIFO: once a series holds ``retention_count`` points, every append drops the oldest one. No
    downsampling or averaging happens here.
    """

    def __init__(self, retention_count: int = 100) -> None:
        if retention_count < 1:
            raise ValueError("retention_count must be at least 1")
        self._retention_count = retention_count
        self._series: dict[SeriesKey, deque[LatencyPoint]] = {}

    @property
    def retention_count(self) -> int:
        return self._retention_count

    def resize(self, retention_count: int) -> None:
        """Apply a new retention to every series, trimming the oldest points if it shrank."""

        if retention_count < 1:
            raise ValueError("retention_count must be at least 1")
        if retention_count == self._retention_count:
            return
        self._retention_count = retention_count
        for key, points in self._series.items():
            self._series[key] = deque(points, maxlen=retention_count)

    def append(self, series_key: SeriesKey, point: LatencyPoint) -> tuple[LatencyPoint, ...]:
        points = self._series.get(series_key)
        if points is None:
            points = deque(maxlen=self._retention_count)
            self._series[series_key] = points
        points.append(point)
        return tuple(points)

    def get(self, series_key: SeriesKey) -> tuple[LatencyPoint, ...]:
        return tuple(self._series.get(series_key, ()))

    def keys(self) -> list[SeriesKey]:
        return list(self._series)


__all__ = ["LatencyHistoryTracker"]
