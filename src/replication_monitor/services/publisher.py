"""Synchronous fan-out of health snapshots to subscribers."""

from __future__ import annotations

from collections.abc import Callable
from types import TracebackType

from replication_monitor.services.models import HealthSnapshot
from replication_monitor.utils.logging import Logger

HealthHandler = Callable[[HealthSnapshot], None]


class Subscription:
    """Handle returned by :meth:`SnapshotPublisher.subscribe`; closing it stops delivery."""

    def __init__(self, publisher: "SnapshotPublisher", handler: HealthHandler) -> None:
        self._publisher = publisher
        self._handler = handler
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def close(self) -> None:
        if self._active:
            self._publisher._remove(self)
            self._active = False

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


class SnapshotPublisher:
    """Observer list: every subscriber receives every snapshot, in publish order."""

    def __init__(self, logger: Logger) -> None:
        self._logger = logger
        self._subscriptions: list[Subscription] = []
        self._latest: HealthSnapshot | None = None

    def subscribe(self, handler: HealthHandler) -> Subscription:
        subscription = Subscription(self, handler)
        self._subscriptions.append(subscription)
        return subscription

    def publish(self, snapshot: HealthSnapshot) -> None:
        self._latest = snapshot
        # Copy so a handler that unsubscribes does not skip its neighbour.
        for subscription in list(self._subscriptions):
            try:
                subscription._handler(snapshot)
            except Exception as exc:
                self._logger.exception("subscriber_failed", extra={"error": str(exc)})

    def latest(self) -> HealthSnapshot | None:
        return self._latest

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def _remove(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)


__all__ = ["HealthHandler", "Subscription", "SnapshotPublisher"]
