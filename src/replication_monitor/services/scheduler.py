"""Background cadence for health cycles and tracer-token posting."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from enum import Enum
from time import monotonic
from typing import Any

from replication_monitor.config import ConfigurationStore, MonitoringSettings
from replication_monitor.services.aggregator import HealthAggregator
from replication_monitor.services.collector import MetricsCollector
from replication_monitor.services.models import Connection, HealthSnapshot
from replication_monitor.services.publisher import HealthHandler, SnapshotPublisher, Subscription
from replication_monitor.services.topology import TopologyStore
from replication_monitor.utils.diagnostics import DiagnosticError
from replication_monitor.utils.logging import Logger


class SchedulerState(str, Enum):
    STOPPED = "Stopped"
    RUNNING = "Running"
    RECONFIGURING = "Reconfiguring"


class MonitorScheduler:
    """Drives health cycles on a fixed cadence and accepts operator commands.

    Cycles never overlap: a single poll task runs them back to back, and every other operation that touches the alert
    ledger (manual refresh, clearing an alert) waits on the same lock. Each cycle reads the configuration once at its
    start, so a reconfiguration only ever affects the next cycle.
    """

    def __init__(
        self,
        aggregator: HealthAggregator,
        collector: MetricsCollector,
        topology: TopologyStore,
        config_store: ConfigurationStore,
        publisher: SnapshotPublisher,
        logger: Logger,
    ) -> None:
        self._aggregator = aggregator
        self._collector = collector
        self._topology = topology
        self._config_store = config_store
        self._publisher = publisher
        self._logger = logger
        self._task: asyncio.Task[None] | None = None
        self._tracer_task: asyncio.Task[None] | None = None
        self._stop_event: asyncio.Event | None = None
        self._cycle_lock = asyncio.Lock()
        self._reconfigure_lock = asyncio.Lock()
        self._reconfiguring = False
        self._cycles_completed = 0

    @property
    def state(self) -> SchedulerState:
        if self._reconfiguring:
            return SchedulerState.RECONFIGURING
        return SchedulerState.RUNNING if self._task is not None else SchedulerState.STOPPED

    @property
    def config(self) -> MonitoringSettings:
        return self._config_store.current

    @property
    def cycles_completed(self) -> int:
        return self._cycles_completed

    def latest(self) -> HealthSnapshot | None:
        """Return the most recently published snapshot, if any cycle has completed."""

        return self._publisher.latest()

    def on_health_update(self, handler: HealthHandler) -> Subscription:
        return self._publisher.subscribe(handler)

    async def start(self) -> None:
        """Run a cycle right away and keep polling until :meth:`stop`."""

        if self._task is not None:
            return
        config = self._config_store.current
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._poll_loop(self._stop_event))
        if config.enable_tracer_tokens:
            self._tracer_task = asyncio.create_task(self._tracer_loop(self._stop_event, config))
        self._logger.info(
            "scheduler_started",
            extra={
                "polling_interval_ms": config.polling_interval_ms,
                "tracer_tokens": config.enable_tracer_tokens,
            },
        )

    async def stop(self) -> None:
        """Stop both recurring tasks; a cycle already in flight finishes and is still published."""

        if self._task is None and self._tracer_task is None:
            return
        if self._stop_event is not None:
            self._stop_event.set()
        if self._tracer_task is not None:
            self._tracer_task.cancel()
            try:
                await self._tracer_task
            except asyncio.CancelledError:
                pass
            self._tracer_task = None
        if self._task is not None:
            await self._task
            self._task = None
        self._stop_event = None
        self._logger.info("scheduler_stopped", extra={"cycles": self._cycles_completed})

    async def update_config(self, partial: Mapping[str, Any]) -> MonitoringSettings:
        """Merge ``partial`` into the configuration and restart polling with it.

        Invalid input raises :class:`DiagnosticError` before anything is touched, so the running schedule and the
        previous configuration stay in effect. When the scheduler is stopped the new values simply wait for the next
        :meth:`start`.
        """

        async with self._reconfigure_lock:
            self._config_store.preview(partial)
            if self._task is None:
                return self._config_store.update(partial)
            self._reconfiguring = True
            try:
                await self.stop()
                updated = self._config_store.update(partial)
                await self.start()
            finally:
                self._reconfiguring = False
            self._logger.info("config_updated", extra={"fields": sorted(partial)})
            return updated

    async def refresh(self) -> HealthSnapshot | None:
        """Run one cycle now, serialized with the scheduled ones."""

        return await self._run_cycle(self._config_store.current)

    async def clear_alert(self, alert_id: str) -> bool:
        async with self._cycle_lock:
            removed = self._aggregator.ledger.clear(alert_id)
        self._logger.info("alert_cleared", extra={"alert_id": alert_id, "removed": removed})
        return removed

    async def insert_tracer_token(self, publication: str) -> Connection:
        """Post a tracer token for ``publication`` on the first connection that publishes it.

        A successful post triggers an immediate refresh so the token shows up without waiting for the next tick.
        """

        connections = await self._topology.list_connections()
        not_found = 0
        for connection in connections:
            try:
                await self._collector.insert_tracer_token(connection, publication)
            except DiagnosticError as diagnostic:
                if diagnostic.code == "PublicationNotFound":
                    not_found += 1
                self._logger.debug(
                    "tracer_token_skipped",
                    extra={"connection": connection.id, "publication": publication, **diagnostic.to_extra()},
                )
                continue
            except Exception as exc:
                self._logger.warning(
                    "tracer_token_insert_failed",
                    extra={"connection": connection.id, "publication": publication, "error": str(exc)},
                )
                continue
            self._logger.info("tracer_token_sent", extra={"connection": connection.id, "publication": publication})
            await self.refresh()
            return connection

        if not_found == len(connections):
            raise DiagnosticError(
                "PublicationNotFound",
                f"No monitored server publishes '{publication}'.",
            )
        raise DiagnosticError(
            "TracerTokenRejected",
            f"Failed to send a tracer token for publication '{publication}'.",
            detail="Every connection that was tried rejected the request; see the log for details.",
        )

    async def _poll_loop(self, stop_event: asyncio.Event) -> None:
        """Run cycles until ``stop_event`` is set, dropping ticks a slow cycle overran."""

        while not stop_event.is_set():
            config = self._config_store.current
            started = monotonic()
            await self._run_cycle(config)

            interval = config.polling_interval_seconds
            elapsed = monotonic() - started
            delay = interval - elapsed
            if delay < 0:
                delay = interval - (elapsed % interval)
                self._logger.warning(
                    "cycle_overrun",
                    extra={"elapsed_seconds": round(elapsed, 3), "dropped_ticks": int(elapsed // interval)},
                )
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                continue

    async def _run_cycle(self, config: MonitoringSettings) -> HealthSnapshot | None:
        async with self._cycle_lock:
            try:
                connections = await self._topology.list_connections()
                snapshot = await self._aggregator.run_cycle(connections, config)
            except DiagnosticError as diagnostic:
                self._logger.error("cycle_diagnostic", extra=diagnostic.to_extra())
                return None
            except Exception as exc:
                self._logger.exception("cycle_failed", extra={"error": str(exc)})
                return None
            self._publisher.publish(snapshot)
            self._cycles_completed += 1
            return snapshot

    async def _tracer_loop(self, stop_event: asyncio.Event, config: MonitoringSettings) -> None:
        interval = config.tracer_token_interval_seconds
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                await self._post_tracer_tokens()

    async def _post_tracer_tokens(self) -> None:
        try:
            connections = await self._topology.list_connections()
        except Exception as exc:
            self._logger.warning("tracer_token_round_failed", extra={"error": str(exc)})
            return
        for connection in connections:
            try:
                posted = await self._collector.insert_tracer_tokens(connection)
            except Exception as exc:
                self._logger.warning(
                    "tracer_token_insert_failed",
                    extra={"connection": connection.id, "error": str(exc)},
                )
                continue
            self._logger.debug("tracer_tokens_posted", extra={"connection": connection.id, "count": posted})


__all__ = ["MonitorScheduler", "SchedulerState"]
