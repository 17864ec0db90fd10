"""Shared FastAPI dependency providers and application lifespan management."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from fastapi import Depends, Request

from replication_monitor.config import ConfigurationStore, Settings, get_settings
from replication_monitor.services.aggregator import HealthAggregator, LoggingAlertNotifier
from replication_monitor.services.alert_ledger import AlertLedger
from replication_monitor.services.collector import MetricsCollector
from replication_monitor.services.data_source import HttpMetricsSource, MetricsDataSource
from replication_monitor.services.history import LatencyHistoryTracker
from replication_monitor.services.publisher import SnapshotPublisher
from replication_monitor.services.scheduler import MonitorScheduler
from replication_monitor.services.topology import FileTopologyStore, StaticTopologyStore, TopologyStore
from replication_monitor.utils.logging import get_child_logger


@dataclass(slots=True)
class AppState:
    """Collaborators built once at startup and shared by every request."""

    config_store: ConfigurationStore
    topology: TopologyStore
    publisher: SnapshotPublisher
    scheduler: MonitorScheduler


def settings() -> Settings:
    """Expose the cached settings instance for dependency injection."""

    return get_settings()


def build_topology(app_settings: Settings) -> TopologyStore:
    if app_settings.topology.file is None:
        return StaticTopologyStore()
    return FileTopologyStore(app_settings.topology.file, app_settings.topology, get_child_logger("topology"))


@asynccontextmanager
async def lifespan_dependencies(
    app_settings: Settings,
    topology: TopologyStore | None = None,
    data_source: MetricsDataSource | None = None,
) -> AsyncIterator[AppState]:
    """Wire the monitoring engine, start polling if configured, and tear everything down on shutdown."""

    http_source: HttpMetricsSource | None = None
    if data_source is None:
        http_source = HttpMetricsSource(app_settings.source, get_child_logger("source"))
        data_source = http_source
    if topology is None:
        topology = build_topology(app_settings)

    config_store = ConfigurationStore(app_settings.monitoring)
    collector = MetricsCollector(data_source, get_child_logger("collector"))
    aggregator = HealthAggregator(
        collector=collector,
        ledger=AlertLedger(),
        history=LatencyHistoryTracker(config_store.current.history_retention_count),
        logger=get_child_logger("aggregator"),
        notifiers=[LoggingAlertNotifier(get_child_logger("alerts"))],
    )
    publisher = SnapshotPublisher(get_child_logger("publisher"))
    scheduler = MonitorScheduler(
        aggregator=aggregator,
        collector=collector,
        topology=topology,
        config_store=config_store,
        publisher=publisher,
        logger=get_child_logger("scheduler"),
    )

    if app_settings.api.autostart:
        await scheduler.start()

    try:
        yield AppState(
            config_store=config_store,
            topology=topology,
            publisher=publisher,
            scheduler=scheduler,
        )
    finally:
        await scheduler.stop()
        if http_source is not None:
            await http_source.aclose()


def app_state(request: Request) -> AppState:
    """Fetch the :class:`AppState` installed by the application lifespan."""

    state = getattr(request.app.state, "replmon_state", None)
    assert isinstance(state, AppState), "App state missing; ensure lifespan wiring executed."
    return state


def scheduler_dep(state: AppState = Depends(app_state)) -> MonitorScheduler:
    return state.scheduler


def topology_dep(state: AppState = Depends(app_state)) -> TopologyStore:
    return state.topology


__all__ = [
    "AppState",
    "settings",
    "build_topology",
    "lifespan_dependencies",
    "app_state",
    "scheduler_dep",
    "topology_dep",
]
