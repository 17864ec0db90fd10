"""FastAPI application factory for the replication health monitor."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from replication_monitor.api import configuration, health, monitor, topology
from replication_monitor.api.dependencies import lifespan_dependencies, settings
from replication_monitor.config import Settings
from replication_monitor.services.data_source import MetricsDataSource
from replication_monitor.services.topology import TopologyStore
from replication_monitor.utils.logging import get_logger


def create_app(
    app_settings: Settings | None = None,
    topology_store: TopologyStore | None = None,
    data_source: MetricsDataSource | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    app_settings = app_settings or settings()
    logger = get_logger()
    logger.info("creating replication monitor app", extra={"port": app_settings.api.port})

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        async with lifespan_dependencies(app_settings, topology=topology_store, data_source=data_source) as state:
            app.state.replmon_state = state
            yield
            del app.state.replmon_state

    app = FastAPI(title="Replication Health Monitor", lifespan=lifespan)

    if app_settings.api.enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=app_settings.api.allowed_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.include_router(health.router)
    app.include_router(monitor.router)
    app.include_router(configuration.router)
    app.include_router(topology.router)

    @app.get("/healthz")
    async def readiness() -> dict[str, str]:  # pragma: no cover - trivial
        return {"status": "ok"}

    return app


def run() -> None:
    """Console entry point: serve the app with uvicorn on the configured address."""

    app_settings = settings()
    uvicorn.run(create_app(app_settings), host=app_settings.api.host, port=app_settings.api.port)


app = create_app()

__all__ = ["create_app", "app", "run"]
