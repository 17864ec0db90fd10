"""Per-connection metrics collection with per-category failure isolation."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Sequence
from typing import TypeVar

from replication_monitor.services.data_source import MetricsDataSource
from replication_monitor.services.models import CollectedMetrics, Connection
from replication_monitor.utils.diagnostics import DiagnosticError
from replication_monitor.utils.logging import Logger

T = TypeVar("T")


class MetricsCollector:
    """Fetches the four signal categories for one connection.

    Categories are fetched concurrently and independently: if tracer tokens cannot be read the agents, latency and
    publication statistics still come back, and the failed category is reported as empty for this cycle.
    """

    def __init__(self, source: MetricsDataSource, logger: Logger) -> None:
        self._source = source
        self._logger = logger

    async def collect(self, connection: Connection, include_tracer_tokens: bool = True) -> CollectedMetrics:
        agents, latency, tokens, stats = await asyncio.gather(
            self._fetch_category(connection, "agents", self._source.fetch_agent_statuses(connection)),
            self._fetch_category(connection, "latency", self._source.fetch_latency_metrics(connection)),
            self._fetch_category(connection, "tracer_tokens", self._source.fetch_tracer_tokens(connection))
            if include_tracer_tokens
            else _nothing(),
            self._fetch_category(connection, "publications", self._source.fetch_publication_stats(connection)),
        )
        return CollectedMetrics(
            connection=connection,
            agents=tuple(agents),
            latency_metrics=tuple(latency),
            tracer_tokens=tuple(tokens),
            publication_stats=tuple(stats),
        )

    async def insert_tracer_tokens(self, connection: Connection) -> int:
        """Post one tracer token to every publication of ``connection``; returns how many were accepted."""

        publications = await self._fetch_category(
            connection, "publications", self._source.fetch_publication_stats(connection)
        )
        posted = 0
        for publication in publications:
            try:
                await self._source.insert_tracer_token(connection, publication.name)
            except Exception as exc:
                self._logger.warning(
                    "tracer_token_insert_failed",
                    extra={"connection": connection.id, "publication": publication.name, "error": str(exc)},
                )
                continue
            posted += 1
        return posted

    async def insert_tracer_token(self, connection: Connection, publication: str) -> str | None:
        return await self._source.insert_tracer_token(connection, publication)

    async def _fetch_category(self, connection: Connection, category: str, fetch: Awaitable[Sequence[T]]) -> Sequence[T]:
        try:
            return list(await fetch)
        except DiagnosticError as diagnostic:
            self._logger.warning(
                "metrics_category_failed",
                extra={"connection": connection.id, "category": category, **diagnostic.to_extra()},
            )
        except Exception as exc:
            self._logger.warning(
                "metrics_category_failed",
                extra={"connection": connection.id, "category": category, "error": str(exc)},
            )
        return []


async def _nothing() -> list:
    return []


__all__ = ["MetricsCollector"]
