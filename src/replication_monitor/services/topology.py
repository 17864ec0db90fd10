"""Sources of the monitored server connections."""

from __future__ import annotations

import asyncio
from asyncio import Lock
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from time import monotonic
from typing import Any, Protocol

import yaml

from replication_monitor.config import TopologySettings
from replication_monitor.services.models import Connection
from replication_monitor.utils.diagnostics import DiagnosticError
from replication_monitor.utils.logging import Logger


class TopologyStore(Protocol):
    async def list_connections(self) -> Sequence[Connection]: ...

    async def add_connection(self, connection: Connection) -> None: ...

    async def remove_connection(self, connection_id: str) -> bool: ...


class StaticTopologyStore:
    """In-memory list of connections; changes last as long as the process."""

    def __init__(self, connections: Iterable[Connection] = ()) -> None:
        self._connections = list(connections)

    async def list_connections(self) -> Sequence[Connection]:
        return list(self._connections)

    async def add_connection(self, connection: Connection) -> None:
        self._connections = [existing for existing in self._connections if existing.id != connection.id]
        self._connections.append(connection)

    async def remove_connection(self, connection_id: str) -> bool:
        remaining = [existing for existing in self._connections if existing.id != connection_id]
        removed = len(remaining) != len(self._connections)
        self._connections = remaining
        return removed


class FileTopologyStore:
    """Connections persisted in a YAML file.

    The file looks like::

        connections:
          - id: prod-publisher
            server_name: SQLPROD01
            display_name: Production publisher
            endpoint: http://replmon-gateway:8080/servers/SQLPROD01

    Parsed contents are reused for ``cache_ttl_seconds`` so a short polling interval does not re-read the file every
    cycle, while edits are still picked up quickly.
    """

    def __init__(self, path: Path, settings: TopologySettings, logger: Logger) -> None:
        self._path = Path(path)
        self._settings = settings
        self._logger = logger
        self._cache: _TopologyCacheEntry | None = None
        self._lock = Lock()

    async def list_connections(self) -> Sequence[Connection]:
        async with self._lock:
            cached = self._cache
            if cached and monotonic() - cached.timestamp < self._settings.cache_ttl_seconds:
                return list(cached.connections)
            connections = await asyncio.to_thread(self._read)
            self._cache = _TopologyCacheEntry(timestamp=monotonic(), connections=tuple(connections))
            return connections

    async def add_connection(self, connection: Connection) -> None:
        """Add or replace ``connection`` (matched by id) and persist the file."""

        async with self._lock:
            current = [existing for existing in await asyncio.to_thread(self._read) if existing.id != connection.id]
            current.append(connection)
            await asyncio.to_thread(self._write, current)
            self._cache = None

    async def remove_connection(self, connection_id: str) -> bool:
        async with self._lock:
            current = await asyncio.to_thread(self._read)
            remaining = [existing for existing in current if existing.id != connection_id]
            if len(remaining) == len(current):
                return False
            await asyncio.to_thread(self._write, remaining)
            self._cache = None
            return True

    def _read(self) -> list[Connection]:
        if not self._path.exists():
            self._logger.warning("topology_file_missing", extra={"path": str(self._path)})
            return []
        try:
            data = yaml.safe_load(self._path.read_text()) or {}
        except yaml.YAMLError as exc:
            raise DiagnosticError(
                "TopologyFileInvalid",
                f"Could not parse topology file {self._path}.",
                detail=str(exc),
            ) from exc
        entries = data.get("connections", []) if isinstance(data, Mapping) else data
        if not isinstance(entries, list):
            raise DiagnosticError(
                "TopologyFileInvalid",
                f"Topology file {self._path} must contain a list of connections.",
            )
        connections: list[Connection] = []
        for index, entry in enumerate(entries):
            connection = _connection_from_entry(entry)
            if connection is None:
                self._logger.warning("topology_entry_skipped", extra={"path": str(self._path), "index": index})
                continue
            connections.append(connection)
        return connections

    def _write(self, connections: Sequence[Connection]) -> None:
        payload = {"connections": [_connection_to_entry(connection) for connection in connections]}
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(yaml.safe_dump(payload, sort_keys=False))


@dataclass(slots=True)
class _TopologyCacheEntry:
    timestamp: float
    connections: tuple[Connection, ...]


def _connection_from_entry(entry: Any) -> Connection | None:
    if not isinstance(entry, Mapping):
        return None
    server_name = entry.get("server_name") or entry.get("serverName")
    if not server_name:
        return None
    return Connection(
        id=str(entry.get("id") or server_name),
        server_name=str(server_name),
        display_name=entry.get("display_name") or entry.get("displayName"),
        endpoint=entry.get("endpoint"),
    )


def _connection_to_entry(connection: Connection) -> dict[str, Any]:
    entry: dict[str, Any] = {"id": connection.id, "server_name": connection.server_name}
    if connection.display_name:
        entry["display_name"] = connection.display_name
    if connection.endpoint:
        entry["endpoint"] = connection.endpoint
    return entry


__all__ = ["TopologyStore", "StaticTopologyStore", "FileTopologyStore"]
