"""Topology endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from replication_monitor.services.models import Connection
from replication_monitor.services.topology import TopologyStore
from replication_monitor.utils.diagnostics import DiagnosticError

from .dependencies import topology_dep

router = APIRouter(prefix="/api", tags=["topology"])


class ConnectionPayload(BaseModel):
    server_name: str = Field(min_length=1)
    id: str | None = None
    display_name: str | None = None
    endpoint: str | None = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


def serialize_connection(connection: Connection) -> dict[str, str | None]:
    return {
        "id": connection.id,
        "serverName": connection.server_name,
        "displayName": connection.label,
        "endpoint": connection.endpoint,
    }


@router.get("/connections")
async def list_connections(topology: TopologyStore = Depends(topology_dep)) -> list[dict[str, str | None]]:
    """Return the servers the monitor is currently polling."""

    try:
        connections = await topology.list_connections()
    except DiagnosticError as diagnostic:
        raise HTTPException(status_code=diagnostic.http_status, detail=diagnostic.message) from diagnostic
    return [serialize_connection(connection) for connection in connections]


@router.post("/connections", status_code=status.HTTP_201_CREATED)
async def add_connection(
    payload: ConnectionPayload,
    topology: TopologyStore = Depends(topology_dep),
) -> dict[str, str | None]:
    """Add a server, or replace the one with the same id; the next cycle picks it up."""

    connection = Connection(
        id=payload.id or payload.server_name,
        server_name=payload.server_name,
        display_name=payload.display_name,
        endpoint=payload.endpoint,
    )
    try:
        await topology.add_connection(connection)
    except DiagnosticError as diagnostic:
        raise HTTPException(status_code=diagnostic.http_status, detail=diagnostic.message) from diagnostic
    return serialize_connection(connection)


@router.delete("/connections/{connection_id}")
async def remove_connection(connection_id: str, topology: TopologyStore = Depends(topology_dep)) -> dict[str, object]:
    try:
        removed = await topology.remove_connection(connection_id)
    except DiagnosticError as diagnostic:
        raise HTTPException(status_code=diagnostic.http_status, detail=diagnostic.message) from diagnostic
    if not removed:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown connection '{connection_id}'.")
    return {"id": connection_id, "removed": True}


__all__ = ["router"]
