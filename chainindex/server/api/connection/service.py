"""
Connection API Service - business logic for tenant database connections.
"""

from fastapi import HTTPException

from chainindex.core.logger import setup_logger
from chainindex.core.models import TenantConnection
from .schema import (
    ConnectionCreateRequest,
    ConnectionUpdateRequest,
    ConnectionResponse,
    ConnectionListResponse,
    ConnectionTestResponse,
)

logger = setup_logger(__name__, include_location=True)


class ConnectionService:
    """Connection CRUD with connectivity probing; pools are dropped when credentials change."""

    def __init__(self, store, registry):
        self.store = store
        self.registry = registry

    async def _get_owned(self, tenant_id: str, connection_id: str) -> TenantConnection:
        connection = await self.store.get_connection(connection_id, tenant_id=tenant_id)
        if connection is None:
            raise HTTPException(status_code=404, detail="Connection not found")
        return connection

    async def create_connection(self, tenant_id: str, request: ConnectionCreateRequest) -> ConnectionResponse:
        candidate = TenantConnection(
            id="probe",
            host=request.host,
            port=request.port,
            database=request.database,
            username=request.username,
            password=request.password,
        )
        is_active = await self.registry.probe(candidate)
        connection = await self.store.create_connection(
            tenant_id=tenant_id,
            name=request.name,
            host=request.host,
            port=request.port,
            database=request.database,
            username=request.username,
            password=request.password.get_secret_value(),
            is_active=is_active,
        )
        logger.info(f"Connection {connection.id} registered for {connection.describe()} (active={is_active})")
        return ConnectionResponse.from_model(connection)

    async def list_connections(self, tenant_id: str) -> ConnectionListResponse:
        connections = await self.store.list_connections(tenant_id)
        return ConnectionListResponse(items=[ConnectionResponse.from_model(c) for c in connections])

    async def get_connection(self, tenant_id: str, connection_id: str) -> ConnectionResponse:
        return ConnectionResponse.from_model(await self._get_owned(tenant_id, connection_id))

    async def update_connection(
            self, tenant_id: str, connection_id: str, request: ConnectionUpdateRequest
    ) -> ConnectionResponse:
        await self._get_owned(tenant_id, connection_id)
        connection = await self.store.update_connection(connection_id, request.changes())
        if connection is None:
            raise HTTPException(status_code=404, detail="Connection not found")
        if request.touches_credentials:
            await self.registry.evict(connection_id)
        is_active = await self.registry.probe(connection)
        await self.store.set_connection_active(connection_id, is_active)
        connection.is_active = is_active
        logger.info(f"Connection {connection_id} updated (active={is_active})")
        return ConnectionResponse.from_model(connection)

    async def delete_connection(self, tenant_id: str, connection_id: str) -> dict:
        await self._get_owned(tenant_id, connection_id)
        jobs = await self.store.count_jobs_for_connection(connection_id)
        if jobs > 0:
            raise HTTPException(
                status_code=400,
                detail="Cannot delete connection as it is being used by indexing jobs",
            )
        await self.registry.evict(connection_id)
        await self.store.delete_connection(connection_id)
        logger.info(f"Connection {connection_id} deleted")
        return {"success": True}

    async def test_connection(self, tenant_id: str, connection_id: str) -> ConnectionTestResponse:
        connection = await self._get_owned(tenant_id, connection_id)
        is_active = await self.registry.probe(connection)
        await self.store.set_connection_active(connection_id, is_active)
        return ConnectionTestResponse(id=connection_id, is_active=is_active)
