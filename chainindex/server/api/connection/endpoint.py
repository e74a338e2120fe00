"""
Connection API Endpoints - FastAPI routes for tenant database connections.

Provides REST endpoints for:
- Registering, listing, updating and deleting connections
- Re-running the connectivity probe
"""

from fastapi import APIRouter, Depends, HTTPException

from chainindex.core.logger import setup_logger
from chainindex.server.dependencies import get_registry, get_store, get_tenant_id
from .schema import (
    ConnectionCreateRequest,
    ConnectionUpdateRequest,
    ConnectionResponse,
    ConnectionListResponse,
    ConnectionTestResponse,
)
from .service import ConnectionService

logger = setup_logger(__name__, include_location=True)
router = APIRouter()


def get_connection_service(store=Depends(get_store), registry=Depends(get_registry)) -> ConnectionService:
    return ConnectionService(store, registry)


@router.post("/connections", response_model=ConnectionResponse, status_code=201)
async def create_connection(
    request: ConnectionCreateRequest,
    tenant_id: str = Depends(get_tenant_id),
    service: ConnectionService = Depends(get_connection_service),
) -> ConnectionResponse:
    """
    Register a tenant database.

    **Request Body**:
    ```json
    {
        "name": "analytics",
        "host": "db.example.com",
        "port": 5432,
        "database": "chain",
        "username": "indexer",
        "password": "secret"
    }
    ```

    The connection is probed before it is stored; the probe result is kept as
    `is_active`. The password is never part of a response.
    """
    try:
        return await service.create_connection(tenant_id, request)
    except HTTPException:
        raise
    except Exception as e:
        logger.exception(f"Error creating connection: {e}")
        raise HTTPException(status_code=500, detail="Failed to create connection")


@router.get("/connections", response_model=ConnectionListResponse)
async def list_connections(
    tenant_id: str = Depends(get_tenant_id),
    service: ConnectionService = Depends(get_connection_service),
) -> ConnectionListResponse:
    try:
        return await service.list_connections(tenant_id)
    except HTTPException:
        raise
    except Exception as e:
        logger.exception(f"Error listing connections: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch connections")


@router.get("/connections/{connection_id}", response_model=ConnectionResponse)
async def get_connection(
    connection_id: str,
    tenant_id: str = Depends(get_tenant_id),
    service: ConnectionService = Depends(get_connection_service),
) -> ConnectionResponse:
    try:
        return await service.get_connection(tenant_id, connection_id)
    except HTTPException:
        raise
    except Exception as e:
        logger.exception(f"Error fetching connection {connection_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch connection")


@router.put("/connections/{connection_id}", response_model=ConnectionResponse)
async def update_connection(
    connection_id: str,
    request: ConnectionUpdateRequest,
    tenant_id: str = Depends(get_tenant_id),
    service: ConnectionService = Depends(get_connection_service),
) -> ConnectionResponse:
    """Update connection fields; the connection is re-probed and its cached pool dropped when credentials change."""
    try:
        return await service.update_connection(tenant_id, connection_id, request)
    except HTTPException:
        raise
    except Exception as e:
        logger.exception(f"Error updating connection {connection_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to update connection")


@router.delete("/connections/{connection_id}")
async def delete_connection(
    connection_id: str,
    tenant_id: str = Depends(get_tenant_id),
    service: ConnectionService = Depends(get_connection_service),
):
    """Delete a connection; refused with 400 while any indexing job references it."""
    try:
        return await service.delete_connection(tenant_id, connection_id)
    except HTTPException:
        raise
    except Exception as e:
        logger.exception(f"Error deleting connection {connection_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to delete connection")


@router.post("/connections/{connection_id}/test", response_model=ConnectionTestResponse)
async def test_connection(
    connection_id: str,
    tenant_id: str = Depends(get_tenant_id),
    service: ConnectionService = Depends(get_connection_service),
) -> ConnectionTestResponse:
    try:
        return await service.test_connection(tenant_id, connection_id)
    except HTTPException:
        raise
    except Exception as e:
        logger.exception(f"Error testing connection {connection_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to test connection")
