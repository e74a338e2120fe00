"""
FastAPI dependencies resolving the components wired onto ``app.state`` by the lifespan.
"""

from fastapi import Header, HTTPException, Request


def get_store(request: Request):
    return request.app.state.store


def get_registry(request: Request):
    return request.app.state.registry


def get_lifecycle(request: Request):
    return request.app.state.lifecycle


def get_ingestion_router(request: Request):
    return request.app.state.ingestion_router


def get_tenant_id(x_tenant_id: str = Header(default="", alias="X-Tenant-Id")) -> str:
    """Tenant the request acts for; set by the session layer in front of the API."""
    tenant_id = x_tenant_id.strip()
    if not tenant_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return tenant_id
