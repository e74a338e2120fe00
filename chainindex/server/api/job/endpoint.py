"""
Indexing Job API Endpoints - FastAPI routes for indexing jobs.

Provides REST endpoints for:
- Job creation (table provisioning and webhook registration), listing, update and deletion
- Job actions (start, stop, pause)
- Recent ingestion logs
"""

from fastapi import APIRouter, Depends, HTTPException, Query

from chainindex.core.logger import setup_logger
from chainindex.server.dependencies import get_lifecycle, get_store, get_tenant_id
from .schema import (
    JobCreateRequest,
    JobUpdateRequest,
    JobActionRequest,
    JobResponse,
    JobListResponse,
    LogListResponse,
)
from .service import JobService

logger = setup_logger(__name__, include_location=True)
router = APIRouter()


def get_job_service(store=Depends(get_store), lifecycle=Depends(get_lifecycle)) -> JobService:
    return JobService(store, lifecycle)


@router.post("/indexing-jobs", response_model=JobResponse, status_code=201)
async def create_job(
    request: JobCreateRequest,
    tenant_id: str = Depends(get_tenant_id),
    service: JobService = Depends(get_job_service),
) -> JobResponse:
    """
    Create an indexing job.

    **Request Body**:
    ```json
    {
        "name": "bids on my collection",
        "data_type": "NFT_BIDS",
        "config": {"mint": "<mint address>"},
        "connection_id": "<connection id>"
    }
    ```

    Tables are provisioned in the tenant database, then a webhook is
    registered for the addresses in `config`. The job starts INACTIVE.
    """
    try:
        return await service.create_job(tenant_id, request)
    except HTTPException:
        raise
    except Exception as e:
        logger.exception(f"Error creating indexing job: {e}")
        raise HTTPException(status_code=500, detail="Failed to create indexing job")


@router.get("/indexing-jobs", response_model=JobListResponse)
async def list_jobs(
    tenant_id: str = Depends(get_tenant_id),
    service: JobService = Depends(get_job_service),
) -> JobListResponse:
    try:
        return await service.list_jobs(tenant_id)
    except HTTPException:
        raise
    except Exception as e:
        logger.exception(f"Error listing indexing jobs: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch indexing jobs")


@router.get("/indexing-jobs/{job_id}", response_model=JobResponse)
async def get_job(
    job_id: str,
    tenant_id: str = Depends(get_tenant_id),
    service: JobService = Depends(get_job_service),
) -> JobResponse:
    """Job with its connection summary and its 20 most recent log entries."""
    try:
        return await service.get_job(tenant_id, job_id)
    except HTTPException:
        raise
    except Exception as e:
        logger.exception(f"Error fetching indexing job {job_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch indexing job")


@router.put("/indexing-jobs/{job_id}", response_model=JobResponse)
async def update_job(
    job_id: str,
    request: JobUpdateRequest,
    tenant_id: str = Depends(get_tenant_id),
    service: JobService = Depends(get_job_service),
) -> JobResponse:
    try:
        return await service.update_job(tenant_id, job_id, request)
    except HTTPException:
        raise
    except Exception as e:
        logger.exception(f"Error updating indexing job {job_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to update indexing job")


@router.delete("/indexing-jobs/{job_id}")
async def delete_job(
    job_id: str,
    tenant_id: str = Depends(get_tenant_id),
    service: JobService = Depends(get_job_service),
):
    """Remove the job's webhook (best effort) and delete the job with its logs."""
    try:
        return await service.delete_job(tenant_id, job_id)
    except HTTPException:
        raise
    except Exception as e:
        logger.exception(f"Error deleting indexing job {job_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to delete indexing job")


@router.post("/indexing-jobs/{job_id}/actions", response_model=JobResponse)
async def job_action(
    job_id: str,
    request: JobActionRequest,
    tenant_id: str = Depends(get_tenant_id),
    service: JobService = Depends(get_job_service),
) -> JobResponse:
    """
    Apply `start`, `stop` or `pause`.

    `start` requires the job's connection to be active; any other action
    name answers 400.
    """
    try:
        return await service.apply_action(tenant_id, job_id, request.action)
    except HTTPException:
        raise
    except Exception as e:
        logger.exception(f"Error applying action to indexing job {job_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to perform action")


@router.get("/indexing-jobs/{job_id}/logs", response_model=LogListResponse)
async def list_job_logs(
    job_id: str,
    limit: int = Query(default=50, ge=1, le=500),
    tenant_id: str = Depends(get_tenant_id),
    service: JobService = Depends(get_job_service),
) -> LogListResponse:
    try:
        return await service.list_logs(tenant_id, job_id, limit)
    except HTTPException:
        raise
    except Exception as e:
        logger.exception(f"Error fetching logs for indexing job {job_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch logs")
