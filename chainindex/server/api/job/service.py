"""
Indexing Job API Service - job CRUD, actions and logs on top of JobLifecycle.
"""

from fastapi import HTTPException

from chainindex.core.errors import ChainIndexError, ProvisioningError
from chainindex.core.logger import setup_logger
from chainindex.core.models import DataType, IndexingJob, JobAction
from chainindex.indexing.lifecycle import parse_action
from chainindex.tenant.provisioner import tables_for_job
from .schema import (
    JobCreateRequest,
    JobUpdateRequest,
    JobResponse,
    JobListResponse,
    LogListResponse,
    LogEntryResponse,
)

logger = setup_logger(__name__, include_location=True)

RECENT_LOG_LIMIT = 20


def _http_error(e: ChainIndexError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.message)


class JobService:
    def __init__(self, store, lifecycle):
        self.store = store
        self.lifecycle = lifecycle

    async def _get_owned(self, tenant_id: str, job_id: str, include_connection: bool = False) -> IndexingJob:
        job = await self.store.get_job(job_id, tenant_id=tenant_id, include_connection=include_connection)
        if job is None:
            raise HTTPException(status_code=404, detail="Indexing job not found")
        return job

    async def create_job(self, tenant_id: str, request: JobCreateRequest) -> JobResponse:
        """
        Store a job, provision its tables and register its webhook.

        The data type and table layout are validated before anything is
        stored. When provisioning fails the INACTIVE job record is kept and
        the request answers 500.
        """
        connection = await self.store.get_connection(request.connection_id, tenant_id=tenant_id)
        if connection is None:
            raise HTTPException(status_code=404, detail="Database connection not found")

        draft = IndexingJob(
            id="draft",
            data_type=request.data_type,
            config=request.config,
            connection_id=request.connection_id,
        )
        try:
            tables_for_job(draft)
        except ChainIndexError as e:
            raise _http_error(e)

        job = await self.store.create_job(
            tenant_id=tenant_id,
            name=request.name,
            description=request.description,
            data_type=DataType(request.data_type).value,
            config=request.config,
            connection_id=connection.id,
        )
        logger.info(f"Indexing job {job.id} ({job.data_type}) created on connection {connection.id}")

        setup = await self.lifecycle.create(job, connection)
        if not setup.provisioned:
            raise _http_error(ProvisioningError("Failed to create tables in the database"))
        return JobResponse.from_model(job, connection=connection)

    async def list_jobs(self, tenant_id: str) -> JobListResponse:
        jobs = await self.store.list_jobs(tenant_id)
        return JobListResponse(items=[JobResponse.from_model(j) for j in jobs])

    async def get_job(self, tenant_id: str, job_id: str) -> JobResponse:
        job = await self._get_owned(tenant_id, job_id, include_connection=True)
        logs = await self.store.list_logs(job_id, limit=RECENT_LOG_LIMIT)
        return JobResponse.from_model(job, logs=logs)

    async def update_job(self, tenant_id: str, job_id: str, request: JobUpdateRequest) -> JobResponse:
        existing = await self._get_owned(tenant_id, job_id)
        if request.data_type is not None and request.data_type != existing.data_type:
            raise HTTPException(status_code=400, detail="The data type of an indexing job cannot be changed")
        job = await self.store.update_job(job_id, request.changes())
        if job is None:
            raise HTTPException(status_code=404, detail="Indexing job not found")
        return JobResponse.from_model(job)

    async def delete_job(self, tenant_id: str, job_id: str) -> dict:
        await self._get_owned(tenant_id, job_id)
        await self.lifecycle.cleanup(job_id)
        await self.store.delete_job(job_id)
        logger.info(f"Indexing job {job_id} deleted")
        return {"success": True}

    async def apply_action(self, tenant_id: str, job_id: str, action: str) -> JobResponse:
        try:
            job_action = parse_action(action)
        except ChainIndexError as e:
            raise _http_error(e)

        job = await self._get_owned(tenant_id, job_id, include_connection=True)
        if job_action == JobAction.START and (job.connection is None or not job.connection.is_active):
            raise HTTPException(status_code=400, detail="Database connection is not active")

        try:
            updated = await self.lifecycle.apply_action(job_id, job_action)
        except ChainIndexError as e:
            raise _http_error(e)
        return JobResponse.from_model(updated, connection=job.connection)

    async def list_logs(self, tenant_id: str, job_id: str, limit: int) -> LogListResponse:
        await self._get_owned(tenant_id, job_id)
        logs = await self.store.list_logs(job_id, limit=limit)
        return LogListResponse(job_id=job_id, items=[LogEntryResponse.from_model(e) for e in logs])
