"""
Indexing job lifecycle: setup on creation, status changes, teardown on deletion.
"""
from dataclasses import dataclass
from typing import Optional

from chainindex.core.db.store import log_job_event
from chainindex.core.errors import ChainIndexError, InvalidActionError, NotFoundError
from chainindex.core.logger import setup_logger
from chainindex.core.models import ACTION_STATUS, IndexingJob, IndexingStatus, JobAction, LogLevel, TenantConnection
from chainindex.tenant.provisioner import SchemaProvisioner

logger = setup_logger(__name__, include_location=True)


@dataclass
class JobSetup:
    provisioned: bool
    subscription_id: Optional[str] = None


def parse_action(action) -> JobAction:
    """Resolve a user supplied action name; anything but start/stop/pause is an InvalidActionError."""
    if isinstance(action, JobAction):
        return action
    try:
        return JobAction(str(action).strip().lower())
    except ValueError:
        raise InvalidActionError(f"Invalid action: {action}")


class JobLifecycle:
    def __init__(self, store, provisioner: SchemaProvisioner, subscriptions):
        self.store = store
        self.provisioner = provisioner
        self.subscriptions = subscriptions

    async def create(self, job: IndexingJob, connection: TenantConnection) -> JobSetup:
        """
        Prepare a freshly stored job: provision its tables, then register its webhook.

        Provisioning failure stops the setup and no webhook is registered. A
        failed subscription does not fail the setup; the job is kept without a
        subscription id. The job stays INACTIVE either way.

        Raises:
            UnsupportedDataTypeError / ValidationError: when the job's table layout cannot be derived
        """
        provisioned = await self.provisioner.provision_job(job, connection)
        if not provisioned:
            logger.error(f"Table provisioning failed for job {job.id} on connection {connection.id}")
            await log_job_event(self.store, job.id, "Failed to create tables", level=LogLevel.ERROR)
            return JobSetup(provisioned=False)
        await log_job_event(self.store, job.id, "Tables provisioned", level=LogLevel.INFO)

        subscription_id = await self.subscriptions.subscribe(job)
        if subscription_id:
            await self.store.set_job_subscription(job.id, subscription_id)
            job.subscription_id = subscription_id
        return JobSetup(provisioned=True, subscription_id=subscription_id)

    async def set_status(self, job_id: str, status: IndexingStatus) -> IndexingJob:
        """Set the job status; entering ACTIVE stamps last_run."""
        status = IndexingStatus(status)
        job = await self.store.set_job_status(job_id, status, stamp_last_run=status == IndexingStatus.ACTIVE)
        if job is None:
            raise NotFoundError(f"Indexing job {job_id} not found")
        logger.info(f"Job {job_id} status set to {status.value}")
        await log_job_event(self.store, job_id, f"Job status changed to {status.value}", level=LogLevel.INFO)
        return job

    async def apply_action(self, job_id: str, action) -> IndexingJob:
        """Map start/stop/pause onto ACTIVE/INACTIVE/PAUSED."""
        return await self.set_status(job_id, ACTION_STATUS[parse_action(action)])

    async def cleanup(self, job_id: str) -> Optional[IndexingJob]:
        """
        Tear down a job's external state before it is deleted.

        The webhook is removed best effort: a failure is logged and the stored
        subscription id is kept. The job always ends INACTIVE. Safe to
        repeat; a job that no longer exists is left alone.
        """
        job = await self.store.get_job(job_id)
        if job is None:
            return None
        if job.subscription_id:
            try:
                await self.subscriptions.unsubscribe(job.subscription_id)
            except ChainIndexError as e:
                logger.error(f"Failed to delete webhook {job.subscription_id} for job {job.id}: {e.message}")
                await log_job_event(self.store, job.id, "Failed to delete webhook", level=LogLevel.ERROR, metadata={
                    "webhook_id": job.subscription_id,
                    "error": e.info.to_dict(),
                })
            else:
                await self.store.set_job_subscription(job.id, None)
                job.subscription_id = None
        if job.status != IndexingStatus.INACTIVE:
            await self.store.set_job_status(job.id, IndexingStatus.INACTIVE)
            job.status = IndexingStatus.INACTIVE
        return job
