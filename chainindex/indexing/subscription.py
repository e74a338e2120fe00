"""
Registers and removes event source webhooks for indexing jobs.
"""
from typing import Any, List, Optional

from chainindex.core.db.store import log_job_event
from chainindex.core.errors import EventSourceError
from chainindex.core.logger import setup_logger
from chainindex.core.models import DataType, IndexingJob, LogLevel

logger = setup_logger(__name__, include_location=True)


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def extract_addresses(job: IndexingJob) -> List[str]:
    """
    Account addresses a job watches, read from its config.

    NFT_BIDS and NFT_PRICES use ``mint``, TOKEN_BORROW uses ``token``,
    TOKEN_PRICES uses the ``tokens`` list and CUSTOM the ``addresses`` list.
    Blank entries and duplicates are dropped, first occurrence order kept.
    """
    config = job.config or {}
    try:
        data_type = DataType(job.data_type)
    except ValueError:
        return []

    if data_type in (DataType.NFT_BIDS, DataType.NFT_PRICES):
        raw = _as_list(config.get("mint"))
    elif data_type == DataType.TOKEN_BORROW:
        raw = _as_list(config.get("token"))
    elif data_type == DataType.TOKEN_PRICES:
        raw = _as_list(config.get("tokens"))
    else:
        raw = _as_list(config.get("addresses"))

    addresses = []
    for item in raw:
        if not isinstance(item, str) or not item.strip():
            continue
        address = item.strip()
        if address not in addresses:
            addresses.append(address)
    return addresses


class SubscriptionManager:
    """Wraps the Helius client with the job level subscribe/unsubscribe policy."""

    def __init__(self, client, settings, store=None):
        self.client = client
        self.settings = settings
        self.store = store

    async def _job_log(self, job_id: str, level: LogLevel, message: str, metadata=None):
        if self.store is not None:
            await log_job_event(self.store, job_id, message, level=level, metadata=metadata)

    async def subscribe(self, job: IndexingJob) -> Optional[str]:
        """
        Register a webhook for ``job``.

        Returns the webhook id, or None when the job watches no addresses or
        the event source refused the registration. Never raises for event
        source failures.
        """
        addresses = extract_addresses(job)
        if not addresses:
            logger.warning(f"Job {job.id} has no addresses to subscribe to")
            await self._job_log(job.id, LogLevel.WARNING, "No addresses configured, webhook not created")
            return None

        callback_url = self.settings.webhook_callback_url(job.id)
        try:
            webhook_id = await self.client.create_webhook(
                webhook_url=callback_url,
                account_addresses=addresses,
                auth_header=f"Bearer {self.settings.webhook_secret}",
            )
        except EventSourceError as e:
            logger.error(f"Failed to create webhook for job {job.id}: {e.message}")
            await self._job_log(job.id, LogLevel.ERROR, "Failed to create webhook", {"error": e.info.to_dict()})
            return None

        logger.info(f"Created webhook {webhook_id} for job {job.id} watching {len(addresses)} address(es)")
        await self._job_log(job.id, LogLevel.INFO, "Webhook created", {
            "webhook_id": webhook_id,
            "addresses": addresses,
        })
        return webhook_id

    async def unsubscribe(self, subscription_id: str) -> None:
        """Delete a webhook. Event source errors propagate."""
        await self.client.delete_webhook(subscription_id)
        logger.info(f"Deleted webhook {subscription_id}")
