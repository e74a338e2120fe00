"""
Webhook ingestion: authenticate, load the job, dispatch to its processor.

    RECEIVED -> AUTHENTICATED -> JOB_LOADED -> DISPATCHED -> WRITTEN | REJECTED | ERRORED

``IngestionRouter.ingest`` always returns an ``IngestionOutcome``; no
exception escapes it.
"""
import hmac
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

import pydantic

from chainindex.core.db.store import log_job_event
from chainindex.core.errors import ValidationError
from chainindex.core.logger import setup_logger
from chainindex.core.logging_context import LoggingContext
from chainindex.core.models import DataType, InboundEvent, IndexingStatus, LogLevel
from chainindex.indexing.processors import EventProcessor, build_processors

logger = setup_logger(__name__, include_location=True)


class IngestionState(str, Enum):
    RECEIVED = "RECEIVED"
    AUTHENTICATED = "AUTHENTICATED"
    JOB_LOADED = "JOB_LOADED"
    DISPATCHED = "DISPATCHED"
    WRITTEN = "WRITTEN"
    REJECTED = "REJECTED"
    ERRORED = "ERRORED"


class IngestionReason(str, Enum):
    INVALID_PAYLOAD = "invalid_payload"
    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"
    INACTIVE = "inactive"
    UNSUPPORTED_DATA_TYPE = "unsupported_data_type"
    PROCESSING_FAILED = "processing_failed"
    INTERNAL = "internal"


_STATUS_CODES = {
    IngestionReason.INVALID_PAYLOAD: 400,
    IngestionReason.UNAUTHORIZED: 401,
    IngestionReason.NOT_FOUND: 404,
    IngestionReason.INACTIVE: 400,
    IngestionReason.UNSUPPORTED_DATA_TYPE: 400,
    IngestionReason.PROCESSING_FAILED: 200,
    IngestionReason.INTERNAL: 500,
}


@dataclass
class IngestionOutcome:
    state: IngestionState
    reason: Optional[IngestionReason] = None
    success: bool = False
    events: int = 0
    succeeded: int = 0

    @property
    def status_code(self) -> int:
        if self.reason is None:
            return 200
        return _STATUS_CODES[self.reason]

    def to_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": self.success}
        if self.reason is not None:
            body["error"] = self.reason.value
        return body


def parse_events(body: Any) -> List[InboundEvent]:
    """
    Parse a webhook body into events.

    Accepts raw bytes/str (JSON text) or already decoded JSON; the document
    is either one event object or a non-empty array of them.

    Raises:
        ValidationError: if the body is not valid JSON or an item is not a valid event
    """
    if isinstance(body, (bytes, bytearray, str)):
        try:
            body = json.loads(body)
        except (ValueError, UnicodeDecodeError) as e:
            raise ValidationError(f"Body is not valid JSON: {e}")

    items = body if isinstance(body, list) else [body]
    if not items:
        raise ValidationError("Body contains no events")
    events = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError(f"Event {index} is not an object")
        try:
            events.append(InboundEvent.model_validate(item))
        except pydantic.ValidationError as e:
            raise ValidationError(f"Event {index} is invalid: {e.error_count()} error(s)")
    return events


class IngestionRouter:
    """Routes inbound webhook deliveries to the processor of their job's data type."""

    def __init__(self, store, registry, webhook_secret: str, processors: Optional[Dict[DataType, EventProcessor]] = None):
        self.store = store
        self.registry = registry
        self._expected_authorization = f"Bearer {webhook_secret}".encode()
        self.processors = processors if processors is not None else build_processors(registry, store)

    def authenticate(self, authorization: Optional[str]) -> bool:
        """Constant time comparison of the Authorization header against the shared secret."""
        return hmac.compare_digest((authorization or "").encode(), self._expected_authorization)

    async def _audit_unauthorized(self, job_id: str) -> None:
        try:
            await self.store.append_log_if_job_exists(job_id, LogLevel.ERROR, "Invalid webhook authorization")
        except Exception as e:
            logger.error(f"Error writing unauthorized webhook audit log for {job_id}: {e}")

    async def ingest(self, job_id: str, authorization: Optional[str], body: Any) -> IngestionOutcome:
        try:
            return await self._ingest(job_id, authorization, body)
        except Exception as e:
            logger.exception(f"Error ingesting webhook for job {job_id}: {e}")
            await log_job_event(self.store, job_id, "Error processing webhook", level=LogLevel.ERROR, metadata={
                "exception_type": type(e).__name__,
            })
            return IngestionOutcome(IngestionState.ERRORED, IngestionReason.INTERNAL)

    async def _ingest(self, job_id: str, authorization: Optional[str], body: Any) -> IngestionOutcome:
        # RECEIVED
        try:
            events = parse_events(body)
        except ValidationError as e:
            logger.warning(f"Rejected webhook for job {job_id}: {e.message}")
            return IngestionOutcome(IngestionState.REJECTED, IngestionReason.INVALID_PAYLOAD)

        # AUTHENTICATED
        if not self.authenticate(authorization):
            logger.warning(f"Rejected webhook for job {job_id}: invalid authorization")
            await self._audit_unauthorized(job_id)
            return IngestionOutcome(IngestionState.REJECTED, IngestionReason.UNAUTHORIZED, events=len(events))

        # JOB_LOADED
        job = await self.store.get_job(job_id, include_connection=True)
        if job is None or job.connection is None:
            logger.warning(f"Rejected webhook for unknown job {job_id}")
            return IngestionOutcome(IngestionState.REJECTED, IngestionReason.NOT_FOUND, events=len(events))
        if job.status != IndexingStatus.ACTIVE:
            logger.info(f"Dropped {len(events)} event(s) for job {job_id} in status {job.status.value}")
            return IngestionOutcome(IngestionState.REJECTED, IngestionReason.INACTIVE, events=len(events))

        # DISPATCHED
        try:
            processor = self.processors[DataType(job.data_type)]
        except (ValueError, KeyError):
            logger.error(f"Job {job_id} has unsupported data type {job.data_type!r}")
            await log_job_event(self.store, job_id, f"Unsupported data type: {job.data_type}", level=LogLevel.ERROR)
            return IngestionOutcome(IngestionState.ERRORED, IngestionReason.UNSUPPORTED_DATA_TYPE, events=len(events))

        succeeded = 0
        with LoggingContext(logger, job_id=job.id, connection_id=job.connection_id):
            for event in events:
                if await processor.process(event, job, job.connection):
                    succeeded += 1

        if succeeded == len(events):
            return IngestionOutcome(IngestionState.WRITTEN, success=True, events=len(events), succeeded=succeeded)
        logger.warning(f"Job {job_id}: {len(events) - succeeded} of {len(events)} event(s) failed")
        return IngestionOutcome(
            IngestionState.ERRORED, IngestionReason.PROCESSING_FAILED, events=len(events), succeeded=succeeded,
        )
