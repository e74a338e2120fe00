"""
Webhook API Endpoint - receives event deliveries from the event source.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from chainindex.core.logger import setup_logger
from chainindex.server.dependencies import get_ingestion_router

logger = setup_logger(__name__, include_location=True)
router = APIRouter()

SUPPORTED_PROVIDERS = ("helius",)


@router.post("/webhooks/{provider}/{job_id}")
async def receive_webhook(
    provider: str,
    job_id: str,
    request: Request,
    ingestion=Depends(get_ingestion_router),
) -> JSONResponse:
    """
    Ingest one event, or a JSON array of events, for a job.

    Answers 200 `{"success": bool}` once the events reached the job's
    processor, 401 on a bad `Authorization` header, 404 for an unknown job,
    400 for an inactive job, an unsupported data type or an unparseable
    body, and 500 `{"success": false}` on an internal error.
    """
    if provider not in SUPPORTED_PROVIDERS:
        return JSONResponse(status_code=404, content={"success": False, "error": "unknown_provider"})
    try:
        body = await request.body()
    except Exception as e:
        logger.exception(f"Error reading webhook body for job {job_id}: {e}")
        return JSONResponse(status_code=500, content={"success": False})

    outcome = await ingestion.ingest(job_id, request.headers.get("Authorization"), body)
    return JSONResponse(status_code=outcome.status_code, content=outcome.to_response())
