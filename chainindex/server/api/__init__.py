"""
chainindex API Routers - All FastAPI router definitions.

Management routes are mounted under ``/api``; webhook deliveries are
mounted at the root by the app.
"""

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from . import connection, job, webhook

router = APIRouter()


@router.get("/health", response_class=JSONResponse)
async def api_health():
    return {"status": "ok"}


router.include_router(connection.router)
router.include_router(job.router)

webhook_router = webhook.router

__all__ = [
    "router",
    "webhook_router",
    "connection", "job", "webhook",
]
