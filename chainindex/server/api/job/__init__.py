"""
Indexing Job API Module - job management, actions and logs.
"""

from .endpoint import router
from .schema import (
    JobCreateRequest,
    JobUpdateRequest,
    JobActionRequest,
    JobResponse,
    JobListResponse,
    LogListResponse,
)
from .service import JobService

__all__ = [
    "router",
    "JobCreateRequest",
    "JobUpdateRequest",
    "JobActionRequest",
    "JobResponse",
    "JobListResponse",
    "LogListResponse",
    "JobService",
]
