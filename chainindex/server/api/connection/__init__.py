"""
Connection API Module - tenant database registration and probing.
"""

from .endpoint import router
from .schema import (
    ConnectionCreateRequest,
    ConnectionUpdateRequest,
    ConnectionResponse,
    ConnectionListResponse,
    ConnectionTestResponse,
)
from .service import ConnectionService

__all__ = [
    "router",
    "ConnectionCreateRequest",
    "ConnectionUpdateRequest",
    "ConnectionResponse",
    "ConnectionListResponse",
    "ConnectionTestResponse",
    "ConnectionService",
]
