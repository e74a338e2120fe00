"""
Webhook API Module - event source deliveries.
"""

from .endpoint import router

__all__ = ["router"]
