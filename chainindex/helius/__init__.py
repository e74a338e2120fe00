from .client import HeliusClient, DEFAULT_TRANSACTION_TYPES

__all__ = ["HeliusClient", "DEFAULT_TRANSACTION_TYPES"]
