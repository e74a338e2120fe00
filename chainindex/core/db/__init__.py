from chainindex.core.db.pool import init_pool, get_pool, get_pool_connection, close_pool
from chainindex.core.db.store import MetadataStore, log_job_event

__all__ = [
    "init_pool",
    "get_pool",
    "get_pool_connection",
    "close_pool",
    "MetadataStore",
    "log_job_event",
]
