from chainindex.indexing.jsonpath import resolve_path
from chainindex.indexing.lifecycle import JobLifecycle, JobSetup, parse_action
from chainindex.indexing.processors import PROCESSORS, EventProcessor, build_processors
from chainindex.indexing.router import IngestionOutcome, IngestionReason, IngestionRouter, IngestionState
from chainindex.indexing.subscription import SubscriptionManager, extract_addresses

__all__ = [
    "resolve_path",
    "JobLifecycle",
    "JobSetup",
    "parse_action",
    "PROCESSORS",
    "EventProcessor",
    "build_processors",
    "IngestionOutcome",
    "IngestionReason",
    "IngestionRouter",
    "IngestionState",
    "SubscriptionManager",
    "extract_addresses",
]
