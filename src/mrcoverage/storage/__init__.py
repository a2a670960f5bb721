from mrcoverage.storage.coverage_store import CoverageStore, get_store
from mrcoverage.storage.types import (
    CommitCoverageRecord,
    EventLogEntry,
    MergeRequestRecord,
)

__all__ = [
    "CommitCoverageRecord",
    "CoverageStore",
    "EventLogEntry",
    "MergeRequestRecord",
    "get_store",
]
