from mrcoverage.correlation.dispatcher import EventDispatcher
from mrcoverage.correlation.engine import CorrelationEngine
from mrcoverage.correlation.fetcher import CoverageFetcher
from mrcoverage.correlation.report import ReportComposer, compose_message
from mrcoverage.correlation.resolver import MergeRequestResolver
from mrcoverage.correlation.types import GitLabAPI, ReportResult, ResolvedMergeRequest

__all__ = [
    "CorrelationEngine",
    "CoverageFetcher",
    "EventDispatcher",
    "GitLabAPI",
    "MergeRequestResolver",
    "ReportComposer",
    "ReportResult",
    "ResolvedMergeRequest",
    "compose_message",
]
