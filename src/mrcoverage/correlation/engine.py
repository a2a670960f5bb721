from __future__ import annotations

import logging
from typing import List, Optional

from mrcoverage.correlation.fetcher import CoverageFetcher
from mrcoverage.correlation.report import ReportComposer
from mrcoverage.correlation.resolver import MergeRequestResolver
from mrcoverage.correlation.types import GitLabAPI, ReportResult
from mrcoverage.errors import StoreError
from mrcoverage.events import BuildEvent, Event, MergeRequestEvent
from mrcoverage.metric import error_counter
from mrcoverage.storage import CoverageStore

logger = logging.getLogger("mrcoverage")


class CorrelationEngine:
    """Joins merge requests with the coverage of their base and head commits.

    Both entry points end in :meth:`ReportComposer.attempt_report`, and each
    one only reads what the other may already have stored, so the outcome
    does not depend on which event arrives first. Only head commits are
    indexed: coverage arriving for a base commit does not trigger a report on
    its own, the next merge request or head build event picks it up.
    """

    def __init__(
        self,
        store: CoverageStore,
        api: GitLabAPI,
        *,
        resolver: Optional[MergeRequestResolver] = None,
        fetcher: Optional[CoverageFetcher] = None,
        composer: Optional[ReportComposer] = None,
        dry_run: bool = False,
    ):
        self.store = store
        self.resolver = resolver or MergeRequestResolver(api)
        self.fetcher = fetcher or CoverageFetcher(api)
        self.composer = composer or ReportComposer(store, api, dry_run=dry_run)

    async def handle(self, event: Event) -> List[ReportResult]:
        if isinstance(event, MergeRequestEvent):
            return [await self.handle_merge_request(event)]
        elif isinstance(event, BuildEvent):
            return await self.handle_build(event)
        else:
            raise TypeError(f"Unknown event type {type(event)!r}")

    async def handle_merge_request(self, event: MergeRequestEvent) -> ReportResult:
        project, iid = event.project_id, event.merge_request_iid
        logger.info("Handling %s", event)

        resolved = await self.resolver.resolve(project, iid)
        self.store.record_merge_request(
            project, iid, base_sha=resolved.base_sha, head_sha=resolved.head_sha
        )

        return await self.composer.attempt_report(
            project, iid, resolved.base_sha, resolved.head_sha
        )

    async def handle_build(self, event: BuildEvent) -> List[ReportResult]:
        if not event.is_success:
            logger.debug("Skipping %s as status is not success", event)
            return []

        project, sha = event.project_id, event.commit_sha
        logger.info("Handling %s", event)

        coverage = await self.fetcher.fetch_coverage(project, event.job_id)
        if coverage is None:
            logger.debug("No coverage for %s, nothing to report", event)
            return []

        if self.store.set_coverage(project, sha, coverage):
            logger.info("Stored coverage %r for %s@%s", coverage, project, sha)

        results = []
        for iid in sorted(self.store.linked_merge_requests(project, sha)):
            record = self.store.get_merge_request(project, iid)
            if record is None or not record.is_resolved:
                logger.debug("%s!%d is not resolved yet, skipping", project, iid)
                continue
            logger.info("- Coverage of %s triggers report on %s!%d", sha, project, iid)
            try:
                result = await self.composer.attempt_report(
                    project, iid, record.base_sha, record.head_sha
                )
            except StoreError as e:
                logger.error("Report on %s!%d failed: %s", project, iid, e)
                error_counter.labels(context=e.context).inc()
                result = ReportResult(result="error", body="", error=str(e))
            results.append(result)
        return results
