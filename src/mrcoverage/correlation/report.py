from __future__ import annotations

import asyncio
from collections import defaultdict
import logging
from typing import Dict, Optional, Tuple

import pydantic

from mrcoverage.correlation.types import GitLabAPI, ReportResult
from mrcoverage.errors import PostError
from mrcoverage.gitlab.api import GitLabError
from mrcoverage.gitlab.model import ProjectRef
from mrcoverage.metric import error_counter, note_post_counter
from mrcoverage.storage import CoverageStore

logger = logging.getLogger("mrcoverage")

AWAITING_MESSAGE = (
    ":hourglass: Waiting for coverage of the target branch and the latest commit"
)


def format_percentage(value: float) -> str:
    # repr gives the shortest string that round-trips, without padding
    return f"{float(value)!r}%"


def compose_message(before: Optional[float], after: Optional[float]) -> str:
    if before is None or after is None:
        return AWAITING_MESSAGE

    if after > before:
        return (
            f":arrow_up: Coverage increased from {format_percentage(before)} "
            f"to {format_percentage(after)}"
        )
    if after < before:
        return (
            f":arrow_down: Coverage decreased from {format_percentage(before)} "
            f"to {format_percentage(after)}"
        )
    return f":left_right_arrow: Coverage unchanged at {format_percentage(after)}"


class ReportComposer:
    """Creates the coverage note of a merge request, or updates the one we posted."""

    def __init__(self, store: CoverageStore, api: GitLabAPI, dry_run: bool = False):
        self.store = store
        self.api = api
        self.dry_run = dry_run
        self._locks: Dict[Tuple[str, int], asyncio.Lock] = defaultdict(asyncio.Lock)

    async def attempt_report(
        self, project: ProjectRef, iid: int, base_sha: str, head_sha: str
    ) -> ReportResult:
        # one report per merge request at a time, the second sees the stored note id
        async with self._locks[(str(project), iid)]:
            return await self._report(project, iid, base_sha, head_sha)

    async def _report(
        self, project: ProjectRef, iid: int, base_sha: str, head_sha: str
    ) -> ReportResult:
        before = self.store.get_coverage(project, base_sha)
        after = self.store.get_coverage(project, head_sha)
        body = compose_message(before, after)

        record = self.store.get_merge_request(project, iid)
        note_id = record.note_id if record is not None else None

        logger.debug(
            "Report for %s!%d: before=%r after=%r note=%r",
            project,
            iid,
            before,
            after,
            note_id,
        )

        if self.dry_run:
            logger.info("Dry run, not posting to %s!%d: %s", project, iid, body)
            return ReportResult(result="dry_run", body=body, note_id=note_id)

        if note_id is None:
            return await self._create(project, iid, body)

        if record is not None and record.note_body == body:
            logger.debug("Note %d on %s!%d is up to date", note_id, project, iid)
            note_post_counter.labels(action="update", result="skipped").inc()
            return ReportResult(result="unchanged", body=body, note_id=note_id)

        return await self._update(project, iid, note_id, body)

    async def _create(self, project: ProjectRef, iid: int, body: str) -> ReportResult:
        try:
            note = await self.api.create_merge_request_note(project, iid, body)
        except (GitLabError, pydantic.ValidationError) as e:
            return self._failed(
                "create",
                PostError(f"Creating note on {project}!{iid} failed: {e}"),
                body,
            )

        self.store.set_note(project, iid, note.id, body)
        note_post_counter.labels(action="create", result="ok").inc()
        logger.info("Created note %d on %s!%d", note.id, project, iid)
        return ReportResult(result="created", body=body, note_id=note.id)

    async def _update(
        self, project: ProjectRef, iid: int, note_id: int, body: str
    ) -> ReportResult:
        try:
            await self.api.update_merge_request_note(project, iid, note_id, body)
        except (GitLabError, pydantic.ValidationError) as e:
            return self._failed(
                "update",
                PostError(f"Updating note {note_id} on {project}!{iid} failed: {e}"),
                body,
                note_id=note_id,
            )

        self.store.set_note(project, iid, note_id, body)
        note_post_counter.labels(action="update", result="ok").inc()
        logger.info("Updated note %d on %s!%d", note_id, project, iid)
        return ReportResult(result="updated", body=body, note_id=note_id)

    def _failed(
        self,
        action: str,
        error: PostError,
        body: str,
        note_id: Optional[int] = None,
    ) -> ReportResult:
        logger.error("%s", error)
        error_counter.labels(context=error.context).inc()
        note_post_counter.labels(action=action, result="error").inc()
        return ReportResult(result="error", body=body, note_id=note_id, error=str(error))
