from __future__ import annotations

import logging

import pydantic

from mrcoverage.correlation.types import GitLabAPI, ResolvedMergeRequest
from mrcoverage.errors import ResolutionError
from mrcoverage.gitlab.api import GitLabError
from mrcoverage.gitlab.model import ProjectRef

logger = logging.getLogger("mrcoverage")


class MergeRequestResolver:
    """Finds the head commit of a merge request and the commit it branches off."""

    def __init__(self, api: GitLabAPI):
        self.api = api

    async def resolve(self, project: ProjectRef, iid: int) -> ResolvedMergeRequest:
        try:
            commits = await self.api.get_merge_request_commits(project, iid)
        except (GitLabError, pydantic.ValidationError) as e:
            raise ResolutionError(
                f"Unable to list commits of {project}!{iid}: {e}"
            ) from e

        if len(commits) == 0:
            raise ResolutionError(f"Merge request {project}!{iid} has no commits")

        # newest first
        head = commits[0]
        oldest = commits[-1]
        if len(oldest.parent_ids) == 0:
            raise ResolutionError(
                f"Oldest commit {oldest.id} of {project}!{iid} has no parent"
            )

        resolved = ResolvedMergeRequest(base_sha=oldest.parent_ids[0], head_sha=head.id)
        logger.debug(
            "Resolved %s!%d from %d commits: base=%s head=%s",
            project,
            iid,
            len(commits),
            resolved.base_sha,
            resolved.head_sha,
        )
        return resolved
