from __future__ import annotations

import logging
from typing import Optional

import pydantic

from mrcoverage.correlation.types import GitLabAPI
from mrcoverage.errors import FetchError
from mrcoverage.gitlab.api import GitLabError
from mrcoverage.gitlab.model import ProjectRef

logger = logging.getLogger("mrcoverage")


class CoverageFetcher:
    def __init__(self, api: GitLabAPI):
        self.api = api

    async def fetch_coverage(self, project: ProjectRef, job_id: int) -> Optional[float]:
        try:
            job = await self.api.get_job(project, job_id)
        except (GitLabError, pydantic.ValidationError) as e:
            raise FetchError(f"Unable to get job {project}#{job_id}: {e}") from e

        if job.coverage is None or job.coverage == 0:
            # a real 0% is treated the same as "not measured"
            logger.debug("Job %s#%d has no coverage (%r)", project, job_id, job.coverage)
            return None

        return job.coverage
