from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Protocol

from mrcoverage.gitlab.model import Commit, Job, Note, ProjectRef


class GitLabAPI(Protocol):
    async def get_merge_request_commits(
        self, project: ProjectRef, iid: int
    ) -> List[Commit]: ...

    async def get_job(self, project: ProjectRef, job_id: int) -> Job: ...

    async def create_merge_request_note(
        self, project: ProjectRef, iid: int, body: str
    ) -> Note: ...

    async def update_merge_request_note(
        self, project: ProjectRef, iid: int, note_id: int, body: str
    ) -> Note: ...


@dataclass(frozen=True)
class ResolvedMergeRequest:
    base_sha: str
    head_sha: str


@dataclass(frozen=True)
class ReportResult:
    result: str
    body: str
    note_id: Optional[int] = None
    error: Optional[str] = None
