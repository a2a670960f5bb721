from typing import Dict, List, Tuple

import pytest

from mrcoverage.gitlab.api import GitLabError
from mrcoverage.gitlab.model import Commit, Job, Note
from mrcoverage.storage import CoverageStore


class FakeGitLab:
    def __init__(self):
        self.commits: Dict[Tuple, List[Commit]] = {}
        self.jobs: Dict[Tuple, Job] = {}
        self.created: List[Tuple] = []
        self.updated: List[Tuple] = []
        self.posts: List[str] = []
        self.fail_commits = False
        self.fail_jobs = False
        self.fail_create = False
        self.fail_update = False
        self._next_note_id = 100

    def set_merge_request(self, project, iid, base_sha, *shas):
        """Register commits of a merge request, newest first, on top of base_sha."""
        parents = list(shas[1:]) + [base_sha]
        self.commits[(project, iid)] = [
            Commit(id=sha, parent_ids=[parent]) for sha, parent in zip(shas, parents)
        ]

    def set_job(self, project, job_id, coverage):
        self.jobs[(project, job_id)] = Job(id=job_id, status="success", coverage=coverage)

    async def get_merge_request_commits(self, project, iid):
        if self.fail_commits or (project, iid) not in self.commits:
            raise GitLabError(404, "404 Not found")
        return list(self.commits[(project, iid)])

    async def get_job(self, project, job_id):
        if self.fail_jobs or (project, job_id) not in self.jobs:
            raise GitLabError(404, "404 Not found")
        return self.jobs[(project, job_id)]

    async def create_merge_request_note(self, project, iid, body):
        if self.fail_create:
            raise GitLabError(500, "500 Internal Server Error")
        note_id = self._next_note_id
        self._next_note_id += 1
        self.created.append((project, iid, note_id, body))
        self.posts.append(body)
        return Note(id=note_id, body=body)

    async def update_merge_request_note(self, project, iid, note_id, body):
        if self.fail_update:
            raise GitLabError(500, "500 Internal Server Error")
        self.updated.append((project, iid, note_id, body))
        self.posts.append(body)
        return Note(id=note_id, body=body)

    @property
    def last_body(self):
        return self.posts[-1] if self.posts else None


@pytest.fixture
def store(tmp_path):
    with CoverageStore(str(tmp_path / "store"), event_log_size=5) as store:
        yield store


@pytest.fixture
def gitlab():
    return FakeGitLab()
