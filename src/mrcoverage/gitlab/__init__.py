from mrcoverage.gitlab.api import API, GitLabError
from mrcoverage.gitlab.model import Commit, Job, JobHook, MergeRequestHook, Note

__all__ = [
    "API",
    "Commit",
    "GitLabError",
    "Job",
    "JobHook",
    "MergeRequestHook",
    "Note",
]
