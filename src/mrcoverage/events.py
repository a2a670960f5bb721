from __future__ import annotations

from dataclasses import dataclass
import json
from typing import Any, Mapping, Optional, Union

import pydantic

from mrcoverage.errors import DecodeError, UnsupportedEvent
from mrcoverage.gitlab.model import JobHook, MergeRequestHook, ProjectRef

MERGE_REQUEST_HOOK = "Merge Request Hook"
JOB_HOOKS = frozenset({"Job Hook", "Build Hook"})

_OBJECT_KINDS = {
    "merge_request": MERGE_REQUEST_HOOK,
    "build": "Job Hook",
}

SUCCESS_STATUS = "success"


@dataclass(frozen=True)
class MergeRequestEvent:
    project_id: ProjectRef
    merge_request_iid: int

    def __str__(self) -> str:
        return f"MR({self.project_id}!{self.merge_request_iid})"


@dataclass(frozen=True)
class BuildEvent:
    project_id: ProjectRef
    job_id: int
    commit_sha: str
    status: str

    @property
    def is_success(self) -> bool:
        return self.status == SUCCESS_STATUS

    def __str__(self) -> str:
        return f"Job({self.project_id}#{self.job_id}@{self.commit_sha[:8]}, {self.status})"


Event = Union[MergeRequestEvent, BuildEvent]


def load_payload(body: Union[bytes, str]) -> dict[str, Any]:
    try:
        payload = json.loads(body)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise DecodeError(f"Webhook body is not valid JSON: {e}") from e
    if not isinstance(payload, dict):
        raise DecodeError("Webhook body is not a JSON object")
    return payload


def event_kind(kind: Optional[str], payload: Mapping[str, Any]) -> Optional[str]:
    if kind:
        return kind
    return _OBJECT_KINDS.get(payload.get("object_kind"))


def decode_event(kind: Optional[str], payload: Mapping[str, Any]) -> Event:
    """Turn a webhook payload into one of the two supported events.

    ``kind`` is the value of the ``X-Gitlab-Event`` header; when it is missing
    the payload's ``object_kind`` decides.
    """
    kind = event_kind(kind, payload)
    try:
        if kind == MERGE_REQUEST_HOOK:
            hook = MergeRequestHook.model_validate(payload)
            return MergeRequestEvent(
                project_id=hook.object_attributes.target_project_id,
                merge_request_iid=hook.object_attributes.iid,
            )
        if kind in JOB_HOOKS:
            job = JobHook.model_validate(payload)
            return BuildEvent(
                project_id=job.project_id,
                job_id=job.build_id,
                commit_sha=job.sha,
                status=job.build_status,
            )
    except pydantic.ValidationError as e:
        raise DecodeError(f"Malformed {kind} payload: {e}") from e

    raise UnsupportedEvent(kind)
