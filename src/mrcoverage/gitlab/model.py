from typing import List, Literal, Optional, Union

import pydantic


class Model(pydantic.BaseModel):
    pass


ProjectRef = Union[int, str]


class Commit(Model):
    id: str
    short_id: Optional[str] = None
    title: Optional[str] = None
    parent_ids: List[str] = pydantic.Field(default_factory=list)


class Job(Model):
    id: int
    name: Optional[str] = None
    status: Optional[str] = None
    coverage: Optional[float] = None


class Note(Model):
    id: int
    body: Optional[str] = None


class MergeRequestAttributes(Model):
    iid: int
    target_project_id: ProjectRef
    action: Optional[str] = None
    state: Optional[str] = None


class MergeRequestHook(Model):
    object_kind: Literal["merge_request"]
    object_attributes: MergeRequestAttributes


class JobHook(Model):
    object_kind: Literal["build"]
    project_id: ProjectRef
    build_id: int
    sha: str
    build_status: str
    build_name: Optional[str] = None
