from __future__ import annotations

import pydantic


class StorageModel(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(extra="ignore", validate_assignment=True)


class MergeRequestRecord(StorageModel):
    base_sha: str | None = None
    head_sha: str | None = None
    note_id: int | None = None
    note_body: str | None = None

    @property
    def is_resolved(self) -> bool:
        return self.base_sha is not None and self.head_sha is not None


class CommitCoverageRecord(StorageModel):
    coverage: float | None = None
    linked_merge_requests: set[int] = pydantic.Field(default_factory=set)

    @pydantic.field_validator("coverage")
    @classmethod
    def _zero_is_unknown(cls, value: float | None) -> float | None:
        # a genuine 0% cannot be told apart from "not measured yet"
        if value is not None and value <= 0:
            return None
        return value


class EventLogEntry(StorageModel):
    kind: str
    received_at: str
    payload: dict = pydantic.Field(default_factory=dict)
