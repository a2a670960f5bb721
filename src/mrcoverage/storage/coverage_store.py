from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
import logging
import os
import sqlite3
from typing import Any, Iterator, Mapping, Optional

import diskcache
import pydantic

from mrcoverage import config
from mrcoverage.errors import StoreError
from mrcoverage.gitlab.model import ProjectRef
from mrcoverage.metric import coverage_stored_counter
from mrcoverage.storage.types import (
    CommitCoverageRecord,
    EventLogEntry,
    MergeRequestRecord,
)

logger = logging.getLogger("mrcoverage")

_STORE_ERRORS = (sqlite3.Error, diskcache.Timeout, OSError, pydantic.ValidationError)


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _project_prefix(project: ProjectRef) -> str:
    return f"projects:{project}"


def _mr_key(project: ProjectRef, iid: int) -> str:
    return f"{_project_prefix(project)}:mr:{iid}"


def _sha_key(project: ProjectRef, sha: str) -> str:
    return f"{_project_prefix(project)}:sha:{sha}"


class CoverageStore:
    """Persistent join state between merge requests, commits and coverage.

    Every public mutation runs inside a single ``diskcache`` transaction, so it
    is either fully applied or not at all. Reads of unknown keys return
    ``None`` instead of raising.
    """

    cache: diskcache.Cache
    events: diskcache.Deque

    def __init__(self, directory: str, event_log_size: int = 1000):
        try:
            self.cache = diskcache.Cache(directory)
            self.events = diskcache.Deque(
                directory=os.path.join(directory, "events"),
                maxlen=max(1, event_log_size),
            )
        except _STORE_ERRORS as exc:
            raise StoreError(f"Unable to open store at {directory}: {exc}") from exc

    @property
    def directory(self) -> str:
        return self.cache.directory

    def close(self) -> None:
        self.events.cache.close()
        self.cache.close()

    def __enter__(self) -> "CoverageStore":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    @contextmanager
    def _transaction(self) -> Iterator[None]:
        try:
            with self.cache.transact(retry=True):
                yield
        except _STORE_ERRORS as exc:
            raise StoreError(str(exc)) from exc

    def _load_merge_request(
        self, project: ProjectRef, iid: int
    ) -> Optional[MergeRequestRecord]:
        raw = self.cache.get(_mr_key(project, iid))
        if raw is None:
            return None
        return MergeRequestRecord.model_validate(raw)

    def _load_commit(self, project: ProjectRef, sha: str) -> Optional[CommitCoverageRecord]:
        raw = self.cache.get(_sha_key(project, sha))
        if raw is None:
            return None
        return CommitCoverageRecord.model_validate(raw)

    def _save_merge_request(
        self, project: ProjectRef, iid: int, record: MergeRequestRecord
    ) -> None:
        self.cache.set(_mr_key(project, iid), record.model_dump(mode="json"))

    def _save_commit(
        self, project: ProjectRef, sha: str, record: CommitCoverageRecord
    ) -> None:
        data = record.model_dump(mode="json")
        data["linked_merge_requests"] = sorted(record.linked_merge_requests)
        self.cache.set(_sha_key(project, sha), data)

    def get_merge_request(
        self, project: ProjectRef, iid: int
    ) -> Optional[MergeRequestRecord]:
        with self._transaction():
            return self._load_merge_request(project, iid)

    def get_commit(self, project: ProjectRef, sha: str) -> Optional[CommitCoverageRecord]:
        with self._transaction():
            return self._load_commit(project, sha)

    def record_merge_request(
        self, project: ProjectRef, iid: int, base_sha: str, head_sha: str
    ) -> MergeRequestRecord:
        """Store the resolved SHAs and register ``iid`` under its head commit.

        The note id and last posted body survive the update. When the head
        moved since the last event the merge request is unlinked from the
        previous head commit.
        """
        with self._transaction():
            record = self._load_merge_request(project, iid) or MergeRequestRecord()
            previous_head = record.head_sha

            record.base_sha = base_sha
            record.head_sha = head_sha
            self._save_merge_request(project, iid, record)

            if previous_head is not None and previous_head != head_sha:
                previous = self._load_commit(project, previous_head)
                if previous is not None and iid in previous.linked_merge_requests:
                    previous.linked_merge_requests.discard(iid)
                    self._save_commit(project, previous_head, previous)

            commit = self._load_commit(project, head_sha) or CommitCoverageRecord()
            commit.linked_merge_requests.add(iid)
            self._save_commit(project, head_sha, commit)

        logger.debug(
            "Stored merge request %s!%d base=%s head=%s",
            project,
            iid,
            base_sha,
            head_sha,
        )
        return record

    def set_note(self, project: ProjectRef, iid: int, note_id: int, body: str) -> None:
        """Remember the note posted on a merge request and its last body.

        A merge request keeps the first note id it was given, trying to store
        a different one raises :class:`StoreError`.
        """
        with self._transaction():
            record = self._load_merge_request(project, iid) or MergeRequestRecord()
            if record.note_id is not None and record.note_id != note_id:
                raise StoreError(
                    f"{project}!{iid} already has note {record.note_id}, "
                    f"refusing to replace it with {note_id}"
                )
            record.note_id = note_id
            record.note_body = body
            self._save_merge_request(project, iid, record)

    def get_coverage(self, project: ProjectRef, sha: str) -> Optional[float]:
        commit = self.get_commit(project, sha)
        if commit is None:
            return None
        return commit.coverage

    def set_coverage(self, project: ProjectRef, sha: str, coverage: Optional[float]) -> bool:
        """Persist the coverage of a commit unless one is already known.

        Returns whether the value was written. Absent and zero values are
        never written.
        """
        if coverage is None or coverage <= 0:
            return False

        with self._transaction():
            commit = self._load_commit(project, sha) or CommitCoverageRecord()
            if commit.coverage is not None:
                logger.debug(
                    "Coverage for %s@%s already known (%r), keeping it",
                    project,
                    sha,
                    commit.coverage,
                )
                return False
            commit.coverage = coverage
            self._save_commit(project, sha, commit)

        coverage_stored_counter.inc()
        return True

    def linked_merge_requests(self, project: ProjectRef, sha: str) -> set[int]:
        commit = self.get_commit(project, sha)
        if commit is None:
            return set()
        return set(commit.linked_merge_requests)

    def merge_requests(self, project: ProjectRef) -> dict[int, MergeRequestRecord]:
        prefix = f"{_project_prefix(project)}:mr:"
        result = {}
        with self._transaction():
            keys = [
                key
                for key in self.cache.iterkeys()
                if isinstance(key, str) and key.startswith(prefix)
            ]
            for key in keys:
                raw = self.cache.get(key)
                if raw is None:
                    continue
                result[int(key[len(prefix) :])] = MergeRequestRecord.model_validate(raw)
        return result

    def record_event(self, kind: str, payload: Mapping[str, Any]) -> None:
        entry = EventLogEntry(kind=kind, received_at=utcnow_iso(), payload=dict(payload))
        try:
            self.events.append(entry.model_dump(mode="json"))
        except _STORE_ERRORS as exc:
            raise StoreError(f"Unable to append to event log: {exc}") from exc

    def recent_events(self, limit: int = 20) -> list[EventLogEntry]:
        try:
            entries = list(self.events)
        except _STORE_ERRORS as exc:
            raise StoreError(f"Unable to read event log: {exc}") from exc
        if limit > 0:
            entries = entries[-limit:]
        return [EventLogEntry.model_validate(e) for e in entries]


def get_store() -> CoverageStore:
    logger.info("Opening store dir: %s", config.DISKCACHE_DIR)
    return CoverageStore(config.DISKCACHE_DIR, event_log_size=config.EVENT_LOG_SIZE)
