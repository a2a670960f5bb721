import pytest

from mrcoverage.correlation import CorrelationEngine
from mrcoverage.correlation.report import AWAITING_MESSAGE
from mrcoverage.errors import FetchError, ResolutionError, StoreError
from mrcoverage.events import BuildEvent, MergeRequestEvent
from mrcoverage.metric import error_counter
from mrcoverage.storage import CoverageStore

from conftest import FakeGitLab

INCREASED = ":arrow_up: Coverage increased from 60.0% to 65.0%"


def mr_event(project=1, iid=5):
    return MergeRequestEvent(project_id=project, merge_request_iid=iid)


def build_event(sha, job_id, project=1, status="success"):
    return BuildEvent(project_id=project, job_id=job_id, commit_sha=sha, status=status)


@pytest.mark.asyncio
async def test_scenario_base_coverage_alone_does_not_report(store, gitlab):
    engine = CorrelationEngine(store, gitlab)
    gitlab.set_merge_request(1, 5, "c1", "c2")
    gitlab.set_job(1, 10, 60.0)
    gitlab.set_job(1, 11, 65.0)

    result = await engine.handle_merge_request(mr_event())
    assert result.result == "created"
    assert gitlab.created == [(1, 5, 100, AWAITING_MESSAGE)]
    assert store.get_merge_request(1, 5).note_id == 100

    results = await engine.handle_build(build_event("c1", 10))
    assert results == []
    assert store.get_coverage(1, "c1") == 60.0
    assert gitlab.updated == []

    results = await engine.handle_build(build_event("c2", 11))
    assert [r.result for r in results] == ["updated"]
    assert gitlab.updated == [(1, 5, 100, INCREASED)]
    assert len(gitlab.created) == 1


async def _run(directory, order):
    gitlab = FakeGitLab()
    gitlab.set_merge_request(1, 5, "c1", "c2")
    gitlab.set_job(1, 11, 65.0)
    with CoverageStore(directory) as store:
        store.set_coverage(1, "c1", 60.0)
        engine = CorrelationEngine(store, gitlab)
        for event in order:
            await engine.handle(event)
        return (
            store.get_merge_request(1, 5),
            store.get_commit(1, "c2"),
            gitlab.last_body,
        )


@pytest.mark.asyncio
async def test_order_independence(tmp_path):
    mr, build = mr_event(), build_event("c2", 11)

    first = await _run(str(tmp_path / "a"), [mr, build])
    second = await _run(str(tmp_path / "b"), [build, mr])

    assert first == second
    record, commit, body = first
    assert body == INCREASED
    assert record.note_id == 100
    assert (record.base_sha, record.head_sha) == ("c1", "c2")
    assert commit.coverage == 65.0
    assert commit.linked_merge_requests == {5}


@pytest.mark.asyncio
async def test_repeated_merge_request_event_reuses_note(store, gitlab):
    engine = CorrelationEngine(store, gitlab)
    gitlab.set_merge_request(1, 5, "c1", "c2")

    await engine.handle(mr_event())
    await engine.handle(mr_event())

    assert len(gitlab.created) == 1
    assert gitlab.updated == []

    store.set_coverage(1, "c1", 60.0)
    store.set_coverage(1, "c2", 65.0)
    await engine.handle(mr_event())

    assert len(gitlab.created) == 1
    assert gitlab.updated == [(1, 5, 100, INCREASED)]


@pytest.mark.asyncio
async def test_non_success_build_is_ignored(store, gitlab):
    engine = CorrelationEngine(store, gitlab)
    gitlab.set_merge_request(1, 5, "c1", "c2")
    await engine.handle(mr_event())
    gitlab.set_job(1, 11, 65.0)

    for status in ("failed", "running", "canceled", "Success"):
        assert await engine.handle(build_event("c2", 11, status=status)) == []

    assert store.get_coverage(1, "c2") is None
    assert len(gitlab.posts) == 1


@pytest.mark.asyncio
async def test_non_success_build_does_not_call_api(store, gitlab):
    gitlab.fail_jobs = True
    engine = CorrelationEngine(store, gitlab)

    assert await engine.handle(build_event("c2", 11, status="failed")) == []
    assert store.get_commit(1, "c2") is None


@pytest.mark.asyncio
async def test_reverse_index_finds_merge_request(store, gitlab):
    engine = CorrelationEngine(store, gitlab)
    gitlab.set_merge_request(1, 5, "base", "abc123")
    await engine.handle(mr_event())
    store.set_coverage(1, "base", 70.5)

    gitlab.set_job(1, 20, 75.2)
    results = await engine.handle(build_event("abc123", 20))

    assert [r.result for r in results] == ["updated"]
    assert gitlab.last_body == ":arrow_up: Coverage increased from 70.5% to 75.2%"


@pytest.mark.asyncio
async def test_build_reports_every_linked_merge_request(store, gitlab):
    engine = CorrelationEngine(store, gitlab)
    gitlab.set_merge_request(1, 5, "c1", "c2")
    gitlab.set_merge_request(1, 6, "c0", "c2")
    await engine.handle(mr_event(iid=5))
    await engine.handle(mr_event(iid=6))
    store.set_coverage(1, "c1", 90.1)
    store.set_coverage(1, "c0", 85.0)

    gitlab.set_job(1, 30, 85.0)
    results = await engine.handle(build_event("c2", 30))

    assert [(r.result, r.note_id) for r in results] == [
        ("updated", 100),
        ("updated", 101),
    ]
    assert gitlab.updated == [
        (1, 5, 100, ":arrow_down: Coverage decreased from 90.1% to 85.0%"),
        (1, 6, 101, ":left_right_arrow: Coverage unchanged at 85.0%"),
    ]


@pytest.mark.asyncio
async def test_new_push_moves_merge_request_to_new_head(store, gitlab):
    engine = CorrelationEngine(store, gitlab)
    gitlab.set_merge_request(1, 5, "c1", "c2")
    await engine.handle(mr_event())
    gitlab.set_merge_request(1, 5, "c1", "c3", "c2")
    await engine.handle(mr_event())

    assert store.get_merge_request(1, 5).head_sha == "c3"
    assert store.linked_merge_requests(1, "c2") == set()

    gitlab.set_job(1, 40, 65.0)
    assert await engine.handle(build_event("c2", 40)) == []
    assert gitlab.updated == []


@pytest.mark.asyncio
async def test_push_without_coverage_resets_note_to_placeholder(store, gitlab):
    engine = CorrelationEngine(store, gitlab)
    gitlab.set_merge_request(1, 5, "c1", "c2")
    store.set_coverage(1, "c1", 60.0)
    store.set_coverage(1, "c2", 65.0)
    await engine.handle(mr_event())
    assert gitlab.created == [(1, 5, 100, INCREASED)]

    gitlab.set_merge_request(1, 5, "c1", "c3", "c2")
    result = await engine.handle_merge_request(mr_event())

    assert result.result == "updated"
    assert gitlab.updated == [(1, 5, 100, AWAITING_MESSAGE)]
    assert store.get_merge_request(1, 5).note_body == AWAITING_MESSAGE


@pytest.mark.asyncio
async def test_store_failure_on_one_linked_merge_request(store, gitlab, monkeypatch):
    engine = CorrelationEngine(store, gitlab)
    gitlab.set_merge_request(1, 5, "c1", "c2")
    gitlab.set_merge_request(1, 6, "c1", "c2")
    await engine.handle(mr_event(iid=5))
    await engine.handle(mr_event(iid=6))
    store.set_coverage(1, "c1", 60.0)

    original_set_note = store.set_note

    def failing_set_note(project, iid, note_id, body):
        if iid == 5:
            raise StoreError("database is locked")
        original_set_note(project, iid, note_id, body)

    monkeypatch.setattr(store, "set_note", failing_set_note)
    before = error_counter.labels(context="store")._value.get()

    gitlab.set_job(1, 11, 65.0)
    results = await engine.handle(build_event("c2", 11))

    assert [r.result for r in results] == ["error", "updated"]
    assert "database is locked" in results[0].error
    assert results[1].note_id == 101
    assert store.get_merge_request(1, 6).note_body == INCREASED
    assert error_counter.labels(context="store")._value.get() == before + 1


@pytest.mark.asyncio
async def test_absent_coverage_stops_build_handling(store, gitlab):
    engine = CorrelationEngine(store, gitlab)
    gitlab.set_merge_request(1, 5, "c1", "c2")
    await engine.handle(mr_event())
    gitlab.set_job(1, 50, 0.0)

    assert await engine.handle(build_event("c2", 50)) == []
    assert store.get_coverage(1, "c2") is None
    assert gitlab.updated == []


@pytest.mark.asyncio
async def test_resolution_failure_stores_nothing(store, gitlab):
    engine = CorrelationEngine(store, gitlab)

    with pytest.raises(ResolutionError):
        await engine.handle(mr_event())

    assert store.get_merge_request(1, 5) is None
    assert gitlab.posts == []


@pytest.mark.asyncio
async def test_fetch_failure_propagates(store, gitlab):
    engine = CorrelationEngine(store, gitlab)

    with pytest.raises(FetchError):
        await engine.handle(build_event("c2", 60))


@pytest.mark.asyncio
async def test_store_failure_aborts_before_posting(store, gitlab, monkeypatch):
    engine = CorrelationEngine(store, gitlab)
    gitlab.set_merge_request(1, 5, "c1", "c2")

    def broken(*args, **kwargs):
        raise StoreError("database is locked")

    monkeypatch.setattr(store, "record_merge_request", broken)

    with pytest.raises(StoreError):
        await engine.handle(mr_event())
    assert gitlab.posts == []


@pytest.mark.asyncio
async def test_unknown_event_type(store, gitlab):
    engine = CorrelationEngine(store, gitlab)
    with pytest.raises(TypeError):
        await engine.handle(object())
