import asyncio
from contextlib import asynccontextmanager
import json
import logging
from typing import Optional

import aiohttp
import typer

from mrcoverage import config
from mrcoverage.correlation import CorrelationEngine
from mrcoverage.errors import CoverageReportError
from mrcoverage.events import SUCCESS_STATUS, BuildEvent, Event, MergeRequestEvent
from mrcoverage.gitlab.api import API
from mrcoverage.logger import configure_logging
from mrcoverage.storage import get_store

logger = logging.getLogger("mrcoverage")

app = typer.Typer()


def _project(value: str):
    return int(value) if value.isdigit() else value


@app.callback()
def init():
    configure_logging()


@app.command()
def serve(host: str = "0.0.0.0", port: int = config.PORT):
    from mrcoverage.web import create_app

    create_app().run(host=host, port=port, single_process=True)


@asynccontextmanager
async def gitlab_api():
    async with aiohttp.ClientSession(
        timeout=aiohttp.ClientTimeout(total=config.GITLAB_REQUEST_TIMEOUT)
    ) as session:
        yield API(session, config.GITLAB_URL, token=config.GITLAB_TOKEN)


def _handle(event: Event, dry_run: bool) -> None:
    async def handle():
        async with gitlab_api() as api:
            with get_store() as store:
                engine = CorrelationEngine(store, api, dry_run=dry_run)
                results = await engine.handle(event)
        for result in results:
            typer.echo(f"{result.result}: {result.body}")

    try:
        asyncio.run(handle())
    except CoverageReportError as e:
        logger.error("Processing %s failed: %s", event, e)
        raise typer.Exit(code=1)


@app.command()
def merge_request(
    project: str, iid: int, dry_run: bool = typer.Option(config.DRY_RUN)
):
    _handle(
        MergeRequestEvent(project_id=_project(project), merge_request_iid=iid),
        dry_run,
    )


@app.command()
def job(
    project: str,
    job_id: int,
    sha: str,
    status: str = SUCCESS_STATUS,
    dry_run: bool = typer.Option(config.DRY_RUN),
):
    _handle(
        BuildEvent(
            project_id=_project(project), job_id=job_id, commit_sha=sha, status=status
        ),
        dry_run,
    )


@app.command()
def show(project: str, iid: Optional[int] = typer.Argument(None)):
    project_id = _project(project)
    with get_store() as store:
        if iid is None:
            records = store.merge_requests(project_id)
        else:
            record = store.get_merge_request(project_id, iid)
            records = {} if record is None else {iid: record}

        if not records:
            typer.echo("No merge requests stored")
            raise typer.Exit(code=1)

        for number, record in sorted(records.items()):
            before = after = None
            if record.base_sha is not None:
                before = store.get_coverage(project_id, record.base_sha)
            if record.head_sha is not None:
                after = store.get_coverage(project_id, record.head_sha)
            typer.echo(
                f"!{number}: base={record.base_sha} ({before}) "
                f"head={record.head_sha} ({after}) note={record.note_id}"
            )


@app.command()
def events(limit: int = 20):
    with get_store() as store:
        for entry in store.recent_events(limit):
            typer.echo(f"{entry.received_at} {entry.kind} {json.dumps(entry.payload)}")
