from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple
from urllib.parse import quote

import aiohttp
from sanic.log import logger

from mrcoverage.gitlab.model import Commit, Job, Note, ProjectRef
from mrcoverage.metric import record_api_call


class GitLabError(Exception):
    status_code: Optional[int]

    def __init__(self, status_code: Optional[int], message: str):
        self.status_code = status_code
        super().__init__(message)


class API:
    session: aiohttp.ClientSession
    base_url: str
    token: Optional[str]

    call_count: int

    def __init__(
        self,
        session: aiohttp.ClientSession,
        base_url: str,
        token: Optional[str] = None,
        per_page: int = 100,
    ):
        self.session = session
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.per_page = per_page
        self.call_count = 0

    @staticmethod
    def project_path(project: ProjectRef) -> str:
        return f"/projects/{quote(str(project), safe='')}"

    def _headers(self) -> Dict[str, str]:
        headers = {"User-Agent": "mrcoverage"}
        if self.token is not None:
            headers["PRIVATE-TOKEN"] = self.token
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        data: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, str]] = None,
    ) -> Tuple[Any, Optional[str]]:
        self.call_count += 1
        record_api_call(path)
        url = f"{self.base_url}/api/v4{path}"
        try:
            async with self.session.request(
                method, url, json=data, params=params, headers=self._headers()
            ) as resp:
                if resp.status >= 400:
                    text = await resp.text()
                    raise GitLabError(
                        resp.status, f"{method} {path} returned {resp.status}: {text}"
                    )
                payload = await resp.json(content_type=None)
                next_page = resp.headers.get("X-Next-Page") or None
                return payload, next_page
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise GitLabError(None, f"{method} {path} failed: {exc!r}") from exc

    async def getitem(self, path: str) -> Any:
        payload, _ = await self._request("GET", path)
        return payload

    async def getiter(self, path: str) -> AsyncIterator[Any]:
        page: Optional[str] = "1"
        while page is not None:
            items, page = await self._request(
                "GET", path, params={"per_page": str(self.per_page), "page": page}
            )
            for item in items:
                yield item

    async def get_merge_request_commits(
        self, project: ProjectRef, iid: int
    ) -> List[Commit]:
        url = f"{self.project_path(project)}/merge_requests/{iid}/commits"
        logger.debug("Get commits for merge request %s", url)
        return [Commit.model_validate(item) async for item in self.getiter(url)]

    async def get_job(self, project: ProjectRef, job_id: int) -> Job:
        url = f"{self.project_path(project)}/jobs/{job_id}"
        logger.debug("Get job %s", url)
        return Job.model_validate(await self.getitem(url))

    async def create_merge_request_note(
        self, project: ProjectRef, iid: int, body: str
    ) -> Note:
        url = f"{self.project_path(project)}/merge_requests/{iid}/notes"
        logger.debug("Creating note %s", url)
        payload, _ = await self._request("POST", url, data={"body": body})
        return Note.model_validate(payload)

    async def update_merge_request_note(
        self, project: ProjectRef, iid: int, note_id: int, body: str
    ) -> Note:
        url = f"{self.project_path(project)}/merge_requests/{iid}/notes/{note_id}"
        logger.debug("Updating note %d, %s", note_id, url)
        payload, _ = await self._request("PUT", url, data={"body": body})
        return Note.model_validate(payload)
