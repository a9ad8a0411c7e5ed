"""Shared pytest fixtures."""

import asyncio
import json
from collections import Counter
from typing import Any, Optional

import aiohttp
import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from craftkit.api.client import MetaClient
from craftkit.core.download_manager import DownloadOrchestrator
from craftkit.models.config import RetryPolicy
from craftkit.storage.instance import InstanceLayout
from craftkit.utils.platform import Platform


class FileServer:
    """
    A local HTTP server serving registered bodies. Every request is counted,
    and a path can be scripted to answer with error statuses first.
    """

    def __init__(self):
        self.server: Optional[TestServer] = None
        self.files: dict[str, bytes] = {}
        self.statuses: dict[str, int] = {}
        self.headers: dict[str, dict[str, str]] = {}
        self.hits: Counter = Counter()
        self.failures: dict[str, list[int]] = {}
        self.requests: list[tuple[str, str, bytes]] = []
        self.stalled: dict[str, bytes] = {}
        self.streaming = asyncio.Event()
        self.release = asyncio.Event()

    def add(
        self,
        path: str,
        data: Any,
        status: int = 200,
        headers: Optional[dict[str, str]] = None,
    ) -> str:
        if isinstance(data, (dict, list)):
            data = json.dumps(data)
        if isinstance(data, str):
            data = data.encode("utf-8")
        self.files[path] = data
        self.statuses[path] = status
        self.headers[path] = headers or {}
        return self.url(path)

    def fail(self, path: str, *statuses: int) -> None:
        self.failures[path] = list(statuses)

    def stall(self, path: str, head: bytes) -> str:
        """Sends `head` of a larger body for `path`, then hangs until released."""
        self.stalled[path] = head
        return self.url(path)

    def url(self, path: str) -> str:
        return str(self.server.make_url(path))

    async def handle(self, request: web.Request) -> web.Response:
        path = request.path
        self.hits[path] += 1
        self.requests.append((request.method, path, await request.read()))
        if path in self.stalled:
            return await self._stream_stalled(request, self.stalled[path])
        pending = self.failures.get(path)
        if pending:
            return web.Response(status=pending.pop(0))
        if path not in self.files:
            return web.Response(status=404)
        return web.Response(
            body=self.files[path],
            status=self.statuses[path],
            headers=self.headers[path],
        )

    async def _stream_stalled(self, request: web.Request, head: bytes):
        response = web.StreamResponse()
        response.content_length = len(head) * 4
        await response.prepare(request)
        await response.write(head)
        self.streaming.set()
        await self.release.wait()
        return response


@pytest_asyncio.fixture
async def file_server():
    files = FileServer()
    app = web.Application()
    app.router.add_route("*", "/{tail:.*}", files.handle)
    files.server = TestServer(app)
    await files.server.start_server()
    yield files
    files.release.set()
    await files.server.close()


@pytest_asyncio.fixture
async def http_session():
    session = aiohttp.ClientSession()
    yield session
    await session.close()


class RecordingSleep:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def fake_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def retry_policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=3, base_delay=1.0, jitter=0)


@pytest.fixture
def events() -> list:
    return []


@pytest_asyncio.fixture
async def orchestrator(http_session, retry_policy, fake_sleep, events):
    return DownloadOrchestrator(
        http_session,
        max_workers=4,
        retry_policy=retry_policy,
        on_event=events.append,
        sleep=fake_sleep,
    )


@pytest.fixture
def layout(tmp_path) -> InstanceLayout:
    return InstanceLayout(tmp_path / "instance")


@pytest.fixture
def linux() -> Platform:
    return Platform(os_name="linux", arch="x86_64", os_version="6.1")


@pytest_asyncio.fixture
async def meta_client(retry_policy, fake_sleep):
    client = MetaClient(retry_policy=retry_policy, sleep=fake_sleep)
    yield client
    await client.close()
