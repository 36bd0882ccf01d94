"""Shared test configuration: a scriptable fake console backend."""

import asyncio
from typing import Any, Awaitable, Callable, Optional

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from hostel_session import ApiClient, CredentialStore, SessionManager


OWNER = {"id": 1, "username": "owner1", "role": "HOSTEL_OWNER", "hostelId": 7}
ADMIN = {"id": 2, "username": "root", "role": "SUPER_ADMIN", "hostelId": None}


class FakeConsoleApi:
    """
    In-process console backend.

    Responses are scripted per (method, path) as a queue; once a queue is
    empty the default for that route is served (404 if none). Every request
    is appended to ``log`` as "METHOD /path" (/api prefix removed) once it
    is about to be answered.
    """

    def __init__(self):
        self.log: list[str] = []
        self._queues: dict[tuple[str, str], list[tuple[int, Any]]] = {}
        self._defaults: dict[tuple[str, str], tuple[int, Any]] = {}
        self.before_refresh: Optional[Callable[[], Awaitable[None]]] = None
        self.base_url = ""
        self.app = web.Application()
        self.app.router.add_route("*", "/{tail:.*}", self._handle)

    def respond(self, method: str, path: str, status: int, body: Any = None) -> None:
        """Set the default response for a route."""
        self._defaults[(method, path)] = (status, body)

    def script(self, method: str, path: str, *responses: tuple[int, Any]) -> None:
        """Queue one-shot responses for a route, served before the default."""
        self._queues.setdefault((method, path), []).extend(responses)

    def count(self, method: str, path: str) -> int:
        return self.log.count(f"{method} {path}")

    async def _handle(self, request: web.Request) -> web.Response:
        path = request.path
        if path.startswith("/api"):
            path = path[len("/api"):]
        key = (request.method, path)
        if path == "/auth/refresh" and self.before_refresh is not None:
            await self.before_refresh()
        self.log.append(f"{request.method} {path}")

        queue = self._queues.get(key)
        if queue:
            status, body = queue.pop(0)
        else:
            status, body = self._defaults.get(key, (404, {"error": "not found"}))
        if body is None:
            return web.Response(status=status)
        return web.json_response(body, status=status)


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll ``predicate`` on the running loop until it holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


@pytest_asyncio.fixture
async def api():
    fake = FakeConsoleApi()
    fake.respond("POST", "/auth/refresh", 200, {"ok": True})
    fake.respond("POST", "/auth/logout", 200, {"ok": True})
    server = TestServer(fake.app)
    await server.start_server()
    fake.base_url = str(server.make_url("/api"))
    yield fake
    await server.close()


@pytest_asyncio.fixture
async def client(api):
    client = ApiClient(api.base_url)
    yield client
    await client.close()


@pytest.fixture
def store():
    return CredentialStore({})


@pytest.fixture
def navigations():
    return []


@pytest_asyncio.fixture
async def manager(api, store, navigations):
    client = ApiClient(api.base_url)
    manager = SessionManager(client, store, navigate=navigations.append)
    yield manager
    await manager.close()
