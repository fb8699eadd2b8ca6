"""Pytest configuration and shared fixtures."""

import asyncio
import json
from urllib.parse import parse_qs

import httpx
import pytest

from rtmbot.web import WebClient


class FakeWebSocket:
    """In-memory stand-in for a websockets client connection."""

    def __init__(self) -> None:
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.sent: list[dict] = []
        self.closed = False
        self.fail_send = False

    async def recv(self):
        item = await self.incoming.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def send(self, data: str) -> None:
        if self.fail_send:
            raise OSError("broken pipe")
        # websockets encodes text frames as UTF-8
        payload = data.encode("utf-8")
        self.sent.append(json.loads(payload))

    async def close(self) -> None:
        self.closed = True

    # Test helpers
    def feed(self, record: dict) -> None:
        self.incoming.put_nowait(json.dumps(record))

    def feed_raw(self, raw: str) -> None:
        self.incoming.put_nowait(raw)

    def drop(self) -> None:
        self.incoming.put_nowait(OSError("connection reset by peer"))


class FakeConnector:
    """Connect factory handing out FakeWebSockets in order."""

    def __init__(self, sockets: list[FakeWebSocket]) -> None:
        self.sockets = list(sockets)
        self.urls: list[str] = []
        self.kwargs: list[dict] = []

    async def __call__(self, url: str, **kwargs):
        self.urls.append(url)
        self.kwargs.append(kwargs)
        if not self.sockets:
            raise OSError("connection refused")
        return self.sockets.pop(0)


class FakeBackend:
    """httpx handler answering rtm.start and the other web API calls."""

    def __init__(self, url: str = "wss://rtm.example.com/websocket/abc") -> None:
        self.url = url
        self.calls: list[tuple[str, dict]] = []
        self.rtm_responses: list = []   # queued overrides: dict or Exception

    def __call__(self, request: httpx.Request) -> httpx.Response:
        endpoint = request.url.path.rsplit("/", 1)[-1]
        form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        self.calls.append((endpoint, form))

        if endpoint == "rtm.start":
            if self.rtm_responses:
                override = self.rtm_responses.pop(0)
                if isinstance(override, Exception):
                    raise override
                return httpx.Response(200, json=override)
            return httpx.Response(200, json=rtm_start_payload(self.url))
        if endpoint == "users.info":
            return httpx.Response(200, json={"ok": True, "user": {"id": form["user"], "name": "alice"}})
        if endpoint == "chat.postMessage":
            return httpx.Response(200, json={"ok": True, "channel": form["channel"], "ts": "1.0"})
        return httpx.Response(404)

    def count(self, endpoint: str) -> int:
        return sum(1 for name, _ in self.calls if name == endpoint)


def rtm_start_payload(url: str) -> dict:
    return {
        "ok": True,
        "url": url,
        "self": {"id": "UBOT", "name": "rtmbot"},
        "team": {"id": "T1", "name": "Example", "domain": "example"},
        "users": [{"id": "U1", "name": "alice"}, {"id": "UBOT", "name": "rtmbot"}],
        "channels": [{"id": "C1", "name": "general", "is_channel": True, "is_general": True}],
        "groups": [],
        "ims": [{"id": "D1", "user": "U1"}],
        "bots": [],
    }


async def wait_until(predicate, timeout: float = 1.0) -> None:
    """Poll ``predicate`` until it is true or fail after ``timeout``."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def make_web(backend):
    """Factory for WebClients wired to the fake backend."""
    def factory(handler=None) -> WebClient:
        return WebClient("xoxb-test", transport=httpx.MockTransport(handler or backend))
    return factory
