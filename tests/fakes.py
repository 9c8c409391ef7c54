"""Shared test doubles: a mock clock, fake processes and a scripted llama-server."""

from __future__ import annotations

import json
from typing import Any, Callable

import httpx


class FakeClock:
    """Monotonic clock that only advances when the code under test sleeps."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeProcess:
    def __init__(self, pid: int = 4242) -> None:
        self.pid = pid
        self.returncode: int | None = None
        self.killed = False
        self.stdout = None
        self.stderr = None

    def kill(self) -> None:
        if self.returncode is not None:
            raise ProcessLookupError(self.pid)
        self.killed = True
        self.returncode = -9

    async def wait(self) -> int:
        return self.returncode if self.returncode is not None else 0


class FakeProcessFactory:
    def __init__(self, process: FakeProcess | None = None) -> None:
        self.process = process or FakeProcess()
        self.calls: list[tuple[tuple[str, ...], dict[str, Any]]] = []

    async def __call__(self, *args: str, **kwargs: Any) -> FakeProcess:
        self.calls.append((args, kwargs))
        return self.process


class FakeLlamaServer:
    """Scripted stand-in for llama-server's HTTP API.

    ``health`` is a list of status codes (or None for a refused connection)
    consumed one per health check; the last entry repeats.
    """

    def __init__(self, *, health: list[int | None] | None = None) -> None:
        self.health = list(health or [200])
        self.health_calls = 0
        self.requests: list[httpx.Request] = []
        self.replies: dict[str, Callable[[httpx.Request], httpx.Response]] = {}

    def reply_json(self, path: str, payload: Any, status_code: int = 200) -> None:
        self.replies[path] = lambda request: httpx.Response(status_code, content=json.dumps(payload).encode())

    def reply_text(self, path: str, text: str, status_code: int = 500) -> None:
        self.replies[path] = lambda request: httpx.Response(status_code, content=text.encode())

    def payloads(self, path: str) -> list[Any]:
        return [json.loads(request.content) for request in self.requests if request.url.path == path]

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/health":
            index = min(self.health_calls, len(self.health) - 1)
            self.health_calls += 1
            status = self.health[index]
            if status is None:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(status)
        self.requests.append(request)
        reply = self.replies.get(request.url.path)
        if reply is None:
            return httpx.Response(404, content=b"not found")
        return reply(request)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))
