"""Helpers for scripting an SSE endpoint in tests.

``SSEServer`` scripts an SSE endpoint on top of ``httpx.MockTransport``.
Each scripted responder answers one request, in order; the last one keeps
answering once the script runs out.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from typing import Any

import httpx

from fetch_sse import EventSourceConnection, fetch_sse

STREAM_URL = "https://example.com/stream"

Responder = Callable[[httpx.Request], httpx.Response]


def sse_stream(
    *chunks: str | bytes,
    status: int = 200,
    content_type: str = "text/event-stream",
    hang: bool = False,
) -> Responder:
    """Respond with ``chunks`` as separate body reads.

    With ``hang=True`` the body never ends after the last chunk.
    """

    def respond(request: httpx.Request) -> httpx.Response:
        async def body() -> AsyncIterator[bytes]:
            for chunk in chunks:
                yield chunk.encode("utf-8") if isinstance(chunk, str) else chunk
            if hang:
                await asyncio.Event().wait()

        headers = {"content-type": content_type} if content_type else {}
        return httpx.Response(status, headers=headers, content=body())

    return respond


def http_error(status: int) -> Responder:
    def respond(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status)

    return respond


def connect_error(message: str = "connection refused") -> Responder:
    def respond(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError(message, request=request)

    return respond


def broken_stream(*chunks: str, message: str = "connection reset") -> Responder:
    """Deliver ``chunks`` then fail the read."""

    def respond(request: httpx.Request) -> httpx.Response:
        async def body() -> AsyncIterator[bytes]:
            for chunk in chunks:
                yield chunk.encode("utf-8")
            raise httpx.ReadError(message, request=request)

        return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=body())

    return respond


class SSEServer:
    """Scripted SSE endpoint recording every request it receives."""

    def __init__(self) -> None:
        self.responders: list[Responder] = [sse_stream()]
        self.requests: list[httpx.Request] = []
        self.client = httpx.AsyncClient(transport=httpx.MockTransport(self._handle))
        self.connections: list[EventSourceConnection] = []

    def script(self, *responders: Responder) -> SSEServer:
        self.responders = list(responders)
        return self

    def open(self, url: str = STREAM_URL, **options: Any) -> EventSourceConnection:
        options.setdefault("retry_delay", 0)
        conn = fetch_sse(url, client=self.client, **options)
        self.connections.append(conn)
        return conn

    def header_values(self, name: str) -> list[str | None]:
        return [request.headers.get(name) for request in self.requests]

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        index = min(len(self.requests), len(self.responders)) - 1
        return self.responders[index](request)

    async def aclose(self) -> None:
        for conn in self.connections:
            await conn.aclose()
        await self.client.aclose()


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll ``predicate`` on the running loop until it holds."""

    async def poll() -> None:
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(poll(), timeout)


async def wait_closed(conn: EventSourceConnection, timeout: float = 2.0) -> None:
    await asyncio.wait_for(conn.wait_closed(), timeout)
