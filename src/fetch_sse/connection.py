"""SSE connection state machine.

Handles:
- Issuing the streaming request over httpx (any method, headers, body)
- Feeding the body through the incremental parser and dispatching events
- Last-Event-ID resumption and server-directed retry delays
- Reconnection decisions through the retry policy

All work runs on the running asyncio loop. Each attempt is its own task,
which doubles as the attempt's cancellation token; a reconnect is a timer
handle. At most one of the two is pending at any time.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from enum import IntEnum
from typing import Any

import httpx

from .config import SSEOptions
from .dispatcher import EventDispatcher, Listener, MessageEvent
from .errors import SSEHTTPError
from .parser import EventRecord, SSEParser
from .request import BODY_METHODS, buffer_body, build_request, follows_redirects, is_stream_body
from .retry import RetryContext, RetryPolicy

logger = logging.getLogger(__name__)


class ReadyState(IntEnum):
    """Connection lifecycle state."""

    CONNECTING = 0
    OPEN = 1
    CLOSED = 2


def _current_task() -> asyncio.Task[Any] | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


def _log_client_close(task: asyncio.Task[None]) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(f"Error closing HTTP client: {exc!r}")


def url_origin(url: str | httpx.URL) -> str:
    """Scheme and host (plus a non-default port) of ``url``."""
    parsed = httpx.URL(url)
    if not parsed.scheme or not parsed.host:
        return ""
    origin = f"{parsed.scheme}://{parsed.host}"
    if parsed.port is not None:
        origin += f":{parsed.port}"
    return origin


class EventSourceConnection:
    """One logical SSE stream with automatic reconnection.

    Usage:
        conn = fetch_sse("https://example.com/events", method="POST", body={"q": 1})
        conn.add_listener("notice", lambda event: print(event.data))
        ...
        await conn.aclose()
    """

    CONNECTING = ReadyState.CONNECTING
    OPEN = ReadyState.OPEN
    CLOSED = ReadyState.CLOSED

    def __init__(self, url: str, options: SSEOptions | None = None):
        self.url = url
        self.options = options or SSEOptions()
        self.ready_state = ReadyState.CONNECTING

        self._retry_policy = RetryPolicy(
            max_retries=self.options.max_retries,
            custom=self.options.custom_retry_logic,
        )
        self._retry_count = 0
        self._retry_delay = self.options.retry_delay
        self._last_event_id: str | None = None

        self._client = self.options.client
        self._owns_client = self._client is None
        self._attempt_task: asyncio.Task[None] | None = None
        self._retry_handle: asyncio.TimerHandle | None = None
        self._client_close_task: asyncio.Task[None] | None = None
        self._body_pending = (
            self.options.method.upper() in BODY_METHODS and is_stream_body(self.options.body)
        )
        self._closed = False
        self._closed_event = asyncio.Event()

        self._dispatcher = EventDispatcher(target=self, origin=url_origin(url))

    # -- state ------------------------------------------------------------

    @property
    def origin(self) -> str:
        return self._dispatcher.origin

    @property
    def retry_count(self) -> int:
        """Attempts since the last successful open."""
        return self._retry_count

    @property
    def retry_delay(self) -> int:
        """Delay in milliseconds before the next attempt."""
        return self._retry_delay

    @property
    def last_event_id(self) -> str | None:
        return self._last_event_id

    @property
    def closed(self) -> bool:
        return self._closed

    def get_last_event_id(self) -> str | None:
        return self._last_event_id

    def set_last_event_id(self, event_id: str | None) -> None:
        """Set the resumption token sent on the next attempt."""
        self._last_event_id = event_id

    # -- listeners --------------------------------------------------------

    def add_listener(self, event_type: str, callback: Listener) -> None:
        self._dispatcher.add_listener(event_type, callback)

    def remove_listener(self, event_type: str, callback: Listener) -> None:
        self._dispatcher.remove_listener(event_type, callback)

    def add_json_listener(self, event_type: str, callback: Listener) -> Listener:
        return self._dispatcher.add_json_listener(event_type, callback)

    add_event_listener = add_listener
    remove_event_listener = remove_listener

    def dispatch(self, event_type: str, data: Any, event_id: str | None = None) -> MessageEvent:
        return self._dispatcher.dispatch(event_type, data, event_id)

    @property
    def onopen(self) -> Listener | None:
        return self._dispatcher.get_handler("open")

    @onopen.setter
    def onopen(self, handler: Listener | None) -> None:
        self._dispatcher.set_handler("open", handler)

    @property
    def onmessage(self) -> Listener | None:
        return self._dispatcher.get_handler("message")

    @onmessage.setter
    def onmessage(self, handler: Listener | None) -> None:
        self._dispatcher.set_handler("message", handler)

    @property
    def onerror(self) -> Listener | None:
        return self._dispatcher.get_handler("error")

    @onerror.setter
    def onerror(self, handler: Listener | None) -> None:
        self._dispatcher.set_handler("error", handler)

    # -- lifecycle --------------------------------------------------------

    def start(self) -> EventSourceConnection:
        """Issue the first attempt. Requires a running event loop."""
        if self._attempt_task is None and not self._closed:
            self._connect()
        return self

    def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        if self._closed:
            return

        self._closed = True
        self.ready_state = ReadyState.CLOSED

        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None

        # When close() runs inside the attempt task, its next await raises
        task = self._attempt_task
        if task is not None and not task.done():
            task.cancel()

        self._dispatcher.clear()

        if self._owns_client and self._client is not None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                # Left for aclose()
                logger.debug("No running event loop, owned HTTP client closes in aclose()")
            else:
                client, self._client = self._client, None
                self._client_close_task = loop.create_task(client.aclose())
                self._client_close_task.add_done_callback(_log_client_close)

        self._closed_event.set()
        logger.info(f"SSE connection closed: {self.url}")

    async def aclose(self) -> None:
        """Close and wait for the in-flight attempt and owned client to finish."""
        self.close()
        task = self._attempt_task
        if task is not None and task is not _current_task():
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if self._client_close_task is not None and not self._client_close_task.done():
            # Failures are logged by the done callback
            await asyncio.wait({self._client_close_task})
        if self._owns_client and self._client is not None:
            client, self._client = self._client, None
            await client.aclose()

    async def wait_closed(self) -> None:
        """Wait until the connection reaches CLOSED."""
        await self._closed_event.wait()

    async def __aenter__(self) -> EventSourceConnection:
        return self.start()

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    # -- state machine ----------------------------------------------------

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.options.timeout, read=None),  # No read timeout for SSE
            )
        return self._client

    def _connect(self) -> None:
        self._retry_handle = None
        if self._closed:
            return
        self.ready_state = ReadyState.CONNECTING
        self._attempt_task = asyncio.get_running_loop().create_task(self._attempt())

    async def _attempt(self) -> None:
        """One request: open, stream until the body ends or fails, then decide."""
        try:
            await self._stream()
        except SSEHTTPError as e:
            self._fail(RetryContext(self._retry_count, str(e), status=e.status, error=e))
            return
        except Exception as e:
            message = str(e) or e.__class__.__name__
            self._fail(RetryContext(self._retry_count, message, error=e))
            return

        if not self._closed:
            self._schedule_reconnect(RetryContext(self._retry_count))

    async def _stream(self) -> None:
        client = self._ensure_client()
        if self._body_pending:
            # One-shot iterables are drained once and resent on every attempt
            self.options = self.options.merged(body=await buffer_body(self.options.body))
            self._body_pending = False
        request = build_request(client, self.url, self.options, self._last_event_id)
        response = await client.send(
            request,
            stream=True,
            follow_redirects=follows_redirects(self.options),
        )
        try:
            if not response.is_success:
                raise SSEHTTPError(response.status_code, response.reason_phrase, response)

            content_type = response.headers.get("content-type", "")
            if "text/event-stream" not in content_type:
                logger.warning(f"Response is not text/event-stream: {content_type!r}")

            self._on_open()

            parser = SSEParser()
            async for chunk in response.aiter_bytes():
                for record in parser.feed(chunk):
                    self._on_record(record)
                if self._closed:
                    return
            for record in parser.flush():
                self._on_record(record)
        finally:
            # A close() from inside this task leaves a cancellation pending
            await asyncio.shield(response.aclose())

    def _on_open(self) -> None:
        if self._closed:
            return
        self.ready_state = ReadyState.OPEN
        self._retry_count = 0
        logger.info(f"SSE connection established: {self.url}")
        self.dispatch("open", None)

    def _on_record(self, record: EventRecord) -> None:
        if self._closed:
            return
        if record.id is not None:
            self._last_event_id = record.id
        if record.retry is not None:
            self._retry_delay = record.retry
        if record.has_data:
            self.dispatch(record.event, record.data, record.id)

    def _fail(self, context: RetryContext) -> None:
        if self._closed:
            return
        logger.error(f"SSE connection error: {context.message}")
        self.dispatch("error", context.message)
        self._schedule_reconnect(context)

    def _schedule_reconnect(self, context: RetryContext) -> None:
        if self._closed:
            return

        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None

        if not self._retry_policy.should_retry(context, self._retry_count):
            logger.warning("Max retries reached or retry not allowed")
            self.close()
            return

        self._retry_count += 1
        self.ready_state = ReadyState.CONNECTING
        delay = self._retry_delay
        logger.info(f"Scheduling SSE reconnection (attempt {self._retry_count}) in {delay}ms")
        self._retry_handle = asyncio.get_running_loop().call_later(delay / 1000, self._connect)


def fetch_sse(url: str, options: SSEOptions | None = None, **overrides: Any) -> EventSourceConnection:
    """Open an SSE stream and return its connection.

    Must be called with a running event loop; the first request is issued
    right away.

    Args:
        url: Target address
        options: Base options (defaults when omitted)
        **overrides: Individual ``SSEOptions`` fields, applied over ``options``

    Returns:
        The started connection
    """
    opts = options or SSEOptions()
    if overrides:
        opts = opts.merged(**overrides)
    return EventSourceConnection(url, opts).start()
