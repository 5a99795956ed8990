"""Build the outbound ``httpx.Request`` for each connection attempt."""

from __future__ import annotations

import json
from collections.abc import AsyncIterable, Iterable
from typing import Any

import httpx
from pydantic import BaseModel

from .config import SSEOptions

DEFAULT_HEADERS = {
    "Accept": "text/event-stream",
    "Cache-Control": "no-cache",
}

BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})

# Payloads httpx can send as-is
RAW_BODY_TYPES = (str, bytes, bytearray, memoryview)


def is_raw_body(body: Any) -> bool:
    """True when ``body`` is already a transport payload and needs no encoding."""
    if isinstance(body, RAW_BODY_TYPES):
        return True
    if isinstance(body, AsyncIterable):
        return True
    # Generators and other byte iterators, but not lists/dicts/tuples
    return isinstance(body, Iterable) and not isinstance(body, (dict, list, tuple, set, BaseModel))


def is_stream_body(body: Any) -> bool:
    """True for one-shot iterable bodies that cannot be replayed."""
    return is_raw_body(body) and not isinstance(body, RAW_BODY_TYPES)


async def buffer_body(body: Any) -> bytes:
    """Drain a sync or async iterable body into bytes so every attempt can resend it."""
    if isinstance(body, AsyncIterable):
        chunks = [chunk async for chunk in body]
    else:
        chunks = list(body)
    return b"".join(chunk.encode("utf-8") if isinstance(chunk, str) else bytes(chunk) for chunk in chunks)


def encode_body(body: Any) -> tuple[Any, bool]:
    """Return ``(content, is_json)`` for a request body."""
    if is_raw_body(body):
        return body, False
    if isinstance(body, BaseModel):
        return body.model_dump_json(), True
    return json.dumps(body), True


def build_headers(options: SSEOptions, last_event_id: str | None) -> httpx.Headers:
    """Protocol defaults, then caller headers (caller wins), then Last-Event-ID."""
    headers = httpx.Headers(DEFAULT_HEADERS)
    headers.update(options.headers)
    if last_event_id is not None:
        headers["Last-Event-ID"] = last_event_id
    return headers


def build_request(
    client: httpx.AsyncClient,
    url: str,
    options: SSEOptions,
    last_event_id: str | None = None,
) -> httpx.Request:
    """Build the request for one attempt.

    Args:
        client: Client whose base URL, cookies and timeouts apply
        url: Target address
        options: Connection options
        last_event_id: Resumption token, sent as Last-Event-ID when not None
    """
    method = options.method.upper()
    headers = build_headers(options, last_event_id)

    content = None
    if options.body is not None and method in BODY_METHODS:
        content, is_json = encode_body(options.body)
        if is_json and "content-type" not in headers:
            headers["Content-Type"] = "application/json"

    passthrough = options.passthrough()
    referrer = passthrough.get("referrer")
    if referrer and "referer" not in headers:
        headers["Referer"] = referrer

    request = client.build_request(method, url, headers=headers, content=content)

    if passthrough.get("credentials") == "omit":
        request.headers.pop("Cookie", None)

    request.extensions["fetch_options"] = passthrough
    return request


def follows_redirects(options: SSEOptions) -> bool:
    """Only ``redirect="follow"`` (or unset) follows redirects."""
    return options.redirect in (None, "follow")
