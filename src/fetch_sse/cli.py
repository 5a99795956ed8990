"""fetch-sse command line tool.

Usage:
    fetch-sse https://example.com/stream
    fetch-sse https://example.com/stream --event notice --as-json
    fetch-sse https://example.com/chat -X POST --json '{"prompt": "hi"}'
    fetch-sse https://example.com/stream -H "Authorization: Bearer x" --max-retries 3
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Any

import click

from .config import SSEOptions
from .connection import EventSourceConnection
from .dispatcher import MessageEvent


def parse_header(value: str) -> tuple[str, str]:
    """Split a ``Name: value`` header argument."""
    name, sep, header_value = value.partition(":")
    if not sep or not name.strip():
        raise click.BadParameter(f"Expected 'Name: value', got {value!r}")
    return name.strip(), header_value.strip()


def format_event(event: MessageEvent, as_json: bool) -> str:
    """Render one event for output."""
    if as_json:
        return json.dumps(
            {"type": event.type, "data": event.data, "id": event.last_event_id},
            ensure_ascii=False,
        )
    return f"{event.type}: {event.data}"


async def stream_events(
    url: str,
    options: SSEOptions,
    event_types: list[str],
    as_json: bool,
    last_event_id: str | None = None,
) -> int:
    """Print events until the connection closes. Returns an exit code."""
    conn = EventSourceConnection(url, options)
    # The first request must already carry the resumption token
    conn.set_last_event_id(last_event_id)
    failures = 0

    def on_event(event: MessageEvent) -> None:
        click.echo(format_event(event, as_json))

    def on_error(event: MessageEvent) -> None:
        nonlocal failures
        failures += 1
        click.echo(f"error: {event.data}", err=True)

    for event_type in ["message", *event_types]:
        conn.add_listener(event_type, on_event)
    conn.onerror = on_error
    conn.start()

    try:
        await conn.wait_closed()
    finally:
        await conn.aclose()

    return 1 if failures else 0


@click.command()
@click.argument("url")
@click.option("-X", "--method", default="GET", help="HTTP method")
@click.option("-H", "--header", "headers", multiple=True, help="Request header 'Name: value'")
@click.option("--data", "raw_body", help="Raw request body")
@click.option("--json", "json_body", help="JSON request body")
@click.option("--last-event-id", help="Resume after this event id")
@click.option("--retry-delay", default=3000, show_default=True, help="Delay between attempts (ms)")
@click.option("--max-retries", type=int, default=None, help="Give up after this many attempts")
@click.option("--event", "event_types", multiple=True, help="Extra event type to print")
@click.option("--as-json", is_flag=True, help="Print one JSON object per event")
@click.option("-v", "--verbose", is_flag=True, help="Log connection activity to stderr")
def main(
    url: str,
    method: str,
    headers: tuple[str, ...],
    raw_body: str | None,
    json_body: str | None,
    last_event_id: str | None,
    retry_delay: int,
    max_retries: int | None,
    event_types: tuple[str, ...],
    as_json: bool,
    verbose: bool,
) -> None:
    """Stream Server-Sent Events from URL and print them."""
    if raw_body is not None and json_body is not None:
        raise click.UsageError("--data and --json are mutually exclusive")

    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(levelname)s: %(message)s",
        stream=sys.stderr,
    )

    body: Any = raw_body
    if json_body is not None:
        try:
            body = json.loads(json_body)
        except json.JSONDecodeError as e:
            raise click.BadParameter(f"Invalid JSON: {e}", param_hint="--json") from e

    try:
        options = SSEOptions(
            method=method,
            headers=dict(parse_header(h) for h in headers),
            body=body,
            retry_delay=retry_delay,
            max_retries=max_retries,
        )
    except ValueError as e:
        raise click.UsageError(str(e)) from e

    try:
        exit_code = asyncio.run(
            stream_events(url, options, list(event_types), as_json, last_event_id)
        )
    except KeyboardInterrupt:
        exit_code = 130
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
