"""fetch-sse - Server-Sent Events over any HTTP request.

Open a long-lived event stream with any method, headers and body, receive
named events as they arrive, and let the connection handle reconnects,
Last-Event-ID resumption and server-directed retry delays.

Usage:
    conn = fetch_sse("https://example.com/stream", method="POST", body={"topic": "news"})
    conn.add_listener("notice", lambda event: print(event.data))
    conn.onerror = lambda event: print("error:", event.data)
"""

from .config import SSEOptions
from .connection import EventSourceConnection, ReadyState, fetch_sse
from .dispatcher import EventDispatcher, MessageEvent
from .errors import SSEError, SSEHTTPError
from .parser import EventRecord, SSEParser, parse_frame
from .retry import TERMINAL_STATUSES, RetryContext, RetryPolicy

Connection = EventSourceConnection
open_stream = fetch_sse

__all__ = [
    # Entry points
    "fetch_sse",
    "open_stream",
    # Connection
    "Connection",
    "EventSourceConnection",
    "ReadyState",
    "SSEOptions",
    # Events
    "EventDispatcher",
    "MessageEvent",
    "EventRecord",
    "SSEParser",
    "parse_frame",
    # Retry
    "RetryPolicy",
    "RetryContext",
    "TERMINAL_STATUSES",
    # Errors
    "SSEError",
    "SSEHTTPError",
]
