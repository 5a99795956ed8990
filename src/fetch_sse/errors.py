"""Exceptions raised by the SSE client.

Failures never propagate to the caller of ``fetch_sse``; they are turned into
``error`` events by the connection. These types are what the connection
classifies and what ``RetryContext.error`` carries.
"""

from __future__ import annotations

from typing import Any


class SSEError(Exception):
    """Base class for SSE client errors."""


class SSEHTTPError(SSEError):
    """The server answered with a non-success status."""

    def __init__(self, status: int, reason: str = "", response: Any = None):
        self.status = status
        self.reason = reason
        self.response = response
        super().__init__(f"HTTP {status}: {reason}")
