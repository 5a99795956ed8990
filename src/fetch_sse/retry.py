"""Retry decisions for failed or ended SSE connections."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

# Client errors that a reconnect cannot fix
TERMINAL_STATUSES = frozenset({400, 401, 403, 404, 410})


@dataclass
class RetryContext:
    """Failure context handed to the retry policy.

    ``status`` is set when the failure came from a non-success response.
    ``error`` is None when the server simply ended the stream.
    """

    retry_count: int
    message: str = "Connection lost"
    status: int | None = None
    error: BaseException | None = None


RetryCallback = Callable[[RetryContext, int], bool]


class RetryPolicy:
    """Decide whether a connection should try again.

    A custom callback, when given, replaces the default rules entirely.
    """

    def __init__(self, max_retries: int | None = None, custom: RetryCallback | None = None):
        self.max_retries = max_retries
        self.custom = custom

    def should_retry(self, context: RetryContext, retry_count: int) -> bool:
        if self.custom is not None:
            return bool(self.custom(context, retry_count))

        if self.max_retries is not None and retry_count >= self.max_retries:
            return False

        if context.status is not None and context.status in TERMINAL_STATUSES:
            return False

        return True
