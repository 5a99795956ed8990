"""Connection options.

Every option understood by ``fetch_sse`` is listed here. Transport
pass-through fields default to None and are only forwarded when set.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field, fields, replace
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    import httpx

    from .retry import RetryContext

# Fields forwarded to the transport only when defined
PASSTHROUGH_OPTIONS = (
    "credentials",
    "mode",
    "cache",
    "redirect",
    "referrer",
    "referrer_policy",
    "integrity",
    "keepalive",
)


@dataclass
class SSEOptions:
    """Options for one SSE connection."""

    # Request
    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)
    body: Any = None

    # Reconnection (delays in milliseconds)
    retry_delay: int = 3000
    max_retries: int | None = None  # None means unbounded
    custom_retry_logic: Callable[[RetryContext, int], bool] | None = None

    # Transport
    timeout: float = 30.0  # connect/write/pool; reads never time out
    client: httpx.AsyncClient | None = None

    # Pass-through transport options
    credentials: str | None = None
    mode: str | None = None
    cache: str | None = None
    redirect: str | None = None
    referrer: str | None = None
    referrer_policy: str | None = None
    integrity: str | None = None
    keepalive: bool | None = None

    def __post_init__(self) -> None:
        if self.retry_delay < 0:
            raise ValueError(f"retry_delay must be >= 0, got {self.retry_delay}")
        if self.max_retries is not None and self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")

    def merged(self, **overrides: Any) -> SSEOptions:
        """Return a copy with ``overrides`` applied."""
        known = {f.name for f in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise TypeError(f"Unknown SSE option(s): {', '.join(sorted(unknown))}")
        return replace(self, **overrides)

    def passthrough(self) -> dict[str, Any]:
        """Transport options that were explicitly set."""
        return {
            name: getattr(self, name)
            for name in PASSTHROUGH_OPTIONS
            if getattr(self, name) is not None
        }
