"""Listener registry and event delivery.

Listeners are plain callables taking a ``MessageEvent``. They run
synchronously in registration order; a coroutine returned by a listener is
scheduled as a task on the running loop. One listener raising never stops
delivery to the others.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import Any

logger = logging.getLogger(__name__)

# Lifecycle names with a single-slot primary handler
LIFECYCLE_EVENTS = ("open", "message", "error")


@dataclass
class MessageEvent:
    """Event delivered to listeners."""

    type: str
    data: Any
    last_event_id: str | None
    origin: str
    # Back-reference to the connection; not owned
    target: Any = field(default=None, repr=False, compare=False)


Listener = Callable[[MessageEvent], Any]


class EventDispatcher:
    """Per-connection listener registries."""

    def __init__(self, target: Any = None, origin: str = ""):
        self.target = target
        self.origin = origin
        self._listeners: dict[str, list[Listener]] = {}
        self._handlers: dict[str, Listener | None] = dict.fromkeys(LIFECYCLE_EVENTS)
        self._tasks: set[asyncio.Task[Any]] = set()

    # -- registry ---------------------------------------------------------

    def add_listener(self, event_type: str, callback: Listener) -> None:
        """Register ``callback`` for ``event_type``. Duplicates are allowed."""
        self._listeners.setdefault(event_type, []).append(callback)

    def remove_listener(self, event_type: str, callback: Listener) -> None:
        """Remove every registration of ``callback`` for ``event_type``."""
        callbacks = self._listeners.get(event_type)
        if callbacks is None:
            return
        remaining = [cb for cb in callbacks if cb != callback]
        if remaining:
            self._listeners[event_type] = remaining
        else:
            del self._listeners[event_type]

    def add_json_listener(self, event_type: str, callback: Listener) -> Listener:
        """Register a listener that receives the event data decoded as JSON.

        Invalid JSON is logged and skipped for this listener only. Returns the
        wrapper actually registered, for use with ``remove_listener``.
        """

        def json_listener(event: MessageEvent) -> Any:
            try:
                decoded = json.loads(event.data)
            except (TypeError, ValueError) as e:
                logger.warning(f'Invalid JSON for event "{event_type}": {event.data!r} ({e})')
                return None
            return callback(replace(event, data=decoded))

        self.add_listener(event_type, json_listener)
        return json_listener

    def listener_count(self, event_type: str | None = None) -> int:
        if event_type is None:
            return sum(len(cbs) for cbs in self._listeners.values())
        return len(self._listeners.get(event_type, ()))

    def has_listeners(self, event_type: str) -> bool:
        return event_type in self._listeners

    def get_handler(self, event_type: str) -> Listener | None:
        return self._handlers.get(event_type)

    def set_handler(self, event_type: str, handler: Listener | None) -> None:
        if event_type not in LIFECYCLE_EVENTS:
            raise ValueError(f"No primary handler slot for event type: {event_type}")
        self._handlers[event_type] = handler

    def clear(self) -> None:
        """Drop all listeners and primary handlers."""
        self._listeners = {}
        self._handlers = dict.fromkeys(LIFECYCLE_EVENTS)

    # -- delivery ---------------------------------------------------------

    def dispatch(self, event_type: str, data: Any, event_id: str | None = None) -> MessageEvent:
        """Build a ``MessageEvent`` and deliver it to every current listener."""
        event = MessageEvent(
            type=event_type,
            data=data,
            last_event_id=event_id,
            origin=self.origin,
            target=self.target,
        )

        # Copy so listeners may (un)register during delivery
        callbacks = list(self._listeners.get(event_type, ()))
        handler = self._handlers.get(event_type)
        if handler is not None:
            callbacks.append(handler)

        for callback in callbacks:
            self._invoke(callback, event)

        return event

    def _invoke(self, callback: Listener, event: MessageEvent) -> None:
        try:
            result = callback(event)
        except Exception:
            logger.exception(f"Error in listener for {event.type!r}")
            return

        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Error in async listener: {exc!r}")
