"""
State change notifications for the Pulsar Toolbox engine.

Controllers publish :class:`StateEvent` objects here; UIs and scripts
subscribe with plain or async callbacks.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Coroutine

from pulsar_toolbox.types import StateEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[StateEvent], Coroutine[Any, Any, None] | None]

WILDCARD = "*"


class StateEvents:
    """Callback registry for engine state changes.

    Handlers are keyed by event type; those registered under
    :data:`WILDCARD` see every event after the type-specific ones.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = {}
        self._pending: set[asyncio.Task[None]] = set()

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        self._handlers.setdefault(event_type, []).append(handler)

    def subscribe_all(self, handler: EventHandler) -> None:
        self.subscribe(WILDCARD, handler)

    def unsubscribe(self, event_type: str, handler: EventHandler | None = None) -> None:
        """Drop *handler* from *event_type*, or every handler of it when omitted."""
        remaining = [
            registered
            for registered in self._handlers.pop(event_type, [])
            if handler is not None and registered is not handler
        ]
        if remaining:
            self._handlers[event_type] = remaining

    def emit(self, event_type: str, **data: Any) -> None:
        """Dispatch an event to all matching handlers.

        Called from inside the engine's callback chain, so it never
        blocks: coroutine handlers are scheduled as tasks.
        """
        event = StateEvent(type=event_type, data=data)
        handlers = [*self._handlers.get(event_type, ()), *self._handlers.get(WILDCARD, ())]

        for handler in handlers:
            try:
                result = handler(event)
                if asyncio.iscoroutine(result):
                    task = asyncio.ensure_future(self._await_handler(result, event_type))
                    self._pending.add(task)
                    task.add_done_callback(self._pending.discard)
            except Exception:
                logger.exception("Error in event handler for %s", event_type)

    @staticmethod
    async def _await_handler(result: Coroutine[Any, Any, None], event_type: str) -> None:
        try:
            await result
        except Exception:
            logger.exception("Error in event handler for %s", event_type)

    async def drain(self) -> None:
        """Wait for scheduled async handlers to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
