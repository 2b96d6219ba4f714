"""
Recurring fetch scheduler.

:class:`AsyncPoller` calls an async fetcher on a fixed interval, never
runs two fetches at once, and reports connection health through a status
callback. The next tick is scheduled relative to the end of the previous
fetch, so a slow broker pushes ticks later instead of piling them up.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Generic, TypeVar

from pulsar_toolbox.types import PollerState, PollerStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AsyncPoller(Generic[T]):
    """Run *fetcher* every *interval_ms* with at most one call in flight."""

    def __init__(
        self,
        interval_ms: int,
        fetcher: Callable[[], Awaitable[T]],
        on_result: Callable[[T], Any],
        *,
        on_error: Callable[[BaseException], Any] | None = None,
        on_status_change: Callable[[PollerStatus], Any] | None = None,
        immediate: bool = True,
    ) -> None:
        if interval_ms <= 0:
            raise ValueError("interval_ms must be positive")
        self._interval = interval_ms / 1000.0
        self._fetcher = fetcher
        self._on_result = on_result
        self._on_error = on_error
        self._on_status_change = on_status_change
        self._immediate = immediate

        self._running = False
        self._in_flight = False
        self._status: PollerStatus | None = None
        self._timer: asyncio.Handle | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def status(self) -> PollerStatus | None:
        return self._status

    @property
    def state(self) -> PollerState:
        return PollerState(running=self._running, status=self._status, in_flight=self._in_flight)

    def start(self) -> None:
        """Start polling. Must be called with a running event loop."""
        if self._running:
            return
        self._running = True
        loop = asyncio.get_running_loop()
        if self._immediate:
            self._timer = loop.call_soon(self._tick)
        else:
            self._timer = loop.call_later(self._interval, self._tick)

    def stop(self) -> None:
        """Stop polling; a fetch still in flight finishes silently."""
        self._running = False
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _schedule_next(self) -> None:
        if not self._running:
            return
        if self._timer is not None:
            self._timer.cancel()
        self._timer = asyncio.get_running_loop().call_later(self._interval, self._tick)

    def _tick(self) -> None:
        self._timer = None
        if not self._running or self._in_flight:
            return
        # Claimed before the task runs so a second tick cannot slip in.
        self._in_flight = True
        self._task = asyncio.ensure_future(self._execute())

    async def _execute(self) -> None:
        if not self._running:
            self._in_flight = False
            return
        self._emit_status("connecting")
        try:
            result = await self._fetcher()
        except Exception as exc:
            if self._running:
                logger.debug("Poll fetch failed: %s", exc)
                self._emit_status("error")
                self._call(self._on_error, exc)
        else:
            if self._running:
                self._emit_status("connected")
                self._call(self._on_result, result)
        finally:
            self._in_flight = False
            if self._running:
                self._schedule_next()

    def _emit_status(self, status: PollerStatus) -> None:
        self._status = status
        self._call(self._on_status_change, status)

    @staticmethod
    def _call(callback: Callable[[Any], Any] | None, value: Any) -> None:
        if callback is None:
            return
        try:
            callback(value)
        except Exception:
            logger.exception("Poller callback %r raised", callback)
