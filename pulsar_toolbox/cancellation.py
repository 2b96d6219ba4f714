"""
Cooperative cancellation primitives.

A :data:`CancellationHandle` is a zero-argument callable. Every suspension
point of the engine registers its handle in a :class:`CancelSlot`; storing
a new handle in a slot invokes the previous one, so at most one handle is
live per logical operation.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, TypeVar

T = TypeVar("T")

CancellationHandle = Callable[[], None]


class _Cancelled:
    __slots__ = ()

    def __repr__(self) -> str:
        return "CANCELLED"


# Outcome of a cancellable operation whose handle was invoked.
CANCELLED: Any = _Cancelled()


class CancelSlot:
    """Holds the current cancellation handle for one operation slot."""

    def __init__(self) -> None:
        self._handle: CancellationHandle | None = None

    @property
    def active(self) -> bool:
        return self._handle is not None

    def replace(self, handle: CancellationHandle) -> None:
        """Install *handle*, cancelling whatever was there before."""
        previous = self._handle
        self._handle = handle
        if previous is not None:
            previous()

    def release(self, handle: CancellationHandle) -> None:
        """Forget *handle* if it is still the current one."""
        if self._handle is handle:
            self._handle = None

    def cancel(self) -> bool:
        """Invoke and clear the current handle. Returns whether one existed."""
        handle = self._handle
        self._handle = None
        if handle is None:
            return False
        handle()
        return True


async def cancellable(slot: CancelSlot, factory: Callable[[], Awaitable[T]]) -> T | Any:
    """Run ``factory()`` under *slot*; return :data:`CANCELLED` if its handle fires.

    Once the handle has been invoked the result is discarded even if the
    operation had already finished.
    """
    task = asyncio.ensure_future(factory())
    cancelled = False

    def handle() -> None:
        nonlocal cancelled
        cancelled = True
        task.cancel()

    slot.replace(handle)
    try:
        result = await task
    except asyncio.CancelledError:
        if cancelled:
            return CANCELLED
        raise
    except Exception:
        if cancelled:
            return CANCELLED
        raise
    finally:
        slot.release(handle)
    if cancelled:
        return CANCELLED
    return result


async def cancellable_sleep(slot: CancelSlot, delay_ms: float) -> bool:
    """Sleep for *delay_ms*. Returns False if cancelled early."""
    loop = asyncio.get_running_loop()
    waiter: asyncio.Future[bool] = loop.create_future()

    def wake(value: bool) -> None:
        if not waiter.done():
            waiter.set_result(value)

    timer = loop.call_later(max(delay_ms, 0) / 1000.0, wake, True)

    def handle() -> None:
        timer.cancel()
        wake(False)

    slot.replace(handle)
    try:
        return await waiter
    finally:
        timer.cancel()
        slot.release(handle)
