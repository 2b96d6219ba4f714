"""
Unit tests for cancellation slots, cancellable awaits and sleeps.
"""

from __future__ import annotations

import asyncio

import pytest

from pulsar_toolbox.cancellation import CANCELLED, CancelSlot, cancellable, cancellable_sleep


def test_replacing_a_handle_invokes_the_previous_one() -> None:
    """Storing a handle fires the one it replaces."""
    calls: list[str] = []
    slot = CancelSlot()

    slot.replace(lambda: calls.append("first"))
    slot.replace(lambda: calls.append("second"))
    assert calls == ["first"]

    assert slot.cancel() is True
    assert calls == ["first", "second"]
    assert slot.cancel() is False
    assert not slot.active


def test_release_only_forgets_the_current_handle() -> None:
    """Releasing a stale handle leaves the current one in place."""
    slot = CancelSlot()
    old = lambda: None  # noqa: E731
    new = lambda: None  # noqa: E731
    slot.replace(old)
    slot.replace(new)

    slot.release(old)
    assert slot.active
    slot.release(new)
    assert not slot.active


@pytest.mark.asyncio
async def test_cancellable_returns_result() -> None:
    """An uncancelled operation returns its result and frees the slot."""
    slot = CancelSlot()

    async def work() -> int:
        await asyncio.sleep(0)
        return 3

    assert await cancellable(slot, work) == 3
    assert not slot.active


@pytest.mark.asyncio
async def test_cancellable_resolves_as_cancelled() -> None:
    """Firing the slot resolves a pending operation as CANCELLED."""
    slot = CancelSlot()
    started = asyncio.Event()

    async def forever() -> None:
        started.set()
        await asyncio.Event().wait()

    pending = asyncio.ensure_future(cancellable(slot, forever))
    await started.wait()
    slot.cancel()

    assert await asyncio.wait_for(pending, timeout=1) is CANCELLED


@pytest.mark.asyncio
async def test_cancellable_propagates_errors() -> None:
    """Errors from an uncancelled operation propagate."""
    async def broken() -> None:
        raise ConnectionError("reset")

    with pytest.raises(ConnectionError):
        await cancellable(CancelSlot(), broken)


@pytest.mark.asyncio
async def test_sleep_completes_or_wakes_early() -> None:
    """A sleep reports completion, or wakes early when cancelled."""
    slot = CancelSlot()
    assert await cancellable_sleep(slot, 5) is True

    loop = asyncio.get_running_loop()
    started = loop.time()
    pending = asyncio.ensure_future(cancellable_sleep(slot, 10_000))
    await asyncio.sleep(0.01)
    slot.cancel()

    assert await pending is False
    assert loop.time() - started < 1
