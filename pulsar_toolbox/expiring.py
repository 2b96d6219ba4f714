"""Keys that stay active for a fixed time after they were last added."""

from __future__ import annotations

import asyncio
from typing import Iterable


class ExpiringKeySet:
    """Set of keys, each expiring *duration_ms* after its latest :meth:`add`.

    Used to flag messages that just arrived in a live window.
    """

    def __init__(self, duration_ms: int) -> None:
        self._duration = max(duration_ms, 0) / 1000.0
        self._timers: dict[str, asyncio.TimerHandle] = {}

    @property
    def active_keys(self) -> frozenset[str]:
        return frozenset(self._timers)

    def __contains__(self, key: object) -> bool:
        return key in self._timers

    def __len__(self) -> int:
        return len(self._timers)

    def add(self, keys: Iterable[str]) -> None:
        keys = list(keys)
        if not keys or self._duration <= 0:
            return
        loop = asyncio.get_running_loop()
        for key in keys:
            existing = self._timers.pop(key, None)
            if existing is not None:
                existing.cancel()
            self._timers[key] = loop.call_later(self._duration, self._expire, key)

    def _expire(self, key: str) -> None:
        self._timers.pop(key, None)

    def clear(self) -> None:
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
