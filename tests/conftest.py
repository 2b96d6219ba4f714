"""Shared fixtures: an in-memory broker client and a few topic helpers."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

import pytest

from pulsar_toolbox.types import Host, LiveConfig, TopicRef, TopicTarget


class FakeBroker:
    """Records every call; behaviour is swapped in through the handler hooks."""

    def __init__(self) -> None:
        self.reads: list[dict[str, Any]] = []
        self.produced: list[tuple[TopicTarget, str]] = []
        self.read_handler: Callable[..., Awaitable[list[dict[str, Any]]]] | None = None
        self.produce_handler: Callable[[TopicTarget, str], Awaitable[Any]] | None = None
        self.polled_available = True

    async def read_messages(
        self,
        target: TopicTarget,
        *,
        start: str,
        limit: int,
        timeout_ms: int,
    ) -> list[dict[str, Any]]:
        self.reads.append(
            {"target": target, "start": start, "limit": limit, "timeout_ms": timeout_ms}
        )
        if self.read_handler is not None:
            return await self.read_handler(target, start, limit)
        return []

    async def produce(self, target: TopicTarget, payload: str) -> Any:
        self.produced.append((target, payload))
        if self.produce_handler is not None:
            return await self.produce_handler(target, payload)
        return {"result": "ok", "messageId": f"m{len(self.produced)}"}

    def is_polled_source_available(self) -> bool:
        return self.polled_available

    def reads_from(self, start: str) -> list[dict[str, Any]]:
        return [read for read in self.reads if read["start"] == start]


def make_message(message_id: Any, publish_time: Any, payload: str | None = None) -> dict[str, Any]:
    message: dict[str, Any] = {"publishTime": publish_time}
    if message_id is not None:
        message["messageId"] = message_id
    if payload is not None:
        message["payload"] = payload
    return message


@pytest.fixture
def broker() -> FakeBroker:
    return FakeBroker()


@pytest.fixture
def host() -> Host:
    return Host(id="local", name="Local", service_url="ws://localhost:8080")


@pytest.fixture
def topic() -> TopicRef:
    return TopicRef(tenant="public", namespace="default", topic="orders")


@pytest.fixture
def quiet_config() -> LiveConfig:
    """Polls rarely enough that tests only see the first tick."""
    return LiveConfig(poll_interval_ms=60_000, fresh_highlight_ms=5_000)


@pytest.fixture
def msg() -> Callable[..., dict[str, Any]]:
    return make_message


@pytest.fixture
def wait_until() -> Callable[..., Awaitable[None]]:
    async def _wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not reached in time")
            await asyncio.sleep(0.005)

    return _wait_until
