"""
Broker client boundary.

The engine only talks to :class:`BrokerClient`. :class:`PulsarWebSocketClient`
is a ready-made implementation on top of the Pulsar WebSocket API using the
``websockets`` package; tests and embedders can supply any other object
with the same three methods.
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
from typing import Any, Protocol, runtime_checkable
from urllib.parse import quote as url_quote

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from pulsar_toolbox.types import Message, StartPosition, TopicTarget

logger = logging.getLogger(__name__)


class BrokerError(Exception):
    """A produce or read call failed at the transport or broker."""


@runtime_checkable
class BrokerClient(Protocol):
    """What the engine needs from a broker transport."""

    async def produce(self, target: TopicTarget, payload: str) -> Any:
        """Send *payload* and return the broker's acknowledgement."""
        ...

    async def read_messages(
        self,
        target: TopicTarget,
        *,
        start: StartPosition,
        limit: int,
        timeout_ms: int,
    ) -> list[Message]:
        """Return up to *limit* messages that arrive within *timeout_ms*."""
        ...

    def is_polled_source_available(self) -> bool:
        """Whether repeated reads are supported at all."""
        ...


def _to_base64(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def _decode_payload(encoded: Any) -> Any:
    if not isinstance(encoded, str):
        return None
    text = base64.b64decode(encoded).decode("utf-8", errors="replace")
    if not text:
        return text
    try:
        return json.loads(text)
    except ValueError:
        return text


class PulsarWebSocketClient:
    """Produce and read through the broker's ``/ws/v2`` endpoints."""

    def __init__(self, context: str = "ui") -> None:
        self._context = context

    @staticmethod
    def _topic_path(target: TopicTarget) -> str:
        topic = target.topic
        scheme = "persistent" if topic.persistent else "non-persistent"
        return "/".join(
            url_quote(part, safe="")
            for part in (scheme, topic.tenant, topic.namespace, topic.topic)
        )

    def producer_url(self, target: TopicTarget) -> str:
        base = target.host.service_url.rstrip("/")
        return f"{base}/ws/v2/producer/{self._topic_path(target)}"

    def reader_url(self, target: TopicTarget, start: StartPosition) -> str:
        base = target.host.service_url.rstrip("/")
        return f"{base}/ws/v2/reader/{self._topic_path(target)}?messageId={start}"

    def is_polled_source_available(self) -> bool:
        return True

    async def produce(self, target: TopicTarget, payload: str) -> Any:
        """Publish one JSON payload and wait for the producer acknowledgement."""
        try:
            body = json.loads(payload)
        except ValueError as exc:
            raise BrokerError("Invalid JSON payload") from exc

        frame = json.dumps(
            {
                "payload": _to_base64(json.dumps(body)),
                "properties": {"content-type": "application/json"},
                "context": self._context,
            }
        )
        url = self.producer_url(target)
        try:
            async with websockets.connect(url) as ws:
                await ws.send(frame)
                try:
                    reply = await ws.recv()
                except ConnectionClosed as exc:
                    raise BrokerError("Producer connection closed before acknowledgement") from exc
        except (OSError, WebSocketException) as exc:
            raise BrokerError(f"Producer connection to {target.topic.full_name} failed: {exc}") from exc

        logger.debug("Produced to %s", target.topic.full_name)
        try:
            return json.loads(reply)
        except (TypeError, ValueError):
            return reply

    async def read_messages(
        self,
        target: TopicTarget,
        *,
        start: StartPosition = "latest",
        limit: int = 10,
        timeout_ms: int = 2000,
    ) -> list[Message]:
        """Read until *limit* messages, *timeout_ms* of silence, or close."""
        messages: list[Message] = []
        if limit <= 0:
            return messages
        timeout = timeout_ms / 1000.0
        url = self.reader_url(target, start)
        try:
            async with websockets.connect(url) as ws:
                while len(messages) < limit:
                    try:
                        raw = await asyncio.wait_for(ws.recv(), timeout)
                    except asyncio.TimeoutError:
                        break
                    except ConnectionClosed:
                        break
                    try:
                        record = json.loads(raw)
                        record["decoded"] = _decode_payload(record.get("payload"))
                    except (TypeError, ValueError, AttributeError) as exc:
                        raise BrokerError(f"Malformed reader frame: {exc}") from exc
                    messages.append(record)
                    if record.get("messageId"):
                        try:
                            await ws.send(json.dumps({"messageId": record["messageId"]}))
                        except ConnectionClosed:
                            break
        except (OSError, WebSocketException) as exc:
            raise BrokerError(f"Reader connection to {target.topic.full_name} failed: {exc}") from exc

        logger.debug("Read %d message(s) from %s", len(messages), target.topic.full_name)
        return messages
