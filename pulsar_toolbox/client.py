"""
Pulsar Toolbox operator console.

Ties a broker client, the configured hosts and the scenario catalogue to
one :class:`~pulsar_toolbox.live.LiveTopicController` and one
:class:`~pulsar_toolbox.scenarios.ScenarioRunner`.

Usage::

    from pulsar_toolbox import PulsarToolbox, Host, TopicRef

    toolbox = PulsarToolbox(hosts=[Host(id="local", service_url="ws://localhost:8080")])
    toolbox.on("window", lambda event: print(event.data))

    await toolbox.select_topic("local", TopicRef.parse("persistent://public/default/orders"))
    await toolbox.send_message("public", "default", "orders", '{"id": 1}')
    ...
    toolbox.close()
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable

from pulsar_toolbox.acks import build_failure_result, interpret_producer_response
from pulsar_toolbox.broker import BrokerClient, PulsarWebSocketClient
from pulsar_toolbox.events import EventHandler, StateEvents
from pulsar_toolbox.live import LiveTopicController
from pulsar_toolbox.scenarios import ScenarioRunner
from pulsar_toolbox.types import (
    ConnectionStatus,
    Host,
    LiveConfig,
    Message,
    RunOutcome,
    Scenario,
    ScenarioRunState,
    SendResult,
    TopicRef,
    TopicTarget,
)

logger = logging.getLogger(__name__)


class PulsarToolbox:
    """
    The operator-facing entry point.

    Hosts and scenarios are owned by the caller (they are usually loaded
    from its own storage); the toolbox only reads them.
    """

    def __init__(
        self,
        hosts: Iterable[Host] = (),
        broker: BrokerClient | None = None,
        config: LiveConfig | None = None,
        scenarios: Iterable[Scenario] = (),
        active_host_id: str | None = None,
    ) -> None:
        self.hosts: list[Host] = list(hosts)
        self.scenarios: dict[str, Scenario] = {scenario.id: scenario for scenario in scenarios}
        self.active_host_id = active_host_id
        self.send_results: dict[str, SendResult] = {}

        self._broker = broker or PulsarWebSocketClient()
        self._events = StateEvents()
        self.live = LiveTopicController(self._broker, config, events=self._events)
        self.runner = ScenarioRunner(
            self._broker,
            self.scenarios,
            hosts=lambda: self.hosts,
            active_host_id=lambda: self.active_host_id,
            live=self.live,
            events=self._events,
        )
        self._sending = False

    # ---- Observable state ----

    @property
    def broker(self) -> BrokerClient:
        return self._broker

    @property
    def active_topic(self) -> TopicTarget | None:
        return self.live.active_topic

    @property
    def window(self) -> list[Message]:
        return self.live.window

    @property
    def connection_status(self) -> ConnectionStatus:
        return self.live.connection_status

    @property
    def capacity(self) -> int:
        return self.live.capacity

    @property
    def is_loading(self) -> bool:
        return self.live.is_loading

    @property
    def is_sending(self) -> bool:
        return self._sending

    @property
    def scenario_run_state(self) -> dict[str, ScenarioRunState]:
        return self.runner.run_state

    @property
    def live_polling_supported(self) -> bool:
        return self._broker.is_polled_source_available()

    def host(self, host_id: str) -> Host:
        for host in self.hosts:
            if host.id == host_id:
                return host
        raise KeyError(f"Unknown host {host_id!r}")

    @property
    def active_host(self) -> Host | None:
        if self.active_host_id is None:
            return None
        return next((host for host in self.hosts if host.id == self.active_host_id), None)

    # ---- Events ----

    def on(self, event_type: str, handler: EventHandler) -> None:
        """Subscribe to a specific event type ("*" for everything)."""
        if event_type == "*":
            self._events.subscribe_all(handler)
        else:
            self._events.subscribe(event_type, handler)

    def off(self, event_type: str, handler: EventHandler | None = None) -> None:
        """Unsubscribe from an event type."""
        self._events.unsubscribe(event_type, handler)

    # ---- Live topic ----

    async def select_topic(self, host: Host | str, topic: TopicRef | str) -> None:
        if isinstance(host, str):
            host = self.host(host)
        if isinstance(topic, str):
            topic = TopicRef.parse(topic)
        self.active_host_id = host.id
        await self.live.select_topic(host, topic)

    def toggle_live(self, on: bool) -> bool:
        return self.live.toggle_live(on)

    async def set_capacity(self, capacity: int) -> None:
        await self.live.set_capacity(capacity)

    async def refresh(self, show_spinner: bool = True) -> None:
        await self.live.refresh(show_spinner=show_spinner)

    def clear(self) -> None:
        self.live.clear()

    # ---- Scenarios ----

    async def run_scenario(self, scenario_id: str) -> RunOutcome:
        return await self.runner.run(scenario_id)

    def start_scenario(self, scenario_id: str) -> asyncio.Task[RunOutcome]:
        return self.runner.start(scenario_id)

    def cancel_scenario_run(self, scenario_id: str) -> bool:
        return self.runner.cancel(scenario_id)

    # ---- Sending ----

    async def send_message(
        self,
        tenant: str,
        namespace: str,
        topic: str,
        payload: str,
        host: Host | str | None = None,
    ) -> SendResult:
        """Produce one message and show it.

        On success the target topic is refreshed if it is already displayed,
        otherwise it becomes the displayed topic.
        """
        if isinstance(host, str):
            host = self.host(host)
        target_host = host or self.active_host or (self.hosts[0] if self.hosts else None)
        topic_ref = TopicRef(tenant=tenant, namespace=namespace, topic=topic)
        full_name = topic_ref.full_name
        if target_host is None:
            result = build_failure_result("No host available", full_name)
            self.send_results[full_name] = result
            return result

        target = TopicTarget(host=target_host, topic=topic_ref)
        self._sending = True
        try:
            try:
                response = await self._broker.produce(target, payload)
            except Exception as exc:
                logger.warning("Send to %s failed: %s", full_name, exc)
                result = build_failure_result(exc, full_name)
                self.send_results[full_name] = result
                return result

            result = interpret_producer_response(response, full_name)
            self.send_results[full_name] = result
            if not result.succeeded:
                logger.warning("Broker rejected message for %s: %s", full_name, result.message)
                return result

            if self.live.is_displaying(target):
                await self.live.refresh(show_spinner=False)
            else:
                await self.select_topic(target_host, topic_ref)
            return result
        finally:
            self._sending = False

    # ---- Lifecycle ----

    def close(self) -> None:
        """Cancel every run and stop live tailing."""
        self.runner.cancel_all()
        self.live.close()
        logger.info("Pulsar toolbox closed")

    async def __aenter__(self) -> PulsarToolbox:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.close()
        await self._events.drain()
