"""
Pulsar Toolbox engine.

Live-tails broker topics into a bounded, deduplicated window and runs
scripted send/wait scenarios against the same broker client.

Example::

    from pulsar_toolbox import PulsarToolbox, Host, Scenario, MessageStep, WaitStep

    toolbox = PulsarToolbox(
        hosts=[Host(id="local", service_url="ws://localhost:8080")],
        scenarios=[
            Scenario(
                id="smoke",
                steps=[
                    MessageStep(tenant="public", namespace="default", topic="orders", payload="{}"),
                    WaitStep(wait_ms=500),
                ],
            )
        ],
    )

    await toolbox.select_topic("local", "persistent://public/default/orders")
    outcome = await toolbox.run_scenario("smoke")
    print(outcome.status, len(toolbox.window))

    toolbox.close()
"""

from pulsar_toolbox.client import PulsarToolbox
from pulsar_toolbox.acks import build_failure_result, interpret_producer_response
from pulsar_toolbox.broker import BrokerClient, BrokerError, PulsarWebSocketClient
from pulsar_toolbox.cancellation import CANCELLED, CancellationHandle, CancelSlot
from pulsar_toolbox.events import StateEvents
from pulsar_toolbox.live import LiveTopicController
from pulsar_toolbox.messages import (
    merge_unique_newest_first,
    message_key,
    publish_instant,
    register_timestamp_extractor,
    sort_newest_first,
)
from pulsar_toolbox.poller import AsyncPoller
from pulsar_toolbox.scenarios import ScenarioRejected, ScenarioRunner
from pulsar_toolbox.types import (
    Host,
    LiveConfig,
    MessageStep,
    PollerState,
    RunOutcome,
    Scenario,
    ScenarioRunState,
    SendResult,
    StateEvent,
    TopicRef,
    TopicTarget,
    WaitStep,
)

__all__ = [
    "PulsarToolbox",
    "LiveTopicController",
    "ScenarioRunner",
    "ScenarioRejected",
    "AsyncPoller",
    "StateEvents",
    "BrokerClient",
    "BrokerError",
    "PulsarWebSocketClient",
    "CANCELLED",
    "CancellationHandle",
    "CancelSlot",
    "Host",
    "LiveConfig",
    "MessageStep",
    "WaitStep",
    "Scenario",
    "ScenarioRunState",
    "RunOutcome",
    "SendResult",
    "PollerState",
    "StateEvent",
    "TopicRef",
    "TopicTarget",
    "publish_instant",
    "sort_newest_first",
    "message_key",
    "merge_unique_newest_first",
    "register_timestamp_extractor",
    "interpret_producer_response",
    "build_failure_result",
]

__version__ = "0.1.0"
