"""
Unit tests for the PulsarToolbox facade.

Uses the FakeBroker from conftest, so no broker is required. Tests verify that
the facade wires hosts, the live controller and the scenario runner
together the way an operator console drives them.
"""

from __future__ import annotations

import pytest

from pulsar_toolbox import PulsarToolbox
from pulsar_toolbox.types import Host, LiveConfig, MessageStep, Scenario, WaitStep

LOCAL = Host(id="local", name="Local", service_url="ws://localhost:8080")
REMOTE = Host(id="remote", name="Remote", service_url="ws://remote:8080")
QUIET = LiveConfig(poll_interval_ms=60_000)


# ============================================================
#  Live topic
# ============================================================


@pytest.mark.asyncio
async def test_select_topic_by_ids(broker, msg) -> None:
    """Topics are selected by host id and full topic name."""
    async def read(target, start, limit):
        return [msg("a", 1)] if start == "earliest" else []

    broker.read_handler = read
    toolbox = PulsarToolbox(hosts=[LOCAL, REMOTE], broker=broker, config=QUIET)

    await toolbox.select_topic("remote", "persistent://public/default/orders")

    assert toolbox.active_host_id == "remote"
    assert toolbox.active_topic.host.id == "remote"
    assert [m["messageId"] for m in toolbox.window] == ["a"]
    assert toolbox.connection_status == "connected"
    toolbox.close()
    assert toolbox.connection_status == "disconnected"


@pytest.mark.asyncio
async def test_unknown_host_is_rejected(broker) -> None:
    """Selecting on an unknown host id raises KeyError."""
    toolbox = PulsarToolbox(hosts=[LOCAL], broker=broker)
    with pytest.raises(KeyError):
        await toolbox.select_topic("nope", "persistent://public/default/orders")


@pytest.mark.asyncio
async def test_events_reach_subscribers(broker) -> None:
    """Wildcard subscribers see controller events in order."""
    seen: list[str] = []
    toolbox = PulsarToolbox(hosts=[LOCAL], broker=broker, config=QUIET)
    toolbox.on("*", lambda event: seen.append(event.type))

    await toolbox.select_topic("local", "persistent://public/default/orders")
    toolbox.off("*")
    toolbox.close()

    assert seen[:3] == ["topic", "status", "loading"]


# ============================================================
#  Sending
# ============================================================


@pytest.mark.asyncio
async def test_send_selects_target_topic(broker, msg) -> None:
    """A successful send to another topic switches the window to it."""
    async def read(target, start, limit):
        return [msg("sent", 1)] if start == "earliest" else []

    broker.read_handler = read
    toolbox = PulsarToolbox(hosts=[LOCAL], broker=broker, config=QUIET)

    result = await toolbox.send_message("public", "default", "orders", '{"id": 1}')

    assert result.succeeded
    assert toolbox.send_results["persistent://public/default/orders"] is result
    assert toolbox.active_topic.topic.topic == "orders"
    assert [m["messageId"] for m in toolbox.window] == ["sent"]
    assert not toolbox.is_sending
    toolbox.close()


@pytest.mark.asyncio
async def test_send_to_displayed_topic_refreshes(broker) -> None:
    """A send to the displayed topic refreshes it quietly."""
    toolbox = PulsarToolbox(hosts=[LOCAL], broker=broker, config=QUIET)
    await toolbox.select_topic("local", "persistent://public/default/orders")
    snapshots = len(broker.reads_from("earliest"))
    loading: list[bool] = []
    toolbox.on("loading", lambda event: loading.append(event.data["loading"]))

    result = await toolbox.send_message("public", "default", "orders", "{}")

    assert result.succeeded
    assert len(broker.reads_from("earliest")) == snapshots + 1
    assert loading == []
    toolbox.close()


@pytest.mark.asyncio
async def test_send_failure_is_recorded(broker) -> None:
    """A failed send is recorded and leaves the selection alone."""
    async def produce(target, payload):
        raise ConnectionError("socket closed")

    broker.produce_handler = produce
    toolbox = PulsarToolbox(hosts=[LOCAL], broker=broker, config=QUIET)

    result = await toolbox.send_message("public", "default", "orders", "{}")

    assert not result.succeeded
    assert result.message == "socket closed"
    assert toolbox.active_topic is None


@pytest.mark.asyncio
async def test_send_without_hosts(broker) -> None:
    """Sending with no hosts fails without producing."""
    toolbox = PulsarToolbox(broker=broker)

    result = await toolbox.send_message("public", "default", "orders", "{}")

    assert not result.succeeded
    assert result.message == "No host available"
    assert broker.produced == []


# ============================================================
#  Scenarios
# ============================================================


@pytest.mark.asyncio
async def test_run_and_cancel_scenarios(broker, wait_until) -> None:
    """Scenarios run to completion and can be cancelled by id."""
    scenarios = [
        Scenario(
            id="quick",
            steps=[MessageStep(tenant="public", namespace="default", topic="orders", payload="{}")],
        ),
        Scenario(id="slow", steps=[WaitStep(wait_ms=60_000)]),
    ]
    toolbox = PulsarToolbox(hosts=[LOCAL], broker=broker, config=QUIET, scenarios=scenarios)

    outcome = await toolbox.run_scenario("quick")
    assert outcome.completed

    task = toolbox.start_scenario("slow")
    assert toolbox.scenario_run_state["slow"].current_step_index == 0
    assert toolbox.cancel_scenario_run("slow")
    assert (await task).cancelled
    assert toolbox.scenario_run_state == {}


@pytest.mark.asyncio
async def test_close_cancels_running_scenarios(broker) -> None:
    """Leaving the context cancels runs and closes the controller."""
    scenarios = [Scenario(id="slow", steps=[WaitStep(wait_ms=60_000)])]

    async with PulsarToolbox(hosts=[LOCAL], broker=broker, scenarios=scenarios) as toolbox:
        task = toolbox.start_scenario("slow")

    assert (await task).cancelled
    with pytest.raises(RuntimeError):
        toolbox.toggle_live(True)
