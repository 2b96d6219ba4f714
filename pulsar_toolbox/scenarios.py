"""
Scenario execution.

A scenario is an ordered list of message and wait steps. :class:`ScenarioRunner`
executes one run per scenario id at a time, publishes the index of the step
it is on, and can be cancelled between or during waits.

Sends are not transactional: when a step fails the run stops, but messages
already produced by earlier steps stay on the broker.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Mapping, Sequence, Union

from pulsar_toolbox.acks import interpret_producer_response
from pulsar_toolbox.broker import BrokerClient
from pulsar_toolbox.cancellation import CancelSlot, cancellable_sleep
from pulsar_toolbox.events import StateEvents
from pulsar_toolbox.live import LiveTopicController
from pulsar_toolbox.types import (
    Host,
    MessageStep,
    RunOutcome,
    Scenario,
    ScenarioRunState,
    ScenarioStep,
    TopicRef,
    TopicTarget,
)

logger = logging.getLogger(__name__)

ScenarioSource = Union[Mapping[str, Scenario], Callable[[str], Union[Scenario, None]]]


class ScenarioRejected(ValueError):
    """A run request was refused before anything was executed."""


class _Run:
    __slots__ = ("scenario_id", "slot", "cancelled", "current_step_index")

    def __init__(self, scenario_id: str) -> None:
        self.scenario_id = scenario_id
        self.slot = CancelSlot()
        self.cancelled = False
        self.current_step_index: int | None = 0


class ScenarioRunner:
    """Runs scenarios against a broker client."""

    def __init__(
        self,
        broker: BrokerClient,
        scenarios: ScenarioSource,
        *,
        hosts: Callable[[], Sequence[Host]],
        active_host_id: Callable[[], str | None] | None = None,
        live: LiveTopicController | None = None,
        events: StateEvents | None = None,
    ) -> None:
        self._broker = broker
        if isinstance(scenarios, Mapping):
            self._lookup: Callable[[str], Scenario | None] = scenarios.get
        else:
            self._lookup = scenarios
        self._hosts = hosts
        self._active_host_id = active_host_id
        self._live = live
        self._events = events or StateEvents()

        self._runs: dict[str, _Run] = {}
        self._background: set[asyncio.Task[None]] = set()

    @property
    def run_state(self) -> dict[str, ScenarioRunState]:
        """Active runs keyed by scenario id."""
        return {
            scenario_id: ScenarioRunState(current_step_index=run.current_step_index)
            for scenario_id, run in self._runs.items()
        }

    def is_running(self, scenario_id: str) -> bool:
        return scenario_id in self._runs

    def current_step_index(self, scenario_id: str) -> int | None:
        run = self._runs.get(scenario_id)
        return run.current_step_index if run else None

    def start(self, scenario_id: str) -> asyncio.Task[RunOutcome]:
        """Validate and launch a run; raises :class:`ScenarioRejected` on refusal.

        Must be called from inside a running event loop. The returned task
        resolves to the run's :class:`RunOutcome`.
        """
        scenario = self._lookup(scenario_id)
        if scenario is None:
            raise ScenarioRejected(f"Scenario {scenario_id!r} not found")
        if not scenario.steps:
            raise ScenarioRejected("Scenario has no steps")
        if scenario_id in self._runs:
            raise ScenarioRejected("Scenario is already running")
        if any(step.type == "message" for step in scenario.steps) and not self._hosts():
            raise ScenarioRejected("No host available")

        run = _Run(scenario_id)
        task = asyncio.ensure_future(self._execute(run, scenario.name, list(scenario.steps)))
        self._runs[scenario_id] = run
        self._events.emit("scenario.started", scenario_id=scenario_id, steps=len(scenario.steps))
        logger.info("Scenario %s started (%d steps)", scenario.name or scenario_id, len(scenario.steps))
        return task

    async def run(self, scenario_id: str) -> RunOutcome:
        """Run a scenario to its end and return the outcome."""
        return await self.start(scenario_id)

    def cancel(self, scenario_id: str) -> bool:
        """Stop a run; returns False if nothing was running."""
        run = self._runs.get(scenario_id)
        if run is None:
            return False
        run.cancelled = True
        run.slot.cancel()
        self._remove(run)
        logger.info("Scenario %s cancelled", scenario_id)
        return True

    def cancel_all(self) -> None:
        for scenario_id in list(self._runs):
            self.cancel(scenario_id)

    # ---- Internal ----

    async def _execute(self, run: _Run, name: str, steps: list[ScenarioStep]) -> RunOutcome:
        outcome: RunOutcome | None = None
        last = len(steps) - 1
        try:
            for index, step in enumerate(steps):
                self._publish(run, index)
                if run.cancelled:
                    break

                if step.type == "wait":
                    if step.wait_ms > 0:
                        await cancellable_sleep(run.slot, step.wait_ms)
                    continue

                error = await self._send(step, index, name)
                if error is not None:
                    logger.warning("Scenario %s failed at step %d: %s", name or run.scenario_id, index + 1, error)
                    outcome = RunOutcome(
                        scenario_id=run.scenario_id,
                        status="failed",
                        failed_step_index=index,
                        error=error,
                    )
                    break
                if run.cancelled:
                    break

                if step.delay_ms > 0 and index < last:
                    await cancellable_sleep(run.slot, step.delay_ms)
        finally:
            self._remove(run)

        if outcome is None:
            status = "cancelled" if run.cancelled else "completed"
            outcome = RunOutcome(scenario_id=run.scenario_id, status=status)
        if outcome.completed:
            logger.info("Scenario %s completed", name or run.scenario_id)
        self._events.emit("scenario.finished", **outcome.model_dump())
        return outcome

    async def _send(self, step: MessageStep, index: int, name: str) -> str | None:
        """Produce one message step. Returns an error message on failure."""
        host = self._resolve_host(step)
        if host is None:
            return "No host available"

        target = TopicTarget(
            host=host,
            topic=TopicRef(tenant=step.tenant, namespace=step.namespace, topic=step.topic),
        )
        try:
            response = await self._broker.produce(target, step.payload)
        except Exception as exc:
            return str(exc) or type(exc).__name__

        result = interpret_producer_response(
            response, target.topic.full_name, f"Step {index + 1} sent ({name})"
        )
        if not result.succeeded:
            return result.message
        logger.debug("Step %d sent to %s", index + 1, target.topic.full_name)

        if self._live is not None and self._live.is_displaying(target):
            self._refresh_live()
        return None

    def _resolve_host(self, step: MessageStep) -> Host | None:
        hosts = list(self._hosts())
        by_id = {host.id: host for host in hosts}
        if step.host_id and step.host_id in by_id:
            return by_id[step.host_id]
        active_id = self._active_host_id() if self._active_host_id else None
        if active_id and active_id in by_id:
            return by_id[active_id]
        return hosts[0] if hosts else None

    def _refresh_live(self) -> None:
        assert self._live is not None
        task = asyncio.ensure_future(self._live.refresh(show_spinner=False))
        self._background.add(task)
        task.add_done_callback(self._refresh_done)

    def _refresh_done(self, task: asyncio.Task[None]) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Failed to refresh active topic after scenario step: %s", task.exception())

    def _publish(self, run: _Run, index: int) -> None:
        if self._runs.get(run.scenario_id) is not run:
            return
        run.current_step_index = index
        self._events.emit("scenario.step", scenario_id=run.scenario_id, current_step_index=index)

    def _remove(self, run: _Run) -> None:
        if self._runs.get(run.scenario_id) is not run:
            return
        del self._runs[run.scenario_id]
        self._events.emit("scenario.removed", scenario_id=run.scenario_id)
