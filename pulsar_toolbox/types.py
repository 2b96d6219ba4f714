"""
Pydantic models for the Pulsar Toolbox engine.

Broker records stay plain dicts (see :data:`Message`); everything the
engine itself owns or exchanges with collaborators is modelled here.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field

# Opaque broker record, exactly as the transport delivered it.
Message = dict[str, Any]

ConnectionStatus = Literal["disconnected", "connecting", "connected"]
PollerStatus = Literal["connecting", "connected", "error"]
StartPosition = Literal["earliest", "latest"]


# ============================================================
#  Configuration
# ============================================================


class LiveConfig(BaseModel):
    """Tuning knobs for live tailing."""

    default_capacity: int = Field(10, ge=1)
    history_scan_factor: int = Field(5, ge=1)
    history_timeout_ms: int = Field(2500, gt=0)
    poll_interval_ms: int = Field(1800, gt=0)
    poll_timeout_ms: int = Field(1400, gt=0)
    fresh_highlight_ms: int = Field(600, ge=0)
    live_by_default: bool = True


# ============================================================
#  Hosts & topics
# ============================================================


class Host(BaseModel):
    """A broker endpoint the operator has configured."""

    id: str
    name: str = ""
    service_url: str = Field(alias="serviceUrl")

    model_config = {"populate_by_name": True}


class TopicRef(BaseModel):
    """Tenant/namespace/topic triple."""

    tenant: str
    namespace: str = Field(alias="ns")
    topic: str
    persistent: bool = True

    model_config = {"populate_by_name": True}

    @property
    def full_name(self) -> str:
        scheme = "persistent" if self.persistent else "non-persistent"
        return f"{scheme}://{self.tenant}/{self.namespace}/{self.topic}"

    @classmethod
    def parse(cls, full_name: str) -> TopicRef:
        """Parse ``persistent://tenant/ns/topic`` (topic may contain slashes)."""
        scheme, sep, rest = full_name.partition("://")
        if not sep:
            raise ValueError(f"Not a fully qualified topic name: {full_name!r}")
        parts = rest.split("/")
        if len(parts) < 3 or not all(parts[:3]):
            raise ValueError(f"Not a fully qualified topic name: {full_name!r}")
        return cls(
            tenant=parts[0],
            namespace=parts[1],
            topic="/".join(parts[2:]),
            persistent=scheme != "non-persistent",
        )


class TopicTarget(BaseModel):
    """A topic on a specific host."""

    host: Host
    topic: TopicRef

    def same_as(self, other: TopicTarget | None) -> bool:
        if other is None:
            return False
        return (
            self.host.id == other.host.id
            and self.topic.tenant == other.topic.tenant
            and self.topic.namespace == other.topic.namespace
            and self.topic.topic == other.topic.topic
        )


# ============================================================
#  Scenarios
# ============================================================


class MessageStep(BaseModel):
    """Send one payload to a topic."""

    type: Literal["message"] = "message"
    id: str = ""
    label: str = ""
    host_id: str | None = Field(None, alias="hostId")
    tenant: str
    namespace: str = Field(alias="ns")
    topic: str
    payload: str
    delay_ms: int = Field(0, alias="delayMs")

    model_config = {"populate_by_name": True}


class WaitStep(BaseModel):
    """Pause the run."""

    type: Literal["wait"] = "wait"
    id: str = ""
    label: str = ""
    wait_ms: int = Field(1000, alias="waitMs")

    model_config = {"populate_by_name": True}


ScenarioStep = Annotated[Union[MessageStep, WaitStep], Field(discriminator="type")]


class Scenario(BaseModel):
    """An ordered list of steps."""

    id: str
    name: str = ""
    description: str = ""
    steps: list[ScenarioStep] = []


class ScenarioRunState(BaseModel):
    """Progress of an active run."""

    current_step_index: int | None = None


class RunOutcome(BaseModel):
    """How a scenario run ended."""

    scenario_id: str
    status: Literal["completed", "failed", "cancelled"]
    failed_step_index: int | None = None
    error: str | None = None

    @property
    def completed(self) -> bool:
        return self.status == "completed"

    @property
    def failed(self) -> bool:
        return self.status == "failed"

    @property
    def cancelled(self) -> bool:
        return self.status == "cancelled"


# ============================================================
#  Sending
# ============================================================


class SendResult(BaseModel):
    """Interpreted outcome of one produce call."""

    target: str
    response: Any = None
    succeeded: bool
    message: str
    timestamp: int


# ============================================================
#  Poller & events
# ============================================================


class PollerState(BaseModel):
    """Snapshot of an :class:`~pulsar_toolbox.poller.AsyncPoller`."""

    running: bool = False
    status: PollerStatus | None = None
    in_flight: bool = False


class StateEvent(BaseModel):
    """A change in observable engine state."""

    type: str
    data: dict[str, Any] = {}
