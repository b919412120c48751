"""Pydantic v2 model for recorded agent telemetry events."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

#: Streams an event can be published on.
EventStream = Literal["lifecycle", "assistant", "tool"]


class AgentEvent(BaseModel):
    """One telemetry event published for an agent run."""

    model_config = ConfigDict(extra="forbid")

    ts: str = Field(description="ISO 8601 timestamp with milliseconds")
    seq: int = Field(ge=0, description="Monotonic sequence number within the run")
    run_id: str = Field(description="Identifier of the agent run")
    stream: EventStream = Field(description="Logical stream the event belongs to")
    data: dict[str, Any] = Field(
        default_factory=dict,
        description="Stream-specific payload",
    )
