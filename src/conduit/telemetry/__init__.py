"""Telemetry — agent event model, emitter and JSONL recorder."""

from conduit.telemetry.emitter import (
    AgentEventEmitter,
    AgentEventListener,
    default_emitter,
)
from conduit.telemetry.models import AgentEvent, EventStream
from conduit.telemetry.recorder import EventRecorder, read_events

__all__ = [
    "AgentEvent",
    "AgentEventEmitter",
    "AgentEventListener",
    "EventRecorder",
    "EventStream",
    "default_emitter",
    "read_events",
]
