"""Agent event emitter — in-process fan-out of telemetry events."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from conduit.telemetry.models import AgentEvent, EventStream
from conduit.telemetry.recorder import EventRecorder

logger = logging.getLogger(__name__)

AgentEventListener = Callable[[AgentEvent], None]


class AgentEventEmitter:
    """Stamps, records and broadcasts ``AgentEvent``s.

    Sequence numbers are tracked per run id.  A failing listener or recorder
    is logged and skipped; it never reaches the code that emitted the event.
    """

    def __init__(self, recorder: EventRecorder | None = None) -> None:
        self._recorder = recorder
        self._listeners: list[AgentEventListener] = []
        self._seq_by_run: dict[str, int] = {}

    def attach_recorder(self, recorder: EventRecorder | None) -> None:
        """Write subsequent events to *recorder* (``None`` detaches)."""
        self._recorder = recorder

    def add_listener(self, listener: AgentEventListener) -> Callable[[], None]:
        """Register *listener*; returns a callable that removes it."""
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def emit(self, run_id: str, stream: EventStream, data: dict[str, Any]) -> AgentEvent:
        """Publish one event on *stream* for *run_id*."""
        seq = self._seq_by_run.get(run_id, 0)
        self._seq_by_run[run_id] = seq + 1
        event = AgentEvent(ts=_iso_now(), seq=seq, run_id=run_id, stream=stream, data=data)

        if self._recorder is not None:
            try:
                self._recorder.record(event)
            except (ValueError, TypeError, OSError) as exc:
                logger.warning("%s: failed to record %s event: %s", run_id, stream, exc)

        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as exc:
                logger.warning("%s: agent event listener failed: %s", run_id, exc)
        return event

    def clear_run(self, run_id: str) -> None:
        """Forget the sequence counter of a finished run."""
        self._seq_by_run.pop(run_id, None)


#: Process-wide emitter used when callers don't supply their own.
default_emitter = AgentEventEmitter()


def _iso_now() -> str:
    """Return the current UTC time as ISO 8601 with milliseconds."""
    return datetime.now(tz=UTC).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"
