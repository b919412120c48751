"""Event recorder — append-only JSONL writer for agent telemetry."""

from __future__ import annotations

import re
import threading
import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import IO

from conduit.telemetry.models import AgentEvent

#: Labels may contain letters, digits, hyphens and underscores.
_SAFE_NAME_RE = re.compile(r"^[a-zA-Z0-9_-]+$")


class EventRecorder:
    """Records agent events to an append-only JSONL file.

    Thread-safe: all writes are serialized through a ``threading.Lock``.
    Crash-safe: the file is flushed after every event.
    """

    def __init__(self, label: str, events_dir: Path | None = None) -> None:
        if not _SAFE_NAME_RE.match(label):
            msg = (
                f"Invalid recorder label {label!r}: must contain only "
                "alphanumeric characters, hyphens, and underscores."
            )
            raise ValueError(msg)

        self._lock = threading.Lock()
        self._count = 0
        self._closed = False
        self._recording_id = uuid.uuid4().hex[:12]

        if events_dir is None:
            events_dir = Path("events")
        events_dir.mkdir(parents=True, exist_ok=True)

        date_str = datetime.now(tz=UTC).strftime("%Y-%m-%d")
        self._path = events_dir / f"{date_str}_{label}_{self._recording_id}.jsonl"
        self._fh: IO[str] | None = self._path.open("a", encoding="utf-8")

    @property
    def path(self) -> Path:
        """Path to the JSONL file."""
        return self._path

    @property
    def event_count(self) -> int:
        """Number of events written so far."""
        return self._count

    def record(self, event: AgentEvent) -> None:
        """Append *event* as one JSON line and flush.

        Silently drops events after the recorder has been closed.
        """
        with self._lock:
            if self._closed or self._fh is None:
                return
            self._fh.write(event.model_dump_json() + "\n")
            self._fh.flush()
            self._count += 1

    def close(self) -> None:
        """Close the file handle.  Idempotent."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            if self._fh is not None and not self._fh.closed:
                self._fh.close()


def read_events(path: Path) -> list[AgentEvent]:
    """Load every event recorded in *path*, skipping blank lines."""
    events: list[AgentEvent] = []
    with path.open(encoding="utf-8") as fh:
        for line in fh:
            if line.strip():
                events.append(AgentEvent.model_validate_json(line))
    return events
