"""Invocation and outcome types for streamed subprocess execution."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType


class SpawnError(Exception):
    """Raised when the executable cannot be launched at all."""

    def __init__(self, command: str, reason: OSError) -> None:
        self.command = command
        self.reason = reason
        super().__init__(f"Failed to spawn '{command}': {reason}")


@dataclass(frozen=True)
class InvocationDescriptor:
    """Everything needed to launch one external command.

    ``env`` holds overrides layered on top of the host environment, not a
    replacement for it.  ``timeout`` is a wall-clock limit in seconds.
    """

    argv: tuple[str, ...]
    timeout: float
    cwd: str | None = None
    env: Mapping[str, str] = field(default_factory=dict)
    input: str | None = None

    def __post_init__(self) -> None:
        if not self.argv:
            msg = "Invocation argv must not be empty"
            raise ValueError(msg)
        if self.timeout <= 0:
            msg = f"Invocation timeout must be positive, got {self.timeout}"
            raise ValueError(msg)
        # Copy caller-owned containers into immutable ones.
        object.__setattr__(self, "argv", tuple(self.argv))
        object.__setattr__(self, "env", MappingProxyType(dict(self.env)))

    @property
    def command(self) -> str:
        """The executable name (first argv entry)."""
        return self.argv[0]


@dataclass(frozen=True)
class ProcessOutcome:
    """Terminal state of one streamed invocation.

    ``stdout`` is always empty: standard output is consumed line by line
    through the caller's callback and never captured as a whole.
    """

    stderr: str
    exit_code: int | None
    signal: str | None
    was_killed: bool
    stdout: str = ""

    @property
    def ok(self) -> bool:
        """True when the process exited on its own with status 0."""
        return self.exit_code == 0 and not self.was_killed
