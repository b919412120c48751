"""Stream-json runner — one exclusive CLI invocation, parsed as it streams."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from conduit.cli_runner.stream_json import (
    CliOutput,
    StreamJsonAccumulator,
    StreamJsonCallbacks,
    ToolResult,
    ToolUse,
)
from conduit.helpers import format_stderr_preview
from conduit.process.models import InvocationDescriptor, ProcessOutcome
from conduit.process.serializer import ResourceSerializer
from conduit.process.streaming import run_command_streaming
from conduit.telemetry.emitter import AgentEventEmitter, default_emitter

logger = logging.getLogger(__name__)

#: Serializer shared by runs that don't bring their own, so two runs on the
#: same session transcript never overlap within one process.
_default_serializer = ResourceSerializer()


@dataclass
class CliRunResult:
    """Parsed output and process outcome of one CLI run."""

    output: CliOutput
    outcome: ProcessOutcome


async def run_stream_json_cli(
    invocation: InvocationDescriptor,
    resource_key: str,
    *,
    callbacks: StreamJsonCallbacks | None = None,
    serializer: ResourceSerializer | None = None,
    run_id: str | None = None,
    emitter: AgentEventEmitter | None = None,
) -> CliRunResult:
    """Run *invocation* exclusively on *resource_key* and parse its stdout.

    Waits for every earlier run on the same key to finish first.  Process
    failures are reported in ``CliRunResult.outcome``; ``SpawnError`` and
    exceptions from *callbacks* propagate.  When *run_id* is given,
    lifecycle, assistant and tool events are published on *emitter* (the
    process-wide one by default); a run that raises ends with a lifecycle
    ``error`` event.
    """
    serializer = serializer or _default_serializer
    run = _CliRun(invocation, callbacks, run_id, emitter or default_emitter)
    return await serializer.run_exclusive(resource_key, run.execute)


class _CliRun:
    """One invocation: accumulator wiring plus telemetry."""

    def __init__(
        self,
        invocation: InvocationDescriptor,
        callbacks: StreamJsonCallbacks | None,
        run_id: str | None,
        emitter: AgentEventEmitter,
    ) -> None:
        self._invocation = invocation
        self._callbacks = callbacks or StreamJsonCallbacks()
        self._run_id = run_id
        self._emitter = emitter
        self._accumulator = StreamJsonAccumulator(
            StreamJsonCallbacks(
                on_assistant_text=self._on_assistant_text,
                on_tool_use=self._on_tool_use,
                on_tool_result=self._on_tool_result,
            )
        )

    async def execute(self) -> CliRunResult:
        command = self._invocation.command
        self._emit("lifecycle", {"phase": "start", "command": command})

        try:
            outcome = await run_command_streaming(
                self._invocation, self._accumulator.handle_line
            )
        except Exception as exc:
            # Spawn failures and line-callback errors both end the run here.
            self._emit("lifecycle", {"phase": "error", "error": str(exc)})
            raise

        if outcome.was_killed:
            logger.warning(
                "%s: killed after %ss timeout", command, self._invocation.timeout
            )
        elif outcome.exit_code != 0:
            preview = format_stderr_preview(outcome.stderr)
            status = (
                f"code {outcome.exit_code}"
                if outcome.exit_code is not None
                else f"signal {outcome.signal}"
            )
            if preview:
                logger.error("%s exited with %s. Stderr:\n  %s", command, status, preview)
            else:
                logger.error("%s exited with %s", command, status)

        output = self._accumulator.finalize()
        self._emit(
            "lifecycle",
            {
                "phase": "end",
                "exit_code": outcome.exit_code,
                "signal": outcome.signal,
                "was_killed": outcome.was_killed,
                "session_id": output.session_id,
            },
        )
        return CliRunResult(output=output, outcome=outcome)

    # ------------------------------------------------------------------ #
    # Accumulator callbacks
    # ------------------------------------------------------------------ #

    def _on_assistant_text(self, text: str) -> None:
        self._emit("assistant", {"text": text})
        if self._callbacks.on_assistant_text:
            self._callbacks.on_assistant_text(text)

    def _on_tool_use(self, tool_use: ToolUse) -> None:
        self._emit(
            "tool",
            {
                "phase": "start",
                "name": tool_use.name,
                "tool_call_id": tool_use.tool_call_id,
                "args": tool_use.args,
            },
        )
        if self._callbacks.on_tool_use:
            self._callbacks.on_tool_use(tool_use)

    def _on_tool_result(self, tool_result: ToolResult) -> None:
        self._emit(
            "tool",
            {
                "phase": "result",
                "name": tool_result.name,
                "tool_call_id": tool_result.tool_call_id,
                "is_error": tool_result.is_error,
            },
        )
        if self._callbacks.on_tool_result:
            self._callbacks.on_tool_result(tool_result)

    def _emit(self, stream: str, data: dict[str, object]) -> None:
        if self._run_id is not None:
            self._emitter.emit(self._run_id, stream, data)  # type: ignore[arg-type]
