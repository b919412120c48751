"""Agent CLI runner — stream-json parsing over an exclusive subprocess run."""

from conduit.cli_runner.runner import CliRunResult, run_stream_json_cli
from conduit.cli_runner.stream_json import (
    CliOutput,
    StreamJsonAccumulator,
    StreamJsonCallbacks,
    TokenUsage,
    ToolResult,
    ToolUse,
)

__all__ = [
    "CliOutput",
    "CliRunResult",
    "StreamJsonAccumulator",
    "StreamJsonCallbacks",
    "TokenUsage",
    "ToolResult",
    "ToolUse",
    "run_stream_json_cli",
]
