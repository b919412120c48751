"""Accumulator for the agent CLI ``stream-json`` line protocol."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from conduit.constants import UNKNOWN_TOOL_NAME

logger = logging.getLogger(__name__)


@dataclass
class TokenUsage:
    """Token counts reported by the final ``result`` event."""

    input: int | None = None
    output: int | None = None


@dataclass
class CliOutput:
    """Aggregate of one stream-json run."""

    text: str = ""
    session_id: str | None = None
    usage: TokenUsage | None = None


@dataclass(frozen=True)
class ToolUse:
    """A tool invocation announced by the CLI."""

    name: str
    tool_call_id: str
    args: Any


@dataclass(frozen=True)
class ToolResult:
    """The result of a tool invocation, with its name resolved."""

    name: str
    tool_call_id: str
    is_error: bool
    result: str


@dataclass
class StreamJsonCallbacks:
    """Optional observers notified while lines are consumed."""

    on_assistant_text: Callable[[str], None] | None = None
    on_tool_use: Callable[[ToolUse], None] | None = None
    on_tool_result: Callable[[ToolResult], None] | None = None


class StreamJsonAccumulator:
    """Consumes stream-json lines one at a time and builds a ``CliOutput``.

    Each line is a JSON object with a ``type`` field:

    * ``system``      — session metadata (``session_id``).
    * ``assistant``   — an API message; ``text`` blocks inside
      ``message.content[]`` are appended to the running text.
    * ``tool_use``    — a tool invocation; registers the id -> name mapping.
    * ``tool_result`` — a tool result, reported with the registered name.
    * ``result``      — final text, session id and token usage.  A non-empty
      final text replaces whatever was accumulated from ``assistant``.

    Lines that are not JSON objects, and unknown types, are ignored.
    """

    def __init__(self, callbacks: StreamJsonCallbacks | None = None) -> None:
        self._callbacks = callbacks or StreamJsonCallbacks()
        self._session_id: str | None = None
        self._text = ""
        self._usage: TokenUsage | None = None
        self._tool_names: dict[str, str] = {}

    def handle_line(self, line: str) -> None:
        """Decode and dispatch one protocol line."""
        try:
            event = json.loads(line)
        except (ValueError, RecursionError, TypeError):
            # Includes JSONDecodeError and over-deep nesting.
            logger.debug("skipping non-JSON line: %s", line[:200])
            return
        if not isinstance(event, dict):
            return

        event_type = event.get("type")

        if event_type == "system":
            session_id = event.get("session_id")
            if isinstance(session_id, str):
                self._session_id = session_id

        elif event_type == "assistant":
            self._handle_assistant(event)

        elif event_type == "tool_use":
            self._handle_tool_use(event)

        elif event_type == "tool_result":
            self._handle_tool_result(event)

        elif event_type == "result":
            self._handle_result(event)

    def get_tool_name(self, tool_call_id: str) -> str:
        """Return the tool name registered for *tool_call_id*, or ``"unknown"``."""
        return self._tool_names.get(tool_call_id, UNKNOWN_TOOL_NAME)

    def finalize(self) -> CliOutput:
        """Snapshot of the accumulated output.  Safe to call repeatedly."""
        usage = None
        if self._usage is not None:
            usage = TokenUsage(input=self._usage.input, output=self._usage.output)
        return CliOutput(text=self._text, session_id=self._session_id, usage=usage)

    # ------------------------------------------------------------------ #
    # Event handlers
    # ------------------------------------------------------------------ #

    def _handle_assistant(self, event: dict[str, Any]) -> None:
        message = event.get("message")
        if not isinstance(message, dict):
            return
        content_blocks = message.get("content")
        if not isinstance(content_blocks, list):
            return
        for block in content_blocks:
            if not isinstance(block, dict) or block.get("type") != "text":
                continue
            text = block.get("text")
            if isinstance(text, str) and text:
                self._text += text
                if self._callbacks.on_assistant_text:
                    self._callbacks.on_assistant_text(text)

    def _handle_tool_use(self, event: dict[str, Any]) -> None:
        tool_call_id = _call_id(event)
        name = event.get("name")
        if not isinstance(name, str):
            name = UNKNOWN_TOOL_NAME
        args = _first_present(event, "input", "args")
        if args is None:
            args = {}
        if tool_call_id:
            self._tool_names[tool_call_id] = name
        if self._callbacks.on_tool_use:
            self._callbacks.on_tool_use(
                ToolUse(name=name, tool_call_id=tool_call_id, args=args)
            )

    def _handle_tool_result(self, event: dict[str, Any]) -> None:
        tool_call_id = _call_id(event)
        if self._callbacks.on_tool_result:
            self._callbacks.on_tool_result(
                ToolResult(
                    name=self.get_tool_name(tool_call_id),
                    tool_call_id=tool_call_id,
                    is_error=event.get("is_error") is True,
                    result=_result_text(event),
                )
            )

    def _handle_result(self, event: dict[str, Any]) -> None:
        result = event.get("result")
        if isinstance(result, str) and result:
            self._text = result
        session_id = event.get("session_id")
        if isinstance(session_id, str):
            self._session_id = session_id
        raw = event.get("usage")
        if isinstance(raw, dict):
            self._usage = TokenUsage(
                input=_first_present(raw, "input_tokens", "input"),
                output=_first_present(raw, "output_tokens", "output"),
            )


def _call_id(event: dict[str, Any]) -> str:
    """Tool call id from ``tool_use_id`` (or ``id``); empty when absent."""
    value = _first_present(event, "tool_use_id", "id")
    return value if isinstance(value, str) else ""


def _first_present(data: dict[str, Any], *keys: str) -> Any:
    """Value of the first key in *keys* that is present and not null."""
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return None


def _result_text(event: dict[str, Any]) -> str:
    """Tool result text.

    Plain-string ``content`` wins, then plain-string ``output``.  Structured
    payloads are serialized to compact JSON.  No payload at all yields an
    empty string.
    """
    content = event.get("content")
    if isinstance(content, str):
        return content
    output = event.get("output")
    if isinstance(output, str):
        return output
    payload = content if content is not None else output
    if payload is None:
        return ""
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
