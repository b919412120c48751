"""Shared constants and type aliases for the Conduit runtime."""

from __future__ import annotations

from collections.abc import Callable

#: Tool name reported for tool-call ids that were never registered.
UNKNOWN_TOOL_NAME = "unknown"

#: Default quiet period (seconds) before pending tool completions are flushed.
DEFAULT_TOOL_DEBOUNCE = 0.5

#: Callback type for per-line stdout delivery.
LineCallback = Callable[[str], None]
