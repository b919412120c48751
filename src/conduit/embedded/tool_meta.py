"""Tool call summaries and debounced aggregation of tool completions."""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from typing import Any

from conduit.constants import DEFAULT_TOOL_DEBOUNCE

logger = logging.getLogger(__name__)

#: Longest command / query preview kept in a tool meta string.
_MAX_META_CHARS = 80

_PATH_KEYS = ("path", "file_path", "filePath", "file", "notebook_path")
_COMMAND_KEYS = ("command", "cmd")
_QUERY_KEYS = ("pattern", "query", "url")

ToolBatch = list[tuple[str, str | None]]


def infer_tool_meta_from_args(tool_name: str, args: Any) -> str | None:
    """Short human-readable description of a tool call, or ``None``.

    Path arguments are shown relative to the home directory, commands and
    queries are reduced to their first line and truncated.
    """
    if not isinstance(args, dict):
        return None

    path = _first_str(args, _PATH_KEYS)
    command = _first_str(args, _COMMAND_KEYS)
    query = _first_str(args, _QUERY_KEYS)

    if command and command.strip():
        return _truncate(command.strip().splitlines()[0])
    if path and query:
        return f"{_truncate(query)} in {shorten_home(path)}"
    if path:
        offset = args.get("offset")
        if tool_name.lower() == "read" and isinstance(offset, int):
            return f"{shorten_home(path)}:{offset}"
        return shorten_home(path)
    if query:
        return _truncate(query)
    return None


def shorten_home(path: str) -> str:
    """Replace the user's home directory prefix with ``~``."""
    home = os.path.expanduser("~")
    if home and home != "~" and (path == home or path.startswith(home + os.sep)):
        return "~" + path[len(home) :]
    return path


def format_tool_aggregate(tool_name: str, metas: list[str] | None = None) -> str:
    """Format one tool and its metas as ``name: meta, meta``."""
    label = tool_name or "tool"
    cleaned = [meta for meta in metas or [] if meta]
    if not cleaned:
        return label
    return f"{label}: {', '.join(cleaned)}"


def format_tool_batch(batch: ToolBatch) -> str:
    """Format a batch, one line per run of consecutive same-named tools."""
    lines: list[str] = []
    current: str | None = None
    metas: list[str] = []
    for tool_name, meta in batch:
        if current is not None and tool_name != current:
            lines.append(format_tool_aggregate(current, metas))
            metas = []
        current = tool_name
        if meta:
            metas.append(meta)
    if current is not None:
        lines.append(format_tool_aggregate(current, metas))
    return "\n".join(lines)


class ToolDebouncer:
    """Coalesces rapid tool completions into one delivery.

    Every ``push()`` (re)starts a single timer; when it fires, or when
    ``flush()`` is called explicitly, the pending batch is handed to
    *on_flush* and the queue is cleared.  A delay of zero delivers on
    every push.
    """

    def __init__(
        self,
        on_flush: Callable[[ToolBatch], None],
        delay: float = DEFAULT_TOOL_DEBOUNCE,
    ) -> None:
        self._on_flush = on_flush
        self._delay = delay
        self._pending: ToolBatch = []
        self._timer: asyncio.TimerHandle | None = None

    @property
    def pending(self) -> ToolBatch:
        """Copy of the queued ``(tool_name, meta)`` pairs."""
        return list(self._pending)

    @property
    def timer_active(self) -> bool:
        return self._timer is not None

    def push(self, tool_name: str, meta: str | None) -> None:
        self._pending.append((tool_name, meta))
        if self._delay <= 0:
            self.flush()
            return
        if self._timer is not None:
            self._timer.cancel()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self._delay, self.flush)

    def flush(self) -> None:
        """Deliver the pending batch now, regardless of the timer."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if not self._pending:
            return
        batch = self._pending
        self._pending = []
        logger.debug("flushing %d tool completion(s)", len(batch))
        self._on_flush(batch)


def _first_str(args: dict[str, Any], keys: tuple[str, ...]) -> str | None:
    for key in keys:
        value = args.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def _truncate(text: str) -> str:
    if len(text) <= _MAX_META_CHARS:
        return text
    return text[: _MAX_META_CHARS - 1] + "…"
