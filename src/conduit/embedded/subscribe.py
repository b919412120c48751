"""Event bridge for an in-process agent session.

Subscribes to a live session's event stream and turns it into
user-facing output: partial replies with thinking segments removed,
debounced tool summaries, optional per-tool results, and telemetry.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any, Literal, Protocol

from conduit.embedded.media import split_media_from_output
from conduit.embedded.thinking import ThinkingStripper, strip_thinking_segments
from conduit.config.models import BridgeConfig
from conduit.constants import DEFAULT_TOOL_DEBOUNCE
from conduit.embedded.tool_meta import (
    ToolBatch,
    ToolDebouncer,
    format_tool_aggregate,
    format_tool_batch,
    infer_tool_meta_from_args,
)
from conduit.telemetry.emitter import AgentEventEmitter, default_emitter

logger = logging.getLogger(__name__)

#: Assistant message events that carry a text fragment.
_TEXT_EVENT_TYPES = frozenset({"text_delta", "text_start", "text_end"})

SessionListener = Callable[[Any], None]
VerboseLevel = Literal["off", "on"]


class AgentSession(Protocol):
    """The subscription surface the bridge needs from a session."""

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Register *listener*; returns a callable that unsubscribes it."""
        ...


@dataclass
class ReplyPayload:
    """Text and media delivered to a reply sink."""

    text: str | None = None
    media_urls: list[str] | None = None


@dataclass
class ToolMeta:
    """A finished tool call and its short description."""

    tool_name: str
    meta: str | None


ReplySink = Callable[[ReplyPayload], Awaitable[None] | None]
AgentEventSink = Callable[[str, dict[str, Any]], Awaitable[None] | None]


class EmbeddedSessionBridge:
    """Processes the events of one attached session.

    ``assistant_texts`` collects the cleaned text of every finished
    assistant message; ``tool_metas`` records every finished tool call.
    """

    def __init__(
        self,
        run_id: str,
        *,
        verbose_level: VerboseLevel = "off",
        should_emit_tool_result: Callable[[], bool] | None = None,
        on_tool_result: ReplySink | None = None,
        on_partial_reply: ReplySink | None = None,
        on_agent_event: AgentEventSink | None = None,
        emitter: AgentEventEmitter | None = None,
        tool_debounce: float = DEFAULT_TOOL_DEBOUNCE,
    ) -> None:
        self.run_id = run_id
        self._verbose_level = verbose_level
        self._should_emit_tool_result = should_emit_tool_result
        self._on_tool_result = on_tool_result
        self._on_partial_reply = on_partial_reply
        self._on_agent_event = on_agent_event
        self._emitter = emitter or default_emitter

        self.assistant_texts: list[str] = []
        self.tool_metas: list[ToolMeta] = []
        self._tool_meta_by_id: dict[str, str | None] = {}

        # Rolling state of the assistant message being streamed.
        self._delta_buffer = ""
        self._visible_text = ""
        self._stripper = ThinkingStripper()
        self._last_streamed: str | None = None

        self._debouncer = ToolDebouncer(self._flush_tool_batch, delay=tool_debounce)
        self._deliveries: set[asyncio.Future[Any]] = set()
        self._unsubscribe: Callable[[], None] | None = None

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def attach(self, session: AgentSession) -> None:
        """Start receiving events from *session*."""
        if self._unsubscribe is not None:
            msg = f"Bridge for run '{self.run_id}' is already attached"
            raise RuntimeError(msg)
        self._unsubscribe = session.subscribe(self.handle_event)

    def detach(self) -> None:
        """Unsubscribe and deliver any pending tool summary.  Idempotent."""
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is not None:
            unsubscribe()
        self._debouncer.flush()

    def flush(self) -> None:
        """Deliver pending tool summaries now."""
        self._debouncer.flush()

    async def drain(self) -> None:
        """Wait for asynchronous sink deliveries still in flight."""
        while self._deliveries:
            await asyncio.gather(*list(self._deliveries), return_exceptions=True)

    @property
    def buffered_text(self) -> str:
        """Raw text received so far for the message being streamed."""
        return self._delta_buffer

    # ------------------------------------------------------------------ #
    # Event dispatch
    # ------------------------------------------------------------------ #

    def handle_event(self, event: Any) -> None:
        """Dispatch one session event by its ``type``."""
        event_type = _field(event, "type")

        if event_type == "tool_execution_start":
            self._handle_tool_start(event)
        elif event_type == "tool_execution_end":
            self._handle_tool_end(event)
        elif event_type == "message_update":
            self._handle_message_update(event)
        elif event_type == "message_end":
            self._handle_message_end(event)
        elif event_type == "agent_end":
            self._debouncer.flush()

    def _handle_tool_start(self, event: Any) -> None:
        tool_name = _str_field(event, "toolName")
        tool_call_id = _str_field(event, "toolCallId")
        args = _field(event, "args")
        meta = infer_tool_meta_from_args(tool_name, args)
        self._tool_meta_by_id[tool_call_id] = meta

        self._emitter.emit(
            self.run_id,
            "tool",
            {
                "phase": "start",
                "name": tool_name,
                "tool_call_id": tool_call_id,
                "args": args if isinstance(args, dict) else {},
            },
        )
        if self._on_agent_event:
            self._deliver(
                self._on_agent_event,
                "tool",
                {"phase": "start", "name": tool_name, "tool_call_id": tool_call_id},
            )

    def _handle_tool_end(self, event: Any) -> None:
        tool_name = _str_field(event, "toolName")
        tool_call_id = _str_field(event, "toolCallId")
        is_error = bool(_field(event, "isError"))
        meta = self._tool_meta_by_id.get(tool_call_id)
        self.tool_metas.append(ToolMeta(tool_name=tool_name, meta=meta))
        self._debouncer.push(tool_name, meta)

        data = {
            "phase": "result",
            "name": tool_name,
            "tool_call_id": tool_call_id,
            "meta": meta,
            "is_error": is_error,
        }
        self._emitter.emit(self.run_id, "tool", data)
        if self._on_agent_event:
            self._deliver(self._on_agent_event, "tool", dict(data))

        if self._on_tool_result and self._tool_results_enabled():
            aggregate = format_tool_aggregate(tool_name, [meta] if meta else None)
            text, media_urls = split_media_from_output(aggregate)
            if text or media_urls:
                payload = ReplyPayload(text=text, media_urls=media_urls or None)
                try:
                    self._deliver(self._on_tool_result, payload, swallow=True)
                except Exception as exc:
                    logger.debug("%s: tool result delivery failed: %s", self.run_id, exc)

    def _handle_message_update(self, event: Any) -> None:
        if _field(_field(event, "message"), "role") != "assistant":
            return
        assistant_event = _field(event, "assistantMessageEvent")
        if _field(assistant_event, "type") not in _TEXT_EVENT_TYPES:
            return

        chunk = _field(assistant_event, "delta")
        if not isinstance(chunk, str):
            chunk = _field(assistant_event, "content")
        if not isinstance(chunk, str) or not chunk:
            return

        self._delta_buffer += chunk
        self._visible_text += self._stripper.feed(chunk)
        cleaned = (self._visible_text + self._stripper.pending).strip()
        if not cleaned or cleaned == self._last_streamed:
            return
        self._last_streamed = cleaned

        text, media_urls = split_media_from_output(cleaned)
        data = {"text": text, "media_urls": media_urls or None}
        self._emitter.emit(self.run_id, "assistant", data)
        if self._on_agent_event:
            self._deliver(self._on_agent_event, "assistant", dict(data))
        if self._on_partial_reply:
            self._deliver(
                self._on_partial_reply,
                ReplyPayload(text=text, media_urls=media_urls or None),
            )

    def _handle_message_end(self, event: Any) -> None:
        message = _field(event, "message")
        if _field(message, "role") != "assistant":
            return
        text = strip_thinking_segments(extract_assistant_text(message))
        if text:
            self.assistant_texts.append(text)
        self._delta_buffer = ""
        self._visible_text = ""
        self._stripper.reset()

    # ------------------------------------------------------------------ #
    # Delivery
    # ------------------------------------------------------------------ #

    def _flush_tool_batch(self, batch: ToolBatch) -> None:
        if not self._on_partial_reply:
            return
        text, media_urls = split_media_from_output(format_tool_batch(batch))
        self._deliver(
            self._on_partial_reply,
            ReplyPayload(text=text, media_urls=media_urls or None),
        )

    def _tool_results_enabled(self) -> bool:
        if self._should_emit_tool_result is not None:
            return bool(self._should_emit_tool_result())
        return self._verbose_level == "on"

    def _deliver(
        self,
        sink: Callable[..., Any],
        *args: Any,
        swallow: bool = False,
    ) -> None:
        """Call *sink*; schedule its result if it returned an awaitable."""
        result = sink(*args)
        if not inspect.isawaitable(result):
            return
        future = asyncio.ensure_future(result)
        self._deliveries.add(future)
        future.add_done_callback(
            lambda f: self._delivery_done(f, swallow=swallow)
        )

    def _delivery_done(self, future: asyncio.Future[Any], *, swallow: bool) -> None:
        self._deliveries.discard(future)
        if future.cancelled():
            return
        exc = future.exception()
        if exc is None:
            return
        if swallow:
            logger.debug("%s: tool result delivery failed: %s", self.run_id, exc)
        else:
            logger.warning("%s: reply delivery failed: %s", self.run_id, exc)


def subscribe_embedded_session(
    session: AgentSession,
    run_id: str,
    *,
    config: BridgeConfig | None = None,
    verbose_level: VerboseLevel | None = None,
    should_emit_tool_result: Callable[[], bool] | None = None,
    on_tool_result: ReplySink | None = None,
    on_partial_reply: ReplySink | None = None,
    on_agent_event: AgentEventSink | None = None,
    emitter: AgentEventEmitter | None = None,
    tool_debounce: float | None = None,
) -> EmbeddedSessionBridge:
    """Attach a new ``EmbeddedSessionBridge`` to *session* and return it.

    ``verbose_level`` and ``tool_debounce`` default to the values in
    *config* (the ``bridge`` section of conduit.yaml) when given, and to
    the built-in defaults otherwise.  Explicit arguments win.
    """
    config = config or BridgeConfig()
    bridge = EmbeddedSessionBridge(
        run_id,
        verbose_level=verbose_level or config.verbose,
        should_emit_tool_result=should_emit_tool_result,
        on_tool_result=on_tool_result,
        on_partial_reply=on_partial_reply,
        on_agent_event=on_agent_event,
        emitter=emitter,
        tool_debounce=config.tool_debounce if tool_debounce is None else tool_debounce,
    )
    bridge.attach(session)
    return bridge


def extract_assistant_text(message: Any) -> str:
    """Concatenate the text blocks of an assistant message."""
    content = _field(message, "content")
    if isinstance(content, str):
        return content.strip()
    if not isinstance(content, list):
        return ""
    parts: list[str] = []
    for block in content:
        text = _field(block, "text")
        if _field(block, "type") == "text" and isinstance(text, str):
            parts.append(text)
    return "".join(parts).strip()


def _field(obj: Any, name: str) -> Any:
    """Read *name* from a mapping or an attribute-style event object."""
    if obj is None:
        return None
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)


def _str_field(obj: Any, name: str) -> str:
    value = _field(obj, name)
    return "" if value is None else str(value)
