"""In-process agent sessions — event bridge and output shaping."""

from conduit.embedded.media import split_media_from_output
from conduit.embedded.subscribe import (
    AgentSession,
    EmbeddedSessionBridge,
    ReplyPayload,
    ToolMeta,
    extract_assistant_text,
    subscribe_embedded_session,
)
from conduit.embedded.thinking import (
    ThinkingStripper,
    ThinkingStripState,
    strip_thinking_segments,
)
from conduit.embedded.tool_meta import (
    ToolDebouncer,
    format_tool_aggregate,
    format_tool_batch,
    infer_tool_meta_from_args,
)

__all__ = [
    "AgentSession",
    "EmbeddedSessionBridge",
    "ReplyPayload",
    "ThinkingStripState",
    "ThinkingStripper",
    "ToolDebouncer",
    "ToolMeta",
    "extract_assistant_text",
    "format_tool_aggregate",
    "format_tool_batch",
    "infer_tool_meta_from_args",
    "split_media_from_output",
    "strip_thinking_segments",
    "subscribe_embedded_session",
]
