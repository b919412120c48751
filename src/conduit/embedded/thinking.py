"""Removal of ``<thinking>`` segments from assistant text.

Models sometimes emit their reasoning inline, wrapped in ``<think>`` or
``<thinking>`` tags.  That text must never reach a user-facing channel.
Two entry points:

* ``strip_thinking_segments`` works on a complete string.
* ``ThinkingStripper`` works on a stream of chunks, carrying its state
  (inside/outside a segment, plus any half-received tag) between calls so
  a tag split across two chunks is still recognized.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

#: Opening or closing thinking tag; whitespace-tolerant, case-insensitive.
THINKING_TAG_RE = re.compile(r"<\s*/?\s*think(?:ing)?\s*>", re.IGNORECASE)

#: A suffix that could still grow into a thinking tag.
_PARTIAL_TAG_RE = re.compile(
    r"<\s*/?\s*(?:t(?:h(?:i(?:n(?:k(?:i(?:n(?:g)?)?)?)?)?)?)?)?\s*\Z",
    re.IGNORECASE,
)


def strip_thinking_segments(text: str) -> str:
    """Return *text* with every thinking segment removed.

    An opening tag without a closing tag hides everything after it.
    Text without any tag is returned unchanged.
    """
    if not text or not THINKING_TAG_RE.search(text):
        return text

    parts: list[str] = []
    last = 0
    in_thinking = False
    for match in THINKING_TAG_RE.finditer(text):
        if not in_thinking:
            parts.append(text[last : match.start()])
        in_thinking = "/" not in match.group(0)
        last = match.end()
    if not in_thinking:
        parts.append(text[last:])
    return "".join(parts)


@dataclass
class ThinkingStripState:
    """State carried between chunks of one message."""

    in_thinking: bool = False
    tail: str = ""


class ThinkingStripper:
    """Incremental thinking-segment filter.

    ``feed()`` returns the newly visible text for each chunk.  A trailing
    fragment such as ``"<thi"`` is held back until the next chunk shows
    whether it is a tag; ``finish()`` releases it if the message ends first.
    """

    def __init__(self) -> None:
        self.state = ThinkingStripState()

    def feed(self, chunk: str) -> str:
        state = self.state
        text = state.tail + chunk
        state.tail = ""
        if not state.in_thinking and "<" not in text:
            return text

        visible: list[str] = []
        last = 0
        for match in THINKING_TAG_RE.finditer(text):
            if not state.in_thinking:
                visible.append(text[last : match.start()])
            state.in_thinking = "/" not in match.group(0)
            last = match.end()

        rest = text[last:]
        cut = rest.rfind("<")
        if cut != -1 and _PARTIAL_TAG_RE.match(rest, cut):
            state.tail = rest[cut:]
            rest = rest[:cut]
        if not state.in_thinking:
            visible.append(rest)
        return "".join(visible)

    @property
    def pending(self) -> str:
        """Held-back fragment as it would read if no tag follows."""
        return "" if self.state.in_thinking else self.state.tail

    def finish(self) -> str:
        """Release a held-back fragment that never became a tag."""
        tail = self.state.tail
        self.state.tail = ""
        return "" if self.state.in_thinking else tail

    def reset(self) -> None:
        self.state = ThinkingStripState()
