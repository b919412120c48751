"""Extraction of ``MEDIA:`` attachment references from agent output."""

from __future__ import annotations

import re

#: A line whose first token is ``MEDIA:`` followed by the reference.
_MEDIA_LINE_RE = re.compile(r"^\s*MEDIA:\s*(?P<target>.+?)\s*$")

#: Wrapping characters agents put around references.
_WRAPPERS = "`\"'<>"


def split_media_from_output(text: str) -> tuple[str, list[str]]:
    """Split *text* into display text and media references.

    ``MEDIA:`` lines pointing at a URL or a file path are removed from the
    text and their targets returned in order of appearance.  Lines whose
    target is neither are left in place.
    """
    if not text or "MEDIA:" not in text:
        return text, []

    kept: list[str] = []
    media: list[str] = []
    for line in text.split("\n"):
        match = _MEDIA_LINE_RE.match(line)
        target = match.group("target").strip(_WRAPPERS) if match else ""
        if target and _is_media_target(target):
            media.append(target)
        else:
            kept.append(line)

    if not media:
        return text, []
    return "\n".join(kept).strip(), media


def _is_media_target(target: str) -> bool:
    if " " in target:
        return False
    return target.startswith(("http://", "https://", "/", "./", "../", "~/"))
