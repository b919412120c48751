"""Tests for tool summaries, the tool debouncer and media extraction."""

from __future__ import annotations

import asyncio
import os

import pytest

from conduit.embedded.media import split_media_from_output
from conduit.embedded.tool_meta import (
    ToolBatch,
    ToolDebouncer,
    format_tool_aggregate,
    format_tool_batch,
    infer_tool_meta_from_args,
    shorten_home,
)

# ------------------------------------------------------------------ #
# Tool meta inference
# ------------------------------------------------------------------ #


class TestInferToolMeta:
    def test_command_first_line(self) -> None:
        meta = infer_tool_meta_from_args("bash", {"command": "ls -la\necho done"})
        assert meta == "ls -la"

    def test_long_command_truncated(self) -> None:
        meta = infer_tool_meta_from_args("bash", {"command": "x" * 200})
        assert meta is not None
        assert len(meta) == 80
        assert meta.endswith("…")

    def test_path(self) -> None:
        assert infer_tool_meta_from_args("write", {"path": "/tmp/a.txt"}) == "/tmp/a.txt"

    def test_read_with_offset(self) -> None:
        meta = infer_tool_meta_from_args("read", {"file_path": "/tmp/a.txt", "offset": 40})
        assert meta == "/tmp/a.txt:40"

    def test_offset_ignored_for_other_tools(self) -> None:
        meta = infer_tool_meta_from_args("edit", {"path": "/tmp/a.txt", "offset": 40})
        assert meta == "/tmp/a.txt"

    def test_query_in_path(self) -> None:
        meta = infer_tool_meta_from_args("grep", {"pattern": "TODO", "path": "/src"})
        assert meta == "TODO in /src"

    def test_query_only(self) -> None:
        assert infer_tool_meta_from_args("web", {"url": "https://x.dev"}) == "https://x.dev"

    def test_nothing_recognized(self) -> None:
        assert infer_tool_meta_from_args("noop", {"flag": True}) is None
        assert infer_tool_meta_from_args("noop", None) is None
        assert infer_tool_meta_from_args("bash", {"command": "   "}) is None

    def test_home_shortened(self) -> None:
        home = os.path.expanduser("~")
        path = os.path.join(home, "notes.md")
        assert infer_tool_meta_from_args("write", {"path": path}) == "~" + os.sep + "notes.md"

    def test_shorten_home_leaves_lookalike_prefix(self) -> None:
        home = os.path.expanduser("~")
        assert shorten_home(home + "other") == home + "other"
        assert shorten_home(home) == "~"


class TestFormatting:
    def test_aggregate_with_metas(self) -> None:
        assert format_tool_aggregate("read", ["a", "b"]) == "read: a, b"

    def test_aggregate_without_metas(self) -> None:
        assert format_tool_aggregate("read") == "read"
        assert format_tool_aggregate("read", ["", ""]) == "read"

    def test_aggregate_empty_name(self) -> None:
        assert format_tool_aggregate("", ["x"]) == "tool: x"

    def test_batch_groups_consecutive_names(self) -> None:
        batch: ToolBatch = [
            ("read", "/a"),
            ("read", "/b"),
            ("bash", "make"),
            ("read", None),
        ]
        assert format_tool_batch(batch) == "read: /a, /b\nbash: make\nread"

    def test_empty_batch(self) -> None:
        assert format_tool_batch([]) == ""


# ------------------------------------------------------------------ #
# Debouncer
# ------------------------------------------------------------------ #


class TestToolDebouncer:
    async def test_coalesces_rapid_pushes(self) -> None:
        batches: list[ToolBatch] = []
        debouncer = ToolDebouncer(batches.append, delay=0.05)
        debouncer.push("read", "/a")
        debouncer.push("read", "/b")
        assert batches == []
        assert debouncer.timer_active
        await asyncio.sleep(0.15)
        assert batches == [[("read", "/a"), ("read", "/b")]]
        assert debouncer.pending == []
        assert not debouncer.timer_active

    async def test_push_restarts_timer(self) -> None:
        batches: list[ToolBatch] = []
        debouncer = ToolDebouncer(batches.append, delay=0.1)
        debouncer.push("a", None)
        await asyncio.sleep(0.06)
        debouncer.push("b", None)
        await asyncio.sleep(0.06)
        assert batches == []
        await asyncio.sleep(0.1)
        assert batches == [[("a", None), ("b", None)]]

    async def test_explicit_flush(self) -> None:
        batches: list[ToolBatch] = []
        debouncer = ToolDebouncer(batches.append, delay=10)
        debouncer.push("a", "1")
        debouncer.flush()
        assert batches == [[("a", "1")]]
        assert not debouncer.timer_active

    def test_flush_with_nothing_pending_is_noop(self) -> None:
        batches: list[ToolBatch] = []
        ToolDebouncer(batches.append).flush()
        assert batches == []

    def test_zero_delay_delivers_immediately(self) -> None:
        batches: list[ToolBatch] = []
        debouncer = ToolDebouncer(batches.append, delay=0)
        debouncer.push("a", None)
        debouncer.push("b", None)
        assert batches == [[("a", None)], [("b", None)]]

    def test_push_with_delay_needs_running_loop(self) -> None:
        debouncer = ToolDebouncer(lambda batch: None, delay=0.5)
        with pytest.raises(RuntimeError):
            debouncer.push("a", None)


# ------------------------------------------------------------------ #
# Media extraction
# ------------------------------------------------------------------ #


class TestSplitMedia:
    def test_no_media(self) -> None:
        assert split_media_from_output("just text\n") == ("just text\n", [])

    def test_extracts_url_line(self) -> None:
        text, media = split_media_from_output("Here it is\nMEDIA: https://x.dev/a.png")
        assert text == "Here it is"
        assert media == ["https://x.dev/a.png"]

    def test_extracts_wrapped_paths_in_order(self) -> None:
        text, media = split_media_from_output(
            "MEDIA: `./out/chart.svg`\nbody\n  MEDIA:\"/tmp/b.wav\""
        )
        assert text == "body"
        assert media == ["./out/chart.svg", "/tmp/b.wav"]

    def test_non_media_target_left_in_text(self) -> None:
        original = "MEDIA: not a path\nMEDIA: relative.png"
        assert split_media_from_output(original) == (original, [])

    def test_empty(self) -> None:
        assert split_media_from_output("") == ("", [])
