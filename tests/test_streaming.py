"""Tests for the streaming subprocess executor."""

from __future__ import annotations

import asyncio
import os
import sys
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock, patch

import pytest

from conduit.process.models import InvocationDescriptor, ProcessOutcome, SpawnError
from conduit.process.streaming import _pump_lines, _StreamingRun, run_command_streaming

# ------------------------------------------------------------------ #
# Helpers
# ------------------------------------------------------------------ #


def _python(script: str) -> tuple[str, ...]:
    return (sys.executable, "-c", script)


async def _run(script: str, **kwargs: Any) -> tuple[list[str], ProcessOutcome]:
    """Run *script* with the current interpreter and collect stdout lines."""
    lines: list[str] = []
    kwargs.setdefault("timeout", 10.0)
    invocation = InvocationDescriptor(argv=_python(script), **kwargs)
    outcome = await run_command_streaming(invocation, lines.append)
    return lines, outcome


class FakeStream:
    """Stream stand-in that returns pre-split chunks from ``read()``."""

    def __init__(self, chunks: list[bytes]) -> None:
        self._chunks = list(chunks)

    async def read(self, n: int = -1) -> bytes:
        if not self._chunks:
            return b""
        return self._chunks.pop(0)


async def _pump(chunks: list[bytes]) -> list[str]:
    lines: list[str] = []
    await _pump_lines(FakeStream(chunks), lines.append)  # type: ignore[arg-type]
    return lines


# ------------------------------------------------------------------ #
# Invocation descriptor
# ------------------------------------------------------------------ #


class TestInvocationDescriptor:
    def test_rejects_empty_argv(self) -> None:
        with pytest.raises(ValueError, match="argv"):
            InvocationDescriptor(argv=(), timeout=1.0)

    def test_rejects_non_positive_timeout(self) -> None:
        with pytest.raises(ValueError, match="timeout"):
            InvocationDescriptor(argv=("true",), timeout=0)

    def test_copies_caller_containers(self) -> None:
        env = {"A": "1"}
        argv = ["echo", "hi"]
        invocation = InvocationDescriptor(argv=argv, timeout=1.0, env=env)  # type: ignore[arg-type]
        env["A"] = "2"
        argv.append("extra")
        assert invocation.env["A"] == "1"
        assert invocation.argv == ("echo", "hi")
        assert invocation.command == "echo"
        with pytest.raises(TypeError):
            invocation.env["B"] = "x"  # type: ignore[index]


# ------------------------------------------------------------------ #
# Line splitting
# ------------------------------------------------------------------ #


class TestLineSplitting:
    """Chunk boundaries never change the delivered lines."""

    async def test_lines_split_across_chunks(self) -> None:
        assert await _pump([b"hel", b"lo\nwor", b"ld\n"]) == ["hello", "world"]

    async def test_many_lines_in_one_chunk(self) -> None:
        assert await _pump([b"a\nb\nc\n"]) == ["a", "b", "c"]

    async def test_trailing_partial_line_flushed_last(self) -> None:
        assert await _pump([b"one\ntw", b"o"]) == ["one", "two"]

    async def test_every_split_point_gives_same_lines(self) -> None:
        data = b'{"type":"system"}\nplain text\n{"type":"result"}\ntail'
        expected = ['{"type":"system"}', "plain text", '{"type":"result"}', "tail"]
        for i in range(len(data) + 1):
            for j in range(i, len(data) + 1):
                chunks = [c for c in (data[:i], data[i:j], data[j:]) if c]
                assert await _pump(chunks) == expected, (i, j)

    async def test_empty_lines_are_skipped(self) -> None:
        assert await _pump([b"a\n\n\nb\n"]) == ["a", "b"]

    async def test_multibyte_character_split_across_chunks(self) -> None:
        encoded = "héllo\n".encode()
        assert await _pump([encoded[:2], encoded[2:]]) == ["héllo"]


# ------------------------------------------------------------------ #
# Real subprocesses
# ------------------------------------------------------------------ #


class TestRunCommandStreaming:
    async def test_streams_stdout_lines(self) -> None:
        lines, outcome = await _run("print('line1'); print('line2'); print('line3')")
        assert outcome.exit_code == 0
        assert outcome.was_killed is False
        assert outcome.signal is None
        assert lines == ["line1", "line2", "line3"]

    async def test_partial_writes_are_reassembled(self) -> None:
        script = (
            "import sys, time\n"
            "sys.stdout.write('hel'); sys.stdout.flush(); time.sleep(0.05)\n"
            "sys.stdout.write('lo\\nwor'); sys.stdout.flush(); time.sleep(0.05)\n"
            "sys.stdout.write('ld\\n'); sys.stdout.flush()\n"
        )
        lines, outcome = await _run(script)
        assert outcome.exit_code == 0
        assert lines == ["hello", "world"]

    async def test_flushes_line_without_newline(self) -> None:
        lines, outcome = await _run("import sys; sys.stdout.write('no-newline')")
        assert outcome.exit_code == 0
        assert lines == ["no-newline"]

    async def test_accumulates_stderr(self) -> None:
        script = (
            "import sys\n"
            "print('err1', file=sys.stderr)\n"
            "print('err2', file=sys.stderr)\n"
            "print('out')\n"
        )
        lines, outcome = await _run(script)
        assert lines == ["out"]
        assert "err1" in outcome.stderr
        assert "err2" in outcome.stderr

    async def test_reports_non_zero_exit(self) -> None:
        lines, outcome = await _run("import sys; print('before', flush=True); sys.exit(42)")
        assert outcome.exit_code == 42
        assert outcome.was_killed is False
        assert outcome.ok is False
        assert "before" in lines

    async def test_kills_process_on_timeout(self) -> None:
        script = "import time; print('started', flush=True); time.sleep(60)"
        lines, outcome = await asyncio.wait_for(_run(script, timeout=0.5), timeout=10)
        assert outcome.was_killed is True
        assert outcome.exit_code is None
        assert outcome.signal == "SIGKILL"
        assert "started" in lines

    async def test_reports_terminating_signal(self) -> None:
        script = "import os, signal; os.kill(os.getpid(), signal.SIGTERM)"
        _, outcome = await _run(script)
        assert outcome.exit_code is None
        assert outcome.signal == "SIGTERM"
        assert outcome.was_killed is False

    async def test_passes_stdin_input(self) -> None:
        script = "import sys; print('GOT:' + sys.stdin.read().strip())"
        lines, outcome = await _run(script, input="hello stdin")
        assert outcome.exit_code == 0
        assert lines == ["GOT:hello stdin"]

    async def test_unread_stdin_does_not_fail(self) -> None:
        lines, outcome = await _run("print('ignored input')", input="x" * 200_000)
        assert outcome.exit_code == 0
        assert lines == ["ignored input"]

    async def test_stdout_is_always_empty(self) -> None:
        lines, outcome = await _run("print('data')")
        assert outcome.stdout == ""
        assert lines == ["data"]

    async def test_env_overrides_are_merged(self) -> None:
        script = "import os; print(os.environ['CONDUIT_TEST_VAR']); print('PATH' in os.environ)"
        lines, _ = await _run(script, env={"CONDUIT_TEST_VAR": "hello"})
        assert lines == ["hello", "True"]

    async def test_runs_in_working_directory(self, tmp_path: Path) -> None:
        lines, _ = await _run("import os; print(os.getcwd())", cwd=str(tmp_path))
        assert Path(lines[0]).resolve() == tmp_path.resolve()

    async def test_spawn_error_for_missing_executable(self) -> None:
        invocation = InvocationDescriptor(
            argv=("/nonexistent/conduit-missing-binary",), timeout=5.0
        )
        with pytest.raises(SpawnError) as excinfo:
            await run_command_streaming(invocation, lambda line: None)
        assert isinstance(excinfo.value.__cause__, FileNotFoundError)
        assert excinfo.value.command == "/nonexistent/conduit-missing-binary"

    async def test_spawn_error_for_missing_cwd(self, tmp_path: Path) -> None:
        invocation = InvocationDescriptor(
            argv=_python("print('x')"), timeout=5.0, cwd=str(tmp_path / "missing")
        )
        with pytest.raises(SpawnError):
            await run_command_streaming(invocation, lambda line: None)

    async def test_callback_error_propagates_and_kills_child(self) -> None:
        script = "import time; print('first', flush=True); time.sleep(60)"
        invocation = InvocationDescriptor(argv=_python(script), timeout=30.0)

        def _explode(line: str) -> None:
            raise RuntimeError(f"bad line {line}")

        with pytest.raises(RuntimeError, match="bad line first"):
            await asyncio.wait_for(run_command_streaming(invocation, _explode), timeout=10)

    async def test_lines_delivered_before_outcome(self) -> None:
        seen_at_return: list[int] = []
        lines: list[str] = []
        script = "for i in range(200): print(i)"
        invocation = InvocationDescriptor(argv=_python(script), timeout=10.0)
        await run_command_streaming(invocation, lines.append)
        seen_at_return.append(len(lines))
        assert seen_at_return == [200]
        assert lines == [str(i) for i in range(200)]

    async def test_timer_does_not_fire_after_exit(self) -> None:
        _, outcome = await _run("print('quick')", timeout=0.2)
        await asyncio.sleep(0.3)
        assert outcome.was_killed is False
        assert outcome.exit_code == 0


# ------------------------------------------------------------------ #
# Timeout handling
# ------------------------------------------------------------------ #


class TestTimeoutHandler:
    """The timer never kills a child that already terminated."""

    def _run(self, returncode: int | None = None) -> _StreamingRun:
        proc = MagicMock()
        proc.returncode = returncode
        proc.pid = 424242
        invocation = InvocationDescriptor(argv=("agent",), timeout=1.0)
        return _StreamingRun(proc, invocation)

    def test_kills_running_child(self) -> None:
        run = self._run()
        with patch.object(os, "waitid", return_value=None, create=True), patch(
            "conduit.process.streaming._force_kill"
        ) as force_kill:
            run._on_timeout()
        force_kill.assert_called_once()
        assert run._killed is True

    def test_skips_exited_but_unreaped_child(self) -> None:
        run = self._run()
        with patch.object(os, "waitid", return_value=MagicMock(), create=True), patch(
            "conduit.process.streaming._force_kill"
        ) as force_kill:
            run._on_timeout()
        force_kill.assert_not_called()
        assert run._killed is False

    def test_skips_child_reaped_elsewhere(self) -> None:
        run = self._run()
        with patch.object(
            os, "waitid", side_effect=ChildProcessError, create=True
        ), patch("conduit.process.streaming._force_kill") as force_kill:
            run._on_timeout()
        force_kill.assert_not_called()

    def test_skips_child_with_returncode(self) -> None:
        run = self._run(returncode=0)
        with patch("conduit.process.streaming._force_kill") as force_kill:
            run._on_timeout()
        force_kill.assert_not_called()
        assert run._killed is False


def test_environment_not_mutated() -> None:
    """Overrides apply to the child only."""
    assert "CONDUIT_TEST_VAR" not in os.environ
