"""Streaming executor — runs a command and delivers stdout line by line."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal

from conduit.constants import LineCallback
from conduit.process.models import InvocationDescriptor, ProcessOutcome, SpawnError

logger = logging.getLogger(__name__)

#: Bytes requested per stdout read.
_READ_CHUNK_BYTES = 65_536


async def run_command_streaming(
    invocation: InvocationDescriptor,
    on_stdout_line: LineCallback,
) -> ProcessOutcome:
    """Spawn *invocation* and stream its stdout to *on_stdout_line*.

    Every complete stdout line (newline stripped) is delivered in order
    before the outcome is returned; a trailing line without a newline is
    flushed once the stream closes.  Empty lines are skipped.  Stderr is
    collected whole.

    Ordinary process failures (non-zero exit, death by signal, timeout)
    are reported in the returned ``ProcessOutcome``.  Only a failure to
    launch the executable raises, as ``SpawnError``.
    """
    env = {**os.environ, **invocation.env}
    has_input = invocation.input is not None

    try:
        proc = await asyncio.create_subprocess_exec(
            *invocation.argv,
            stdin=asyncio.subprocess.PIPE if has_input else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=invocation.cwd,
            env=env,
            start_new_session=True,
        )
    except OSError as exc:
        logger.error("failed to spawn %s: %s", invocation.command, exc)
        raise SpawnError(invocation.command, exc) from exc

    return await _StreamingRun(proc, invocation).run(on_stdout_line)


class _StreamingRun:
    """Drives one spawned process to completion.

    Owns the timeout timer and the ``settled`` flag that keeps a late timer
    from killing a process that has already been reaped.
    """

    def __init__(
        self,
        proc: asyncio.subprocess.Process,
        invocation: InvocationDescriptor,
    ) -> None:
        self._proc = proc
        self._invocation = invocation
        self._killed = False
        self._settled = False

    async def run(self, on_stdout_line: LineCallback) -> ProcessOutcome:
        proc = self._proc
        loop = asyncio.get_running_loop()
        timer = loop.call_later(self._invocation.timeout, self._on_timeout)

        stderr_task = asyncio.create_task(_read_all(proc.stderr))
        stdin_task: asyncio.Task[None] | None = None
        if self._invocation.input is not None and proc.stdin is not None:
            stdin_task = asyncio.create_task(
                _write_input(proc.stdin, self._invocation.input)
            )

        try:
            if proc.stdout is not None:
                await _pump_lines(proc.stdout, on_stdout_line)
            if stdin_task is not None:
                await stdin_task
            stderr_bytes = await stderr_task
            returncode = await proc.wait()
        except BaseException:
            # Callback failure or cancellation: never leave the child behind.
            _force_kill(proc)
            for task in (stderr_task, stdin_task):
                if task is not None and not task.done():
                    task.cancel()
            with contextlib.suppress(Exception):
                await proc.wait()
            raise
        finally:
            self._settled = True
            timer.cancel()

        exit_code: int | None = returncode
        signal_name: str | None = None
        if returncode < 0:
            exit_code = None
            signal_name = _signal_name(-returncode)

        return ProcessOutcome(
            stderr=stderr_bytes.decode(errors="replace"),
            exit_code=exit_code,
            signal=signal_name,
            was_killed=self._killed,
        )

    def _on_timeout(self) -> None:
        if self._settled or _has_exited(self._proc):
            return
        logger.warning(
            "%s: timed out after %ss, killing pid %d",
            self._invocation.command,
            self._invocation.timeout,
            self._proc.pid,
        )
        self._killed = True
        _force_kill(self._proc)


async def _pump_lines(stream: asyncio.StreamReader, on_line: LineCallback) -> None:
    """Read *stream* to EOF, splitting on newlines across chunk boundaries."""
    pending: list[bytes] = []
    while True:
        chunk = await stream.read(_READ_CHUNK_BYTES)
        if not chunk:
            break
        parts = chunk.split(b"\n")
        if len(parts) == 1:
            pending.append(chunk)
            continue
        pending.append(parts[0])
        _deliver(b"".join(pending), on_line)
        for raw in parts[1:-1]:
            _deliver(raw, on_line)
        pending = [parts[-1]] if parts[-1] else []

    if pending:
        _deliver(b"".join(pending), on_line)


def _deliver(raw: bytes, on_line: LineCallback) -> None:
    line = raw.decode(errors="replace")
    if line:
        on_line(line)


async def _read_all(stream: asyncio.StreamReader | None) -> bytes:
    if stream is None:
        return b""
    return await stream.read()


async def _write_input(stdin: asyncio.StreamWriter, text: str) -> None:
    """Write *text* to the child's stdin and close it."""
    try:
        stdin.write(text.encode())
        await stdin.drain()
    except (BrokenPipeError, ConnectionResetError):
        # Child exited without reading its input.
        logger.debug("stdin closed before input was consumed")
    finally:
        stdin.close()


def _force_kill(proc: asyncio.subprocess.Process) -> None:
    """Send one SIGKILL to the child's process group (or the child itself)."""
    with contextlib.suppress(ProcessLookupError, PermissionError):
        if hasattr(os, "killpg"):
            os.killpg(proc.pid, signal.SIGKILL)
        else:
            proc.kill()


def _signal_name(signum: int) -> str:
    try:
        return signal.Signals(signum).name
    except ValueError:
        return f"SIG{signum}"


def _has_exited(proc: asyncio.subprocess.Process) -> bool:
    """True once the child has terminated, even if it is not reaped yet.

    ``returncode`` is only set after the event loop reaps the child.
    ``WNOWAIT`` peeks at a zombie without reaping it, leaving the exit
    status for the loop's child watcher.
    """
    if proc.returncode is not None:
        return True
    waitid = getattr(os, "waitid", None)
    if waitid is None:
        return False
    try:
        result = waitid(os.P_PID, proc.pid, os.WEXITED | os.WNOHANG | os.WNOWAIT)
    except ChildProcessError:
        # Already reaped by the child watcher.
        return True
    return result is not None
