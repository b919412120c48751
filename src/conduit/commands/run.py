"""conduit run — run one stream-json agent CLI invocation."""

from __future__ import annotations

import asyncio
import logging
import uuid
from pathlib import Path

import click

from conduit.cli_runner.runner import CliRunResult, run_stream_json_cli
from conduit.cli_runner.stream_json import StreamJsonCallbacks, ToolResult, ToolUse
from conduit.config.models import ConduitConfig
from conduit.config.parser import ConfigError, load_config
from conduit.embedded.tool_meta import format_tool_aggregate, infer_tool_meta_from_args
from conduit.helpers import format_stderr_preview
from conduit.process.models import InvocationDescriptor, SpawnError
from conduit.telemetry.emitter import AgentEventEmitter
from conduit.telemetry.recorder import EventRecorder

#: Exit status used when the child was killed by the timeout (as timeout(1)).
TIMEOUT_EXIT_CODE = 124

#: Max characters of a tool result shown in progress output.
_RESULT_PREVIEW_LEN = 120


@click.command(context_settings={"ignore_unknown_options": True})
@click.option(
    "-f", "--file", "config_file", type=click.Path(), help="Config file path."
)
@click.option(
    "-k",
    "--key",
    "resource_key",
    default=None,
    help="Resource key runs are serialized on (defaults to the working directory).",
)
@click.option(
    "--timeout",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Seconds before the command is killed.",
)
@click.option(
    "--cwd",
    type=click.Path(file_okay=False),
    default=None,
    help="Working directory for the command.",
)
@click.option("--input", "input_text", default=None, help="Text written to stdin.")
@click.option(
    "--events-dir",
    type=click.Path(file_okay=False),
    default=None,
    help="Record agent events as JSONL in this directory.",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output.")
@click.argument("argv", nargs=-1, required=True, type=click.UNPROCESSED)
def run(
    config_file: str | None,
    resource_key: str | None,
    timeout: float | None,
    cwd: str | None,
    input_text: str | None,
    events_dir: str | None,
    verbose: bool,
    argv: tuple[str, ...],
) -> None:
    """Run an agent CLI that speaks stream-json and print its answer.

    Assistant text and tool activity stream to stderr; the final answer is
    printed to stdout.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = load_config(Path(config_file) if config_file else None)
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc

    invocation = InvocationDescriptor(
        argv=argv,
        timeout=timeout or config.executor.timeout,
        cwd=cwd or config.executor.cwd,
        env=config.executor.env,
        input=input_text,
    )
    key = resource_key or str(Path(invocation.cwd or Path.cwd()).resolve())
    recorder_dir = Path(events_dir) if events_dir else config.telemetry.events_dir

    try:
        result = asyncio.run(_run_invocation(invocation, key, recorder_dir, config))
    except SpawnError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc

    exit_code = _exit_code(result)
    if exit_code != 0:
        raise SystemExit(exit_code)


async def _run_invocation(
    invocation: InvocationDescriptor,
    resource_key: str,
    events_dir: Path | None,
    config: ConduitConfig,
) -> CliRunResult:
    """Wire recorder, emitter and progress output around one run."""
    recorder = EventRecorder("run", events_dir) if events_dir is not None else None
    emitter = AgentEventEmitter(recorder)
    run_id = uuid.uuid4().hex[:12]
    callbacks = StreamJsonCallbacks(
        on_assistant_text=_echo_assistant_text,
        on_tool_use=_echo_tool_use,
        on_tool_result=(
            _echo_tool_result if config.bridge.verbose == "on" else None
        ),
    )

    try:
        result = await run_stream_json_cli(
            invocation,
            resource_key,
            callbacks=callbacks,
            run_id=run_id,
            emitter=emitter,
        )
    finally:
        emitter.clear_run(run_id)
        if recorder is not None:
            recorder.close()

    _report(result)
    return result


def _echo_assistant_text(text: str) -> None:
    click.echo(text, err=True, nl=False)


def _echo_tool_use(tool_use: ToolUse) -> None:
    meta = infer_tool_meta_from_args(tool_use.name, tool_use.args)
    line = format_tool_aggregate(tool_use.name, [meta] if meta else None)
    click.echo(click.style(f"\n→ {line}", fg="cyan"), err=True)


def _echo_tool_result(tool_result: ToolResult) -> None:
    preview = tool_result.result.replace("\n", " ")
    if len(preview) > _RESULT_PREVIEW_LEN:
        preview = preview[:_RESULT_PREVIEW_LEN] + "…"
    color = "red" if tool_result.is_error else "green"
    click.echo(click.style(f"← {tool_result.name}: {preview}", fg=color), err=True)


def _report(result: CliRunResult) -> None:
    """Print the final answer and a one-line summary."""
    output, outcome = result.output, result.outcome
    click.echo(err=True)
    if output.text:
        click.echo(output.text)

    details: list[str] = []
    if output.session_id:
        details.append(f"session {output.session_id}")
    if output.usage is not None:
        details.append(
            f"tokens in={output.usage.input or 0} out={output.usage.output or 0}"
        )
    if details:
        click.echo(click.style(" · ".join(details), dim=True), err=True)

    if outcome.was_killed:
        click.echo("Error: command timed out and was killed.", err=True)
    elif outcome.exit_code != 0:
        status = (
            f"code {outcome.exit_code}"
            if outcome.exit_code is not None
            else f"signal {outcome.signal}"
        )
        message = f"Error: command exited with {status}."
        preview = format_stderr_preview(outcome.stderr)
        if preview:
            message += f" Stderr:\n  {preview}"
        click.echo(message, err=True)


def _exit_code(result: CliRunResult) -> int:
    outcome = result.outcome
    if outcome.was_killed:
        return TIMEOUT_EXIT_CODE
    if outcome.exit_code is None:
        return 1
    return outcome.exit_code
