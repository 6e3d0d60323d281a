"""CLI entrypoint for agent-runner."""

import logging
import os
from pathlib import Path

import rich_click as click

from agent_runner import __version__
from agent_runner.callback import CallbackError
from agent_runner.runner.controllers import (
    AgentRunCommand,
    CallbackPostCommand,
    RunnerCliController,
    RunnerStreams,
    SessionCommand,
)

click.rich_click.USE_MARKDOWN = True
RUNNER_CONTROLLER = RunnerCliController()


@click.group()
@click.version_option(version=__version__, prog_name="agent-runner")
def agent_runner() -> None:
    """Supervised runner for the stream-json agent CLI."""


@agent_runner.command("run")
@click.option("--mock", is_flag=True, help="Use the bundled mock agent instead of the real CLI.")
@click.option("--reset", is_flag=True, help="Forget the stored session and start a new one.")
@click.option(
    "--session-file",
    type=click.Path(path_type=Path),
    default=None,
    help="Session file path (default: AGENT_RUNNER_SESSION_FILE or .claude-session.json).",
)
@click.option("--verbose", "-v", is_flag=True, help="Log supervisor activity to stderr.")
@click.argument("prompt", nargs=-1)
def run(
    mock: bool,
    reset: bool,
    session_file: Path | None,
    verbose: bool,
    prompt: tuple[str, ...],
) -> None:
    """Send PROMPT to the agent, streaming its reply.

    Environment: `AGENT_RUNNER_TIMEOUT_MS` (default 600000),
    `AGENT_RUNNER_MAX_RETRIES` (default 3), `AGENT_RUNNER_ENV`, `REDIS_PORT`.
    """

    _configure_logging(verbose=verbose)
    prompt_text = " ".join(prompt)
    if not prompt_text.strip():
        raise click.ClickException("Prompt is required: agent-runner run [--mock] [--reset] PROMPT")

    try:
        outcome = RUNNER_CONTROLLER.run(
            AgentRunCommand(
                prompt=prompt_text,
                mock=mock,
                reset=reset,
                session_file=session_file,
            ),
            RunnerStreams(
                text=_emit_text,
                stderr=_emit_stderr,
                notice=_emit_notice,
            ),
        )
    except ValueError as error:
        raise click.ClickException(str(error)) from error

    click.echo()
    if not outcome.succeeded:
        raise click.ClickException(f"Execution failed: {outcome.message}")
    _emit_notice(f"Execution completed successfully (attempts={outcome.attempts})")


@agent_runner.group()
def session() -> None:
    """Stored conversation session."""


@session.command("show")
@click.option("--session-file", type=click.Path(path_type=Path), default=None)
def session_show(session_file: Path | None) -> None:
    """Print the stored session id."""

    _emit_lines(_config_guard(RUNNER_CONTROLLER.show_session, SessionCommand(session_file)))


@session.command("reset")
@click.option("--session-file", type=click.Path(path_type=Path), default=None)
def session_reset(session_file: Path | None) -> None:
    """Delete the stored session so the next run starts fresh."""

    _emit_lines(_config_guard(RUNNER_CONTROLLER.reset_session, SessionCommand(session_file)))


@agent_runner.group()
def callback() -> None:
    """Callback API commands (post a message, read thread context)."""


@callback.command("post")
@click.argument("content")
def callback_post(content: str) -> None:
    """Post CONTENT to the conversation thread."""

    _emit_lines(
        _config_guard(RUNNER_CONTROLLER.post_callback_message, CallbackPostCommand(content)),
    )


@callback.command("context")
def callback_context() -> None:
    """Print the conversation thread context."""

    _emit_lines(_config_guard(RUNNER_CONTROLLER.thread_context))


def _config_guard(action, *args):
    try:
        return action(*args)
    except (ValueError, CallbackError) as error:
        raise click.ClickException(str(error)) from error


def _configure_logging(*, verbose: bool) -> None:
    level_name = "INFO" if verbose else os.getenv("AGENT_RUNNER_LOG_LEVEL", "WARNING")
    logging.basicConfig(
        level=getattr(logging, level_name.strip().upper(), logging.WARNING),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%H:%M:%S",
    )


def _emit_text(fragment: str) -> None:
    click.echo(fragment, nl=False)


def _emit_stderr(line: str) -> None:
    click.echo(f"[stderr] {line}", err=True)


def _emit_notice(message: str) -> None:
    click.echo(f"  [{message}]", err=True)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    agent_runner()
