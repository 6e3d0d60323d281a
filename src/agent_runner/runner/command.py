"""Argument vector construction for the agent CLI.

The vector is handed to the process launcher as-is.  No shell ever sees it,
so the prompt needs no quoting and cannot inject commands.
"""

from __future__ import annotations

import shlex
import sys
from collections.abc import Sequence
from dataclasses import dataclass

MOCK_AGENT_MODULE = "agent_runner.runner.backend.mock_agent"


class CommandBuildError(ValueError):
    """Invalid input for the agent command, raised before any spawn."""


@dataclass(slots=True)
class CommandOptions:
    """Optional flags appended after the protocol flags."""

    skip_permissions: bool = False
    mcp_config: str | None = None


def build_command(
    prompt: str,
    *,
    session_id: str | None = None,
    program: Sequence[str] = ("claude",),
    options: CommandOptions | None = None,
) -> list[str]:
    """Return the argv that runs one stream-json conversation turn."""

    if not prompt or not prompt.strip():
        raise CommandBuildError("Prompt must not be empty.")
    if not program or not program[0]:
        raise CommandBuildError("Agent command must not be empty.")

    argv = [*program, "-p", prompt, "--output-format", "stream-json", "--verbose"]
    if session_id:
        argv.extend(["--resume", session_id])

    if options is not None:
        if options.skip_permissions:
            argv.append("--dangerously-skip-permissions")
        if options.mcp_config:
            argv.extend(["--mcp-config", options.mcp_config])
    return argv


def resolve_program(command: str, *, mock: bool = False) -> list[str]:
    """Split the configured command into its program prefix.

    Mock mode runs the bundled stand-in agent with the current interpreter.
    """

    if mock:
        return [sys.executable, "-m", MOCK_AGENT_MODULE]
    program = shlex.split(command)
    if not program:
        raise CommandBuildError("Agent command must not be empty.")
    return program


def describe_command(argv: Sequence[str]) -> str:
    """Render argv for logs; display only, never executed."""

    return shlex.join(argv)
