"""Controllers for runner CLI commands."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from agent_runner.callback import CallbackClient
from agent_runner.config import Settings
from agent_runner.runner.attempt import RunCallbacks, RunContext
from agent_runner.runner.command import CommandBuildError, CommandOptions, resolve_program
from agent_runner.runner.environment import build_subprocess_env, isolation_warnings
from agent_runner.runner.models import RunOutcome
from agent_runner.runner.retry import RetryOrchestrator, RetryPolicy
from agent_runner.runner.session_store import SessionStore
from agent_runner.runner.signals import install_signal_handlers
from agent_runner.runner.supervisor import ProcessSupervisor

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AgentRunCommand:
    """CLI input for one prompt run."""

    prompt: str
    mock: bool = False
    reset: bool = False
    session_file: Path | None = None


@dataclass(slots=True)
class SessionCommand:
    """CLI input for session inspection and reset."""

    session_file: Path | None = None


@dataclass(slots=True)
class CallbackPostCommand:
    """CLI input for posting a message through the callback API."""

    content: str


@dataclass(slots=True)
class RunnerStreams:
    """Where the controller writes agent text, diagnostics and notices."""

    text: Callable[[str], None]
    stderr: Callable[[str], None]
    notice: Callable[[str], None]


class RunnerCliController:
    """CLI controller for agent runs, sessions and callbacks."""

    def run(self, command: AgentRunCommand, streams: RunnerStreams) -> RunOutcome:
        """Run the prompt with supervision and retries."""

        if not command.prompt.strip():
            raise CommandBuildError("Prompt must not be empty.")

        settings = Settings.from_env(session_path=command.session_file)
        settings.validate()
        runner = settings.runner
        for warning in isolation_warnings(settings):
            logger.warning(warning)
            streams.notice(f"WARNING: {warning}")

        store = SessionStore(runner.session_path)
        if command.reset:
            if store.reset():
                streams.notice("Session reset")
            initial_session_id = None
        else:
            initial_session_id = store.load()
            if initial_session_id:
                streams.notice(f"Resuming session: {initial_session_id}")

        streams.notice(f"Timeout: {runner.timeout_ms}ms, max retries: {runner.max_retries}")
        orchestrator = RetryOrchestrator(
            supervisor=ProcessSupervisor(
                timeout_seconds=runner.timeout_seconds,
                grace_seconds=runner.grace_period_seconds,
            ),
            session_store=store,
            policy=RetryPolicy(
                max_retries=runner.max_retries,
                backoff_seconds=runner.backoff_seconds,
            ),
            program=resolve_program(runner.command, mock=command.mock),
            options=CommandOptions(
                skip_permissions=runner.skip_permissions,
                mcp_config=runner.mcp_config,
            ),
            env=build_subprocess_env(settings),
            callbacks=RunCallbacks(
                on_text=streams.text,
                on_stderr=streams.stderr,
                on_notice=streams.notice,
            ),
        )
        return asyncio.run(_execute(orchestrator, command.prompt, initial_session_id))

    def show_session(self, command: SessionCommand) -> list[str]:
        settings = Settings.from_env(session_path=command.session_file)
        path = settings.runner.session_path
        session_id = SessionStore(path).load()
        if session_id is None:
            return [f"No session stored at {path}"]
        return [f"session_id={session_id}", f"path={path}"]

    def reset_session(self, command: SessionCommand) -> list[str]:
        settings = Settings.from_env(session_path=command.session_file)
        path = settings.runner.session_path
        if SessionStore(path).reset():
            return [f"Session reset: removed {path}"]
        return [f"No session stored at {path}"]

    def post_callback_message(self, command: CallbackPostCommand) -> list[str]:
        with _callback_client() as client:
            payload = client.post_message(command.content)
        return [f"status={payload.get('status', 'unknown')}"]

    def thread_context(self) -> list[str]:
        with _callback_client() as client:
            payload = client.get_thread_context()
        return json.dumps(payload, ensure_ascii=False, indent=2).splitlines()


async def _execute(
    orchestrator: RetryOrchestrator,
    prompt: str,
    initial_session_id: str | None,
) -> RunOutcome:
    context = RunContext(session_id=initial_session_id)
    with install_signal_handlers(context):
        return await orchestrator.execute(prompt, context=context)


def _callback_client() -> CallbackClient:
    settings = Settings.from_env()
    settings.validate_for_callback()
    callback = settings.callback
    return CallbackClient(
        api_url=callback.api_url,
        invocation_id=callback.invocation_id or "",
        token=callback.token or "",
    )
