"""Bounded retry of supervised attempts with a fixed backoff schedule."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Protocol

from agent_runner.runner.attempt import RunCallbacks, RunContext
from agent_runner.runner.command import CommandOptions, build_command, describe_command
from agent_runner.runner.models import AttemptOutcome, RunOutcome
from agent_runner.runner.session_store import SessionStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RetryPolicy:
    """Retry budget and backoff delays in seconds."""

    max_retries: int = 3
    backoff_seconds: tuple[float, ...] = (1.0, 2.0, 5.0)

    def delay_for(self, retry_number: int) -> float:
        """Delay before retry ``retry_number`` (1-based), clamped to the last entry."""

        if not self.backoff_seconds:
            return 0.0
        index = min(max(retry_number - 1, 0), len(self.backoff_seconds) - 1)
        return self.backoff_seconds[index]


class AttemptRunner(Protocol):
    """Protocol implemented by the process supervisor."""

    async def run(
        self,
        argv: Sequence[str],
        env: Mapping[str, str] | None,
        *,
        context: RunContext,
        callbacks: RunCallbacks | None = None,
        number: int = 1,
    ) -> AttemptOutcome:
        """Run one attempt and return its terminal outcome."""


class RetryOrchestrator:
    """Drive attempts until one succeeds or the retry budget is spent."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        supervisor: AttemptRunner,
        session_store: SessionStore,
        policy: RetryPolicy,
        program: Sequence[str] = ("claude",),
        options: CommandOptions | None = None,
        env: Mapping[str, str] | None = None,
        callbacks: RunCallbacks | None = None,
    ) -> None:
        self.supervisor = supervisor
        self.session_store = session_store
        self.policy = policy
        self.program = tuple(program)
        self.options = options
        self.env = env
        self.callbacks = callbacks or RunCallbacks()

    async def execute(
        self,
        prompt: str,
        initial_session_id: str | None = None,
        *,
        context: RunContext | None = None,
    ) -> RunOutcome:
        """Run the prompt with retries; the returned outcome is final."""

        context = context or RunContext(session_id=initial_session_id)
        build_command(prompt, program=self.program)
        attempt_index = 0

        while True:
            argv = build_command(
                prompt,
                session_id=context.session_id,
                program=self.program,
                options=self.options,
            )
            self.callbacks.notice(f"Executing: {describe_command(argv)}")
            outcome = await self.supervisor.run(
                argv,
                self.env,
                context=context,
                callbacks=self.callbacks,
                number=attempt_index + 1,
            )

            if outcome.succeeded:
                return self._finish_success(outcome, context=context, attempts=attempt_index + 1)

            if context.stop_requested:
                return _interrupted(outcome, context=context, attempts=attempt_index + 1)

            attempt_index += 1
            if attempt_index > self.policy.max_retries:
                logger.error(
                    "Max retries (%d) exceeded: %s",
                    self.policy.max_retries,
                    outcome.message,
                )
                self.callbacks.notice(f"Max retries ({self.policy.max_retries}) exceeded")
                self.session_store.reset()
                context.session_id = None
                return RunOutcome(
                    succeeded=False,
                    attempts=attempt_index,
                    response_text=outcome.response_text,
                    message=outcome.message,
                    last_attempt=outcome,
                )

            delay = self.policy.delay_for(attempt_index)
            logger.warning(
                "Attempt %d failed (%s): %s; retrying in %.1fs",
                attempt_index,
                outcome.failure.value if outcome.failure else "unknown",
                outcome.message,
                delay,
            )
            self.callbacks.notice(
                f"Retrying ({attempt_index}/{self.policy.max_retries}) in {delay:g}s. "
                f"Error: {outcome.message}",
            )
            if await context.wait_for_stop(delay):
                return _interrupted(outcome, context=context, attempts=attempt_index)

    def _finish_success(
        self,
        outcome: AttemptOutcome,
        *,
        context: RunContext,
        attempts: int,
    ) -> RunOutcome:
        if outcome.session_id:
            context.session_id = outcome.session_id
            if self.session_store.save(outcome.session_id):
                self.callbacks.notice(f"Session saved: {outcome.session_id}")
            else:
                self.callbacks.notice("Failed to save session; next run starts a new one")
        return RunOutcome(
            succeeded=True,
            attempts=attempts,
            session_id=outcome.session_id,
            response_text=outcome.response_text,
            last_attempt=outcome,
        )


def _interrupted(outcome: AttemptOutcome, *, context: RunContext, attempts: int) -> RunOutcome:
    return RunOutcome(
        succeeded=False,
        attempts=attempts,
        session_id=context.session_id,
        response_text=outcome.response_text,
        message=f"Interrupted by {context.stop_reason}",
        interrupted=True,
        last_attempt=outcome,
    )
