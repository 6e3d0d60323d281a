"""Asyncio supervisor for one agent CLI subprocess."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence

from agent_runner.runner.attempt import Attempt, RunCallbacks, RunContext
from agent_runner.runner.command import describe_command
from agent_runner.runner.models import AttemptOutcome, AttemptStatus, FailureKind
from agent_runner.runner.stream import EventStreamParser, LineAssembler

logger = logging.getLogger(__name__)

DEFAULT_GRACE_SECONDS = 5.0
_READ_CHUNK_BYTES = 64 * 1024
_MIN_DRAIN_SECONDS = 1.0


class ProcessSupervisor:
    """Spawn the agent, stream its output, enforce the inactivity timeout.

    Exit code zero without a ``result`` event is reported as a protocol
    failure: the stream-json protocol always ends a turn with one.
    """

    def __init__(
        self,
        *,
        timeout_seconds: float,
        grace_seconds: float = DEFAULT_GRACE_SECONDS,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self.grace_seconds = grace_seconds

    async def run(
        self,
        argv: Sequence[str],
        env: Mapping[str, str] | None,
        *,
        context: RunContext,
        callbacks: RunCallbacks | None = None,
        number: int = 1,
    ) -> AttemptOutcome:
        """Run one attempt to its terminal outcome."""

        attempt = Attempt(
            number=number,
            timeout_seconds=self.timeout_seconds,
            grace_seconds=self.grace_seconds,
            context=context,
            callbacks=callbacks or RunCallbacks(),
        )
        if context.stop_requested:
            return _interrupted(attempt, context.stop_reason)

        logger.info("Attempt %d: executing %s", number, describe_command(argv))
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=dict(env) if env is not None else None,
            )
        except OSError as error:
            logger.error("Failed to spawn agent CLI %r: %s", argv[0], error)
            return AttemptOutcome(
                status=AttemptStatus.FAILED,
                failure=FailureKind.SPAWN,
                message=f"Spawn failed: {error}",
            )

        attempt.process = process
        context.attempt = attempt
        try:
            attempt.arm_timer()
            if context.stop_requested:
                attempt.request_shutdown(context.stop_reason or "stop")
            return await self._supervise(attempt, process)
        finally:
            attempt.cancel_timer()
            context.attempt = None
            if process.returncode is None:
                await asyncio.shield(attempt.shutdown("fault"))

    async def _supervise(
        self,
        attempt: Attempt,
        process: asyncio.subprocess.Process,
    ) -> AttemptOutcome:
        readers = [
            asyncio.create_task(self._pump_stdout(process.stdout, attempt)),
            asyncio.create_task(self._pump_stderr(process.stderr, attempt)),
        ]
        for reader in readers:
            reader.add_done_callback(lambda task: _on_reader_done(task, attempt))
        exit_task = asyncio.ensure_future(process.wait())
        decided_task = asyncio.ensure_future(attempt.decided.wait())
        try:
            await asyncio.wait({exit_task, decided_task}, return_when=asyncio.FIRST_COMPLETED)
            if not exit_task.done():
                await self._settle_running_process(attempt, exit_task)
            returncode = await exit_task
            attempt.disarm_timer()
            await self._drain(readers)
        finally:
            decided_task.cancel()
            exit_task.cancel()
            for reader in readers:
                reader.cancel()

        attempt.cancel_timer()
        attempt.finalize(_exit_outcome(attempt, returncode))
        outcome = attempt.outcome
        if outcome is None:
            raise RuntimeError("Attempt finished without an outcome.")
        outcome.exit_code = returncode
        outcome.signals_sent = list(attempt.signals_sent)
        logger.info(
            "Attempt %d finished: status=%s exit_code=%s",
            attempt.number,
            outcome.status.value,
            returncode,
        )
        return outcome

    async def _settle_running_process(
        self,
        attempt: Attempt,
        exit_task: asyncio.Future[int],
    ) -> None:
        """The outcome is known but the process still runs."""

        if attempt.outcome is not None and attempt.outcome.status != AttemptStatus.TIMED_OUT:
            try:
                await asyncio.wait_for(asyncio.shield(exit_task), timeout=self.grace_seconds)
                return
            except TimeoutError:
                logger.warning(
                    "Agent CLI still running %gs after its result event",
                    self.grace_seconds,
                )
        await attempt.shutdown("lingering")

    async def _drain(self, readers: list[asyncio.Task[None]]) -> None:
        # Pipes may stay open if the agent left children behind.
        _, pending = await asyncio.wait(
            readers,
            timeout=max(self.grace_seconds, _MIN_DRAIN_SECONDS),
        )
        if pending:
            logger.warning("Output pipes still open after agent exit, abandoning readers")

    async def _pump_stdout(self, stream: asyncio.StreamReader | None, attempt: Attempt) -> None:
        if stream is None:
            return
        parser = EventStreamParser()
        while True:
            chunk = await stream.read(_READ_CHUNK_BYTES)
            if not chunk:
                break
            attempt.arm_timer()
            for event in parser.feed(chunk):
                attempt.handle_event(event)
        for event in parser.close():
            attempt.handle_event(event)

    async def _pump_stderr(self, stream: asyncio.StreamReader | None, attempt: Attempt) -> None:
        if stream is None:
            return
        lines = LineAssembler()
        while True:
            chunk = await stream.read(_READ_CHUNK_BYTES)
            if not chunk:
                break
            attempt.arm_timer()
            for line in lines.feed(chunk):
                attempt.callbacks.stderr(line)
        for line in lines.flush():
            attempt.callbacks.stderr(line)


def _on_reader_done(task: asyncio.Task[None], attempt: Attempt) -> None:
    # The failure ends the run as interrupted; it is not re-raised from run().
    if task.cancelled() or task.exception() is None:
        return
    logger.error("Output reader failed", exc_info=task.exception())
    attempt.context.request_stop("fault")


def _exit_outcome(attempt: Attempt, returncode: int) -> AttemptOutcome:
    if attempt.shutdown_reason is not None and attempt.context.stop_requested:
        return _interrupted(attempt, attempt.context.stop_reason)
    if returncode != 0:
        return AttemptOutcome(
            status=AttemptStatus.FAILED,
            failure=FailureKind.SUBPROCESS_EXIT,
            message=f"Agent CLI exited with code {returncode}",
            session_id=attempt.session_id,
        )
    return AttemptOutcome(
        status=AttemptStatus.FAILED,
        failure=FailureKind.PROTOCOL,
        message="Agent CLI exited without a result event",
        session_id=attempt.session_id,
    )


def _interrupted(attempt: Attempt, reason: str | None) -> AttemptOutcome:
    return AttemptOutcome(
        status=AttemptStatus.FAILED,
        failure=FailureKind.INTERRUPTED,
        message=f"Interrupted ({reason or 'stop'})",
        session_id=attempt.session_id,
    )
