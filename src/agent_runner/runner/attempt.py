"""Per-run and per-attempt state for supervised agent execution."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from agent_runner.runner.models import (
    AssistantEvent,
    AttemptOutcome,
    AttemptStatus,
    ContentKind,
    FailureKind,
    ResultEvent,
    StreamEvent,
    SystemEvent,
)

logger = logging.getLogger(__name__)


class ProcessHandle(Protocol):
    """Subset of ``asyncio.subprocess.Process`` used for shutdown."""

    @property
    def returncode(self) -> int | None: ...

    def terminate(self) -> None: ...

    def kill(self) -> None: ...

    async def wait(self) -> int: ...


@dataclass(slots=True)
class RunCallbacks:
    """Sinks for streamed output; every field is optional."""

    on_text: Callable[[str], None] | None = None
    on_stderr: Callable[[str], None] | None = None
    on_notice: Callable[[str], None] | None = None

    def text(self, fragment: str) -> None:
        if self.on_text is not None:
            self.on_text(fragment)

    def stderr(self, line: str) -> None:
        if self.on_stderr is not None:
            self.on_stderr(line)

    def notice(self, message: str) -> None:
        if self.on_notice is not None:
            self.on_notice(message)


class RunContext:
    """State shared by the retry loop, the live attempt and signal handlers."""

    def __init__(self, session_id: str | None = None) -> None:
        self.session_id = session_id
        self.attempt: Attempt | None = None
        self.stop_reason: str | None = None
        self._stop_event = asyncio.Event()

    @property
    def stop_requested(self) -> bool:
        return self.stop_reason is not None

    def request_stop(self, reason: str) -> None:
        """Stop the run: no further attempts, live subprocess shut down."""

        if self.stop_reason is None:
            logger.warning("Stop requested: %s", reason)
            self.stop_reason = reason
            self._stop_event.set()
        if self.attempt is not None:
            self.attempt.request_shutdown(reason)

    async def wait_for_stop(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; True if a stop arrived meanwhile."""

        if self.stop_requested:
            return True
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._stop_event.wait(), timeout=timeout)
        return self.stop_requested


class Attempt:
    """One subprocess execution: activity timer, event dispatch, shutdown."""

    def __init__(
        self,
        *,
        number: int,
        timeout_seconds: float,
        grace_seconds: float,
        context: RunContext,
        callbacks: RunCallbacks,
    ) -> None:
        self.number = number
        self.timeout_seconds = timeout_seconds
        self.grace_seconds = grace_seconds
        self.context = context
        self.callbacks = callbacks
        self.process: ProcessHandle | None = None
        self.session_id: str | None = None
        self.outcome: AttemptOutcome | None = None
        self.signals_sent: list[str] = []
        self.shutdown_reason: str | None = None
        self.decided = asyncio.Event()
        self._response_parts: list[str] = []
        self._timer: asyncio.TimerHandle | None = None
        self._timer_disarmed = False
        self._shutdown_task: asyncio.Task[None] | None = None

    @property
    def response_text(self) -> str:
        return "".join(self._response_parts)

    @property
    def shutting_down(self) -> bool:
        return self._shutdown_task is not None

    def arm_timer(self) -> None:
        """(Re)start the inactivity timer unless the attempt is settled."""

        if self.outcome is not None or self.shutting_down or self._timer_disarmed:
            return
        self.cancel_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.timeout_seconds, self._on_timeout)

    def cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def disarm_timer(self) -> None:
        """Cancel the timer for good once the process has exited."""

        self._timer_disarmed = True
        self.cancel_timer()

    def _on_timeout(self) -> None:
        self._timer = None
        if self.outcome is not None or self.shutting_down:
            return
        message = f"No output from agent CLI for {self.timeout_seconds:g}s"
        logger.warning("Attempt %d timed out: %s", self.number, message)
        self.callbacks.notice(f"Process timeout: {message}")
        self.finalize(
            AttemptOutcome(
                status=AttemptStatus.TIMED_OUT,
                failure=FailureKind.TIMEOUT,
                message=message,
            ),
        )
        self.request_shutdown("timeout")

    def finalize(self, outcome: AttemptOutcome) -> bool:
        """Record the terminal outcome; the first one wins."""

        if self.outcome is not None:
            return False
        self.cancel_timer()
        outcome.response_text = outcome.response_text or self.response_text
        self.outcome = outcome
        self.decided.set()
        return True

    def handle_event(self, event: StreamEvent) -> None:
        if self.outcome is not None:
            return
        if isinstance(event, SystemEvent):
            if event.subtype == "init" and event.session_id:
                self.session_id = event.session_id
                self.context.session_id = event.session_id
                self.callbacks.notice(f"Session started: {event.session_id}")
        elif isinstance(event, AssistantEvent):
            self._handle_assistant(event)
        elif isinstance(event, ResultEvent):
            self._handle_result(event)

    def _handle_assistant(self, event: AssistantEvent) -> None:
        for item in event.items:
            if item.kind == ContentKind.TEXT:
                if item.text:
                    self._response_parts.append(item.text)
                    self.callbacks.text(item.text)
            elif item.kind == ContentKind.TOOL_USE:
                self.callbacks.notice(f"Tool call: {item.payload.get('name', 'unknown')}")
            elif item.kind == ContentKind.TOOL_RESULT:
                failed = bool(item.payload.get("is_error") or item.payload.get("isError"))
                self.callbacks.notice(f"Tool result: {'failed' if failed else 'ok'}")

    def _handle_result(self, event: ResultEvent) -> None:
        if event.is_success:
            self.finalize(
                AttemptOutcome(
                    status=AttemptStatus.SUCCEEDED,
                    session_id=self.session_id or event.session_id,
                ),
            )
            return
        if not event.is_error:
            logger.debug("Ignoring result event with subtype %r", event.subtype)
            return

        message = event.error_message or "Unknown error"
        if event.errors:
            message = f"{message} ({', '.join(event.errors)})"
        self.finalize(
            AttemptOutcome(
                status=AttemptStatus.FAILED,
                failure=FailureKind.PROTOCOL,
                message=f"CLI error: {message}",
                session_id=self.session_id or event.session_id,
            ),
        )

    def request_shutdown(self, reason: str) -> asyncio.Task[None]:
        """Schedule the two-phase shutdown once; later calls share the task."""

        if self._shutdown_task is None:
            self.cancel_timer()
            self.shutdown_reason = reason
            self._shutdown_task = asyncio.ensure_future(self._shutdown())
        return self._shutdown_task

    async def shutdown(self, reason: str) -> None:
        await self.request_shutdown(reason)

    async def _shutdown(self) -> None:
        process = self.process
        if process is None or process.returncode is not None:
            return

        logger.info("Shutting down attempt %d (%s)", self.number, self.shutdown_reason)
        self.callbacks.notice("Sending SIGTERM to agent process...")
        if not self._send(process, "SIGTERM"):
            return
        try:
            await asyncio.wait_for(process.wait(), timeout=self.grace_seconds)
            return
        except TimeoutError:
            pass

        if process.returncode is None:
            self.callbacks.notice("Force killing agent process...")
            if self._send(process, "SIGKILL"):
                await process.wait()

    def _send(self, process: ProcessHandle, signal_name: str) -> bool:
        try:
            if signal_name == "SIGKILL":
                process.kill()
            else:
                process.terminate()
        except ProcessLookupError:
            return False
        self.signals_sent.append(signal_name)
        return True
