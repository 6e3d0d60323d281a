"""Route termination signals and unexpected loop faults into one stop path."""

from __future__ import annotations

import asyncio
import logging
import signal
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from agent_runner.runner.attempt import RunContext

logger = logging.getLogger(__name__)

_STOP_SIGNALS: tuple[signal.Signals, ...] = tuple(
    getattr(signal, name) for name in ("SIGINT", "SIGTERM") if hasattr(signal, name)
)


@contextmanager
def install_signal_handlers(
    context: RunContext,
    loop: asyncio.AbstractEventLoop | None = None,
) -> Iterator[None]:
    """Install SIGINT/SIGTERM and loop fault handlers for the run's lifetime.

    Every trigger ends in ``RunContext.request_stop``, which shuts down the
    live attempt with the same two-phase sequence used for timeouts.
    """

    loop = loop or asyncio.get_running_loop()
    previous_exception_handler = loop.get_exception_handler()

    def _on_fault(fault_loop: asyncio.AbstractEventLoop, details: dict[str, Any]) -> None:
        error = details.get("exception")
        logger.error(
            "Unexpected fault: %s",
            details.get("message", "unhandled exception"),
            exc_info=error,
        )
        context.request_stop("fault")

    loop.set_exception_handler(_on_fault)
    loop_handled: list[signal.Signals] = []
    fallback_handled: dict[signal.Signals, Any] = {}
    for sig in _STOP_SIGNALS:
        try:
            loop.add_signal_handler(sig, context.request_stop, sig.name)
            loop_handled.append(sig)
        except (NotImplementedError, RuntimeError, ValueError):
            previous = signal.getsignal(sig)
            if _install_fallback(sig, context=context, loop=loop):
                fallback_handled[sig] = previous if previous is not None else signal.SIG_DFL

    try:
        yield
    finally:
        for sig in loop_handled:
            loop.remove_signal_handler(sig)
        for sig, previous in fallback_handled.items():
            try:
                signal.signal(sig, previous)
            except ValueError:
                pass
        loop.set_exception_handler(previous_exception_handler)


def _install_fallback(
    sig: signal.Signals,
    *,
    context: RunContext,
    loop: asyncio.AbstractEventLoop,
) -> bool:
    def _handler(signum: int, _: object | None) -> None:
        try:
            name = signal.Signals(signum).name
        except ValueError:
            name = str(signum)
        loop.call_soon_threadsafe(context.request_stop, name)

    try:
        signal.signal(sig, _handler)
    except ValueError:
        # Signal handlers can only be installed in main thread.
        return False
    return True
