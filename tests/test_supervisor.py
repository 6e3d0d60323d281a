from __future__ import annotations

import asyncio
import sys

import allure
import pytest

from agent_runner.runner.attempt import RunCallbacks, RunContext
from agent_runner.runner.command import build_command
from agent_runner.runner.models import AttemptStatus, FailureKind
from agent_runner.runner.supervisor import ProcessSupervisor

pytestmark = [
    allure.epic("Agent Runtime"),
    allure.feature("Process Supervision"),
]

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="POSIX signal semantics")

_PRELUDE = """
import json
import sys
import time


def emit(payload):
    print(json.dumps(payload), flush=True)


"""


class _Sink:
    def __init__(self) -> None:
        self.text: list[str] = []
        self.stderr: list[str] = []
        self.notices: list[str] = []

    def callbacks(self) -> RunCallbacks:
        return RunCallbacks(
            on_text=self.text.append,
            on_stderr=self.stderr.append,
            on_notice=self.notices.append,
        )


def _run(
    program: list[str],
    *,
    timeout_seconds: float = 10.0,
    grace_seconds: float = 1.0,
    sink: _Sink | None = None,
    context: RunContext | None = None,
    stop_after: float | None = None,
):
    sink = sink or _Sink()
    context = context or RunContext()
    supervisor = ProcessSupervisor(timeout_seconds=timeout_seconds, grace_seconds=grace_seconds)

    async def scenario():
        if stop_after is not None:
            asyncio.get_running_loop().call_later(stop_after, context.request_stop, "SIGINT")
        return await supervisor.run(
            build_command("hello", program=program),
            None,
            context=context,
            callbacks=sink.callbacks(),
        )

    return asyncio.run(scenario())


def test_successful_turn_with_split_lines_and_noise(agent_script) -> None:
    program = agent_script(
        _PRELUDE
        + """
print("Welcome to the agent", flush=True)
init = json.dumps({"type": "system", "subtype": "init", "session_id": "s-42"})
sys.stdout.write(init[:10])
sys.stdout.flush()
time.sleep(0.05)
sys.stdout.write(init[10:] + "\\n")
sys.stdout.flush()
print("not json {", flush=True)
emit({"type": "assistant", "message": {"content": [{"type": "text", "text": "Hi there"}]}})
emit({"type": "result", "subtype": "success", "session_id": "s-42"})
""",
    )
    sink = _Sink()
    context = RunContext()

    outcome = _run(program, sink=sink, context=context)

    assert outcome.status == AttemptStatus.SUCCEEDED
    assert outcome.session_id == "s-42"
    assert outcome.response_text == "Hi there"
    assert outcome.exit_code == 0
    assert outcome.signals_sent == []
    assert sink.text == ["Hi there"]
    assert "Session started: s-42" in sink.notices
    assert context.session_id == "s-42"
    assert context.attempt is None


def test_error_result_is_reported_as_protocol_failure(agent_script) -> None:
    program = agent_script(
        _PRELUDE
        + """
emit({"type": "system", "subtype": "init", "session_id": "s-1"})
emit({"type": "result", "subtype": "error", "error": {"message": "No conversation found"}})
sys.exit(1)
""",
    )

    outcome = _run(program)

    assert outcome.status == AttemptStatus.FAILED
    assert outcome.failure == FailureKind.PROTOCOL
    assert outcome.message == "CLI error: No conversation found"
    assert outcome.exit_code == 1


def test_nonzero_exit_without_result_is_subprocess_failure(agent_script) -> None:
    program = agent_script("import sys\nsys.stderr.write('boom\\n')\nsys.exit(3)\n")
    sink = _Sink()

    outcome = _run(program, sink=sink)

    assert outcome.status == AttemptStatus.FAILED
    assert outcome.failure == FailureKind.SUBPROCESS_EXIT
    assert outcome.message == "Agent CLI exited with code 3"
    assert outcome.exit_code == 3
    assert sink.stderr == ["boom"]


def test_clean_exit_without_result_is_protocol_failure(agent_script) -> None:
    program = agent_script(
        _PRELUDE + 'emit({"type": "system", "subtype": "init", "session_id": "s-1"})\n',
    )

    outcome = _run(program)

    assert outcome.status == AttemptStatus.FAILED
    assert outcome.failure == FailureKind.PROTOCOL
    assert outcome.message == "Agent CLI exited without a result event"
    assert outcome.session_id == "s-1"


def test_missing_binary_is_spawn_failure(tmp_path) -> None:
    outcome = _run([str(tmp_path / "no-such-agent")])

    assert outcome.status == AttemptStatus.FAILED
    assert outcome.failure == FailureKind.SPAWN
    assert outcome.message.startswith("Spawn failed:")
    assert outcome.exit_code is None


@posix_only
def test_silent_process_times_out_and_is_terminated(agent_script) -> None:
    program = agent_script(
        _PRELUDE
        + """
emit({"type": "system", "subtype": "init", "session_id": "s-1"})
time.sleep(60)
""",
    )
    sink = _Sink()

    outcome = _run(program, timeout_seconds=0.5, grace_seconds=2.0, sink=sink)

    assert outcome.status == AttemptStatus.TIMED_OUT
    assert outcome.failure == FailureKind.TIMEOUT
    assert outcome.signals_sent == ["SIGTERM"]
    assert outcome.exit_code is not None and outcome.exit_code < 0
    assert "Process timeout: No output from agent CLI for 0.5s" in sink.notices


@posix_only
def test_process_ignoring_sigterm_is_killed(agent_script) -> None:
    program = agent_script(
        """
import signal
import time

signal.signal(signal.SIGTERM, signal.SIG_IGN)
print("ready", flush=True)
time.sleep(60)
""",
    )
    sink = _Sink()

    outcome = _run(program, timeout_seconds=0.5, grace_seconds=0.3, sink=sink)

    assert outcome.status == AttemptStatus.TIMED_OUT
    assert outcome.signals_sent == ["SIGTERM", "SIGKILL"]
    assert outcome.exit_code == -9
    assert "Force killing agent process..." in sink.notices


def test_stderr_output_keeps_attempt_alive(agent_script) -> None:
    program = agent_script(
        _PRELUDE
        + """
for index in range(7):
    sys.stderr.write(f"working {index}\\n")
    sys.stderr.flush()
    time.sleep(0.3)
emit({"type": "result", "subtype": "success", "session_id": "s-slow"})
""",
    )
    sink = _Sink()

    outcome = _run(program, timeout_seconds=1.0, sink=sink)

    assert outcome.status == AttemptStatus.SUCCEEDED
    assert outcome.session_id == "s-slow"
    assert sink.stderr == [f"working {index}" for index in range(7)]


@posix_only
def test_process_lingering_after_result_is_shut_down_without_losing_success(
    agent_script,
) -> None:
    program = agent_script(
        _PRELUDE
        + """
emit({"type": "result", "subtype": "success", "session_id": "s-1"})
time.sleep(60)
""",
    )

    outcome = _run(program, grace_seconds=0.3)

    assert outcome.status == AttemptStatus.SUCCEEDED
    assert outcome.session_id == "s-1"
    assert outcome.signals_sent == ["SIGTERM"]


def test_stop_before_spawn_is_interrupted_without_running(tmp_path) -> None:
    context = RunContext()

    async def scenario():
        context.request_stop("SIGINT")
        supervisor = ProcessSupervisor(timeout_seconds=1.0)
        return await supervisor.run([str(tmp_path / "no-such-agent")], None, context=context)

    outcome = asyncio.run(scenario())

    assert outcome.failure == FailureKind.INTERRUPTED
    assert outcome.message == "Interrupted (SIGINT)"


@posix_only
def test_stop_during_run_terminates_child(agent_script) -> None:
    program = agent_script(
        _PRELUDE
        + """
emit({"type": "system", "subtype": "init", "session_id": "s-1"})
time.sleep(60)
""",
    )
    context = RunContext()

    outcome = _run(program, context=context, stop_after=0.5)

    assert outcome.status == AttemptStatus.FAILED
    assert outcome.failure == FailureKind.INTERRUPTED
    assert outcome.signals_sent == ["SIGTERM"]
    assert context.stop_reason == "SIGINT"
    assert context.session_id == "s-1"


def test_undecodable_stdout_line_does_not_abort_attempt(agent_script) -> None:
    program = agent_script(
        _PRELUDE
        + """
print("1" * 5000, flush=True)
print("[" * 200000, flush=True)
emit({"type": "system", "subtype": "init", "session_id": "s-noisy"})
emit({"type": "result", "subtype": "success", "session_id": "s-noisy"})
""",
    )

    outcome = _run(program)

    assert outcome.status == AttemptStatus.SUCCEEDED
    assert outcome.session_id == "s-noisy"


@posix_only
def test_failing_output_sink_interrupts_instead_of_raising(agent_script) -> None:
    program = agent_script(
        _PRELUDE
        + """
emit({"type": "assistant", "message": {"content": [{"type": "text", "text": "Hi"}]}})
time.sleep(60)
""",
    )
    context = RunContext()

    def closed_stdout(fragment: str) -> None:
        raise BrokenPipeError("stdout closed")

    async def scenario():
        supervisor = ProcessSupervisor(timeout_seconds=10.0, grace_seconds=1.0)
        return await supervisor.run(
            build_command("hello", program=program),
            None,
            context=context,
            callbacks=RunCallbacks(on_text=closed_stdout),
        )

    outcome = asyncio.run(scenario())

    assert outcome.failure == FailureKind.INTERRUPTED
    assert outcome.signals_sent == ["SIGTERM"]
    assert context.stop_reason == "fault"
