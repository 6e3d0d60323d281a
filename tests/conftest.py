"""Shared test fixtures."""

from __future__ import annotations

import asyncio
import sys
import textwrap
from pathlib import Path

import pytest

_RUNNER_ENV_VARS = (
    "AGENT_RUNNER_COMMAND",
    "AGENT_RUNNER_TIMEOUT_MS",
    "AGENT_RUNNER_MAX_RETRIES",
    "AGENT_RUNNER_GRACE_PERIOD_SECONDS",
    "AGENT_RUNNER_SESSION_FILE",
    "AGENT_RUNNER_SKIP_PERMISSIONS",
    "AGENT_RUNNER_MCP_CONFIG",
    "AGENT_RUNNER_ENV",
    "AGENT_RUNNER_LOG_LEVEL",
    "AGENT_RUNNER_CALLBACK_API_URL",
    "AGENT_RUNNER_CALLBACK_INVOCATION_ID",
    "AGENT_RUNNER_CALLBACK_TOKEN",
    "CLAUDE_TIMEOUT_MS",
    "CLAUDE_MAX_RETRIES",
    "CLAUDECODE",
    "NODE_ENV",
    "REDIS_PORT",
    "DATABASE_URL",
)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    """Keep the developer's shell configuration out of the tests."""
    for name in _RUNNER_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def agent_script(tmp_path: Path):
    """Write an inline Python agent and return the program prefix running it."""

    def _write(body: str, name: str = "agent.py") -> list[str]:
        path = tmp_path / name
        path.write_text(textwrap.dedent(body), "utf-8")
        return [sys.executable, str(path)]

    return _write


class FakeProcess:
    """In-memory stand-in for ``asyncio.subprocess.Process``."""

    def __init__(self, *, exits_on_terminate: bool = True) -> None:
        self.returncode: int | None = None
        self.calls: list[str] = []
        self._exits_on_terminate = exits_on_terminate
        self._exited = asyncio.Event()

    def terminate(self) -> None:
        self.calls.append("terminate")
        if self._exits_on_terminate:
            self._exit(-15)

    def kill(self) -> None:
        self.calls.append("kill")
        self._exit(-9)

    async def wait(self) -> int:
        await self._exited.wait()
        assert self.returncode is not None
        return self.returncode

    def _exit(self, code: int) -> None:
        self.returncode = code
        self._exited.set()


@pytest.fixture()
def fake_process():
    """Factory for in-memory processes; call inside a running event loop."""
    return FakeProcess
