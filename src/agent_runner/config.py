"""Runtime configuration for the agent runner."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

DEFAULT_BACKOFF_MS: tuple[int, ...] = (1_000, 2_000, 5_000)
PRODUCTION_REDIS_PORT = "6399"
DEVELOPMENT_REDIS_PORT = "6398"


@dataclass(slots=True)
class RunnerSettings:
    """Agent CLI invocation, timeout and retry settings."""

    command: str = "claude"
    timeout_ms: int = 600_000
    max_retries: int = 3
    backoff_ms: tuple[int, ...] = DEFAULT_BACKOFF_MS
    grace_period_seconds: float = 5.0
    session_path: Path = Path(".claude-session.json")
    skip_permissions: bool = False
    mcp_config: str | None = None

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000

    @property
    def backoff_seconds(self) -> tuple[float, ...]:
        return tuple(delay / 1000 for delay in self.backoff_ms)


@dataclass(slots=True)
class EnvironmentSettings:
    """Deployment environment the agent subprocess is bound to."""

    name: str = "development"
    redis_port: str = DEVELOPMENT_REDIS_PORT
    database_url: str | None = None

    @property
    def is_development(self) -> bool:
        return self.name == "development"


@dataclass(slots=True)
class CallbackSettings:
    """Callback API endpoint and credentials handed to the agent's tools."""

    api_url: str = "http://localhost:3200"
    invocation_id: str | None = None
    token: str | None = None

    @property
    def is_configured(self) -> bool:
        return bool(self.invocation_id and self.token)


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    runner: RunnerSettings = field(default_factory=RunnerSettings)
    environment: EnvironmentSettings = field(default_factory=EnvironmentSettings)
    callback: CallbackSettings = field(default_factory=CallbackSettings)

    @classmethod
    def from_env(cls, session_path: Path | None = None) -> Settings:
        """Load settings from environment with defaults for local use."""

        env_name = os.getenv("AGENT_RUNNER_ENV", os.getenv("NODE_ENV", "development")).strip()
        default_redis_port = (
            PRODUCTION_REDIS_PORT if env_name == "production" else DEVELOPMENT_REDIS_PORT
        )
        return cls(
            runner=RunnerSettings(
                command=os.getenv("AGENT_RUNNER_COMMAND", "claude"),
                timeout_ms=_env_int(
                    "AGENT_RUNNER_TIMEOUT_MS",
                    fallback_name="CLAUDE_TIMEOUT_MS",
                    default=600_000,
                ),
                max_retries=_env_int(
                    "AGENT_RUNNER_MAX_RETRIES",
                    fallback_name="CLAUDE_MAX_RETRIES",
                    default=3,
                ),
                grace_period_seconds=_env_float("AGENT_RUNNER_GRACE_PERIOD_SECONDS", default=5.0),
                session_path=session_path
                or Path(os.getenv("AGENT_RUNNER_SESSION_FILE", ".claude-session.json")),
                skip_permissions=_env_bool("AGENT_RUNNER_SKIP_PERMISSIONS", default=False),
                mcp_config=os.getenv("AGENT_RUNNER_MCP_CONFIG") or None,
            ),
            environment=EnvironmentSettings(
                name=env_name,
                redis_port=os.getenv("REDIS_PORT", default_redis_port),
                database_url=os.getenv("DATABASE_URL") or None,
            ),
            callback=CallbackSettings(
                api_url=os.getenv("AGENT_RUNNER_CALLBACK_API_URL", "http://localhost:3200"),
                invocation_id=os.getenv("AGENT_RUNNER_CALLBACK_INVOCATION_ID") or None,
                token=os.getenv("AGENT_RUNNER_CALLBACK_TOKEN") or None,
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for values the runner cannot work with."""

        if not self.runner.command.strip():
            raise ValueError("AGENT_RUNNER_COMMAND must not be empty.")
        if self.runner.timeout_ms <= 0:
            raise ValueError("AGENT_RUNNER_TIMEOUT_MS must be > 0.")
        if self.runner.max_retries < 0:
            raise ValueError("AGENT_RUNNER_MAX_RETRIES must be >= 0.")
        if not self.runner.backoff_ms:
            raise ValueError("Backoff schedule must contain at least one delay.")
        if any(delay < 0 for delay in self.runner.backoff_ms):
            raise ValueError(f"Backoff delays must be >= 0: {self.runner.backoff_ms!r}")
        if self.runner.grace_period_seconds < 0:
            raise ValueError("AGENT_RUNNER_GRACE_PERIOD_SECONDS must be >= 0.")
        _validate_api_url(self.callback.api_url)

    def validate_for_callback(self) -> None:
        """Raise configuration error if callback credentials are missing."""

        _validate_api_url(self.callback.api_url)
        if not self.callback.is_configured:
            raise ValueError(
                "Callback credentials are required. "
                "Set AGENT_RUNNER_CALLBACK_INVOCATION_ID and AGENT_RUNNER_CALLBACK_TOKEN.",
            )


def _env_int(name: str, *, fallback_name: str, default: int) -> int:
    raw = os.getenv(name, os.getenv(fallback_name))
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {raw!r}") from error


def _env_float(name: str, *, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw.strip())
    except ValueError as error:
        raise ValueError(f"Invalid number value for {name}: {raw!r}") from error


def _validate_api_url(value: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            "Invalid callback API URL: "
            f"{value!r}. Expected an absolute URL with http:// or https:// scheme.",
        )


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
