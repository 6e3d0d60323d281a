"""Isolated environment for the agent subprocess."""

from __future__ import annotations

import os
from collections.abc import Mapping

from agent_runner.config import PRODUCTION_REDIS_PORT, Settings

# A nested CLI refuses to start when it believes it runs inside another session.
STRIPPED_ENV_KEYS: tuple[str, ...] = ("CLAUDECODE",)


def build_subprocess_env(
    settings: Settings,
    base: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Copy the parent environment and pin the variables the agent relies on."""

    env = dict(os.environ if base is None else base)
    for key in STRIPPED_ENV_KEYS:
        env.pop(key, None)

    env["AGENT_RUNNER_ENV"] = settings.environment.name
    env["NODE_ENV"] = settings.environment.name
    env["REDIS_PORT"] = settings.environment.redis_port

    callback = settings.callback
    if callback.is_configured:
        env["AGENT_RUNNER_CALLBACK_API_URL"] = callback.api_url
        env["AGENT_RUNNER_CALLBACK_INVOCATION_ID"] = callback.invocation_id or ""
        env["AGENT_RUNNER_CALLBACK_TOKEN"] = callback.token or ""
    return env


def isolation_warnings(settings: Settings) -> list[str]:
    """Flag development runs that point at production resources."""

    environment = settings.environment
    if not environment.is_development:
        return []

    warnings: list[str] = []
    if environment.redis_port == PRODUCTION_REDIS_PORT:
        warnings.append(
            "Development environment connecting to production Redis "
            f"(port {PRODUCTION_REDIS_PORT}); use REDIS_PORT=6398 for development.",
        )
    if environment.database_url and "production" in environment.database_url:
        warnings.append(
            "Development environment connecting to production database; "
            "DATABASE_URL should point to a dev instance.",
        )
    return warnings
