"""Client for the token-authenticated callback API."""

from agent_runner.callback.client import CallbackClient, CallbackError

__all__ = [
    "CallbackClient",
    "CallbackError",
]
