"""HTTP client for the callback API the agent's tools talk to."""

from __future__ import annotations

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_RETRIES = 3
POST_MESSAGE_PATH = "/api/callbacks/post-message"
THREAD_CONTEXT_PATH = "/api/callbacks/thread-context"


class CallbackError(RuntimeError):
    """Callback API request failed."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class CallbackClient:
    """Token-authenticated client for posting messages and reading context."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        api_url: str,
        invocation_id: str,
        token: str,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.invocation_id = invocation_id
        self._token = token
        self._client = httpx.Client(
            base_url=api_url.rstrip("/"),
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            transport=transport or httpx.HTTPTransport(retries=max_retries),
        )

    def post_message(self, content: str) -> dict[str, Any]:
        """Publish a message to the conversation thread."""

        response = self._request(
            "POST",
            POST_MESSAGE_PATH,
            json={
                "invocationId": self.invocation_id,
                "callbackToken": self._token,
                "content": content,
            },
        )
        return _json_body(response)

    def get_thread_context(self) -> dict[str, Any]:
        """Fetch the conversation context for this invocation."""

        response = self._request(
            "GET",
            THREAD_CONTEXT_PATH,
            params={"invocationId": self.invocation_id, "callbackToken": self._token},
        )
        return _json_body(response)

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as error:
            logger.warning("Timeout calling callback API %s", path)
            raise CallbackError(f"Callback API timeout: {path}") from error
        except httpx.HTTPError as error:
            logger.warning("HTTP error calling callback API %s: %s", path, error)
            raise CallbackError(f"Callback API request failed: {error}") from error

        if not response.is_success:
            raise CallbackError(
                f"Callback API returned HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        return response

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> CallbackClient:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def _json_body(response: httpx.Response) -> dict[str, Any]:
    try:
        payload = response.json()
    except ValueError as error:
        raise CallbackError("Callback API returned invalid JSON") from error
    if not isinstance(payload, dict):
        raise CallbackError("Callback API returned a non-object JSON body")
    return payload
