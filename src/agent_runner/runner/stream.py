"""Newline-delimited JSON decoding of the agent's stdout."""

from __future__ import annotations

import codecs
import json
import logging
from collections.abc import Iterator
from typing import Any

from agent_runner.runner.models import (
    AssistantEvent,
    ContentItem,
    ContentKind,
    ResultEvent,
    StreamEvent,
    SystemEvent,
    UnknownEvent,
)

logger = logging.getLogger(__name__)

_CONTENT_KINDS = {kind.value: kind for kind in ContentKind}


class LineAssembler:
    """Reassemble text lines from arbitrarily split byte chunks."""

    def __init__(self, encoding: str = "utf-8") -> None:
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""

    def feed(self, chunk: bytes) -> list[str]:
        self._buffer += self._decoder.decode(chunk)
        if "\n" not in self._buffer:
            return []
        *complete, self._buffer = self._buffer.split("\n")
        return [line.removesuffix("\r") for line in complete]

    def flush(self) -> list[str]:
        """Return the trailing unterminated line, if any."""

        self._buffer += self._decoder.decode(b"", final=True)
        tail, self._buffer = self._buffer, ""
        tail = tail.removesuffix("\r")
        return [tail] if tail else []


class EventStreamParser:
    """Turn stdout chunks into protocol events in arrival order."""

    def __init__(self) -> None:
        self._lines = LineAssembler()

    def feed(self, chunk: bytes) -> Iterator[StreamEvent]:
        yield from _parse_lines(self._lines.feed(chunk))

    def close(self) -> Iterator[StreamEvent]:
        yield from _parse_lines(self._lines.flush())


def _parse_lines(lines: list[str]) -> Iterator[StreamEvent]:
    for line in lines:
        event = parse_event(line)
        if event is not None:
            yield event


def parse_event(line: str) -> StreamEvent | None:
    """Parse one protocol line; anything that is not a JSON object yields None."""

    stripped = line.strip()
    if not stripped:
        return None
    try:
        payload = json.loads(stripped)
    except (ValueError, RecursionError):
        logger.debug("Skipping non-protocol line: %.200s", stripped)
        return None
    if not isinstance(payload, dict):
        logger.debug("Skipping non-object line: %.200s", stripped)
        return None

    event_type = payload.get("type")
    if event_type == "system":
        return SystemEvent(
            subtype=_optional_str(payload.get("subtype")) or "",
            session_id=_optional_str(payload.get("session_id")),
        )
    if event_type == "assistant":
        return AssistantEvent(items=_content_items(payload.get("message")))
    if event_type == "result":
        return _result_event(payload)
    return UnknownEvent(type=event_type if isinstance(event_type, str) else "")


def _content_items(message: Any) -> list[ContentItem]:
    if not isinstance(message, dict):
        return []
    content = message.get("content")
    if not isinstance(content, list):
        return []

    items: list[ContentItem] = []
    for raw in content:
        if not isinstance(raw, dict):
            continue
        raw_type = raw.get("type")
        kind = _CONTENT_KINDS.get(raw_type) if isinstance(raw_type, str) else None
        if kind is None:
            continue
        items.append(ContentItem(kind=kind, payload=raw))
    return items


def _result_event(payload: dict[str, Any]) -> ResultEvent:
    error = payload.get("error")
    error_message = None
    if isinstance(error, dict):
        error_message = _optional_str(error.get("message"))
    elif isinstance(error, str):
        error_message = error

    raw_errors = payload.get("errors")
    errors = [str(item) for item in raw_errors] if isinstance(raw_errors, list) else []
    return ResultEvent(
        subtype=_optional_str(payload.get("subtype")) or "",
        session_id=_optional_str(payload.get("session_id")),
        error_message=error_message,
        errors=errors,
    )


def _optional_str(value: Any) -> str | None:
    if isinstance(value, str) and value:
        return value
    return None
