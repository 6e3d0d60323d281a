"""Domain models for stream events and attempt outcomes."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ContentKind(str, Enum):
    """Assistant message content item kinds the runner understands."""

    TEXT = "text"
    TOOL_USE = "tool_use"
    TOOL_RESULT = "tool_result"


class AttemptStatus(str, Enum):
    """Terminal states of one supervised attempt."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class FailureKind(str, Enum):
    """Normalized failure kinds fed back into the retry loop."""

    SPAWN = "spawn"
    SUBPROCESS_EXIT = "subprocess_exit"
    PROTOCOL = "protocol"
    TIMEOUT = "timeout"
    INTERRUPTED = "interrupted"


@dataclass(slots=True)
class ContentItem:
    kind: ContentKind
    payload: dict[str, Any]

    @property
    def text(self) -> str:
        value = self.payload.get("text")
        return value if isinstance(value, str) else ""


@dataclass(slots=True)
class SystemEvent:
    subtype: str
    session_id: str | None = None


@dataclass(slots=True)
class AssistantEvent:
    items: list[ContentItem] = field(default_factory=list)


@dataclass(slots=True)
class ResultEvent:
    subtype: str
    session_id: str | None = None
    error_message: str | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def is_success(self) -> bool:
        return self.subtype == "success"

    @property
    def is_error(self) -> bool:
        return self.subtype.startswith("error")


@dataclass(slots=True)
class UnknownEvent:
    type: str


StreamEvent = SystemEvent | AssistantEvent | ResultEvent | UnknownEvent


@dataclass(slots=True)
class AttemptOutcome:
    """Result of one supervised subprocess execution."""

    status: AttemptStatus
    failure: FailureKind | None = None
    message: str = ""
    session_id: str | None = None
    response_text: str = ""
    exit_code: int | None = None
    signals_sent: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == AttemptStatus.SUCCEEDED


@dataclass(slots=True)
class RunOutcome:
    """Aggregate outcome of a retried run for CLI reporting."""

    succeeded: bool
    attempts: int
    session_id: str | None = None
    response_text: str = ""
    message: str = ""
    interrupted: bool = False
    last_attempt: AttemptOutcome | None = None
