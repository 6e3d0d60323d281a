"""File-backed storage for the conversation session id.

The store assumes a single writer: two runner instances sharing one session
file race on it and the result is whichever write lands last.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)

SESSION_ID_FIELD = "sessionId"


class SessionStore:
    """Load, save and delete a single session id at a fixed path."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self) -> str | None:
        """Return the stored session id, or None if absent or unreadable."""

        if not self.path.exists():
            logger.info("No session file at %s, starting new session", self.path)
            return None
        try:
            payload = json.loads(self.path.read_text("utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as error:
            logger.warning(
                "Failed to read session file %s, starting new session: %s",
                self.path,
                error,
            )
            return None

        session_id = payload.get(SESSION_ID_FIELD) if isinstance(payload, dict) else None
        if not isinstance(session_id, str) or not session_id.strip():
            logger.warning("Session file %s has no usable %s", self.path, SESSION_ID_FIELD)
            return None
        return session_id

    def save(self, session_id: str) -> bool:
        """Persist the session id; report failure instead of raising."""

        content = json.dumps({SESSION_ID_FIELD: session_id}, indent=2)
        tmp_name: str | None = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self.path.parent,
                prefix=f".{self.path.name}.",
                suffix=".tmp",
                delete=False,
            ) as handle:
                tmp_name = handle.name
                handle.write(content)
            os.replace(tmp_name, self.path)
        except OSError as error:
            logger.warning("Failed to save session %s to %s: %s", session_id, self.path, error)
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)
            return False
        logger.info("Session saved: %s", session_id)
        return True

    def reset(self) -> bool:
        """Delete the session file. Returns True if a file was removed."""

        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        except OSError as error:
            logger.warning("Failed to delete session file %s: %s", self.path, error)
            return False
        logger.info("Session reset: removed %s", self.path)
        return True
