from __future__ import annotations

import json
import logging
from pathlib import Path

import allure

from agent_runner.runner.session_store import SessionStore

pytestmark = [
    allure.epic("Agent Runtime"),
    allure.feature("Session Continuity"),
]


def test_save_then_load_round_trips(tmp_path: Path) -> None:
    store = SessionStore(tmp_path / ".claude-session.json")

    assert store.save("abc-123") is True
    assert store.load() == "abc-123"
    assert json.loads(store.path.read_text("utf-8")) == {"sessionId": "abc-123"}


def test_save_overwrites_previous_session(tmp_path: Path) -> None:
    store = SessionStore(tmp_path / "session.json")
    store.save("first")
    store.save("second")

    assert store.load() == "second"
    assert [path.name for path in tmp_path.iterdir()] == ["session.json"]


def test_reset_removes_file_and_load_returns_none(tmp_path: Path) -> None:
    store = SessionStore(tmp_path / "session.json")
    store.save("abc-123")

    assert store.reset() is True
    assert not store.path.exists()
    assert store.load() is None


def test_reset_missing_file_is_noop(tmp_path: Path) -> None:
    store = SessionStore(tmp_path / "session.json")

    assert store.reset() is False


def test_load_missing_file_returns_none(tmp_path: Path) -> None:
    assert SessionStore(tmp_path / "missing.json").load() is None


def test_load_corrupt_file_warns_and_returns_none(tmp_path: Path, caplog) -> None:
    path = tmp_path / "session.json"
    path.write_text("{not json", "utf-8")

    with caplog.at_level(logging.WARNING, logger="agent_runner.runner.session_store"):
        assert SessionStore(path).load() is None

    assert "Failed to read session file" in caplog.text


def test_load_document_without_session_id_returns_none(tmp_path: Path) -> None:
    path = tmp_path / "session.json"
    for content in ('{"other": 1}', '{"sessionId": ""}', '{"sessionId": 7}', "[]"):
        path.write_text(content, "utf-8")
        assert SessionStore(path).load() is None


def test_save_failure_is_reported_not_raised(tmp_path: Path, caplog) -> None:
    target = tmp_path / "occupied"
    target.mkdir()
    store = SessionStore(target)

    with caplog.at_level(logging.WARNING, logger="agent_runner.runner.session_store"):
        assert store.save("abc-123") is False

    assert "Failed to save session" in caplog.text
    assert [path.name for path in tmp_path.iterdir()] == ["occupied"]


def test_save_creates_parent_directories(tmp_path: Path) -> None:
    store = SessionStore(tmp_path / "nested" / "dir" / "session.json")

    assert store.save("abc-123") is True
    assert store.load() == "abc-123"
