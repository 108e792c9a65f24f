from __future__ import annotations

import dataclasses
import importlib
import sys
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from engagement_core.notifications import SendOutcome  # noqa: E402
from patient_store import SQLiteEngagementDB  # noqa: E402


class RecordingTransport:
    """Messaging fake: records every send and fails for the configured recipients."""

    def __init__(self, failing: set[str] | None = None, raising: set[str] | None = None) -> None:
        self.failing = failing or set()
        self.raising = raising or set()
        self.sent: list[tuple[str, str]] = []

    async def send(self, recipient: str, text: str) -> SendOutcome:
        if recipient in self.raising:
            raise RuntimeError(f"gateway unreachable for {recipient}")
        self.sent.append((recipient, text))
        if recipient in self.failing:
            return SendOutcome(recipient=recipient, ok=False, error="rejected")
        return SendOutcome(recipient=recipient, ok=True)


class ScriptedClassifier:
    """Classification fake returning canned raw content per prompt kind."""

    def __init__(self, replies: dict[str, Any] | None = None) -> None:
        self.replies = replies or {}
        self.calls: list[tuple[str, str]] = []

    async def classify(self, prompt_kind: str, context: dict[str, Any], message: str) -> dict[str, Any]:
        self.calls.append((prompt_kind, message))
        reply = self.replies.get(prompt_kind)
        if isinstance(reply, Exception):
            raise reply
        if reply is None:
            raise RuntimeError("no scripted reply")
        return {"content": reply}


@pytest.fixture
def backend_module(tmp_path, monkeypatch):
    db_path = tmp_path / "engagement-test.sqlite"
    monkeypatch.setenv("ENGAGE_DB_PATH", str(db_path))
    # Keep CI deterministic; classifier and messaging fakes are injected per test.
    monkeypatch.setenv("ENGAGE_DISABLE_EXTERNAL_CALLS", "true")
    monkeypatch.setenv("ENGAGE_JSON_LOGS", "false")
    monkeypatch.delenv("ENGAGE_STAFF_ALERT_RECIPIENTS", raising=False)

    if "main" in sys.modules:
        module = importlib.reload(sys.modules["main"])
    else:
        module = importlib.import_module("main")
    return module


@pytest.fixture
def client(backend_module):
    with TestClient(backend_module.app) as test_client:
        yield test_client


@pytest.fixture
def engagement(backend_module):
    return backend_module.container


@pytest.fixture
def db(tmp_path) -> SQLiteEngagementDB:
    return SQLiteEngagementDB(str(tmp_path / "store-test.sqlite"))


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def make_engagement(backend_module, tmp_path):
    """Build an isolated service container with injected fakes."""

    def _make(*, classifier: Any = None, transport: Any = None, **overrides: Any):
        config = dataclasses.replace(
            backend_module.Settings.from_env(),
            db_path=str(tmp_path / "stack.sqlite"),
            **overrides,
        )
        return backend_module.EngagementApp(
            config,
            classifier=classifier,
            transport=transport or RecordingTransport(),
        )

    return _make
