"""Shared fixtures and provider doubles for the relay tests."""

import os
from contextlib import contextmanager
from typing import Any, Dict, List

import pytest
from fastapi.testclient import TestClient

from chatrelay.models import Message
from chatrelay.storage.session_store import SessionStore


@pytest.fixture
def app():
    """
    Import the FastAPI app from the runtime.

    The implementation is expected to expose `app` at `chatrelay.main`.
    """
    from chatrelay.main import app as fastapi_app  # type: ignore

    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def store(app):
    """Fresh session store per test, injected via dependency_overrides."""
    from chatrelay.dependencies import get_session_store

    fresh = SessionStore()
    app.dependency_overrides[get_session_store] = lambda: fresh
    return fresh


@contextmanager
def env_vars(env: Dict[str, str]):
    """
    Temporarily set environment variables for a test.

    Restores previous values afterwards, even if the test fails.
    """
    old_values: Dict[str, Any] = {}
    for key, value in env.items():
        old_values[key] = os.environ.get(key)
        os.environ[key] = value
    try:
        yield
    finally:
        for key, old in old_values.items():
            if old is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = old


class RecordingProvider:
    """
    Test double that records every message list it receives and answers
    with a numbered reply.
    """

    name = "recording"

    def __init__(self, replies: List[str] | None = None):
        self._replies = replies or []
        self.requests: List[List[Message]] = []

    @property
    def calls(self) -> int:
        return len(self.requests)

    async def complete(self, messages):
        self.requests.append(list(messages))
        idx = len(self.requests) - 1
        content = self._replies[idx] if idx < len(self._replies) else f"reply {idx + 1}"
        return Message(role="assistant", content=content)


class RaisingProvider:
    """Provider that always raises the given exception."""

    name = "raising"

    def __init__(self, exc: Exception):
        self.exc = exc
        self.calls = 0

    async def complete(self, messages):
        self.calls += 1
        raise self.exc


def override_provider(app, provider):
    """
    Override the runtime's provider dependency with a test double.

    Contract: `chatrelay.dependencies.get_provider` is the dependency used by
    /api/prompt and the WebSocket relay.
    """
    from chatrelay.dependencies import get_provider  # type: ignore

    app.dependency_overrides[get_provider] = lambda: provider
    return get_provider

