"""Shared fixtures.

Mocking strategy:
- ``settings`` is patched per test so backend functions resolve to a fake
  ``FUNCTIONS_URL`` and uploads land in ``tmp_path``; ``respx`` then mocks the
  httpx transport for those URLs.
- The document store is always the in-memory repository; no Supabase calls.
"""
import json
from typing import Callable

import pytest

from canvas_engine import workspace
from canvas_engine.config import settings
from canvas_engine.graph_state import GraphStore
from canvas_engine.services import canvas_repository
from canvas_engine.services.canvas_repository import InMemoryCanvasRepository
from canvas_engine.services.content_cache import ContentCache

FUNCTIONS_URL = "https://functions.test"


@pytest.fixture(autouse=True)
def _settings(monkeypatch, tmp_path):
    monkeypatch.setattr(settings, "functions_url", FUNCTIONS_URL)
    monkeypatch.setattr(settings, "supabase_url", "")
    monkeypatch.setattr(settings, "supabase_key", "")
    monkeypatch.setattr(settings, "cache_path", "")
    monkeypatch.setattr(settings, "upload_dir", str(tmp_path / "uploads"))


@pytest.fixture()
def fn_url() -> Callable[[str], str]:
    """URL of a named backend function."""
    return lambda name: f"{FUNCTIONS_URL}/{name}"


@pytest.fixture()
def sse() -> Callable[..., str]:
    """Build an event-stream body whose frames carry the given delta fragments."""

    def _build(*parts: str) -> str:
        frames = [
            "data: " + json.dumps({"choices": [{"delta": {"content": p}}]}) + "\n\n"
            for p in parts
        ]
        return ": keep-alive\n\n" + "".join(frames) + "data: [DONE]\n\n"

    return _build


@pytest.fixture()
def store() -> GraphStore:
    return GraphStore()


@pytest.fixture()
def cache() -> ContentCache:
    return ContentCache()


@pytest.fixture()
def repository() -> InMemoryCanvasRepository:
    return InMemoryCanvasRepository()


@pytest.fixture()
def fresh_workspaces(monkeypatch, repository):
    """Empty workspace registry wired to an in-memory store and cache."""
    monkeypatch.setattr(canvas_repository, "_instance", repository)
    monkeypatch.setattr(workspace, "_cache", ContentCache())
    monkeypatch.setattr(workspace, "_workspaces", {})
    return repository
