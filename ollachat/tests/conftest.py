"""Pytest fixtures and config."""

import pytest

from ollachat.tests.fakes import FakeRedis


@pytest.fixture(autouse=True)
def env_cleanup(monkeypatch):
    """Keep the developer's environment out of the tests."""
    for name in ("OLLAMA_HOST", "OLLAMA_API_KEY", "OLLAMA_OPENAI_COMPAT", "OLLAMA_DEFAULT_MODEL", "PORT", "SECRET_KEY", "LOG_LEVEL", "OLLACHAT_ENV"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("REDIS_URL", "redis://localhost:6379/1")
    yield


@pytest.fixture
def fake_redis():
    return FakeRedis()
