"""Pytest configuration and fixtures."""

import os
from collections.abc import Callable, Iterator
from datetime import datetime, timezone

import pytest

from portfolio_chat_api.config import Settings

# Set test environment variables before importing app modules
os.environ.setdefault("OPENAI_API_KEY", "")
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("REDIS_URL", "")
os.environ.setdefault("CHATKIT_WORKFLOW_ID", "wf_test")
# Increase rate limit for testing
os.environ.setdefault("RATE_LIMIT_PER_MINUTE", "1000")
# Enable mock mode for OpenAI in tests
os.environ.setdefault("MOCK_OPENAI", "true")


@pytest.fixture(autouse=True)
def reset_caches() -> Iterator[None]:
    """Reset cached settings and global clients before each test."""
    from portfolio_chat_api.clerk_client import reset_clerk_client
    from portfolio_chat_api.config import get_settings
    from portfolio_chat_api.identity import reset_token_verifier
    from portfolio_chat_api.openai_client import reset_openai_client
    from portfolio_chat_api.usage_store import reset_usage_store

    def _reset() -> None:
        get_settings.cache_clear()
        reset_usage_store()
        reset_openai_client()
        reset_clerk_client()
        reset_token_verifier()

    _reset()

    # Reset rate limiter storage
    try:
        from portfolio_chat_api.main import limiter

        if hasattr(limiter, "_storage") and limiter._storage:
            limiter._storage.reset()
    except (ImportError, AttributeError):
        pass

    yield
    _reset()


@pytest.fixture
def mock_settings(monkeypatch: pytest.MonkeyPatch) -> Callable[..., Settings]:
    """Fixture to set test settings."""

    def _mock_settings(**kwargs: str) -> Settings:
        for key, value in kwargs.items():
            monkeypatch.setenv(key.upper(), str(value))
        from portfolio_chat_api.config import get_settings

        get_settings.cache_clear()
        return get_settings()

    return _mock_settings


class FakeClock:
    """Settable clock for day boundary tests."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    """Clock fixed at 2026-03-10 12:00 UTC."""
    return FakeClock(datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc))
