"""Shared pytest fixtures."""

import pytest

from yieldpath.config import get_settings
from yieldpath.services.cache import CapabilityCache

from fakes import FakeClock


@pytest.fixture(autouse=True)
def isolate_settings(monkeypatch, tmp_path):
    """Keep tests independent of the developer's environment and .env file."""
    for key in ("API_SECRET", "ANTHROPIC_API_KEY", "MODEL_API_KEY", "ENABLE_REDIS", "ENABLE_LOKI", "CACHE_TTL_MS"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return CapabilityCache(ttl_ms=60 * 60 * 1000, clock=clock)
