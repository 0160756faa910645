import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from yieldpath.config import get_settings
from yieldpath.middleware import rate_limit
from yieldpath.middleware.rate_limit import rate_limit_key, rate_limiter


class FakeRedis:
    def __init__(self):
        self.counts = {}
        self.expiries = {}

    async def incr(self, key):
        self.counts[key] = self.counts.get(key, 0) + 1
        return self.counts[key]

    async def expire(self, key, seconds):
        self.expiries[key] = seconds


@pytest.fixture
def redis(monkeypatch):
    fake = FakeRedis()

    async def get_fake_redis():
        return fake

    monkeypatch.setattr(rate_limit, "get_redis", get_fake_redis)
    monkeypatch.setenv("RATE_LIMIT_MAX_REQUESTS", "2")
    get_settings.cache_clear()
    return fake


@pytest.fixture
def client(redis):
    app = FastAPI()

    @app.middleware("http")
    async def _rate_limit(request, call_next):
        return await rate_limiter(request, call_next)

    @app.post("/get_path")
    async def get_path():
        return {"ok": True}

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return TestClient(app)


def test_key_is_per_ip_and_window():
    assert rate_limit_key("1.2.3.4", 60, 125.0) == "rate:get_path:1.2.3.4:2"
    assert rate_limit_key("1.2.3.4", 60, 179.9) == rate_limit_key("1.2.3.4", 60, 120.0)


def test_blocks_after_limit(client, redis):
    assert client.post("/get_path").status_code == 200
    assert client.post("/get_path").status_code == 200

    resp = client.post("/get_path")

    assert resp.status_code == 429
    assert resp.json() == {"detail": "Rate limit exceeded, try again later"}
    assert list(redis.expiries.values()) == [60]


def test_unprotected_paths_are_not_counted(client, redis):
    for _ in range(5):
        assert client.get("/health").status_code == 200
    assert redis.counts == {}
