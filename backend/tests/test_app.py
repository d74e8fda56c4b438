"""
tests/test_app.py
──────────────────
Application-wide behaviour: health check, error rendering and inbound rate limits.
"""
import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from coinfolio.core.errors import ConflictError, RateLimitedError, register_exception_handlers
from coinfolio.core.rate_limit import SlidingWindowRateLimiter, api_limiter

from conftest import FakeClock


class TestHealth:

    async def test_health(self, app_client) -> None:
        resp = await app_client.get("/api/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "ok"
        assert body["service"] == "coinfolio"
        assert "timestamp" in body


class TestErrorRendering:

    @pytest.fixture
    async def error_client(self):
        app = FastAPI()
        register_exception_handlers(app)

        @app.get("/conflict")
        def conflict():
            raise ConflictError("Already there")

        @app.get("/boom")
        def boom():
            raise RuntimeError("secret internals")

        async with AsyncClient(
            transport=ASGITransport(app=app, raise_app_exceptions=False),
            base_url="http://test",
        ) as client:
            yield client

    async def test_application_error_shape(self, error_client) -> None:
        resp = await error_client.get("/conflict")
        assert resp.status_code == 409
        assert resp.json() == {"success": False, "error": "Already there"}

    async def test_unexpected_error_is_sanitized(self, error_client) -> None:
        resp = await error_client.get("/boom")
        assert resp.status_code == 500
        assert resp.json() == {"success": False, "error": "Internal server error"}

    async def test_unknown_route_uses_error_shape(self, app_client) -> None:
        resp = await app_client.get("/api/nope")
        assert resp.status_code == 404
        assert resp.json()["success"] is False


class TestInboundRateLimit:

    def test_sliding_window(self) -> None:
        clock = FakeClock()
        limiter = SlidingWindowRateLimiter(2, 60, timer=clock)
        limiter.hit("1.2.3.4")
        limiter.hit("1.2.3.4")
        with pytest.raises(RateLimitedError):
            limiter.hit("1.2.3.4")
        limiter.hit("5.6.7.8")
        clock.advance(61)
        limiter.hit("1.2.3.4")

    def test_idle_clients_are_forgotten(self) -> None:
        clock = FakeClock()
        limiter = SlidingWindowRateLimiter(5, 60, timer=clock)
        for i in range(5000):
            limiter.hit(f"10.0.{i // 256}.{i % 256}")
        assert len(limiter) == 5000

        clock.advance(3600)
        limiter.hit("192.168.0.1")
        assert len(limiter) == 1

    def test_sweep_keeps_clients_inside_the_window(self) -> None:
        clock = FakeClock()
        limiter = SlidingWindowRateLimiter(1, 60, timer=clock)
        limiter.hit("early")
        clock.advance(30)
        limiter.hit("recent")
        clock.advance(40)
        limiter.hit("other")
        assert len(limiter) == 2
        with pytest.raises(RateLimitedError):
            limiter.hit("recent")

    async def test_api_routes_are_limited(self, app_client, monkeypatch) -> None:
        monkeypatch.setattr(api_limiter, "max_requests", 3)
        for _ in range(3):
            assert (await app_client.get("/api/health")).status_code == 200
        resp = await app_client.get("/api/health")
        assert resp.status_code == 429
        assert resp.json()["success"] is False
