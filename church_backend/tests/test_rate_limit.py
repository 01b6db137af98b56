from fastapi.testclient import TestClient

from src.api.context import AppContext
from src.api.main import create_app
from src.api.models import Base
from src.api.rate_limit import SlidingWindowLimiter


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_sliding_window_admits_again_after_window():
    clock = FakeClock()
    limiter = SlidingWindowLimiter(max_calls=2, window=60, clock=clock)
    assert limiter.allow("1.2.3.4")
    assert limiter.allow("1.2.3.4")
    assert not limiter.allow("1.2.3.4")
    assert limiter.allow("5.6.7.8")

    clock.now += 61
    assert limiter.allow("1.2.3.4")


def test_api_routes_return_429_once_limit_is_hit(settings, provider):
    context = AppContext.build(settings.model_copy(update={"rate_limit_max_requests": 2}), provider=provider)
    Base.metadata.create_all(bind=context.engine)
    client = TestClient(create_app(context=context))
    try:
        assert client.get("/api/auth/me").status_code == 401
        assert client.get("/api/auth/me").status_code == 401
        resp = client.get("/api/auth/me")
        assert resp.status_code == 429
        assert resp.json() == {"error": "Too many requests, please try again later"}
        # health is outside /api and never limited
        assert client.get("/health").status_code == 200
    finally:
        context.close()


def test_forwarded_headers_are_ignored_without_trusted_proxy(settings, provider):
    context = AppContext.build(settings.model_copy(update={"rate_limit_max_requests": 1}), provider=provider)
    client = TestClient(create_app(context=context))
    try:
        assert client.get("/api/auth/me", headers={"X-Forwarded-For": "10.0.0.1"}).status_code == 401
        assert client.get("/api/auth/me", headers={"X-Forwarded-For": "10.0.0.2"}).status_code == 429
        assert client.get("/api/auth/me", headers={"X-Real-IP": "10.0.0.3"}).status_code == 429
    finally:
        context.close()


def test_limit_is_per_client_behind_trusted_proxy(settings, provider):
    trusted = settings.model_copy(update={"rate_limit_max_requests": 1, "forwarded_allow_ips": "*"})
    context = AppContext.build(trusted, provider=provider)
    client = TestClient(create_app(context=context))
    try:
        assert client.get("/api/auth/me", headers={"X-Forwarded-For": "10.0.0.1"}).status_code == 401
        assert client.get("/api/auth/me", headers={"X-Forwarded-For": "10.0.0.1"}).status_code == 429
        assert client.get("/api/auth/me", headers={"X-Forwarded-For": "10.0.0.2"}).status_code == 401
    finally:
        context.close()


def test_idle_clients_are_dropped():
    clock = FakeClock()
    limiter = SlidingWindowLimiter(max_calls=5, window=60, clock=clock)
    for i in range(50):
        assert limiter.allow(f"10.0.0.{i}")
    assert len(limiter) == 50

    clock.now += 61
    assert limiter.allow("10.0.1.1")
    assert len(limiter) == 1
