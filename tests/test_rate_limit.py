"""Tests for the fixed-window rate limiter."""

import pytest
import redis

from festchat.core.exceptions import RateLimited
from festchat.core.rate_limit import RateLimiter


def test_limit_is_enforced_per_subject(fake_redis):
    limiter = RateLimiter(lambda: fake_redis, window=60)

    assert [limiter.hit("message", "alice", 3) for _ in range(3)] == [1, 2, 3]
    with pytest.raises(RateLimited) as exc:
        limiter.hit("message", "alice", 3)
    assert 0 < exc.value.extra["retryAfter"] <= 60
    assert limiter.hit("message", "bob", 3) == 1


def test_admins_are_exempt(fake_redis):
    limiter = RateLimiter(lambda: fake_redis, window=60)
    for _ in range(5):
        assert limiter.hit("chat", "boss", 1, is_admin=True) is None


def test_fails_open_without_redis():
    def unavailable():
        raise redis.ConnectionError("down")

    assert RateLimiter(unavailable, window=60).hit("auth", "1.2.3.4", 1) is None


def test_limited_response_carries_retry_after(client, monkeypatch):
    monkeypatch.setattr("festchat.core.dependencies.settings.AUTH_RATE_LIMIT", 1)
    body = {"email": "nobody@festival.io", "password": "whatever"}

    assert client.post("/api/v1/auth/login", json=body).status_code == 401
    response = client.post("/api/v1/auth/login", json=body)

    assert response.status_code == 429
    assert response.json()["code"] == "RATE_LIMITED"
    assert int(response.headers["retry-after"]) > 0
