"""Tests for the bucketed rate limiter."""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any

import pytest

from rivetbot.constants import RATE_LIMIT_FALLBACK_DELAY
from rivetbot.errors import RateLimitExceeded, RateLimitTimeout
from rivetbot.rate_limiter import RateBucket, RateLimiter, _parse_rejection


@dataclass
class FakeResponse:
    status_code: int = 200
    headers: dict = field(default_factory=dict)
    body: Any = None

    def json(self):
        if self.body is None:
            raise ValueError("no body")
        return self.body


class TestRateBucket:
    def test_unknown_bucket_passes(self):
        bucket = RateBucket("b")
        assert bucket.try_take(0.0) == 0.0
        assert bucket.remaining is None

    def test_takes_until_empty(self):
        bucket = RateBucket("b", limit=2, window=10.0)
        assert bucket.try_take(0.0) == 0.0
        assert bucket.try_take(1.0) == 0.0
        assert bucket.remaining == 0
        assert bucket.try_take(4.0) == pytest.approx(6.0)

    def test_refills_at_reset(self):
        bucket = RateBucket("b", limit=1, window=5.0)
        bucket.try_take(0.0)
        assert bucket.try_take(5.0) == 0.0

    def test_remaining_never_negative(self):
        bucket = RateBucket("b", limit=1, window=5.0)
        for now in (0.0, 1.0, 2.0):
            bucket.try_take(now)
        assert bucket.remaining == 0

    def test_zero_limit_without_reset_waits_fixed_delay(self):
        limiter = RateLimiter(clock=lambda: 0.0)
        limiter.update("b", {"X-RateLimit-Limit": "0", "X-RateLimit-Remaining": "0"})
        bucket = limiter.bucket("b")
        assert bucket.try_take(0.0) == pytest.approx(RATE_LIMIT_FALLBACK_DELAY)
        assert bucket.try_take(0.5) == pytest.approx(RATE_LIMIT_FALLBACK_DELAY - 0.5)
        # After the delay one request goes through to learn fresh headers
        assert bucket.try_take(RATE_LIMIT_FALLBACK_DELAY) == 0.0


class TestAcquire:
    @pytest.mark.asyncio
    async def test_unknown_bucket_granted_immediately(self):
        limiter = RateLimiter()
        token = await limiter.acquire("GET /gateway/bot")
        assert token.bucket == "GET /gateway/bot"
        assert token.waited < 0.05

    @pytest.mark.asyncio
    async def test_one_remaining_two_acquires(self):
        limiter = RateLimiter()
        limiter.update(
            "POST /channels/{channel_id}/messages [1]",
            {"X-RateLimit-Limit": "5", "X-RateLimit-Remaining": "1", "X-RateLimit-Reset-After": "0.2"},
        )
        key = "POST /channels/{channel_id}/messages [1]"

        start = time.monotonic()
        first, second = await asyncio.gather(limiter.acquire(key), limiter.acquire(key))
        elapsed = time.monotonic() - start

        assert first.waited < 0.05
        assert second.waited >= 0.15
        assert elapsed >= 0.15

    @pytest.mark.asyncio
    async def test_waiters_served_in_order(self):
        limiter = RateLimiter()
        limiter.configure("b", limit=1, window=0.05)
        order = []

        async def take(i):
            await limiter.acquire("b")
            order.append(i)

        await asyncio.gather(*(take(i) for i in range(4)))
        assert order == [0, 1, 2, 3]

    @pytest.mark.asyncio
    async def test_timeout(self):
        limiter = RateLimiter()
        limiter.update("b", {"x-ratelimit-remaining": "0", "x-ratelimit-reset-after": "5"})
        with pytest.raises(RateLimitTimeout) as exc_info:
            await limiter.acquire("b", timeout=0.05)
        assert exc_info.value.bucket == "b"

    @pytest.mark.asyncio
    async def test_buckets_independent(self):
        limiter = RateLimiter()
        limiter.update("a", {"x-ratelimit-remaining": "0", "x-ratelimit-reset-after": "5"})
        token = await asyncio.wait_for(limiter.acquire("b"), 0.1)
        assert token.bucket == "b"

    @pytest.mark.asyncio
    async def test_global_limit_blocks_all_buckets(self):
        limiter = RateLimiter()
        limiter.reject("a", 0.1, is_global=True)
        assert limiter.get_stats()["global_blocked"] is True
        token = await limiter.acquire("b")
        assert token.waited >= 0.05


class TestUpdate:
    def test_headers_applied(self):
        limiter = RateLimiter(clock=lambda: 100.0)
        limiter.update(
            "b",
            {"x-ratelimit-limit": "10", "x-ratelimit-remaining": "3", "x-ratelimit-reset-after": "2.5"},
        )
        stats = limiter.get_stats()["buckets"]["b"]
        assert stats == {"limit": 10, "remaining": 3, "reset_in": 2.5, "waiting": 0}

    def test_missing_headers_ignored(self):
        limiter = RateLimiter()
        limiter.update("b", {"content-type": "application/json"})
        assert limiter.get_stats()["buckets"] == {}

    def test_malformed_headers_ignored(self):
        limiter = RateLimiter()
        limiter.update("b", {"x-ratelimit-remaining": "lots"})
        assert limiter.bucket("b").remaining is None


class TestSubmit:
    @pytest.mark.asyncio
    async def test_success_updates_bucket(self):
        limiter = RateLimiter()

        async def call():
            return FakeResponse(headers={"x-ratelimit-remaining": "4", "x-ratelimit-limit": "5"})

        response = await limiter.submit("b", call)
        assert response.status_code == 200
        assert limiter.bucket("b").remaining == 4

    @pytest.mark.asyncio
    async def test_429_retried(self):
        limiter = RateLimiter()
        responses = [
            FakeResponse(429, {"retry-after": "0.05"}, {"retry_after": 0.05, "global": False}),
            FakeResponse(200),
        ]
        calls = 0

        async def call():
            nonlocal calls
            calls += 1
            return responses.pop(0)

        response = await limiter.submit("b", call)
        assert response.status_code == 200
        assert calls == 2

    @pytest.mark.asyncio
    async def test_429_exhausts_retries(self):
        limiter = RateLimiter()

        async def call():
            return FakeResponse(429, {"retry-after": "0.01"})

        with pytest.raises(RateLimitExceeded) as exc_info:
            await limiter.submit("b", call, max_retries=2)
        assert exc_info.value.retry_after == pytest.approx(0.01)


class TestParseRejection:
    def test_header(self):
        assert _parse_rejection(FakeResponse(429, {"Retry-After": "2"})) == (2.0, False)

    def test_body(self):
        response = FakeResponse(429, {}, {"retry_after": 0.5, "global": True})
        assert _parse_rejection(response) == (0.5, True)

    def test_global_header(self):
        response = FakeResponse(429, {"retry-after": "1", "x-ratelimit-global": "true"})
        assert _parse_rejection(response) == (1.0, True)

    def test_default(self):
        assert _parse_rejection(FakeResponse(429)) == (1.0, False)
