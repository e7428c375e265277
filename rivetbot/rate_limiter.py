# =============================================================================
# rivetbot -- Bucketed Rate Limiter
# =============================================================================
#
# Buckets are keyed by route class. Each bucket is a single critical section
# (asyncio.Lock, FIFO), so waiters are served first-come-first-served and
# the token count never goes negative.
# =============================================================================

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol, TypeVar

from ._logging import logger
from .constants import (
    HEADER_GLOBAL,
    HEADER_LIMIT,
    HEADER_REMAINING,
    HEADER_RESET_AFTER,
    HEADER_RETRY_AFTER,
    RATE_LIMIT_FALLBACK_DELAY,
    RATE_LIMIT_MAX_RETRIES,
)
from .errors import RateLimitExceeded, RateLimitTimeout


class RateLimitedResponse(Protocol):
    """What :meth:`RateLimiter.submit` needs from a response (``httpx.Response`` fits)."""

    status_code: int
    headers: Mapping[str, str]


R = TypeVar("R", bound=RateLimitedResponse)


@dataclass(frozen=True, slots=True)
class BucketToken:
    """Proof of a granted slot in a bucket."""

    bucket: str
    granted_at: float
    waited: float = 0.0


class RateBucket:
    """Token accounting for one route class.

    Attributes:
        key: Bucket key.
        limit: Tokens per window, ``None`` until learned.
        remaining: Tokens left, ``None`` until learned (requests pass freely).
        reset_at: Monotonic time the bucket refills, ``None`` if unknown.
        window: Fixed window length for locally configured buckets.
    """

    def __init__(
        self,
        key: str,
        *,
        limit: int | None = None,
        window: float | None = None,
    ) -> None:
        self.key = key
        self.limit = limit
        self.remaining = limit
        self.window = window
        self.reset_at: float | None = None
        self.lock = asyncio.Lock()
        self.waiting = 0

    def _refresh(self, now: float) -> None:
        if self.reset_at is not None and now >= self.reset_at:
            # A zero limit lets one request through to learn fresh headers
            self.remaining = self.limit or None
            self.reset_at = None
        elif self.reset_at is None and self.remaining == 0:
            # Exhausted without a known reset time: trust the limit again
            self.remaining = self.limit

    def try_take(self, now: float) -> float:
        """Take one token. Returns 0.0 on success, else seconds until reset."""
        self._refresh(now)
        if self.remaining is None:
            return 0.0
        if self.remaining > 0:
            self.remaining -= 1
            if self.reset_at is None and self.window is not None:
                self.reset_at = now + self.window
            return 0.0
        if self.reset_at is None:
            # Empty with no known reset, e.g. X-RateLimit-Limit: 0
            self.reset_at = now + (self.window or RATE_LIMIT_FALLBACK_DELAY)
        return max(self.reset_at - now, 0.0)

    def get_stats(self, now: float) -> dict[str, Any]:
        return {
            "limit": self.limit,
            "remaining": self.remaining,
            "reset_in": (
                round(max(self.reset_at - now, 0.0), 3)
                if self.reset_at is not None
                else None
            ),
            "waiting": self.waiting,
        }


class RateLimiter:
    """Per-bucket rate limiter for outbound calls.

    Args:
        clock: Monotonic time source, overridable in tests.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._buckets: dict[str, RateBucket] = {}
        self._global_reset_at: float | None = None

    # -- Buckets --------------------------------------------------------------

    def bucket(self, key: str) -> RateBucket:
        bucket = self._buckets.get(key)
        if bucket is None:
            bucket = self._buckets[key] = RateBucket(key)
        return bucket

    def configure(self, key: str, limit: int, window: float) -> None:
        """Declare a locally enforced fixed-window bucket."""
        bucket = self.bucket(key)
        bucket.limit = limit
        bucket.remaining = limit
        bucket.window = window
        bucket.reset_at = None

    # -- Acquire --------------------------------------------------------------

    async def acquire(self, bucket_key: str, *, timeout: float | None = None) -> BucketToken:
        """Wait for a token in *bucket_key*.

        Raises:
            RateLimitTimeout: No token became available within *timeout*.
        """
        bucket = self.bucket(bucket_key)
        try:
            if timeout is None:
                return await self._acquire(bucket)
            return await asyncio.wait_for(self._acquire(bucket), timeout=timeout)
        except asyncio.TimeoutError:
            raise RateLimitTimeout(bucket_key, timeout or 0.0) from None

    async def _acquire(self, bucket: RateBucket) -> BucketToken:
        start = self._clock()
        bucket.waiting += 1
        try:
            async with bucket.lock:
                while True:
                    await self._wait_global()
                    now = self._clock()
                    delay = bucket.try_take(now)
                    if delay <= 0.0:
                        waited = now - start
                        if waited > 0.1:
                            logger.info(
                                "rate_limit_wait for %s, wait_time=%.3f",
                                bucket.key,
                                waited,
                            )
                        return BucketToken(bucket.key, now, waited)
                    logger.debug(
                        "Bucket %s exhausted, waiting %.3fs", bucket.key, delay
                    )
                    await asyncio.sleep(delay)
        finally:
            bucket.waiting -= 1

    async def _wait_global(self) -> None:
        while self._global_reset_at is not None:
            delay = self._global_reset_at - self._clock()
            if delay <= 0:
                self._global_reset_at = None
                return
            await asyncio.sleep(delay)

    # -- Feedback from the remote service ---------------------------------------

    def update(self, bucket_key: str, headers: Mapping[str, str]) -> None:
        """Apply authoritative quota headers from a response."""
        h = {k.lower(): v for k, v in headers.items()}
        if HEADER_REMAINING not in h:
            return

        bucket = self.bucket(bucket_key)
        try:
            remaining = max(int(h[HEADER_REMAINING]), 0)
            limit = int(h[HEADER_LIMIT]) if HEADER_LIMIT in h else bucket.limit
            reset_after = (
                float(h[HEADER_RESET_AFTER]) if HEADER_RESET_AFTER in h else None
            )
        except ValueError:
            logger.warning("Malformed rate limit headers for %s: %s", bucket_key, h)
            return

        bucket.limit = limit
        bucket.remaining = remaining
        if reset_after is not None:
            bucket.reset_at = self._clock() + reset_after

    def reject(self, bucket_key: str, retry_after: float, *, is_global: bool = False) -> None:
        """Record a 429: block the bucket (or everything) for *retry_after*."""
        until = self._clock() + retry_after
        if is_global:
            self._global_reset_at = max(self._global_reset_at or 0.0, until)
            logger.warning("Global rate limit hit, pausing all buckets %.2fs", retry_after)
            return
        bucket = self.bucket(bucket_key)
        bucket.remaining = 0
        bucket.reset_at = until

    # -- Submit ---------------------------------------------------------------

    async def submit(
        self,
        bucket_key: str,
        call: Callable[[], Awaitable[R]],
        *,
        timeout: float | None = None,
        max_retries: int = RATE_LIMIT_MAX_RETRIES,
    ) -> R:
        """Run *call* under *bucket_key*, retrying rejected attempts.

        Each attempt acquires a token, awaits ``call()`` and feeds the response
        headers back into the bucket. A 429 response re-queues the call up to
        *max_retries* times.

        Raises:
            RateLimitTimeout: Token wait exceeded *timeout*.
            RateLimitExceeded: Still rejected after *max_retries* retries.
        """
        retries = 0
        while True:
            await self.acquire(bucket_key, timeout=timeout)
            response = await call()
            self.update(bucket_key, response.headers)
            if response.status_code != 429:
                return response

            retry_after, is_global = _parse_rejection(response)
            self.reject(bucket_key, retry_after, is_global=is_global)
            if retries >= max_retries:
                logger.error(
                    "Rate limited on %s after %d retries", bucket_key, max_retries
                )
                raise RateLimitExceeded(bucket_key, retry_after)
            retries += 1
            logger.warning(
                "Rate limited on %s, retry %d/%d in %.2fs",
                bucket_key,
                retries,
                max_retries,
                retry_after,
            )

    # -- Stats ----------------------------------------------------------------

    def get_stats(self) -> dict[str, Any]:
        now = self._clock()
        return {
            "global_blocked": (
                self._global_reset_at is not None and self._global_reset_at > now
            ),
            "buckets": {k: b.get_stats(now) for k, b in self._buckets.items()},
        }

    def reset(self) -> None:
        self._buckets.clear()
        self._global_reset_at = None


def _parse_rejection(response: RateLimitedResponse) -> tuple[float, bool]:
    """Extract ``(retry_after, is_global)`` from a 429 response."""
    h = {k.lower(): v for k, v in response.headers.items()}
    is_global = h.get(HEADER_GLOBAL, "").lower() == "true"
    retry_after: float | None = None

    for key in (HEADER_RETRY_AFTER, HEADER_RESET_AFTER):
        if key in h:
            try:
                retry_after = float(h[key])
                break
            except ValueError:
                continue

    body_reader = getattr(response, "json", None)
    if callable(body_reader):
        try:
            body = body_reader()
        except ValueError:
            body = None
        if isinstance(body, dict):
            if retry_after is None and isinstance(body.get("retry_after"), (int, float)):
                retry_after = float(body["retry_after"])
            is_global = is_global or bool(body.get("global", False))

    if retry_after is None:
        retry_after = RATE_LIMIT_FALLBACK_DELAY
    return retry_after, is_global
