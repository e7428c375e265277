# =============================================================================
# rivetbot -- REST Client
# =============================================================================
#
# Every call is tagged with a bucket key derived from its route and goes
# through RateLimiter.submit(); nothing is sent around the limiter.
# =============================================================================

from __future__ import annotations

import asyncio
from typing import Any

import httpx

from ._logging import logger
from .constants import (
    API_BASE,
    MAX_REPLY_LENGTH,
    REQUEST_TIMEOUT,
    SHUTDOWN_TIMEOUT,
    USER_AGENT,
)
from .errors import AuthError, ClientClosedError, HTTPError, TransportError
from .rate_limiter import RateLimiter

# Route parameters that scope a bucket on their own
_MAJOR_PARAMETERS = ("channel_id", "guild_id", "webhook_id")


class Route:
    """An API route template plus its parameters.

    Example::

        Route("POST", "/channels/{channel_id}/messages", channel_id="123")
    """

    __slots__ = ("method", "template", "params")

    def __init__(self, method: str, template: str, **params: Any) -> None:
        self.method = method.upper()
        self.template = template
        self.params = params

    @property
    def path(self) -> str:
        return self.template.format(**self.params)

    @property
    def bucket(self) -> str:
        """Route class key: method + template + major parameter values."""
        major = ":".join(
            str(self.params[p]) for p in _MAJOR_PARAMETERS if p in self.params
        )
        return f"{self.method} {self.template}" + (f" [{major}]" if major else "")

    def __repr__(self) -> str:
        return f"Route({self.method} {self.path})"


class RestClient:
    """Rate-limited REST client built on ``httpx.AsyncClient``.

    Args:
        token: Bot token, sent as ``Authorization: Bot <token>``.
        rate_limiter: Shared limiter; a new one is created if omitted.
        base_url: API root.
        transport: Optional ``httpx`` transport (``httpx.MockTransport`` in tests).
        timeout: Per-request timeout in seconds.
    """

    def __init__(
        self,
        token: str,
        *,
        rate_limiter: RateLimiter | None = None,
        base_url: str = API_BASE,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = REQUEST_TIMEOUT,
    ) -> None:
        self._limiter = rate_limiter or RateLimiter()
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={
                "Authorization": f"Bot {token}",
                "User-Agent": USER_AGENT,
            },
            timeout=timeout,
            transport=transport,
        )
        self._closing = False
        self._inflight: set[asyncio.Task[Any]] = set()
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._limiter

    @property
    def closing(self) -> bool:
        return self._closing

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    # -- Requests -------------------------------------------------------------

    async def request(
        self,
        route: Route,
        *,
        json: Any | None = None,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Any:
        """Send *route* through the rate limiter and return the decoded body.

        Args:
            route: Target route.
            json: JSON body.
            params: Query string parameters.
            timeout: Max seconds to wait for a rate limit token.

        Raises:
            ClientClosedError: Shutdown already began.
            AuthError: 401 response.
            HTTPError: Other non-success response.
            TransportError: Network failure.
            RateLimitTimeout, RateLimitExceeded: See :class:`RateLimiter`.
        """
        if self._closing:
            raise ClientClosedError(f"Client is closing, refusing {route!r}")

        task = asyncio.current_task()
        if task is not None:
            self._inflight.add(task)
            self._idle.clear()
        try:
            return await self._request(route, json=json, params=params, timeout=timeout)
        finally:
            if task is not None:
                self._inflight.discard(task)
                if not self._inflight:
                    self._idle.set()

    async def _request(
        self,
        route: Route,
        *,
        json: Any | None,
        params: dict[str, Any] | None,
        timeout: float | None,
    ) -> Any:
        async def call() -> httpx.Response:
            try:
                return await self._client.request(
                    route.method, route.path, json=json, params=params
                )
            except httpx.TransportError as exc:
                raise TransportError(f"{route!r} failed: {exc}") from exc

        response = await self._limiter.submit(route.bucket, call, timeout=timeout)
        logger.debug("%r -> %d", route, response.status_code)

        if response.status_code == 401:
            raise AuthError(f"{route!r} rejected the token")
        if response.status_code >= 400:
            raise HTTPError(response.status_code, _error_message(response))
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    # -- Endpoints ------------------------------------------------------------

    async def create_message(
        self,
        channel_id: str,
        content: str,
        *,
        reply_to: str | None = None,
        timeout: float | None = None,
    ) -> Any:
        """Post a message, truncated to the maximum length."""
        if len(content) > MAX_REPLY_LENGTH:
            content = content[: MAX_REPLY_LENGTH - 3] + "..."
        body: dict[str, Any] = {"content": content}
        if reply_to is not None:
            body["message_reference"] = {
                "message_id": reply_to,
                "fail_if_not_exists": False,
            }
            body["allowed_mentions"] = {"replied_user": False}
        route = Route("POST", "/channels/{channel_id}/messages", channel_id=channel_id)
        return await self.request(route, json=body, timeout=timeout)

    async def get_gateway_bot(self) -> dict[str, Any]:
        """Gateway URL and session start limits."""
        return await self.request(Route("GET", "/gateway/bot"))

    async def get_current_application(self) -> dict[str, Any]:
        return await self.request(Route("GET", "/oauth2/applications/@me"))

    async def leave_guild(self, guild_id: str) -> None:
        await self.request(
            Route("DELETE", "/users/@me/guilds/{guild_id}", guild_id=guild_id)
        )

    # -- Shutdown -------------------------------------------------------------

    async def aclose(self, timeout: float = SHUTDOWN_TIMEOUT) -> None:
        """Stop accepting requests, let in-flight ones finish, then close.

        Requests still running after *timeout* are cancelled (abandoned).
        """
        self._closing = True
        if self._inflight:
            logger.info("Waiting for %d in-flight requests", len(self._inflight))
            try:
                await asyncio.wait_for(self._idle.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                pending = [t for t in self._inflight if t is not asyncio.current_task()]
                logger.warning("Abandoning %d in-flight requests", len(pending))
                for task in pending:
                    task.cancel()
                if pending:
                    await asyncio.gather(*pending, return_exceptions=True)
        await self._client.aclose()


def _error_message(response: httpx.Response) -> str:
    """Short error text without echoing the full body."""
    try:
        data = response.json()
    except ValueError:
        return response.reason_phrase
    if isinstance(data, dict):
        return str(data.get("message", response.reason_phrase))
    return response.reason_phrase
