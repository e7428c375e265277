"""Tests for the REST client (httpx.MockTransport)."""

import asyncio
import json

import httpx
import pytest

from rivetbot.constants import MAX_REPLY_LENGTH
from rivetbot.errors import AuthError, ClientClosedError, HTTPError, TransportError
from rivetbot.http import RestClient, Route


def make_client(handler, **kwargs):
    return RestClient("test-token", transport=httpx.MockTransport(handler), **kwargs)


class TestRoute:
    def test_path(self):
        route = Route("post", "/channels/{channel_id}/messages", channel_id="42")
        assert route.method == "POST"
        assert route.path == "/channels/42/messages"

    def test_bucket_uses_major_parameter(self):
        a = Route("POST", "/channels/{channel_id}/messages", channel_id="1")
        b = Route("POST", "/channels/{channel_id}/messages", channel_id="2")
        assert a.bucket != b.bucket
        assert a.bucket == "POST /channels/{channel_id}/messages [1]"

    def test_bucket_without_major_parameter(self):
        assert Route("GET", "/gateway/bot").bucket == "GET /gateway/bot"


class TestRequest:
    @pytest.mark.asyncio
    async def test_auth_header_and_json(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers["authorization"]
            seen["path"] = request.url.path
            return httpx.Response(200, json={"url": "wss://gateway.test"})

        client = make_client(handler)
        data = await client.get_gateway_bot()
        assert data == {"url": "wss://gateway.test"}
        assert seen["auth"] == "Bot test-token"
        assert seen["path"] == "/api/v10/gateway/bot"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_no_content(self):
        client = make_client(lambda request: httpx.Response(204))
        assert await client.leave_guild("5") is None
        await client.aclose()

    @pytest.mark.asyncio
    async def test_401_is_auth_error(self):
        client = make_client(lambda request: httpx.Response(401, json={"message": "401: Unauthorized"}))
        with pytest.raises(AuthError):
            await client.get_current_application()
        await client.aclose()

    @pytest.mark.asyncio
    async def test_error_status(self):
        client = make_client(
            lambda request: httpx.Response(403, json={"message": "Missing Access", "code": 50001})
        )
        with pytest.raises(HTTPError) as exc_info:
            await client.create_message("1", "hi")
        assert exc_info.value.status == 403
        assert "Missing Access" in str(exc_info.value)
        await client.aclose()

    @pytest.mark.asyncio
    async def test_network_failure(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = make_client(handler)
        with pytest.raises(TransportError):
            await client.get_gateway_bot()
        await client.aclose()

    @pytest.mark.asyncio
    async def test_rate_limit_headers_feed_limiter(self):
        def handler(request):
            return httpx.Response(
                200,
                json={"id": "m1"},
                headers={
                    "x-ratelimit-limit": "5",
                    "x-ratelimit-remaining": "4",
                    "x-ratelimit-reset-after": "1.0",
                },
            )

        client = make_client(handler)
        await client.create_message("7", "hello")
        bucket = client.rate_limiter.bucket("POST /channels/{channel_id}/messages [7]")
        assert bucket.remaining == 4
        assert bucket.limit == 5
        await client.aclose()

    @pytest.mark.asyncio
    async def test_429_then_success(self):
        attempts = []

        def handler(request):
            attempts.append(request)
            if len(attempts) == 1:
                return httpx.Response(
                    429,
                    json={"message": "You are being rate limited.", "retry_after": 0.05, "global": False},
                    headers={"retry-after": "0.05"},
                )
            return httpx.Response(200, json={"id": "m1"})

        client = make_client(handler)
        assert await client.create_message("1", "hi") == {"id": "m1"}
        assert len(attempts) == 2
        await client.aclose()


class TestCreateMessage:
    @pytest.mark.asyncio
    async def test_reply_reference(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"id": "m2"})

        client = make_client(handler)
        await client.create_message("1", "Pong!", reply_to="m1")
        assert bodies[0]["content"] == "Pong!"
        assert bodies[0]["message_reference"]["message_id"] == "m1"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_long_content_truncated(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={})

        client = make_client(handler)
        await client.create_message("1", "x" * 5000)
        assert len(bodies[0]["content"]) == MAX_REPLY_LENGTH
        assert bodies[0]["content"].endswith("...")
        await client.aclose()


class TestClose:
    @pytest.mark.asyncio
    async def test_requests_refused_after_close(self):
        client = make_client(lambda request: httpx.Response(200, json={}))
        await client.aclose()
        assert client.closing
        with pytest.raises(ClientClosedError):
            await client.get_gateway_bot()

    @pytest.mark.asyncio
    async def test_inflight_request_drained(self):
        release = asyncio.Event()

        async def handler(request):
            await release.wait()
            return httpx.Response(200, json={"ok": True})

        client = make_client(handler)
        task = asyncio.create_task(client.get_gateway_bot())
        await asyncio.sleep(0.01)
        assert client.inflight == 1

        closing = asyncio.create_task(client.aclose(timeout=1.0))
        await asyncio.sleep(0.01)
        release.set()
        await closing
        assert await task == {"ok": True}

    @pytest.mark.asyncio
    async def test_stuck_request_abandoned(self):
        async def handler(request):
            await asyncio.sleep(10)
            return httpx.Response(200)

        client = make_client(handler)
        task = asyncio.create_task(client.get_gateway_bot())
        await asyncio.sleep(0.01)
        await client.aclose(timeout=0.05)
        with pytest.raises(asyncio.CancelledError):
            await task
