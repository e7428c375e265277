"""End-to-end tests for Bot with a fake gateway and mocked REST API."""

import asyncio
import json

import httpx
import pytest

from fakes import FakeGateway, wait_until
from rivetbot.client import Bot, application_owner_id
from rivetbot.config import BotConfig
from rivetbot.errors import AuthError
from rivetbot.types import SessionState

OWNER = "100"


class FakeAPI:
    """Minimal REST API: application, gateway URL and message creation."""

    def __init__(self):
        self.messages = []
        self.left_guilds = []

    def __call__(self, request):
        path = request.url.path.removeprefix("/api/v10")
        if path == "/oauth2/applications/@me":
            return httpx.Response(200, json={"id": "1", "owner": {"id": OWNER}})
        if path == "/gateway/bot":
            return httpx.Response(200, json={"url": "wss://gateway.test", "shards": 1})
        if path.endswith("/messages") and request.method == "POST":
            body = json.loads(request.content)
            self.messages.append(body["content"])
            return httpx.Response(200, json={"id": f"r{len(self.messages)}"})
        if path.startswith("/users/@me/guilds/") and request.method == "DELETE":
            self.left_guilds.append(path.rsplit("/", 1)[1])
            return httpx.Response(204)
        return httpx.Response(404, json={"message": "Unknown"})


def make_bot(gateway, api, **config):
    config.setdefault("features", {"owner"})
    return Bot(
        BotConfig(token="test-token", **config),
        connector=gateway.connect,
        http_transport=httpx.MockTransport(api),
    )


def user_message(content, author="1"):
    return {
        "id": "m1",
        "channel_id": "c1",
        "guild_id": "g1",
        "content": content,
        "author": {"id": author, "username": "someone"},
        "member": {"roles": []},
    }


class TestBot:
    @pytest.mark.asyncio
    async def test_ping_round_trip_and_shutdown_command(self):
        gateway, api = FakeGateway(), FakeAPI()
        bot = make_bot(gateway, api)
        task = asyncio.create_task(bot.run())
        await wait_until(lambda: bot.session.state == SessionState.READY)

        assert bot.router.owner_id == OWNER
        assert gateway.connections[0].url.startswith("wss://gateway.test")

        gateway.emit("MESSAGE_CREATE", user_message("!ping"))
        await wait_until(lambda: api.messages == ["Pong!"])

        gateway.emit("MESSAGE_CREATE", user_message("!shutdown", author=OWNER))
        await asyncio.wait_for(task, 2)

        assert api.messages == ["Pong!", "Shutting down..."]
        assert gateway.connections[0].closed_with[0] == 1000

    @pytest.mark.asyncio
    async def test_bot_user_id_from_ready(self):
        gateway, api = FakeGateway(), FakeAPI()
        bot = make_bot(gateway, api)
        task = asyncio.create_task(bot.run())
        await wait_until(lambda: bot.router.bot_user_id == "999")

        gateway.emit("MESSAGE_CREATE", user_message("<@999> coinflip"))
        await wait_until(lambda: len(api.messages) == 1)
        assert "coin" in api.messages[0]
        bot.stop()
        await asyncio.wait_for(task, 2)

    @pytest.mark.asyncio
    async def test_custom_event_handler(self):
        gateway, api = FakeGateway(), FakeAPI()
        bot = make_bot(gateway, api)
        seen = []

        @bot.on("TYPING_START")
        async def typing(event):
            seen.append(event.payload["user_id"])

        task = asyncio.create_task(bot.run())
        await wait_until(lambda: bot.session.state == SessionState.READY)
        gateway.emit("TYPING_START", {"user_id": "5"})
        await wait_until(lambda: seen == ["5"])
        bot.stop()
        await asyncio.wait_for(task, 2)

    @pytest.mark.asyncio
    async def test_guild_whitelist(self):
        gateway, api = FakeGateway(), FakeAPI()
        bot = make_bot(gateway, api, guild_whitelist=("1",))
        task = asyncio.create_task(bot.run())
        await wait_until(lambda: bot.session.state == SessionState.READY)

        gateway.emit("GUILD_CREATE", {"id": "1", "name": "Home"})
        gateway.emit("GUILD_CREATE", {"id": "2", "name": "Elsewhere"})
        await wait_until(lambda: api.left_guilds == ["2"])
        bot.stop()
        await asyncio.wait_for(task, 2)

    @pytest.mark.asyncio
    async def test_auth_failure_raised_from_run(self):
        gateway, api = FakeGateway(), FakeAPI()
        gateway.identify_close_code = 4004
        bot = make_bot(gateway, api)
        with pytest.raises(AuthError):
            await asyncio.wait_for(bot.run(), 2)

    @pytest.mark.asyncio
    async def test_configured_owner_and_gateway_skip_rest(self):
        gateway = FakeGateway()
        requests = []

        def api(request):
            requests.append(request.url.path)
            return httpx.Response(404)

        bot = Bot(
            BotConfig(token="t", owner_id="7", gateway_url="wss://custom.test"),
            connector=gateway.connect,
            http_transport=httpx.MockTransport(api),
        )
        async with bot:
            assert requests == []
            assert bot.router.owner_id == "7"
            await bot.session.connect()
            assert gateway.connections[0].url.startswith("wss://custom.test/")
        assert bot.rest.closing


class TestOwnerResolution:
    def test_owner(self):
        assert application_owner_id({"owner": {"id": "1"}}) == "1"

    def test_team_owner(self):
        app = {"owner": {"id": "1"}, "team": {"owner_user_id": "2"}}
        assert application_owner_id(app) == "2"

    def test_missing(self):
        assert application_owner_id({}) is None
