"""Tests for the command router."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from rivetbot.errors import PermissionDenied, UnknownCommand, UsageError
from rivetbot.registry import ArgSpec, CommandRegistryBuilder, CommandSpec
from rivetbot.router import GENERIC_ERROR_REPLY, CommandRouter
from rivetbot.types import GatewayEvent, PermissionLevel

OWNER = "100"
ADMIN_ROLE = "500"


def message(content, author="1", guild="9", roles=(), permissions=None, bot=False):
    msg = {
        "id": "m1",
        "channel_id": "c1",
        "content": content,
        "author": {"id": author, "username": "user", "bot": bot},
    }
    if guild is not None:
        msg["guild_id"] = guild
        msg["member"] = {"roles": list(roles)}
        if permissions is not None:
            msg["member"]["permissions"] = str(permissions)
    return msg


def make_router(**kwargs):
    calls = []

    async def ping(args, ctx):
        calls.append(("ping", args))
        return "Pong!"

    async def kick(args, ctx):
        calls.append(("kick", args))
        return f"Kicked {args['user']}"

    async def echo(args, ctx):
        calls.append(("echo", args))
        return args["text"]

    async def broken(args, ctx):
        raise RuntimeError("boom")

    async def quiet(args, ctx):
        calls.append(("quiet", args))

    builder = CommandRegistryBuilder().bind_all(
        [
            CommandSpec("ping", ping),
            CommandSpec("kick", kick, permission=PermissionLevel.OWNER, args=(ArgSpec("user"),)),
            CommandSpec("ban", kick, permission=PermissionLevel.ADMIN, args=(ArgSpec("user"),)),
            CommandSpec("echo", echo, args=(ArgSpec("text", rest=True),), aliases=("say",)),
            CommandSpec("broken", broken),
            CommandSpec("quiet", quiet, dm_enabled=False),
            CommandSpec("secret", ping, feature="owner"),
        ]
    )
    rest = MagicMock()
    rest.create_message = AsyncMock(return_value={"id": "reply"})
    kwargs.setdefault("owner_id", OWNER)
    kwargs.setdefault("admin_role_ids", [ADMIN_ROLE])
    router = CommandRouter(builder.build(), rest, **kwargs)
    return router, rest, calls


def event(msg):
    return GatewayEvent(type="MESSAGE_CREATE", payload=msg, sequence=1)


class TestResolve:
    def test_ping(self):
        router, _, _ = make_router()
        invocation = router.resolve(message("!ping"))
        assert invocation.name == "ping"
        assert invocation.args == ()
        assert invocation.channel_id == "c1"
        assert invocation.author_id == "1"

    def test_not_prefixed(self):
        router, _, _ = make_router()
        assert router.resolve(message("ping")) is None
        assert router.resolve(message("!")) is None
        assert router.resolve(message("")) is None

    def test_unknown(self):
        router, _, _ = make_router()
        with pytest.raises(UnknownCommand) as exc_info:
            router.resolve(message("!pingx"))
        assert exc_info.value.name == "pingx"

    def test_feature_disabled_is_unknown(self):
        router, _, _ = make_router()
        with pytest.raises(UnknownCommand):
            router.resolve(message("!secret"))

    def test_case_insensitive_and_alias(self):
        router, _, _ = make_router()
        assert router.resolve(message("!PING")).name == "ping"
        assert router.resolve(message("!say hi there")).name == "echo"

    def test_owner_only_denied(self):
        router, _, _ = make_router()
        with pytest.raises(PermissionDenied):
            router.resolve(message("!kick someone", author="2"))

    def test_owner_allowed(self):
        router, _, _ = make_router()
        invocation = router.resolve(message("!kick someone", author=OWNER))
        assert invocation.permission == PermissionLevel.OWNER
        assert invocation.args == ("someone",)

    def test_admin_by_role(self):
        router, _, _ = make_router()
        invocation = router.resolve(message("!ban x", roles=[ADMIN_ROLE]))
        assert invocation.permission == PermissionLevel.ADMIN

    def test_admin_by_permission_bit(self):
        router, _, _ = make_router()
        assert router.resolve(message("!ban x", permissions=8)).permission == PermissionLevel.ADMIN
        with pytest.raises(PermissionDenied):
            router.resolve(message("!ban x", permissions=4))

    def test_usage_error(self):
        router, _, _ = make_router()
        with pytest.raises(UsageError) as exc_info:
            router.resolve(message("!kick", author=OWNER))
        assert exc_info.value.usage == "!kick <user>"
        with pytest.raises(UsageError):
            router.resolve(message("!ping extra"))

    def test_unclosed_quote_is_usage_error(self):
        router, _, _ = make_router()
        with pytest.raises(UsageError):
            router.resolve(message("!kick 'someone", author=OWNER))

    def test_dm_disabled_command(self):
        router, _, _ = make_router()
        with pytest.raises(UnknownCommand):
            router.resolve(message("!quiet", guild=None))
        assert router.resolve(message("!ping", guild=None)).guild_id is None

    def test_mention_prefix(self):
        router, _, _ = make_router(bot_user_id="999")
        assert router.resolve(message("<@999> ping")).name == "ping"
        assert router.resolve(message("<@!999>   ping")).name == "ping"

    def test_custom_prefix(self):
        router, _, _ = make_router(prefix="rb.")
        assert router.resolve(message("rb.ping")).name == "ping"
        assert router.resolve(message("!ping")) is None


class TestHandling:
    @pytest.mark.asyncio
    async def test_ping_replies_through_rest(self):
        router, rest, calls = make_router()
        await router(event(message("!ping")))
        await router.join()
        assert calls == [("ping", {})]
        rest.create_message.assert_awaited_once_with("c1", "Pong!", reply_to="m1")

    @pytest.mark.asyncio
    async def test_rest_argument(self):
        router, rest, calls = make_router()
        await router(event(message("!echo  hello   there ")))
        await router.join()
        assert calls == [("echo", {"text": "hello   there"})]

    @pytest.mark.asyncio
    async def test_alias_runs_resolved_command(self):
        router, rest, calls = make_router()
        await router(event(message("!SAY hi")))
        await router.join()
        assert calls == [("echo", {"text": "hi"})]
        assert router.get_stats()["invocations"] == 1

    @pytest.mark.asyncio
    async def test_unknown_command_reply(self):
        router, rest, calls = make_router()
        await router(event(message("!pingx")))
        await router.join()
        assert calls == []
        text = rest.create_message.await_args.args[1]
        assert "Unknown command" in text

    @pytest.mark.asyncio
    async def test_permission_denied_reply(self):
        router, rest, calls = make_router()
        await router(event(message("!kick bob", author="2")))
        await router.join()
        assert calls == []
        assert "permission" in rest.create_message.await_args.args[1]

    @pytest.mark.asyncio
    async def test_usage_reply(self):
        router, rest, _ = make_router()
        await router(event(message("!kick", author=OWNER)))
        await router.join()
        assert "!kick <user>" in rest.create_message.await_args.args[1]

    @pytest.mark.asyncio
    async def test_handler_failure_generic_reply(self):
        router, rest, _ = make_router()
        await router(event(message("!broken")))
        await router.join()
        rest.create_message.assert_awaited_once_with("c1", GENERIC_ERROR_REPLY, reply_to="m1")
        assert router.get_stats()["failures"] == 1

    @pytest.mark.asyncio
    async def test_none_result_sends_nothing(self):
        router, rest, calls = make_router()
        await router(event(message("!quiet")))
        await router.join()
        assert calls == [("quiet", {})]
        rest.create_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_bots_ignored(self):
        router, rest, calls = make_router()
        await router(event(message("!ping", bot=True)))
        await router.join()
        assert calls == []
        rest.create_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_other_events_ignored(self):
        router, rest, calls = make_router()
        await router(GatewayEvent(type="GUILD_CREATE", payload={"content": "!ping"}))
        assert calls == []

    @pytest.mark.asyncio
    async def test_commands_run_concurrently(self):
        router, rest, _ = make_router()
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow(args, ctx):
            started.set()
            await release.wait()

        router.registry = CommandRegistryBuilder().bind(CommandSpec("slow", slow)).build()
        await router(event(message("!slow")))
        await asyncio.wait_for(started.wait(), 1)
        assert router.get_stats()["running"] == 1
        release.set()
        await router.join()
        assert router.get_stats()["running"] == 0

    @pytest.mark.asyncio
    async def test_reply_failure_logged_not_raised(self):
        from rivetbot.errors import ClientClosedError

        router, rest, _ = make_router()
        rest.create_message = AsyncMock(side_effect=ClientClosedError("closing"))
        await router(event(message("!pingx")))
        await router.join()
        rest.create_message.assert_awaited_once()
