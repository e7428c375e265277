# =============================================================================
# rivetbot -- Command Router
# =============================================================================
#
# MESSAGE_CREATE -> prefix strip -> name lookup -> permission check
#   -> argument binding -> handler task -> reply via the REST client
#
# Command errors become chat replies. Nothing raised by a command reaches
# the dispatcher worker.
# =============================================================================

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from typing import TYPE_CHECKING, Any

from ._logging import logger
from .constants import DEFAULT_PREFIX, PERMISSION_ADMINISTRATOR
from .errors import (
    ArgumentParseError,
    CommandError,
    PermissionDenied,
    RivetError,
    UnknownCommand,
    UsageError,
)
from .parser import bind_args, mention_prefixes, split_once_whitespace, unprefix_with
from .registry import CommandRegistry, CommandSpec
from .types import CommandInvocation, GatewayEvent, PermissionLevel

if TYPE_CHECKING:
    from .http import RestClient

GENERIC_ERROR_REPLY = "Something went wrong while running that command."


class CommandContext:
    """Everything a command handler gets besides its arguments."""

    def __init__(self, router: CommandRouter, invocation: CommandInvocation) -> None:
        self.router = router
        self.invocation = invocation

    @property
    def registry(self) -> CommandRegistry:
        return self.router.registry

    @property
    def prefix(self) -> str:
        return self.router.prefix

    @property
    def latency(self) -> float | None:
        """Gateway heartbeat round trip in seconds, if known."""
        return self.router.latency_source() if self.router.latency_source else None

    async def reply(self, content: str) -> Any:
        """Reply in the invoking channel through the rate-limited REST client."""
        return await self.router.rest.create_message(
            self.invocation.channel_id,
            content,
            reply_to=self.invocation.message_id,
        )

    async def shutdown(self) -> None:
        """Ask the bot to shut down. No-op without a shutdown callback."""
        if self.router.shutdown_callback is None:
            logger.warning("Shutdown requested but no shutdown callback is set")
            return
        await self.router.shutdown_callback()


class CommandRouter:
    """Turn chat messages into command handler calls.

    Args:
        registry: Frozen command registry.
        rest: REST client for replies.
        prefix: Command prefix.
        owner_id: Bot owner's user id (OWNER level).
        admin_role_ids: Role ids that grant ADMIN level.
        bot_user_id: Own user id; enables ``<@id> command`` invocation.
        shutdown: Coroutine function run by the ``shutdown`` command.
        latency: Callable returning the current gateway latency.

    The router is itself an event handler::

        dispatcher.add_handler(router, events="MESSAGE_CREATE", name="commands")
    """

    def __init__(
        self,
        registry: CommandRegistry,
        rest: RestClient,
        *,
        prefix: str = DEFAULT_PREFIX,
        owner_id: str | None = None,
        admin_role_ids: Iterable[str] = (),
        bot_user_id: str | None = None,
        shutdown: Callable[[], Awaitable[None]] | None = None,
        latency: Callable[[], float | None] | None = None,
    ) -> None:
        self.registry = registry
        self.rest = rest
        self.prefix = prefix
        self.owner_id = owner_id
        self.admin_role_ids = frozenset(str(r) for r in admin_role_ids)
        self.bot_user_id = bot_user_id
        self.shutdown_callback = shutdown
        self.latency_source = latency
        self._tasks: set[asyncio.Task[Any]] = set()
        self._invocations = 0
        self._failures = 0

    # -- Resolution -------------------------------------------------------------

    def resolve(self, message: dict[str, Any]) -> CommandInvocation | None:
        """Parse, look up and permission-check a message.

        Returns:
            The invocation, or None when the message is not addressed to the bot.

        Raises:
            UnknownCommand: No enabled command by that name (or DM-disabled).
            PermissionDenied: Invoker level below the command's requirement.
            UsageError: Arguments do not fit the declaration.
        """
        resolved = self._resolve(message)
        return resolved[1] if resolved is not None else None

    def _resolve(
        self, message: dict[str, Any]
    ) -> tuple[CommandSpec, CommandInvocation] | None:
        content = message.get("content") or ""
        prefixes = [self.prefix]
        if self.bot_user_id:
            prefixes.extend(mention_prefixes(self.bot_user_id))

        stripped = unprefix_with(prefixes, content)
        if stripped is None:
            return None
        name, tail = split_once_whitespace(stripped[1].lstrip())
        if not name:
            return None

        spec = self.registry.lookup(name)
        guild_id = message.get("guild_id")
        if spec is None or (guild_id is None and not spec.dm_enabled):
            raise UnknownCommand(name)

        level = self.permission_level(message)
        if level < spec.permission:
            raise PermissionDenied(spec.name, spec.permission)

        try:
            args = bind_args(tail, spec.args)
        except (ArgumentParseError, ValueError) as exc:
            raise UsageError(spec.name, spec.usage_with(self.prefix), str(exc)) from exc

        author = message.get("author") or {}
        return spec, CommandInvocation(
            name=spec.name,
            args=args,
            raw=content,
            author_id=str(author.get("id", "")),
            channel_id=str(message.get("channel_id", "")),
            guild_id=str(guild_id) if guild_id is not None else None,
            message_id=str(message["id"]) if "id" in message else None,
            permission=level,
        )

    def permission_level(self, message: dict[str, Any]) -> PermissionLevel:
        """OWNER for the owner, ADMIN for admin roles or ADMINISTRATOR, else EVERYONE."""
        author = message.get("author") or {}
        if self.owner_id is not None and str(author.get("id")) == str(self.owner_id):
            return PermissionLevel.OWNER

        member = message.get("member") or {}
        if self.admin_role_ids.intersection(str(r) for r in member.get("roles", ())):
            return PermissionLevel.ADMIN
        try:
            permissions = int(member.get("permissions", 0))
        except (TypeError, ValueError):
            permissions = 0
        if permissions & PERMISSION_ADMINISTRATOR:
            return PermissionLevel.ADMIN
        return PermissionLevel.EVERYONE

    # -- Event handler ----------------------------------------------------------

    async def __call__(self, event: GatewayEvent) -> None:
        if event.type != "MESSAGE_CREATE":
            return
        message = event.payload
        if (message.get("author") or {}).get("bot"):
            return

        try:
            resolved = self._resolve(message)
        except CommandError as exc:
            self._fire_task(self._reply_to_error(message, exc))
            return
        if resolved is None:
            return

        spec, invocation = resolved
        self._invocations += 1
        logger.info(
            "Command %s by %s in %s", spec.name, invocation.author_id, invocation.channel_id
        )
        self._fire_task(self._run(spec, invocation))

    async def _run(self, spec: CommandSpec, invocation: CommandInvocation) -> None:
        ctx = CommandContext(self, invocation)
        args = {a.name: v for a, v in zip(spec.args, invocation.args)}
        try:
            result = await spec.handler(args, ctx)
            if isinstance(result, str) and result:
                await ctx.reply(result)
        except asyncio.CancelledError:
            raise
        except Exception:
            self._failures += 1
            logger.exception("Command %s failed", spec.name)
            await self._send_reply(
                invocation.channel_id, GENERIC_ERROR_REPLY, invocation.message_id
            )

    async def _reply_to_error(self, message: dict[str, Any], exc: CommandError) -> None:
        if isinstance(exc, UnknownCommand):
            text = f"Unknown command `{exc.name}`. Try `{self.prefix}help`."
        elif isinstance(exc, PermissionDenied):
            text = f"You do not have permission to use `{exc.name}`."
        elif isinstance(exc, UsageError):
            text = f"Usage: `{exc.usage}`"
            if exc.detail:
                text = f"{exc.detail}\n{text}"
        else:
            text = str(exc)
        logger.debug("Command rejected: %s", exc)
        await self._send_reply(
            str(message.get("channel_id", "")), text, message.get("id")
        )

    async def _send_reply(self, channel_id: str, text: str, reply_to: str | None) -> None:
        try:
            await self.rest.create_message(channel_id, text, reply_to=reply_to)
        except RivetError as exc:
            logger.warning("Reply to %s failed: %s", channel_id, exc)

    # -- Task tracking ----------------------------------------------------------

    def _fire_task(self, coro: Any) -> None:
        """Schedule a coroutine with a strong reference to prevent GC."""
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def join(self) -> None:
        """Wait for running commands and replies."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def get_stats(self) -> dict[str, Any]:
        return {
            "commands": len(self.registry),
            "invocations": self._invocations,
            "failures": self._failures,
            "running": len(self._tasks),
        }
