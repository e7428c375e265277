# =============================================================================
# rivetbot -- Bot
# =============================================================================
#
# Wires the components together:
#
#   GatewaySession -> EventDispatcher -> CommandRouter / GuildWhitelist / user
#   handlers -> RestClient (rate limited)
#
# Shutdown order: REST client (drain or abandon in-flight requests), then the
# gateway session, then the dispatcher.
# =============================================================================

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import httpx

from ._logging import logger
from .commands import builtin_registry_builder
from .config import BotConfig
from .connection import Connector, GatewaySession, websocket_connector
from .constants import DEFAULT_GATEWAY_URL
from .dispatcher import AsyncEventHandler, EventDispatcher, EventHandler
from .handlers import GuildWhitelist
from .http import RestClient
from .rate_limiter import RateLimiter
from .registry import CommandRegistryBuilder
from .router import CommandRouter
from .types import GatewayEvent


class Bot:
    """A chat bot: one gateway session plus command routing.

    Usage::

        bot = Bot(BotConfig.from_env())

        @bot.on("GUILD_CREATE")
        async def joined(event):
            print("In guild", event.payload["name"])

        await bot.run()

    Args:
        config: Bot configuration.
        commands: Builder holding the commands to serve. Defaults to the
            built-in commands.
        connector: Gateway transport factory (tests pass a fake).
        http_transport: ``httpx`` transport for the REST client.
    """

    def __init__(
        self,
        config: BotConfig,
        *,
        commands: CommandRegistryBuilder | None = None,
        connector: Connector = websocket_connector,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        for feature in sorted(config.unknown_features):
            logger.warning("Unknown feature flag: %s", feature)

        self.rate_limiter = RateLimiter()
        self.rest = RestClient(
            config.token,
            rate_limiter=self.rate_limiter,
            transport=http_transport,
            timeout=config.request_timeout,
        )
        self.dispatcher = EventDispatcher()
        self.session = GatewaySession(
            config.token,
            dispatcher=self.dispatcher,
            intents=config.intents,
            gateway_url=config.gateway_url or DEFAULT_GATEWAY_URL,
            rate_limiter=self.rate_limiter,
            reconnect=config.reconnect,
            handshake_timeout=config.handshake_timeout,
            compression=config.compression,
            connector=connector,
        )

        builder = commands if commands is not None else builtin_registry_builder()
        self.registry = builder.build(config.features)
        self.router = CommandRouter(
            self.registry,
            self.rest,
            prefix=config.prefix,
            owner_id=config.owner_id,
            admin_role_ids=config.admin_role_ids,
            shutdown=self.request_shutdown,
            latency=lambda: self.session.latency,
        )

        self.dispatcher.add_handler(self._on_ready, events="READY", name="rivetbot.ready")
        self.dispatcher.add_handler(
            self.router, events="MESSAGE_CREATE", name="rivetbot.commands"
        )
        if config.guild_whitelist:
            self.dispatcher.add_handler(
                GuildWhitelist(self.rest, config.guild_whitelist),
                events="GUILD_CREATE",
                name="rivetbot.guild_whitelist",
            )

        self._stop = asyncio.Event()
        self._started = False
        self._closed = False

    # -- Context manager ------------------------------------------------------

    async def __aenter__(self) -> Bot:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    # -- Handler registration -------------------------------------------------

    def on(
        self, *event_types: str
    ) -> Callable[[EventHandler | AsyncEventHandler], EventHandler | AsyncEventHandler]:
        """Decorator to register an event handler. See :meth:`EventDispatcher.on`."""
        return self.dispatcher.on(*event_types)

    # -- Lifecycle -----------------------------------------------------------

    async def start(self) -> None:
        """Resolve the owner and gateway URL, then start the dispatcher.

        Raises:
            AuthError: The token was rejected.
        """
        if self._started:
            return
        if self.router.owner_id is None:
            application = await self.rest.get_current_application()
            self.router.owner_id = application_owner_id(application)
            logger.info("Resolved owner: %s", self.router.owner_id)
        if self.config.gateway_url is None:
            info = await self.rest.get_gateway_bot()
            self.session.gateway_url = info.get("url") or DEFAULT_GATEWAY_URL
        await self.dispatcher.start()
        self._started = True

    async def run(self) -> None:
        """Run until :meth:`request_shutdown`, the shutdown command or an error.

        Raises:
            AuthError: Credentials rejected.
            TransportError: Reconnect attempts exhausted.
        """
        await self.start()
        session_task = asyncio.create_task(self.session.run(), name="rivetbot-session")
        stop_task = asyncio.create_task(self._stop.wait())
        try:
            await asyncio.wait({session_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stop_task.cancel()
            await self.close()
            await asyncio.gather(session_task, return_exceptions=True)
        if not session_task.cancelled() and session_task.exception() is not None:
            raise session_task.exception()

    def stop(self) -> None:
        """Ask :meth:`run` to stop. Safe to call from a signal handler."""
        logger.info("Shutdown requested")
        self._stop.set()

    async def request_shutdown(self) -> None:
        self.stop()

    async def close(self) -> None:
        """Shut down: REST client, then gateway session, then dispatcher."""
        if self._closed:
            return
        self._closed = True
        self._stop.set()
        logger.info("Shutting down")
        await self.rest.aclose(self.config.shutdown_timeout)
        await self.session.close()
        await self.dispatcher.stop(drain=True)
        await self.router.cancel()
        logger.info("Shutdown complete")

    # -- Internal ---------------------------------------------------------------

    def _on_ready(self, event: GatewayEvent) -> None:
        user = event.payload.get("user") or {}
        if "id" in user:
            self.router.bot_user_id = str(user["id"])
        logger.info(
            "Logged in as %s (%s) in %d guilds",
            user.get("username", "?"),
            user.get("id", "?"),
            len(event.payload.get("guilds", ())),
        )

    def get_stats(self) -> dict[str, Any]:
        return {
            "session": self.session.get_stats(),
            "dispatcher": self.dispatcher.stats,
            "router": self.router.get_stats(),
            "rate_limiter": self.rate_limiter.get_stats(),
            "rest_inflight": self.rest.inflight,
        }


def application_owner_id(application: dict[str, Any]) -> str | None:
    """Owner user id of an application: the team owner for team apps."""
    team = application.get("team")
    if isinstance(team, dict) and team.get("owner_user_id"):
        return str(team["owner_user_id"])
    owner = application.get("owner")
    if isinstance(owner, dict) and owner.get("id"):
        return str(owner["id"])
    return None
