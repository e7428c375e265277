"""rivetbot: a gateway chat bot with command routing.

Usage::

    import asyncio
    from rivetbot import Bot, BotConfig

    bot = Bot(BotConfig.from_env())
    asyncio.run(bot.run())

Custom commands::

    from rivetbot import ArgSpec, builtin_registry_builder

    commands = builtin_registry_builder()

    @commands.command("roll", args=[ArgSpec("sides", required=False)])
    async def roll(args, ctx):
        return str(random.randint(1, int(args.get("sides", 6))))

    bot = Bot(config, commands=commands)
"""

from ._version import __version__
from .client import Bot
from .commands import BUILTIN_COMMANDS, builtin_registry_builder
from .config import BotConfig
from .connection import GatewaySession
from .dispatcher import EventDispatcher
from .errors import (
    ArgumentParseError,
    AuthError,
    ClientClosedError,
    CommandError,
    HTTPError,
    PermissionDenied,
    ProtocolError,
    RateLimitError,
    RateLimitExceeded,
    RateLimitTimeout,
    RivetError,
    TransportError,
    UnknownCommand,
    UsageError,
)
from .http import RestClient, Route
from .protocol import FrameCodec
from .rate_limiter import RateLimiter
from .registry import ArgSpec, CommandRegistry, CommandRegistryBuilder, CommandSpec
from .router import CommandContext, CommandRouter
from .types import (
    CommandInvocation,
    GatewayEvent,
    GatewayFrame,
    OpCode,
    PermissionLevel,
    ReconnectConfig,
    ReconnectMode,
    SessionState,
    SessionStats,
)

__all__ = [
    "__version__",
    "Bot",
    "BotConfig",
    "GatewaySession",
    "EventDispatcher",
    "CommandRouter",
    "CommandContext",
    "CommandRegistry",
    "CommandRegistryBuilder",
    "CommandSpec",
    "ArgSpec",
    "BUILTIN_COMMANDS",
    "builtin_registry_builder",
    "RestClient",
    "Route",
    "RateLimiter",
    "FrameCodec",
    "CommandInvocation",
    "GatewayEvent",
    "GatewayFrame",
    "OpCode",
    "PermissionLevel",
    "ReconnectConfig",
    "ReconnectMode",
    "SessionState",
    "SessionStats",
    "RivetError",
    "TransportError",
    "AuthError",
    "ProtocolError",
    "ClientClosedError",
    "HTTPError",
    "RateLimitError",
    "RateLimitTimeout",
    "RateLimitExceeded",
    "CommandError",
    "UnknownCommand",
    "PermissionDenied",
    "UsageError",
    "ArgumentParseError",
]
