# =============================================================================
# rivetbot -- Built-in Commands
# =============================================================================

from __future__ import annotations

import random

from ._logging import logger
from ._version import __version__
from .registry import ArgSpec, CommandRegistryBuilder, CommandSpec
from .router import CommandContext
from .types import PermissionLevel

PROJECT_URL = "https://github.com/rivetbot/rivetbot"


async def ping(args: dict[str, str], ctx: CommandContext) -> str:
    """Ping Pong!"""
    latency = ctx.latency
    if latency is None:
        return "Pong!"
    return f"Pong! ({latency * 1000:.0f} ms)"


async def about(args: dict[str, str], ctx: CommandContext) -> str:
    """Display info about the bot."""
    return (
        "I am a rivetbot!\n"
        f"You can list my commands with `{ctx.prefix}help`.\n"
        f"My current version is `{__version__}`.\n"
        f"My source is available at <{PROJECT_URL}>"
    )


async def help_(args: dict[str, str], ctx: CommandContext) -> str:
    """List bot commands."""
    name = args.get("command")
    level = ctx.invocation.permission
    if name:
        spec = ctx.registry.lookup(name)
        if spec is None or spec.permission > level:
            return f"No command named `{name}`."
        lines = [f"`{spec.usage_with(ctx.prefix)}`"]
        if spec.description:
            lines.append(spec.description)
        if spec.aliases:
            lines.append("Aliases: " + ", ".join(f"`{a}`" for a in spec.aliases))
        return "\n".join(lines)

    lines = ["Commands:"]
    for spec in ctx.registry:
        if spec.permission > level:
            continue
        lines.append(f"`{ctx.prefix}{spec.name}` {spec.description}".rstrip())
    return "\n".join(lines)


async def coinflip(args: dict[str, str], ctx: CommandContext) -> str:
    """Flip a coin."""
    return ":coin: Heads" if random.random() < 0.5 else "Tails :coin:"


async def echo(args: dict[str, str], ctx: CommandContext) -> str:
    """Repeat the given text."""
    return args["text"]


async def shutdown(args: dict[str, str], ctx: CommandContext) -> None:
    """Shutdown the bot."""
    logger.info("Shutting down by chat command from %s", ctx.invocation.author_id)
    await ctx.reply("Shutting down...")
    await ctx.shutdown()


BUILTIN_COMMANDS: tuple[CommandSpec, ...] = (
    CommandSpec("ping", ping, description="Ping Pong!"),
    CommandSpec("about", about, description="Display info about the bot."),
    CommandSpec(
        "help",
        help_,
        description="List bot commands.",
        args=(ArgSpec("command", required=False),),
    ),
    CommandSpec(
        "coinflip",
        coinflip,
        description="Flip a coin.",
        aliases=("flip",),
    ),
    CommandSpec(
        "echo",
        echo,
        description="Repeat the given text.",
        args=(ArgSpec("text", rest=True),),
    ),
    CommandSpec(
        "shutdown",
        shutdown,
        description="Shutdown the bot.",
        permission=PermissionLevel.OWNER,
        feature="owner",
    ),
)


def builtin_registry_builder() -> CommandRegistryBuilder:
    """A builder pre-loaded with the built-in commands."""
    return CommandRegistryBuilder().bind_all(BUILTIN_COMMANDS)
