"""Run the bot: ``python -m rivetbot``.

Reads ``DISCORD_TOKEN`` and the other ``BOT_*`` variables from the
environment; command line flags override them.
"""

import argparse
import asyncio
import logging
import os
import signal
import sys

from ._logging import logger
from .client import Bot
from .config import BotConfig
from .errors import AuthError, TransportError


async def main(config: BotConfig) -> int:
    bot = Bot(config)
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, bot.stop)

    try:
        await bot.run()
    except AuthError as exc:
        logger.error("Authentication failed: %s", exc)
        return 2
    except TransportError as exc:
        logger.error("Gateway unreachable: %s", exc)
        return 1
    return 0


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="rivetbot", description="Gateway chat bot")
    parser.add_argument("--prefix", help="Command prefix (default: $BOT_PREFIX or '!')")
    parser.add_argument(
        "--features",
        help="Comma-separated feature flags, e.g. admin,owner (default: $BOT_FEATURES)",
    )
    parser.add_argument("--owner-id", help="Owner user id (default: resolved from the application)")
    parser.add_argument(
        "--compression",
        choices=("payload", "zlib-stream"),
        help="Gateway compression mode",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=("DEBUG", "INFO", "WARNING", "ERROR"),
    )
    return parser.parse_args(argv)


def run(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )

    env = dict(os.environ)
    if args.prefix:
        env["BOT_PREFIX"] = args.prefix
    if args.features:
        env["BOT_FEATURES"] = args.features
    if args.owner_id:
        env["BOT_OWNER_ID"] = args.owner_id
    try:
        config = BotConfig.from_env(env)
    except ValueError as exc:
        print(f"rivetbot: {exc}", file=sys.stderr)
        return 2
    if args.compression:
        config.compression = args.compression

    return asyncio.run(main(config))


if __name__ == "__main__":
    sys.exit(run())
