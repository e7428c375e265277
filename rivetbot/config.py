# =============================================================================
# rivetbot -- Bot Configuration
# =============================================================================

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field

from .constants import (
    DEFAULT_INTENTS,
    DEFAULT_PREFIX,
    HANDSHAKE_TIMEOUT,
    REQUEST_TIMEOUT,
    SHUTDOWN_TIMEOUT,
)
from .types import ReconnectConfig

# Feature flags understood by the built-in commands and handlers
KNOWN_FEATURES = frozenset({"admin", "owner", "voice", "bulk-delete"})


@dataclass
class BotConfig:
    """Startup configuration for :class:`~rivetbot.client.Bot`.

    Attributes:
        token: Bot token.
        prefix: Command prefix.
        features: Enabled feature flags; commands bound to other features
            are unknown to the router.
        owner_id: Owner user id. Resolved from the application when None.
        intents: Gateway intents bitfield.
        admin_role_ids: Role ids granting ADMIN command level.
        guild_whitelist: Guild ids the bot may stay in. Empty allows all.
        gateway_url: Gateway URL override (skips ``GET /gateway/bot``).
        compression: ``None``, ``"payload"`` or ``"zlib-stream"``.
        handshake_timeout: Max seconds for IDENTIFY/RESUME to complete.
        request_timeout: Per REST request timeout in seconds.
        shutdown_timeout: Max seconds to wait for in-flight work on close.
        reconnect: Gateway reconnect backoff.
    """

    token: str
    prefix: str = DEFAULT_PREFIX
    features: frozenset[str] = frozenset()
    owner_id: str | None = None
    intents: int = DEFAULT_INTENTS
    admin_role_ids: tuple[str, ...] = ()
    guild_whitelist: tuple[str, ...] = ()
    gateway_url: str | None = None
    compression: str | None = None
    handshake_timeout: float = HANDSHAKE_TIMEOUT
    request_timeout: float = REQUEST_TIMEOUT
    shutdown_timeout: float = SHUTDOWN_TIMEOUT
    reconnect: ReconnectConfig = field(default_factory=ReconnectConfig)

    def __post_init__(self) -> None:
        if not self.token:
            raise ValueError("A bot token is required")
        if not self.prefix or any(ch.isspace() for ch in self.prefix):
            raise ValueError(f"Invalid command prefix: {self.prefix!r}")
        self.features = frozenset(self.features)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> BotConfig:
        """Build a config from environment variables.

        ``DISCORD_TOKEN`` (required), ``BOT_PREFIX``, ``BOT_FEATURES``
        (comma separated), ``BOT_OWNER_ID``, ``BOT_ADMIN_ROLES`` and
        ``BOT_GUILD_WHITELIST`` (comma separated ids).

        Raises:
            ValueError: ``DISCORD_TOKEN`` is missing or a value is invalid.
        """
        env = os.environ if environ is None else environ
        token = env.get("DISCORD_TOKEN", "").strip()
        if not token:
            raise ValueError("DISCORD_TOKEN is not set")

        return cls(
            token=token,
            prefix=env.get("BOT_PREFIX", "").strip() or DEFAULT_PREFIX,
            features=frozenset(_split_list(env.get("BOT_FEATURES"))),
            owner_id=env.get("BOT_OWNER_ID", "").strip() or None,
            admin_role_ids=tuple(_split_list(env.get("BOT_ADMIN_ROLES"))),
            guild_whitelist=tuple(_split_list(env.get("BOT_GUILD_WHITELIST"))),
        )

    @property
    def unknown_features(self) -> frozenset[str]:
        return self.features - KNOWN_FEATURES


def _split_list(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]
