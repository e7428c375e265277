# =============================================================================
# rivetbot -- Guild Event Handlers
# =============================================================================

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING

from ._logging import logger
from .errors import RivetError
from .types import GatewayEvent

if TYPE_CHECKING:
    from .http import RestClient


class GuildWhitelist:
    """Leave every guild that is not whitelisted as soon as it is announced.

    Registered for ``GUILD_CREATE``. An empty whitelist allows every guild.
    """

    def __init__(self, rest: RestClient, allowed: Iterable[str]) -> None:
        self.rest = rest
        self.allowed = frozenset(str(g) for g in allowed)
        self.left: list[str] = []

    async def __call__(self, event: GatewayEvent) -> None:
        if event.type != "GUILD_CREATE" or not self.allowed:
            return
        guild_id = event.payload.get("id")
        if guild_id is None or str(guild_id) in self.allowed:
            return

        logger.warning(
            "Guild %s (%s) is not whitelisted, leaving",
            guild_id,
            event.payload.get("name", "?"),
        )
        try:
            await self.rest.leave_guild(str(guild_id))
        except RivetError as exc:
            logger.error("Failed to leave guild %s: %s", guild_id, exc)
            return
        self.left.append(str(guild_id))
