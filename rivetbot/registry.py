# =============================================================================
# rivetbot -- Command Registry
# =============================================================================
#
# Commands are collected on a CommandRegistryBuilder, validated, and frozen
# into a CommandRegistry at startup. The registry never changes afterwards.
# =============================================================================

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable, Iterator
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING

from ._logging import logger
from .types import PermissionLevel

if TYPE_CHECKING:
    from .router import CommandContext

# Every command handler: async (args, ctx) -> optional reply text
CommandHandler = Callable[[dict[str, str], "CommandContext"], Awaitable[str | None]]


@dataclass(frozen=True, slots=True)
class ArgSpec:
    """One declared command argument.

    Attributes:
        name: Key in the handler's ``args`` dict.
        required: Whether the command fails without it.
        rest: Capture the remaining text verbatim. Only valid last.
    """

    name: str
    required: bool = True
    rest: bool = False

    def __str__(self) -> str:
        label = f"{self.name}..." if self.rest else self.name
        return f"<{label}>" if self.required else f"[{label}]"


@dataclass(frozen=True, slots=True)
class CommandSpec:
    """A registered command."""

    name: str
    handler: CommandHandler
    description: str = ""
    permission: PermissionLevel = PermissionLevel.EVERYONE
    feature: str | None = None
    enabled: bool = True
    args: tuple[ArgSpec, ...] = ()
    aliases: tuple[str, ...] = ()
    dm_enabled: bool = True

    @property
    def usage(self) -> str:
        return " ".join([self.name, *(str(a) for a in self.args)])

    def usage_with(self, prefix: str) -> str:
        return f"{prefix}{self.usage}"


class CommandRegistry:
    """Immutable, case-insensitive command lookup.

    Built by :meth:`CommandRegistryBuilder.build`. Iteration yields each
    enabled command once, in registration order.
    """

    def __init__(self, commands: Iterable[CommandSpec]) -> None:
        ordered: list[CommandSpec] = []
        index: dict[str, CommandSpec] = {}
        for spec in commands:
            ordered.append(spec)
            for key in (spec.name, *spec.aliases):
                index[key.lower()] = spec
        self._commands = tuple(ordered)
        self._index = MappingProxyType(index)

    @property
    def mapping(self) -> MappingProxyType[str, CommandSpec]:
        """Read-only view: lower-cased name or alias -> command."""
        return self._index

    def lookup(self, name: str) -> CommandSpec | None:
        return self._index.get(name.lower())

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._index

    def __iter__(self) -> Iterator[CommandSpec]:
        return iter(self._commands)

    def __len__(self) -> int:
        return len(self._commands)


@dataclass
class CommandRegistryBuilder:
    """Mutable collection of commands, frozen once by :meth:`build`.

    Example::

        builder = CommandRegistryBuilder()

        @builder.command("echo", args=[ArgSpec("text", rest=True)])
        async def echo(args, ctx):
            return args["text"]

        registry = builder.build(enabled_features={"admin"})
    """

    _specs: list[CommandSpec] = field(default_factory=list)

    def bind(self, spec: CommandSpec) -> CommandRegistryBuilder:
        self._specs.append(spec)
        return self

    def bind_all(self, specs: Iterable[CommandSpec]) -> CommandRegistryBuilder:
        for spec in specs:
            self.bind(spec)
        return self

    def command(
        self,
        name: str,
        *,
        description: str = "",
        permission: PermissionLevel = PermissionLevel.EVERYONE,
        feature: str | None = None,
        enabled: bool = True,
        args: Iterable[ArgSpec] = (),
        aliases: Iterable[str] = (),
        dm_enabled: bool = True,
    ) -> Callable[[CommandHandler], CommandHandler]:
        """Decorator that binds a coroutine function as a command."""

        def decorator(fn: CommandHandler) -> CommandHandler:
            self.bind(
                CommandSpec(
                    name=name,
                    handler=fn,
                    description=description or (fn.__doc__ or "").strip().split("\n")[0],
                    permission=permission,
                    feature=feature,
                    enabled=enabled,
                    args=tuple(args),
                    aliases=tuple(aliases),
                    dm_enabled=dm_enabled,
                )
            )
            return fn

        return decorator

    def validate(self) -> None:
        """Check names and argument declarations.

        Raises:
            ValueError: Empty or whitespace-containing name, a name or alias
                used twice, a required argument after an optional one, or a
                ``rest`` argument that is not last.
        """
        seen: dict[str, str] = {}
        for spec in self._specs:
            for key in (spec.name, *spec.aliases):
                if not key or any(ch.isspace() for ch in key):
                    raise ValueError(f"Invalid command name {key!r}")
                lowered = key.lower()
                if lowered in seen:
                    raise ValueError(
                        f"Command name '{key}' of '{spec.name}' already used by '{seen[lowered]}'"
                    )
                seen[lowered] = spec.name

            optional_seen = False
            for i, arg in enumerate(spec.args):
                if arg.rest and i != len(spec.args) - 1:
                    raise ValueError(f"'{spec.name}': rest argument '{arg.name}' must be last")
                if arg.required and optional_seen:
                    raise ValueError(
                        f"'{spec.name}': required argument '{arg.name}' follows an optional one"
                    )
                optional_seen = optional_seen or not arg.required

    def build(self, enabled_features: Iterable[str] = ()) -> CommandRegistry:
        """Validate and freeze.

        Commands that are disabled, or whose feature is not in
        *enabled_features*, are left out and therefore unknown to the router.
        """
        self.validate()
        features = frozenset(enabled_features)
        active: list[CommandSpec] = []
        for spec in self._specs:
            if not spec.enabled:
                logger.debug("Command %s disabled", spec.name)
                continue
            if spec.feature is not None and spec.feature not in features:
                logger.debug("Command %s needs feature %s", spec.name, spec.feature)
                continue
            active.append(spec)
        logger.info("Registered %d of %d commands", len(active), len(self._specs))
        return CommandRegistry(active)

    def __len__(self) -> int:
        return len(self._specs)

    def __iter__(self) -> Iterator[CommandSpec]:
        return iter(self._specs)
