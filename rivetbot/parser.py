# =============================================================================
# rivetbot -- Command Text Parser
# =============================================================================
#
# "!echo 'hello world' rest of text"
#   prefix "!", name "echo", tokens: "hello world", then the tail.
#
# Quoted tokens use one of QUOTE_DELIMITERS and must be closed.
# =============================================================================

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Protocol

from .constants import QUOTE_DELIMITERS
from .errors import ArgumentParseError


class ArgDeclaration(Protocol):
    name: str
    required: bool
    rest: bool


def unprefix_with(prefixes: Iterable[str], text: str) -> tuple[str, str] | None:
    """Strip the first matching prefix. Returns ``(prefix, remainder)`` or None."""
    for prefix in prefixes:
        if prefix and text.startswith(prefix):
            return prefix, text[len(prefix):]
    return None


def mention_prefixes(user_id: str) -> tuple[str, str]:
    """Both mention forms of a user, usable as command prefixes."""
    return f"<@{user_id}>", f"<@!{user_id}>"


def split_once_whitespace(text: str) -> tuple[str, str | None]:
    """Split at the first whitespace run: ``(head, tail)``, tail None if absent."""
    parts = text.split(None, 1)
    if not parts:
        return "", None
    if len(parts) == 1:
        return parts[0], None
    return parts[0], parts[1]


def maybe_quoted_arg(text: str) -> tuple[str, str | None] | None:
    """Take one argument off the front of *text*.

    Returns ``(arg, remainder)``, or None when no argument is left.

    Raises:
        ArgumentParseError: A quote was opened and never closed.
    """
    text = text.lstrip()
    if not text:
        return None

    initial = text[0]
    if initial in QUOTE_DELIMITERS:
        end = text.find(initial, 1)
        if end == -1:
            raise ArgumentParseError(
                f"Missing matching delimiter: {text!r}, expected one of: "
                + ", ".join(QUOTE_DELIMITERS)
            )
        remainder = text[end + 1:]
        return text[1:end], (remainder if remainder.strip() else None)

    return split_once_whitespace(text)


def parse_args(text: str | None) -> list[str]:
    """Tokenize all arguments in *text*."""
    args: list[str] = []
    while text:
        taken = maybe_quoted_arg(text)
        if taken is None:
            break
        arg, text = taken
        args.append(arg)
    return args


def bind_args(text: str | None, specs: Sequence[ArgDeclaration]) -> tuple[str, ...]:
    """Bind argument text to declared arguments.

    A trailing ``rest`` argument receives the remaining text verbatim
    (surrounding whitespace stripped).

    Raises:
        ArgumentParseError: Unclosed quote.
        ValueError: Too few or too many arguments.
    """
    values: list[str] = []
    remaining = text.strip() if text else None

    for spec in specs:
        if spec.rest:
            if remaining:
                values.append(remaining.strip())
                remaining = None
            elif spec.required:
                raise ValueError(f"Missing argument: {spec.name}")
            break

        taken = maybe_quoted_arg(remaining) if remaining else None
        if taken is None:
            if spec.required:
                raise ValueError(f"Missing argument: {spec.name}")
            break
        value, remaining = taken
        values.append(value)

    if remaining and remaining.strip():
        raise ValueError(f"Unexpected arguments: {remaining.strip()}")
    return tuple(values)
