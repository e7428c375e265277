# =============================================================================
# rivetbot -- Error Types
# =============================================================================

from __future__ import annotations


class RivetError(Exception):
    """Base exception for all rivetbot errors."""


# -- Transport / session -------------------------------------------------------


class TransportError(RivetError):
    """Network-level failure (connect failed, connection lost, timed out).

    Retryable: the session reconnects with backoff.
    """


class AuthError(RivetError):
    """Credentials rejected by the remote service. Not retryable."""


class ProtocolError(RivetError):
    """Malformed frame. The frame is dropped and the session continues."""


class ClientClosedError(RivetError):
    """Outbound request attempted after shutdown began."""


class HTTPError(RivetError):
    """Non-success REST response that is not a rate limit or auth failure."""

    def __init__(self, status: int, message: str = "") -> None:
        self.status = status
        super().__init__(f"HTTP {status}: {message}" if message else f"HTTP {status}")


# -- Rate limiting -------------------------------------------------------------


class RateLimitError(RivetError):
    """Base class for rate-limit failures visible to callers."""


class RateLimitTimeout(RateLimitError):
    """No token became available before the caller's timeout."""

    def __init__(self, bucket: str, timeout: float) -> None:
        self.bucket = bucket
        self.timeout = timeout
        super().__init__(f"Timed out after {timeout:.1f}s waiting for bucket '{bucket}'")


class RateLimitExceeded(RateLimitError):
    """Remote service kept rejecting the request after all retries."""

    def __init__(self, bucket: str, retry_after: float = 0.0) -> None:
        self.bucket = bucket
        self.retry_after = retry_after
        super().__init__(
            f"Rate limit exceeded for bucket '{bucket}'. Retry after {retry_after:.1f}s"
        )


# -- Commands (user-facing, never propagated as system failures) ---------------


class CommandError(RivetError):
    """Base class for errors answered with a chat reply."""


class UnknownCommand(CommandError):
    """No enabled command with this name."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Unknown command: {name}")


class PermissionDenied(CommandError):
    """Invoker's permission level is below the command's requirement."""

    def __init__(self, name: str, required: object = None) -> None:
        self.name = name
        self.required = required
        super().__init__(f"Permission requirements not met for '{name}'")


class UsageError(CommandError):
    """Wrong argument count or unparsable arguments."""

    def __init__(self, name: str, usage: str, detail: str = "") -> None:
        self.name = name
        self.usage = usage
        self.detail = detail
        super().__init__(detail or f"Usage: {usage}")


class ArgumentParseError(CommandError):
    """Argument text could not be tokenized (e.g. an unclosed quote)."""
