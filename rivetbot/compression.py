# =============================================================================
# rivetbot -- Compression Handlers
# =============================================================================
#
# Two gateway compression modes:
#   payload compression -- individual binary frames are complete zlib streams
#   zlib-stream         -- one zlib context per connection, messages end with
#                          the Z_SYNC_FLUSH suffix 00 00 ff ff
# =============================================================================

from __future__ import annotations

import zlib
from typing import Any

from .constants import MAX_MESSAGE_SIZE, ZLIB_MAGIC, ZLIB_METHODS, ZLIB_SUFFIX
from .errors import ProtocolError


def is_zlib(data: bytes) -> bool:
    """True if *data* starts with a zlib header."""
    return len(data) >= 2 and data[0] == ZLIB_MAGIC and data[1] in ZLIB_METHODS


def decompress_payload(data: bytes, max_size: int = MAX_MESSAGE_SIZE) -> bytes:
    """Inflate one self-contained zlib (or raw deflate) payload.

    Output is capped at *max_size* bytes while inflating.

    Raises:
        ProtocolError: Corrupt, truncated or oversized payload.
    """
    try:
        return _inflate_bounded(zlib.decompressobj(), data, max_size)
    except zlib.error:
        try:
            # Try raw deflate (no zlib header)
            return _inflate_bounded(zlib.decompressobj(-zlib.MAX_WBITS), data, max_size)
        except zlib.error as exc:
            raise ProtocolError(f"Corrupt compressed frame ({len(data)} bytes)") from exc


def _inflate_bounded(inflator: Any, data: bytes, max_size: int) -> bytes:
    out = inflator.decompress(data, max_size + 1)
    if len(out) > max_size or inflator.unconsumed_tail:
        raise ProtocolError(f"Decompressed frame exceeds max size ({max_size} bytes)")
    if not inflator.eof:
        raise zlib.error("incomplete compressed data")
    return out


class ZlibStreamInflater:
    """Per-connection inflater for ``compress=zlib-stream`` transports.

    Binary frames are buffered until one ends with the sync-flush suffix,
    then the whole message is inflated through the shared context.
    Create a new instance for every connection.

    Once the shared context is damaged (corrupt data or an oversized
    message) :attr:`broken` is set and the connection has to be replaced.
    """

    def __init__(self, max_size: int = MAX_MESSAGE_SIZE) -> None:
        self._inflator = zlib.decompressobj()
        self._buffer = bytearray()
        self._max_size = max_size
        self.broken = False

    def feed(self, data: bytes) -> str | None:
        """Add a frame. Returns the decoded message once complete, else None.

        Raises:
            ProtocolError: Oversized, corrupt or undecodable message.
        """
        self._buffer.extend(data)
        if len(self._buffer) > self._max_size:
            self._buffer.clear()
            self.broken = True
            raise ProtocolError("zlib-stream message exceeds max size")
        if len(data) < 4 or data[-4:] != ZLIB_SUFFIX:
            return None

        try:
            message = self._inflator.decompress(bytes(self._buffer), self._max_size + 1)
        except zlib.error as exc:
            self.broken = True
            raise ProtocolError("Corrupt zlib-stream message") from exc
        finally:
            self._buffer.clear()

        if len(message) > self._max_size or self._inflator.unconsumed_tail:
            self.broken = True
            raise ProtocolError(
                f"Inflated zlib-stream message exceeds max size ({self._max_size} bytes)"
            )
        try:
            return message.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ProtocolError(
                f"Undecodable zlib-stream message ({len(message)} bytes)"
            ) from exc

    def reset(self) -> None:
        self._inflator = zlib.decompressobj()
        self._buffer.clear()
        self.broken = False
