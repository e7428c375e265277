# =============================================================================
# rivetbot -- Gateway Frame Codec
# =============================================================================
#
# Frames are JSON objects: {"op": int, "d": any, "s": int|null, "t": str|null}
#
# Incoming (gateway -> bot):
#   Text:   JSON
#   Binary: zlib-compressed JSON (payload compression) or plain UTF-8 JSON
#
# Outgoing (bot -> gateway):
#   Text JSON, compact separators
# =============================================================================

from __future__ import annotations

from typing import Any

import orjson

from .compression import decompress_payload, is_zlib
from .constants import MAX_MESSAGE_SIZE
from .errors import ProtocolError
from .types import GatewayEvent, GatewayFrame, OpCode


def _json_loads(data: str | bytes) -> Any:
    return orjson.loads(data)


def _json_dumps(obj: Any) -> str:
    return orjson.dumps(obj).decode()


class FrameCodec:
    """Encode and decode gateway frames.

    Decoding is pure: the same input always produces an equal
    :class:`GatewayFrame` and the codec keeps no state between calls.
    Stream-level decompression lives in
    :class:`~rivetbot.compression.ZlibStreamInflater`.

    Args:
        max_size: Largest accepted frame in bytes (after inflation).
    """

    def __init__(self, max_size: int = MAX_MESSAGE_SIZE) -> None:
        self._max_size = max_size

    def decode(self, data: str | bytes) -> GatewayFrame:
        """Decode one frame.

        Raises:
            ProtocolError: Oversized, undecodable or structurally invalid frame.
        """
        if isinstance(data, (bytes, bytearray)):
            data = self._decode_binary(bytes(data))

        if len(data) > self._max_size:
            raise ProtocolError(f"Frame exceeds max size ({len(data)} bytes)")

        try:
            parsed = _json_loads(data)
        except (ValueError, RecursionError) as exc:
            raise ProtocolError(f"Invalid JSON frame: {exc}") from exc

        return self._parsed_to_frame(parsed)

    def encode(self, op: int, data: Any = None) -> str:
        """Encode an outgoing frame."""
        return _json_dumps({"op": int(op), "d": data})

    def encode_frame(self, frame: GatewayFrame) -> str:
        """Encode a full frame, including ``s`` and ``t`` when present."""
        message: dict[str, Any] = {"op": frame.op, "d": frame.d}
        if frame.s is not None:
            message["s"] = frame.s
        if frame.t is not None:
            message["t"] = frame.t
        return _json_dumps(message)

    # -- Helpers ---------------------------------------------------------------

    def _decode_binary(self, data: bytes) -> str:
        if len(data) > self._max_size:
            raise ProtocolError(f"Binary frame exceeds max size ({len(data)} bytes)")

        if is_zlib(data):
            data = decompress_payload(data, self._max_size)

        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ProtocolError(f"Undecodable binary frame ({len(data)} bytes)") from exc

    def _parsed_to_frame(self, parsed: Any) -> GatewayFrame:
        if not isinstance(parsed, dict):
            raise ProtocolError(f"Frame is not an object: {type(parsed).__name__}")

        op = parsed.get("op")
        if not isinstance(op, int) or isinstance(op, bool):
            raise ProtocolError(f"Frame has no integer opcode: {op!r}")

        seq = parsed.get("s")
        if seq is not None and (not isinstance(seq, int) or isinstance(seq, bool)):
            raise ProtocolError(f"Frame has non-integer sequence: {seq!r}")

        event_type = parsed.get("t")
        if event_type is not None and not isinstance(event_type, str):
            raise ProtocolError(f"Frame has non-string event type: {event_type!r}")

        if op == OpCode.DISPATCH and event_type is None:
            raise ProtocolError("Dispatch frame without event type")

        return GatewayFrame(op=op, d=parsed.get("d"), s=seq, t=event_type)


def frame_to_event(frame: GatewayFrame) -> GatewayEvent:
    """Turn a DISPATCH frame into an application event."""
    payload = frame.d if isinstance(frame.d, dict) else {"data": frame.d}
    return GatewayEvent(type=frame.t or "UNKNOWN", payload=payload, sequence=frame.s)
