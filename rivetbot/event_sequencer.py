# =============================================================================
# rivetbot -- Event Sequencer
# =============================================================================
#
# Tracks the last gateway sequence number for RESUME and filters replayed
# events that were already handed to the dispatcher.
# =============================================================================

from __future__ import annotations


class SequenceTracker:
    """Last-sequence bookkeeping for a gateway session.

    The tracked value only moves forward, so it always equals the largest
    sequence number observed since the last :meth:`reset`.
    """

    def __init__(self) -> None:
        self._last: int | None = None
        self._observed = 0
        self._replays_skipped = 0
        self._gaps = 0

    @property
    def last(self) -> int | None:
        """Sequence to send in RESUME and HEARTBEAT frames."""
        return self._last

    def observe(self, seq: int) -> bool:
        """Record *seq*. Returns False if it was already seen (a replay)."""
        if self._last is not None and seq <= self._last:
            self._replays_skipped += 1
            return False

        if self._last is not None and seq > self._last + 1:
            self._gaps += 1
        self._last = seq
        self._observed += 1
        return True

    def get_stats(self) -> dict:
        return {
            "last_sequence": self._last,
            "observed": self._observed,
            "replays_skipped": self._replays_skipped,
            "gaps": self._gaps,
        }

    def reset(self) -> None:
        """Forget the sequence (new session after a fresh IDENTIFY)."""
        self._last = None
        self._observed = 0
        self._replays_skipped = 0
        self._gaps = 0
