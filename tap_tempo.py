"""
Cadence - Tap Tempo
Manual tempo entry from user-timed taps.
"""

from typing import Callable, Optional

from config import Config
from step_detector import monotonic_ms


class TapTempo:
    """Average-interval BPM from the most recent taps."""

    def __init__(self, config: Config, clock: Callable[[], float] = monotonic_ms):
        self.config = config
        self._clock = clock
        self.taps: list[float] = []

    def tap(self, now_ms: Optional[float] = None) -> Optional[int]:
        """Register a tap. Returns the BPM once two taps are in, else None."""
        now = self._clock() if now_ms is None else now_ms
        cfg = self.config.tap

        # A long pause starts a new sequence
        if self.taps and now - self.taps[-1] > cfg.reset_gap_ms:
            self.taps = []

        self.taps.append(now)
        if len(self.taps) > cfg.max_taps:
            del self.taps[:-cfg.max_taps]

        if len(self.taps) < 2:
            return None

        intervals = [b - a for a, b in zip(self.taps, self.taps[1:])]
        avg = sum(intervals) / len(intervals)
        if avg <= 0:
            return None
        return int(round(60000.0 / avg))

    def reset(self) -> None:
        self.taps = []
