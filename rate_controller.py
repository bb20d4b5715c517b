"""
Cadence - Rate Controller
Fuses live cadence (SPM), the track tempo and its beat-phase anchor into
a smoothed, clamped playback-rate multiplier.
"""

import threading
from dataclasses import replace
from typing import Callable, Optional

from config import Config
from logging_utils import log_event
from models import RateState


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def phase_error(audio_position: float, beat_offset: float, beat_period: float) -> float:
    """Signed beat-phase error of a position, as a fraction of the period in (-0.5, 0.5]."""
    phase = ((audio_position - beat_offset) % beat_period + beat_period) % beat_period
    error = phase / beat_period
    if error > 0.5:
        error -= 1.0
    return error


class RateController:
    """
    Closed-loop playback-rate controller.

    Base target = clamp(spm / original_bpm). Step events nudge the target by a
    proportional beat-phase correction; tick() low-passes the current rate
    toward the target once per render cycle.
    """

    def __init__(self, config: Config, rate_sink: Optional[Callable[[float], None]] = None):
        """
        Args:
            config: Application configuration (uses config.rate)
            rate_sink: Receives the smoothed rate when it changes meaningfully
        """
        self.config = config
        self.rate_sink = rate_sink
        self._lock = threading.Lock()

        cfg = config.rate
        self._state = RateState(
            min_rate=cfg.min_rate,
            max_rate=cfg.max_rate,
            smoothing=cfg.smoothing,
        )

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    def set_track_tempo(self, bpm: Optional[float], beat_offset: Optional[float] = None) -> bool:
        """Set the track tempo reference. Returns False when the value was rejected.
        None or 0 clears the reference and resets the rate."""
        if not bpm:
            with self._lock:
                s = self._state
                s.original_bpm = 0.0
                s.beat_offset = None
                s.phase_correction = 0.0
                s.target_rate = 1.0
                s.current_rate = 1.0
                changed = s.applied_rate != 1.0
                s.applied_rate = 1.0
            if changed and self.rate_sink is not None:
                self.rate_sink(1.0)
            log_event("INFO", "RateControl", "Track tempo cleared")
            return True

        cfg = self.config.rate
        if not (cfg.min_track_bpm <= bpm <= cfg.max_track_bpm):
            log_event("WARN", "RateControl", "Track tempo rejected (out of range)",
                      bpm=bpm, previous=self._state.original_bpm)
            return False

        with self._lock:
            s = self._state
            s.original_bpm = float(bpm)
            if beat_offset is not None:
                s.beat_offset = float(beat_offset) % (60.0 / s.original_bpm)
            else:
                s.beat_offset = None
            s.phase_correction = 0.0
            self._update_target()
        log_event("INFO", "RateControl", "Track tempo set", bpm=bpm,
                  beat_offset="none" if beat_offset is None else f"{beat_offset:.3f}s")
        return True

    def on_spm_update(self, spm: int) -> None:
        with self._lock:
            self._state.spm = max(0, int(spm))
            if self._state.spm <= 0:
                self._state.phase_correction = 0.0
            self._update_target()

    def on_step_event(self, audio_position: float) -> None:
        """Phase-correct the target so the beat lines up with the step."""
        with self._lock:
            s = self._state
            if s.beat_offset is None or s.original_bpm <= 0 or s.spm <= 0:
                return
            period = 60.0 / s.original_bpm
            error = phase_error(audio_position, s.beat_offset, period)
            s.phase_correction = -self.config.rate.phase_gain * error
            self._update_target()
            log_event("DEBUG", "RateControl", "Phase correction",
                      position=f"{audio_position:.3f}s", error=f"{error:+.3f}",
                      correction=f"{s.phase_correction:+.4f}", target=f"{s.target_rate:.4f}")

    def _update_target(self) -> None:
        # Caller holds the lock
        s = self._state
        if s.spm > 0 and s.original_bpm > 0:
            base = clamp(s.spm / s.original_bpm, s.min_rate, s.max_rate)
            s.target_rate = clamp(base * (1.0 + s.phase_correction), s.min_rate, s.max_rate)
        else:
            s.target_rate = 1.0

    # ------------------------------------------------------------------
    # Render tick
    # ------------------------------------------------------------------

    def tick(self) -> float:
        """Advance the smoother one render cycle and return the current rate."""
        apply_value = None
        with self._lock:
            s = self._state
            s.current_rate += s.smoothing * (s.target_rate - s.current_rate)
            s.current_rate = clamp(s.current_rate, s.min_rate, s.max_rate)
            if abs(s.current_rate - s.applied_rate) > self.config.rate.apply_epsilon:
                s.applied_rate = s.current_rate
                apply_value = s.current_rate
            current = s.current_rate

        if apply_value is not None and self.rate_sink is not None:
            self.rate_sink(apply_value)
        return current

    def reset(self, immediate: bool = False) -> None:
        """Target 1.0 and no phase correction; immediate also snaps the current rate."""
        with self._lock:
            s = self._state
            s.spm = 0
            s.target_rate = 1.0
            s.phase_correction = 0.0
            changed = False
            if immediate:
                s.current_rate = 1.0
                changed = s.applied_rate != 1.0
                s.applied_rate = 1.0
        if changed and self.rate_sink is not None:
            self.rate_sink(1.0)

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def set_rate_limits(self, min_rate: float, max_rate: float) -> None:
        if min_rate <= 0 or max_rate <= 0 or min_rate > max_rate:
            raise ValueError(f"invalid rate limits: min={min_rate} max={max_rate}")
        with self._lock:
            s = self._state
            s.min_rate = float(min_rate)
            s.max_rate = float(max_rate)
            s.current_rate = clamp(s.current_rate, s.min_rate, s.max_rate)
            self._update_target()
        log_event("INFO", "RateControl", "Rate limits updated",
                  min_rate=f"{min_rate:.2f}", max_rate=f"{max_rate:.2f}")

    def set_smoothing(self, coefficient: float) -> None:
        if not 0.0 < coefficient <= 1.0:
            raise ValueError(f"smoothing must be in (0, 1], got {coefficient}")
        with self._lock:
            self._state.smoothing = float(coefficient)

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def state(self) -> RateState:
        with self._lock:
            return replace(self._state)

    @property
    def current_rate(self) -> float:
        return self._state.current_rate

    @property
    def target_rate(self) -> float:
        return self._state.target_rate

    @property
    def original_bpm(self) -> float:
        return self._state.original_bpm
