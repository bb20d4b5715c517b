"""
Cadence - Data model
Value types exchanged between the step detector, tempo estimator,
rate controller and sync session.
"""

from dataclasses import dataclass
from typing import Union

import numpy as np


# ---------------------------------------------------------------------------
# Motion sensing
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AccelerationSample:
    """One triaxial accelerometer reading (m/s², gravity included)"""
    timestamp_ms: float      # Monotonic milliseconds
    x: float
    y: float
    z: float


@dataclass(frozen=True)
class SensorStep:
    """Step candidate produced by the falling edge of the motion signal"""
    timestamp_ms: float


@dataclass(frozen=True)
class SimulatedStep:
    """Step candidate injected by hand (desktop / keyboard / scripted walking)"""
    timestamp_ms: float


StepInput = Union[SensorStep, SimulatedStep]


@dataclass(frozen=True)
class StepEvent:
    """An accepted step"""
    timestamp_ms: float
    count: int                # Running step count since start()
    source: str = "sensor"    # "sensor" or "simulated"


@dataclass(frozen=True)
class SpmChange:
    """Published cadence estimate; 0 means unknown (walking stopped)"""
    spm: int


# ---------------------------------------------------------------------------
# Tempo analysis
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TempoResult:
    """Dominant tempo and one beat-phase anchor for a track"""
    bpm: int                  # 60-200
    beat_offset: float        # Seconds from track start to a beat, in [0, beat_period)

    @property
    def beat_period(self) -> float:
        return 60.0 / self.bpm

    def beat_time(self, n: int) -> float:
        """Predicted time (seconds) of the n-th beat after the anchor."""
        return self.beat_offset + n * self.beat_period


@dataclass(frozen=True)
class TempoReady:
    """Analysis finished for the track identified by token"""
    token: int
    result: TempoResult


@dataclass(frozen=True)
class TempoFailed:
    """Analysis failed for the track identified by token"""
    token: int
    error: Exception


@dataclass
class DecodedAudio:
    """PCM samples for one track. samples has shape (n,) or (n, channels)."""
    samples: np.ndarray
    sample_rate: int

    @property
    def frames(self) -> int:
        return int(self.samples.shape[0]) if self.samples.ndim > 0 else 0

    @property
    def channels(self) -> int:
        return 1 if self.samples.ndim == 1 else int(self.samples.shape[1])

    @property
    def duration(self) -> float:
        if self.sample_rate <= 0:
            return 0.0
        return self.frames / float(self.sample_rate)

    def mono(self) -> np.ndarray:
        """Channel average as float64."""
        if self.samples.ndim == 1:
            return self.samples.astype(np.float64)
        return np.mean(self.samples, axis=1, dtype=np.float64)


# ---------------------------------------------------------------------------
# Rate control
# ---------------------------------------------------------------------------

@dataclass
class RateState:
    """Snapshot of the rate controller"""
    original_bpm: float = 0.0        # Track tempo reference (0 = none)
    beat_offset: float | None = None # Beat-phase anchor in seconds (None = no anchor)
    spm: int = 0                     # Last cadence fed in
    target_rate: float = 1.0
    current_rate: float = 1.0
    applied_rate: float = 1.0        # Last value pushed to the rate sink
    min_rate: float = 0.7
    max_rate: float = 1.4
    smoothing: float = 0.08
    phase_correction: float = 0.0
