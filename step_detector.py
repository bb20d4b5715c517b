"""
Cadence - Step Detector
Turns a triaxial acceleration stream into step events and a
steps-per-minute (SPM) estimate.

Sensor samples and simulated steps share one acceptance path
(submit), so debounce and SPM logic are identical for both.
"""

import math
import threading
import time
from typing import Callable, Optional, Protocol, Union

from config import Config
from errors import MotionPermissionError
from logging_utils import log_event
from models import AccelerationSample, SensorStep, SimulatedStep, SpmChange, StepEvent, StepInput


DetectorEvent = Union[StepEvent, SpmChange]


class MotionSource(Protocol):
    """Platform accelerometer collaborator."""

    def request_permission(self) -> bool: ...

    def subscribe(self, callback: Callable[[AccelerationSample], None]) -> None: ...

    def unsubscribe(self, callback: Callable[[AccelerationSample], None]) -> None: ...


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


class StepDetector:
    """
    Streaming step detector.

    Per sample: magnitude -> slow baseline and fast smoother -> deviation.
    The falling edge of the deviation back through the threshold is the
    step trigger. Accepted steps feed a median-interval SPM estimate.
    """

    def __init__(self, config: Config,
                 event_callback: Optional[Callable[[DetectorEvent], None]] = None,
                 clock: Callable[[], float] = monotonic_ms):
        """
        Args:
            config: Application configuration (uses config.step)
            event_callback: Receives StepEvent / SpmChange objects
            clock: Monotonic time source in milliseconds
        """
        self.config = config
        self.event_callback = event_callback
        self._clock = clock
        self._lock = threading.Lock()

        cfg = config.step
        self.threshold: float = cfg.threshold
        self.min_step_interval_ms: float = cfg.min_step_interval_ms

        # Signal processing state
        self._baseline: float = cfg.gravity     # Tracks gravity / phone orientation
        self._smoothed: float = cfg.gravity     # Fast smoother on the magnitude
        self._above_threshold: bool = False     # Hysteresis flag

        # Step history
        self._step_timestamps: list[float] = []  # Accepted steps, oldest first
        self._last_step_time: Optional[float] = None
        self._step_count: int = 0
        self._spm: int = 0

        # Lifecycle
        self._active = False
        self._motion_source: Optional[MotionSource] = None
        self._decay_stop: Optional[threading.Event] = None
        self._decay_thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, motion_source: Optional[MotionSource] = None, simulate: bool = False) -> None:
        """Begin consuming motion samples (or simulated steps) and start the decay task.

        Raises MotionPermissionError when the source denies motion access.
        """
        if self._active:
            return

        if motion_source is not None and not simulate:
            if not motion_source.request_permission():
                log_event("WARN", "StepDetector", "Motion permission denied")
                raise MotionPermissionError("Motion permission denied")
            motion_source.subscribe(self.feed)
            self._motion_source = motion_source

        with self._lock:
            self._reset_state()
            self._step_count = 0
        self._active = True
        self._start_decay_task()
        log_event("INFO", "StepDetector", "Started",
                  mode="simulated" if simulate or motion_source is None else "sensor",
                  threshold=f"{self.threshold:.2f}")

    def stop(self) -> None:
        """Stop consuming samples, cancel the decay task and clear timing state."""
        if self._motion_source is not None:
            self._motion_source.unsubscribe(self.feed)
            self._motion_source = None
        self._cancel_decay_task()
        self._active = False
        with self._lock:
            self._reset_state()
        log_event("INFO", "StepDetector", "Stopped", steps=self._step_count)

    def set_threshold(self, value: float) -> None:
        if value <= 0:
            raise ValueError(f"threshold must be positive, got {value}")
        self.threshold = float(value)
        log_event("INFO", "StepDetector", "Threshold updated", threshold=f"{self.threshold:.2f}")

    def _reset_state(self) -> None:
        gravity = self.config.step.gravity
        self._baseline = gravity
        self._smoothed = gravity
        self._above_threshold = False
        self._step_timestamps.clear()
        self._last_step_time = None
        self._spm = 0

    # ------------------------------------------------------------------
    # Decay task
    # ------------------------------------------------------------------

    def _start_decay_task(self) -> None:
        self._decay_stop = threading.Event()
        self._decay_thread = threading.Thread(
            target=self._decay_loop, args=(self._decay_stop,), daemon=True)
        self._decay_thread.start()

    def _cancel_decay_task(self) -> None:
        if self._decay_stop is not None:
            self._decay_stop.set()
        thread = self._decay_thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=2.0)
        self._decay_stop = None
        self._decay_thread = None

    def _decay_loop(self, stop_event: threading.Event) -> None:
        interval = self.config.step.decay_check_interval_s
        while not stop_event.wait(interval):
            self.check_decay()

    def check_decay(self, now_ms: Optional[float] = None) -> bool:
        """Zero the SPM and clear history after a silence. Returns True if it decayed."""
        now = self._clock() if now_ms is None else now_ms
        with self._lock:
            if not self._step_timestamps:
                return False
            elapsed = now - self._step_timestamps[-1]
            if elapsed <= self.config.step.decay_ms:
                return False
            self._spm = 0
            self._step_timestamps.clear()
        log_event("INFO", "StepDetector", "Walking stopped, SPM reset", silence_ms=f"{elapsed:.0f}")
        self._emit(SpmChange(0))
        return True

    # ------------------------------------------------------------------
    # Sample processing
    # ------------------------------------------------------------------

    def feed(self, sample: AccelerationSample) -> None:
        """Process one acceleration sample (sensor callback thread)."""
        cfg = self.config.step
        magnitude = math.sqrt(sample.x * sample.x + sample.y * sample.y + sample.z * sample.z)

        with self._lock:
            self._baseline += cfg.baseline_alpha * (magnitude - self._baseline)
            self._smoothed += cfg.smooth_alpha * (magnitude - self._smoothed)
            deviation = self._smoothed - self._baseline

            triggered = False
            if deviation > self.threshold:
                self._above_threshold = True
            elif self._above_threshold:
                # Falling edge after a motion peak
                self._above_threshold = False
                triggered = True

        if triggered:
            self.submit(SensorStep(sample.timestamp_ms))

    def simulate_step(self, timestamp_ms: Optional[float] = None) -> bool:
        """Inject a step without sensor data (desktop / scripted walking)."""
        now = self._clock() if timestamp_ms is None else timestamp_ms
        return self.submit(SimulatedStep(now))

    def submit(self, step: StepInput) -> bool:
        """Single acceptance path for sensor and simulated steps.
        Returns True when the step passed the debounce."""
        events: list[DetectorEvent] = []
        with self._lock:
            now = step.timestamp_ms
            if (self._last_step_time is not None
                    and now - self._last_step_time < self.min_step_interval_ms):
                return False

            self._last_step_time = now
            self._step_count += 1
            self._step_timestamps.append(now)
            history = self.config.step.history_size
            if len(self._step_timestamps) > history:
                del self._step_timestamps[:-history]

            source = "simulated" if isinstance(step, SimulatedStep) else "sensor"
            events.append(StepEvent(timestamp_ms=now, count=self._step_count, source=source))
            new_spm = self._calculate_spm()
            if new_spm is not None:
                self._spm = new_spm
                events.append(SpmChange(new_spm))

        for event in events:
            self._emit(event)
        return True

    def _calculate_spm(self) -> Optional[int]:
        """Median-interval cadence over the recent window, or None if not publishable."""
        cfg = self.config.step
        if len(self._step_timestamps) < cfg.min_timestamps:
            return None

        stamps = self._step_timestamps[-cfg.spm_window:]
        intervals = sorted(b - a for a, b in zip(stamps, stamps[1:]))
        median = intervals[len(intervals) // 2]
        if median <= 0:
            return None

        spm = int(round(60000.0 / median))
        if cfg.min_spm <= spm <= cfg.max_spm:
            return spm
        log_event("DEBUG", "StepDetector", "SPM out of range, keeping previous",
                  candidate=spm, previous=self._spm)
        return None

    def _emit(self, event: DetectorEvent) -> None:
        if self.event_callback is not None:
            self.event_callback(event)

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def spm(self) -> int:
        return self._spm

    @property
    def step_count(self) -> int:
        return self._step_count

    @property
    def step_timestamps(self) -> list[float]:
        with self._lock:
            return list(self._step_timestamps)

    @property
    def active(self) -> bool:
        return self._active
