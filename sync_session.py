"""
Cadence - Sync Session
Wires the step detector, tempo estimator, tap tempo and rate controller
together: the controller side of the app without any UI.

Detector events and tempo results are posted to a queue from their own
threads; tick() drains it on the render side, so the rate controller is
only driven from one place.
"""

import queue
import threading
import time
from pathlib import Path
from typing import Callable, Optional

from config import Config
from errors import CadenceError, MotionPermissionError
from logging_utils import log_event
from models import DecodedAudio, SpmChange, StepEvent, TempoFailed, TempoReady, TempoResult
from rate_controller import RateController
from session_reporter import SyncSessionReporter
from step_detector import MotionSource, StepDetector, monotonic_ms
from tap_tempo import TapTempo
from tempo_estimator import TempoEstimator

# Steps older than this when drained are applied at the drain position
MAX_STEP_LAG_MS = 1000.0


class SyncSession:
    """Cadence sync for one player: track tempo reference + live walking cadence."""

    def __init__(self, config: Config,
                 rate_sink: Optional[Callable[[float], None]] = None,
                 report_dir: Optional[Path] = None,
                 tempo_estimator: Optional[TempoEstimator] = None,
                 clock: Callable[[], float] = monotonic_ms):
        self.config = config
        self._clock = clock
        self.events: queue.Queue = queue.Queue()

        self.step_detector = StepDetector(config, self.events.put, clock=clock)
        self.rate_controller = RateController(config, rate_sink)
        self.tap_tempo = TapTempo(config, clock=clock)
        self.tempo_estimator = tempo_estimator if tempo_estimator is not None else TempoEstimator(config)

        self.reporter: Optional[SyncSessionReporter] = None
        if report_dir is not None and config.report_generation_enabled:
            self.reporter = SyncSessionReporter(report_dir)

        self.syncing = False
        self.sync_mode = "sensor"

        # Track state
        self._track_lock = threading.Lock()
        self._track_token = 0
        self._track_id: Optional[str] = None
        self._track_audio: Optional[DecodedAudio] = None
        self._track_tempo: Optional[TempoResult] = None
        self._analysis_thread: Optional[threading.Thread] = None

        self._reset_session_stats()

    # ------------------------------------------------------------------
    # Track tempo
    # ------------------------------------------------------------------

    def load_track(self, track_id: str, audio: Optional[DecodedAudio]) -> int:
        """Make track_id current and start tempo analysis in the background.
        Returns the token identifying this load; results for older tokens are dropped."""
        with self._track_lock:
            self._track_token += 1
            token = self._track_token
            self._track_id = track_id
            self._track_audio = audio
            self._track_tempo = None
        self.rate_controller.set_track_tempo(None)
        log_event("INFO", "Session", "Track loaded", track=track_id, token=token)

        if audio is not None:
            self._start_analysis(token, audio)
        return token

    def reanalyze(self) -> Optional[int]:
        """Run tempo analysis again for the current track."""
        with self._track_lock:
            token = self._track_token
            audio = self._track_audio
        if audio is None:
            return None
        self._start_analysis(token, audio)
        return token

    def _start_analysis(self, token: int, audio: DecodedAudio) -> None:
        thread = threading.Thread(target=self._analyze, args=(token, audio), daemon=True)
        with self._track_lock:
            self._analysis_thread = thread
        thread.start()

    def _analyze(self, token: int, audio: DecodedAudio) -> None:
        try:
            result = self.tempo_estimator.detect(audio)
        except CadenceError as e:
            self.events.put(TempoFailed(token, e))
            return
        except Exception as e:
            log_event("ERROR", "Session", "Tempo analysis crashed", token=token, error=repr(e))
            self.events.put(TempoFailed(token, e))
            return
        self.events.put(TempoReady(token, result))

    def wait_for_analysis(self, timeout: Optional[float] = None) -> bool:
        """Block until the current track's analysis thread finishes. Returns False on timeout."""
        with self._track_lock:
            thread = self._analysis_thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def set_manual_bpm(self, bpm: int) -> bool:
        """Manual tempo entry; no beat-phase anchor."""
        accepted = self.rate_controller.set_track_tempo(bpm)
        if accepted:
            with self._track_lock:
                self._track_tempo = None
        return accepted

    def tap(self, now_ms: Optional[float] = None) -> Optional[int]:
        """Tap-tempo entry; applies the BPM once two taps are in."""
        bpm = self.tap_tempo.tap(now_ms)
        if bpm is not None:
            self.set_manual_bpm(bpm)
        return bpm

    # ------------------------------------------------------------------
    # Sync lifecycle
    # ------------------------------------------------------------------

    def start_sync(self, motion_source: Optional[MotionSource] = None, simulate: bool = False) -> bool:
        """Start cadence sync. Returns False (sync unavailable) when motion access is denied."""
        if self.syncing:
            return True
        try:
            self.step_detector.start(motion_source, simulate=simulate)
        except MotionPermissionError as e:
            log_event("WARN", "Session", "Cadence sync unavailable", error=e)
            return False

        self.syncing = True
        self.sync_mode = "simulated" if simulate or motion_source is None else "sensor"
        self._reset_session_stats()
        log_event("INFO", "Session", "Sync started", mode=self.sync_mode)
        return True

    def stop_sync(self) -> None:
        if not self.syncing:
            return
        self.syncing = False
        self.step_detector.stop()
        self._drain(audio_position=0.0)
        self.rate_controller.reset(immediate=True)
        log_event("INFO", "Session", "Sync stopped", steps=self._session_steps)
        self._save_session_report()

    def simulate_step(self, timestamp_ms: Optional[float] = None) -> bool:
        if not self.syncing:
            return False
        return self.step_detector.simulate_step(timestamp_ms)

    # ------------------------------------------------------------------
    # Render tick
    # ------------------------------------------------------------------

    def tick(self, audio_position: float = 0.0) -> float:
        """One render cycle: apply queued events, then advance the rate smoother."""
        self._drain(audio_position)
        rate = self.rate_controller.tick()
        if self.syncing:
            self._update_rate_stats(rate)
        return rate

    def _drain(self, audio_position: float) -> None:
        while True:
            try:
                event = self.events.get_nowait()
            except queue.Empty:
                break
            self._handle_event(event, audio_position)

    def _handle_event(self, event, audio_position: float) -> None:
        if isinstance(event, StepEvent):
            if not self.syncing:
                return
            self._session_steps += 1
            # Audio position at the moment of the step, not at drain time
            lag_ms = self._clock() - event.timestamp_ms
            if not 0.0 <= lag_ms <= MAX_STEP_LAG_MS:
                lag_ms = 0.0
            position = audio_position - (lag_ms / 1000.0) * self.rate_controller.current_rate
            self.rate_controller.on_step_event(position)

        elif isinstance(event, SpmChange):
            if self.syncing and event.spm > 0:
                self.rate_controller.on_spm_update(event.spm)
                self._update_spm_stats(event.spm)
            else:
                self.rate_controller.on_spm_update(0)

        elif isinstance(event, TempoReady):
            if not self._is_current(event.token):
                log_event("INFO", "Session", "Discarding stale tempo result",
                          token=event.token, bpm=event.result.bpm)
                return
            with self._track_lock:
                self._track_tempo = event.result
            self.rate_controller.set_track_tempo(event.result.bpm, event.result.beat_offset)

        elif isinstance(event, TempoFailed):
            if not self._is_current(event.token):
                return
            log_event("WARN", "Session", "Automatic tempo unavailable, use manual or tap entry",
                      track=self._track_id, error=event.error)

    def _is_current(self, token: int) -> bool:
        with self._track_lock:
            return token == self._track_token

    # ------------------------------------------------------------------
    # Session stats / report
    # ------------------------------------------------------------------

    def _reset_session_stats(self) -> None:
        self._session_started_at = time.time()
        self._session_steps = 0
        self._session_spm_min: int | None = None
        self._session_spm_max: int | None = None
        self._session_spm_sum = 0.0
        self._session_spm_count = 0
        self._session_rate_min: float | None = None
        self._session_rate_max: float | None = None
        self._session_rate_sum = 0.0
        self._session_ticks = 0

    def _update_spm_stats(self, spm: int) -> None:
        self._session_spm_count += 1
        self._session_spm_sum += spm
        if self._session_spm_min is None or spm < self._session_spm_min:
            self._session_spm_min = spm
        if self._session_spm_max is None or spm > self._session_spm_max:
            self._session_spm_max = spm

    def _update_rate_stats(self, rate: float) -> None:
        self._session_ticks += 1
        self._session_rate_sum += rate
        if self._session_rate_min is None or rate < self._session_rate_min:
            self._session_rate_min = rate
        if self._session_rate_max is None or rate > self._session_rate_max:
            self._session_rate_max = rate

    def session_summary(self) -> dict:
        ended = time.time()
        spm_count = max(1, self._session_spm_count)
        ticks = max(1, self._session_ticks)
        return {
            "session_started_at": self._session_started_at,
            "session_ended_at": ended,
            "seconds": round(max(0.0, ended - self._session_started_at), 1),
            "mode": self.sync_mode,
            "steps": self._session_steps,
            "spm_min": self._session_spm_min or 0,
            "spm_max": self._session_spm_max or 0,
            "spm_mean": round(self._session_spm_sum / spm_count, 2),
            "rate_min": round(self._session_rate_min or 1.0, 4),
            "rate_max": round(self._session_rate_max or 1.0, 4),
            "rate_mean": round(self._session_rate_sum / ticks, 4) if self._session_ticks else 1.0,
            "track_bpm": self.rate_controller.original_bpm,
            "ticks": self._session_ticks,
        }

    def _save_session_report(self) -> None:
        if self.reporter is None:
            return
        summary = self.session_summary()
        try:
            self.reporter.save_session(summary)
        except OSError as e:
            log_event("WARN", "Session", "Could not write session report", error=e)
            return
        log_event("INFO", "Session", "Session report saved", path=self.reporter.json_path,
                  steps=summary["steps"], spm_mean=summary["spm_mean"])

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def spm(self) -> int:
        return self.step_detector.spm

    @property
    def track_id(self) -> Optional[str]:
        return self._track_id

    @property
    def track_tempo(self) -> Optional[TempoResult]:
        return self._track_tempo

    @property
    def adjusted_bpm(self) -> Optional[int]:
        """Track tempo as heard at the current playback rate."""
        bpm = self.rate_controller.original_bpm
        if not bpm:
            return None
        return int(round(bpm * self.rate_controller.current_rate))
