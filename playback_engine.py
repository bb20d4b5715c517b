"""
Cadence - Playback Engine
Plays a decoded track through sounddevice at a variable rate.
Every output callback block is one render tick: the rate provider is asked
for the multiplier and the block is resampled (linear interpolation).
"""

import threading
from typing import Callable, Optional

import numpy as np
import sounddevice as sd

from config import Config
from logging_utils import log_event
from models import DecodedAudio


class PlaybackEngine:
    """Variable-rate player; rate 1.0 = normal speed."""

    def __init__(self, config: Config,
                 rate_provider: Optional[Callable[[float], float]] = None,
                 stream_factory: Callable[..., object] = sd.OutputStream):
        """
        Args:
            config: Application configuration (uses config.playback)
            rate_provider: Called once per block with the position in seconds,
                returns the playback-rate multiplier
            stream_factory: Builds the output stream (sd.OutputStream signature)
        """
        self.config = config
        self.rate_provider = rate_provider
        self.stream_factory = stream_factory

        self.stream = None
        self.audio: Optional[DecodedAudio] = None
        self._samples: Optional[np.ndarray] = None   # (n, channels) float32
        self._cursor: float = 0.0                    # Fractional frame index
        self._lock = threading.Lock()
        self.playing = False
        self.last_rate = 1.0

    def load(self, audio: DecodedAudio) -> None:
        self.stop()
        samples = np.asarray(audio.samples, dtype=np.float32)
        if samples.ndim == 1:
            samples = samples[:, None]
        with self._lock:
            self.audio = audio
            self._samples = samples
            self._cursor = 0.0
        log_event("INFO", "Playback", "Loaded", seconds=f"{audio.duration:.1f}",
                  channels=samples.shape[1], sample_rate=audio.sample_rate)

    def play(self) -> None:
        if self.audio is None or self.playing:
            return
        if self.stream is None:
            self.stream = self.stream_factory(
                samplerate=self.audio.sample_rate,
                channels=self._samples.shape[1],
                blocksize=self.config.playback.block_size,
                device=self.config.playback.device_index,
                dtype='float32',
                callback=self._callback,
            )
        with self._lock:
            if self._cursor >= len(self._samples) - 1:
                self._cursor = 0.0
            self.playing = True
        self.stream.start()
        log_event("INFO", "Playback", "Playing", position=f"{self.position:.1f}s")

    def pause(self) -> None:
        if not self.playing:
            return
        with self._lock:
            self.playing = False
        if self.stream is not None:
            self.stream.stop()
        log_event("INFO", "Playback", "Paused", position=f"{self.position:.1f}s")

    def toggle(self) -> None:
        if self.playing:
            self.pause()
        else:
            self.play()

    def stop(self) -> None:
        """Stop playback and release the output stream."""
        with self._lock:
            self.playing = False
        if self.stream is not None:
            self.stream.stop()
            self.stream.close()
            self.stream = None

    def seek(self, fraction: float) -> None:
        if self._samples is None:
            return
        fraction = max(0.0, min(1.0, float(fraction)))
        with self._lock:
            self._cursor = fraction * (len(self._samples) - 1)

    def _callback(self, outdata, frames, time_info, status) -> None:
        if status:
            log_event("DEBUG", "Playback", "Stream status", status=status)
        outdata[:] = self.render(frames)

    def render(self, frames: int) -> np.ndarray:
        """Produce the next block of output frames and advance the cursor."""
        channels = self._samples.shape[1] if self._samples is not None else 1
        out = np.zeros((frames, channels), dtype=np.float32)
        if self._samples is None or not self.playing:
            return out

        rate = float(self.rate_provider(self.position)) if self.rate_provider else 1.0
        if rate <= 0:
            rate = 1.0
        self.last_rate = rate

        with self._lock:
            samples = self._samples
            last = len(samples) - 1
            positions = self._cursor + np.arange(frames, dtype=np.float64) * rate
            valid = positions < last
            idx = positions[valid].astype(np.int64)
            frac = (positions[valid] - idx)[:, None].astype(np.float32)
            out[valid] = samples[idx] * (1.0 - frac) + samples[idx + 1] * frac
            self._cursor += frames * rate
            finished = self._cursor >= last
            if finished:
                self._cursor = float(last)
                self.playing = False

        out *= self.config.playback.volume
        if finished:
            log_event("INFO", "Playback", "Track ended")
        return out

    @property
    def position(self) -> float:
        """Current position in seconds."""
        if self.audio is None or self.audio.sample_rate <= 0:
            return 0.0
        return self._cursor / float(self.audio.sample_rate)

    @property
    def duration(self) -> float:
        return self.audio.duration if self.audio is not None else 0.0

    @property
    def progress(self) -> float:
        return self.position / self.duration if self.duration else 0.0
