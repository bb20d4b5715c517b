"""
Cadence - Tempo Estimator
Offline BPM and beat-phase estimation from a decoded track.

Pipeline: window -> bass / full-range Butterworth bands -> RMS onset
envelopes -> normalized autocorrelation -> harmonic comb scoring with a
mild perceptual bias -> octave disambiguation -> beat-phase search.
"""

from typing import Optional

import numpy as np
from scipy.ndimage import uniform_filter1d
from scipy.signal import butter, sosfilt

from config import Config, TempoDetectionConfig
from errors import DecodeError, InsufficientDataError
from logging_utils import log_event
from models import DecodedAudio, TempoResult


def onset_envelope(signal: np.ndarray, sample_rate: int, cfg: TempoDetectionConfig) -> np.ndarray:
    """
    Onset strength of one band, one value per hop.

    Short-time RMS (cfg.rms_window_ms windows every cfg.hop_ms), half-wave
    rectified first difference, then the ±cfg.local_mean_radius local mean is
    subtracted so sustained loud passages do not read as onsets.
    """
    win = max(1, int(round(cfg.rms_window_ms / 1000.0 * sample_rate)))
    hop = max(1, int(round(cfg.hop_ms / 1000.0 * sample_rate)))
    if len(signal) < win:
        return np.zeros(0, dtype=np.float64)

    n_frames = 1 + (len(signal) - win) // hop
    power = np.concatenate(([0.0], np.cumsum(np.asarray(signal, dtype=np.float64) ** 2)))
    starts = np.arange(n_frames) * hop
    energy = (power[starts + win] - power[starts]) / win
    rms = np.sqrt(np.maximum(energy, 0.0))

    onset = np.zeros(n_frames, dtype=np.float64)
    onset[1:] = np.maximum(0.0, np.diff(rms))

    size = 2 * int(cfg.local_mean_radius) + 1
    local_mean = uniform_filter1d(onset, size=size, mode='nearest')
    return np.maximum(0.0, onset - local_mean)


def normalized_autocorrelation(onset: np.ndarray, max_lag: int) -> np.ndarray:
    """Autocorrelation for lags 0..max_lag divided by the zero-lag energy (FFT based)."""
    n = len(onset)
    acf = np.zeros(max_lag + 1, dtype=np.float64)
    if n == 0:
        return acf

    n_fft = 1
    while n_fft < 2 * n:
        n_fft *= 2
    spectrum = np.fft.rfft(onset, n=n_fft)
    full = np.fft.irfft(spectrum * np.conj(spectrum), n=n_fft)[:n]

    if full[0] <= 0:
        return acf
    count = min(n, max_lag + 1)
    acf[:count] = full[:count] / full[0]
    return acf


def comb_scores(acf: np.ndarray, candidates: np.ndarray, frames_per_second: float,
                harmonics: int) -> np.ndarray:
    """Sum of ACF values at 1x..harmonics x each candidate's beat period (equal weights)."""
    lags = np.arange(len(acf), dtype=np.float64)
    periods = 60.0 * frames_per_second / candidates.astype(np.float64)
    scores = np.zeros(len(candidates), dtype=np.float64)
    for h in range(1, harmonics + 1):
        scores += np.interp(periods * h, lags, acf, right=0.0)
    return scores


def perceptual_weight(bpm, cfg: TempoDetectionConfig):
    """Gaussian preference for common tempos, floored at cfg.bias_floor."""
    z = (np.asarray(bpm, dtype=np.float64) - cfg.bias_center_bpm) / cfg.bias_width_bpm
    return cfg.bias_floor + (1.0 - cfg.bias_floor) * np.exp(-0.5 * z * z)


def resolve_octave(scores: dict[int, float], bpm: int, cfg: TempoDetectionConfig) -> int:
    """
    Half/double tempo check on a winning candidate.

    Autocorrelation favours double-tempo peaks, so half tempo wins when it
    scores at least cfg.half_tempo_ratio of the winner (and is not too slow).
    Double tempo wins when it beats the current choice by cfg.double_tempo_ratio.
    The checks run in that order and may cascade.
    """
    chosen = bpm

    half = int(round(chosen / 2.0))
    half_score = scores.get(half)
    if (half_score is not None and half >= cfg.half_tempo_min_bpm
            and half_score >= cfg.half_tempo_ratio * scores[chosen]):
        log_event("DEBUG", "Tempo", "Octave: half tempo preferred",
                  winner=chosen, half=half,
                  ratio=f"{half_score / max(scores[chosen], 1e-12):.3f}")
        chosen = half

    double = chosen * 2
    double_score = scores.get(double)
    if double_score is not None and double_score >= cfg.double_tempo_ratio * scores[chosen]:
        log_event("DEBUG", "Tempo", "Octave: double tempo preferred",
                  winner=chosen, double=double,
                  ratio=f"{double_score / max(scores[chosen], 1e-12):.3f}")
        chosen = double

    return chosen


class TempoEstimator:
    """
    Estimates a track's dominant tempo (integer BPM) and a beat-phase anchor.
    Stateless between calls; safe to run concurrently for different tracks.
    """

    def __init__(self, config: Optional[Config] = None):
        self.config = config if config is not None else Config()

    def detect(self, audio: DecodedAudio) -> TempoResult:
        """Analyze a decoded track.

        Raises DecodeError for unusable buffers and InsufficientDataError when
        the analysis window is too short or carries no onsets.
        """
        cfg = self.config.tempo
        mono = self._validate(audio)
        sr = int(audio.sample_rate)
        duration = len(mono) / float(sr)

        # 1. Window: skip the intro, analyze up to analyze_max_s
        skip_s = min(cfg.skip_max_s, cfg.skip_fraction * duration)
        analyze_s = min(cfg.analyze_max_s, duration - skip_s)
        if analyze_s < cfg.min_analysis_s:
            raise InsufficientDataError(
                f"analysis window {analyze_s:.2f}s shorter than {cfg.min_analysis_s:.1f}s")

        start = int(round(skip_s * sr))
        end = min(len(mono), start + int(round(analyze_s * sr)))
        window = mono[start:end]

        # 2. Band separation
        nyquist = sr / 2.0
        bass_cut = min(cfg.bass_cutoff_hz, nyquist * 0.95)
        high_cut = min(cfg.highpass_cutoff_hz, nyquist * 0.95)
        bass_sos = butter(cfg.bass_order, bass_cut, btype='low', fs=sr, output='sos')
        full_sos = butter(cfg.highpass_order, high_cut, btype='high', fs=sr, output='sos')
        bass = sosfilt(bass_sos, window)
        full = sosfilt(full_sos, window)

        # 3. Onset envelopes
        bass_onset = onset_envelope(bass, sr, cfg)
        full_onset = onset_envelope(full, sr, cfg)
        if not (np.any(bass_onset > 0) or np.any(full_onset > 0)):
            raise InsufficientDataError("no onset energy in analysis window")

        hop = max(1, int(round(cfg.hop_ms / 1000.0 * sr)))
        win = max(1, int(round(cfg.rms_window_ms / 1000.0 * sr)))
        fps = sr / float(hop)

        # 4. Autocorrelation up to 4 periods of the slowest candidate
        max_lag = int(np.ceil(cfg.harmonics * 60.0 * fps / cfg.min_bpm)) + 1
        bass_acf = normalized_autocorrelation(bass_onset, max_lag)
        full_acf = normalized_autocorrelation(full_onset, max_lag)

        # 5-6. Comb scoring and perceptual bias
        candidates = np.arange(cfg.min_bpm, cfg.max_bpm + 1)
        raw = (cfg.bass_weight * comb_scores(bass_acf, candidates, fps, cfg.harmonics)
               + cfg.full_weight * comb_scores(full_acf, candidates, fps, cfg.harmonics))
        weighted = raw * perceptual_weight(candidates, cfg)
        scores = {int(b): float(s) for b, s in zip(candidates, weighted)}

        # 7. Best candidate + octave disambiguation
        winner = int(candidates[int(np.argmax(weighted))])
        bpm = resolve_octave(scores, winner, cfg)

        # 8. Beat phase
        combined = (cfg.bass_weight * self._unit_peak(bass_onset)
                    + cfg.full_weight * self._unit_peak(full_onset))
        offset_frames = self._best_phase(combined, 60.0 * fps / bpm)
        # An onset at frame i means energy entered during the hop ending at i*hop + win
        onset_time = (offset_frames * hop + win - hop / 2.0) / sr
        period = 60.0 / bpm
        beat_offset = float((skip_s + onset_time) % period)

        log_event("INFO", "Tempo", "Tempo detected",
                  bpm=bpm, winner=winner, beat_offset=f"{beat_offset:.3f}s",
                  window=f"{skip_s:.1f}-{skip_s + analyze_s:.1f}s",
                  score=f"{scores[bpm]:.3f}")
        return TempoResult(bpm=bpm, beat_offset=beat_offset)

    def _validate(self, audio: DecodedAudio) -> np.ndarray:
        if audio is None or audio.samples is None:
            raise DecodeError("no audio buffer")
        if audio.sample_rate is None or audio.sample_rate <= 0:
            raise DecodeError(f"invalid sample rate: {audio.sample_rate}")
        samples = np.asarray(audio.samples)
        if samples.ndim not in (1, 2) or samples.size == 0:
            raise DecodeError(f"unsupported sample buffer shape: {samples.shape}")
        mono = audio.mono()
        if not np.all(np.isfinite(mono)):
            raise DecodeError("audio buffer contains non-finite samples")
        return mono

    @staticmethod
    def _unit_peak(onset: np.ndarray) -> np.ndarray:
        peak = float(np.max(onset)) if onset.size else 0.0
        return onset / peak if peak > 0 else onset

    @staticmethod
    def _best_phase(onset: np.ndarray, period_frames: float) -> int:
        """Frame offset within one beat period whose once-per-beat onset sum is largest."""
        n = len(onset)
        n_offsets = max(1, int(np.ceil(period_frames)))
        best_offset = 0
        best_sum = -1.0
        for offset in range(n_offsets):
            positions = np.round(np.arange(offset, n, period_frames)).astype(int)
            positions = positions[positions < n]
            total = float(np.sum(onset[positions]))
            if total > best_sum:
                best_sum = total
                best_offset = offset
        return best_offset
