# Cadence Configuration
# All default values and constants

import math
from dataclasses import dataclass, field, fields, is_dataclass


CURRENT_CONFIG_VERSION = 1

@dataclass
class StepDetectionConfig:
    """Accelerometer step detection parameters"""
    threshold: float = 0.8              # Deviation (m/s²) that arms the step trigger
    min_step_interval_ms: float = 280.0 # Debounce between accepted steps (ms)
    baseline_alpha: float = 0.005       # Slow gravity/orientation tracker
    smooth_alpha: float = 0.2           # Fast magnitude smoother
    gravity: float = 9.81               # Initial value for both trackers (1g)
    history_size: int = 30              # Accepted step timestamps kept
    spm_window: int = 12                # Timestamps used for the median interval
    min_timestamps: int = 4             # Timestamps required before any SPM estimate
    min_spm: int = 40                   # Estimates outside [min_spm, max_spm] are ignored
    max_spm: int = 220
    decay_ms: float = 3000.0            # Silence before SPM drops to 0 (ms)
    decay_check_interval_s: float = 1.0 # Period of the decay task

@dataclass
class TempoDetectionConfig:
    """Offline BPM / beat-phase estimation parameters"""
    skip_max_s: float = 15.0            # Never skip more than this much intro
    skip_fraction: float = 0.15         # ...or more than this fraction of the track
    analyze_max_s: float = 30.0         # Length of the analysis window
    min_analysis_s: float = 5.0         # Shorter windows raise InsufficientDataError
    bass_cutoff_hz: float = 200.0       # Low-pass for the kick/bass band
    bass_order: int = 4                 # 4th order = two cascaded biquads
    highpass_cutoff_hz: float = 60.0    # High-pass for the full-range band
    highpass_order: int = 2             # Single biquad
    rms_window_ms: float = 25.0
    hop_ms: float = 10.0                # ~100 onset frames per second
    local_mean_radius: int = 10         # ±frames for adaptive mean subtraction
    min_bpm: int = 60
    max_bpm: int = 200
    harmonics: int = 4                  # Comb teeth at 1x..Nx the beat period
    bass_weight: float = 2.0
    full_weight: float = 1.0
    bias_center_bpm: float = 120.0      # Perceptual preference peak
    bias_width_bpm: float = 55.0
    bias_floor: float = 0.8             # weight = floor + (1-floor)*gauss
    half_tempo_ratio: float = 0.85      # Prefer half tempo when its score >= ratio * winner
    half_tempo_min_bpm: float = 80.0    # ...and half tempo is at least this fast
    double_tempo_ratio: float = 1.2     # Prefer double tempo when its score >= ratio * winner

@dataclass
class RateControlConfig:
    """Playback-rate controller parameters"""
    min_rate: float = 0.7
    max_rate: float = 1.4
    smoothing: float = 0.08             # Per-tick exponential smoothing coefficient
    phase_gain: float = 0.4             # Proportional beat-phase correction gain
    apply_epsilon: float = 0.002        # Only push rate changes larger than this
    min_track_bpm: float = 40.0         # Accepted range for a track tempo reference
    max_track_bpm: float = 220.0

@dataclass
class TapTempoConfig:
    """Manual tap-tempo entry"""
    reset_gap_ms: float = 2000.0        # A pause longer than this starts a new tap sequence
    max_taps: int = 12

@dataclass
class PlaybackConfig:
    """Audio output settings"""
    block_size: int = 1024              # Frames per render callback (one rate tick each)
    device_index: int | None = None     # None means system default output
    volume: float = 1.0                 # Output gain (0.0-1.0)

@dataclass
class Config:
    """Master configuration"""
    version: int = 1                  # Schema version for persisted configs
    step: StepDetectionConfig = field(default_factory=StepDetectionConfig)
    tempo: TempoDetectionConfig = field(default_factory=TempoDetectionConfig)
    rate: RateControlConfig = field(default_factory=RateControlConfig)
    tap: TapTempoConfig = field(default_factory=TapTempoConfig)
    playback: PlaybackConfig = field(default_factory=PlaybackConfig)

    # Global
    log_level: str = "INFO"           # Logging level (DEBUG/INFO/WARNING/ERROR)
    report_generation_enabled: bool = True    # Write sync session reports on stop


def apply_dict_to_dataclass(target, data) -> None:
    """Recursively apply values from a dict onto a dataclass instance.
    Unknown keys are ignored."""
    if not isinstance(data, dict):
        return

    for key, value in data.items():
        if not hasattr(target, key):
            continue

        current = getattr(target, key)

        if is_dataclass(current) and isinstance(value, dict):
            apply_dict_to_dataclass(current, value)
            continue

        setattr(target, key, value)


def _as_float(value, default: float) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError):
        return default
    return value if math.isfinite(value) else default


def _coerce_numeric_fields(section) -> None:
    """Force int/float fields of a config section back to their declared type.
    Values that cannot be converted (None, "abc", NaN, booleans) fall back to the default."""
    defaults = type(section)()
    for f in fields(section):
        default = getattr(defaults, f.name)
        if isinstance(default, bool) or not isinstance(default, (int, float)):
            continue
        value = getattr(section, f.name)
        if isinstance(value, bool):
            value = default
        if isinstance(default, int):
            number = _as_float(value, default)
            setattr(section, f.name, int(number) if number == int(number) else default)
        else:
            setattr(section, f.name, _as_float(value, default))


def migrate_config(config: Config, loaded_version) -> None:
    """Bring a loaded config to the current schema.
    Sanitizes values that would break the controllers and bumps version.
    loaded_version is None for files written before versioning."""
    for section in (config.step, config.tempo, config.rate, config.tap, config.playback):
        _coerce_numeric_fields(section)

    if getattr(config, 'report_generation_enabled', True) is None:
        config.report_generation_enabled = True

    # Always keep the rate window sane: positive and ordered
    min_rate = _as_float(config.rate.min_rate, RateControlConfig.min_rate)
    max_rate = _as_float(config.rate.max_rate, RateControlConfig.max_rate)
    min_rate = max(0.1, min(4.0, min_rate))
    max_rate = max(0.1, min(4.0, max_rate))
    if min_rate > max_rate:
        min_rate, max_rate = max_rate, min_rate
    config.rate.min_rate = min_rate
    config.rate.max_rate = max_rate

    smoothing = _as_float(config.rate.smoothing, RateControlConfig.smoothing)
    config.rate.smoothing = max(0.001, min(1.0, smoothing))

    threshold = _as_float(config.step.threshold, StepDetectionConfig.threshold)
    config.step.threshold = threshold if threshold > 0 else StepDetectionConfig.threshold

    config.version = CURRENT_CONFIG_VERSION

