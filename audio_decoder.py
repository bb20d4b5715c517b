"""
Cadence - Audio Decoder
Reads an audio file into a DecodedAudio buffer.
"""

from pathlib import Path

import numpy as np
import soundfile as sf

from errors import DecodeError
from logging_utils import log_event
from models import DecodedAudio


def decode_file(path) -> DecodedAudio:
    """Decode any libsndfile-supported file (wav/flac/ogg/mp3...) to float32 PCM.

    Raises DecodeError when the file is missing or cannot be decoded.
    """
    path = Path(path)
    if not path.is_file():
        raise DecodeError(f"audio file not found: {path}")

    try:
        samples, sample_rate = sf.read(str(path), dtype="float32", always_2d=False)
    except (RuntimeError, TypeError, ValueError) as e:
        # soundfile.LibsndfileError derives from RuntimeError
        raise DecodeError(f"could not decode {path.name}: {e}") from e

    samples = np.asarray(samples)
    if samples.size == 0:
        raise DecodeError(f"{path.name} contains no audio")

    audio = DecodedAudio(samples=samples, sample_rate=int(sample_rate))
    log_event("INFO", "Decoder", "Decoded", file=path.name,
              seconds=f"{audio.duration:.1f}", sample_rate=audio.sample_rate,
              channels=audio.channels)
    return audio
