import tempfile
import unittest
from pathlib import Path

import numpy as np
import soundfile as sf

from audio_decoder import decode_file
from errors import DecodeError


class TestAudioDecoder(unittest.TestCase):
    def test_decodes_mono_wav(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "tone.wav"
            tone = 0.5 * np.sin(2 * np.pi * 440.0 * np.arange(8000) / 8000.0)
            sf.write(str(path), tone, 8000)

            audio = decode_file(path)

            self.assertEqual(audio.sample_rate, 8000)
            self.assertEqual(audio.frames, 8000)
            self.assertEqual(audio.channels, 1)
            self.assertEqual(audio.samples.dtype, np.float32)
            self.assertAlmostEqual(audio.duration, 1.0)
            np.testing.assert_allclose(audio.samples, tone, atol=1e-3)

    def test_decodes_stereo_wav(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "stereo.wav"
            data = np.zeros((4410, 2))
            data[:, 0] = 0.25
            data[:, 1] = -0.25
            sf.write(str(path), data, 44100)

            audio = decode_file(str(path))

            self.assertEqual(audio.channels, 2)
            self.assertEqual(audio.samples.shape, (4410, 2))
            np.testing.assert_allclose(audio.mono(), 0.0, atol=1e-4)

    def test_missing_file_raises(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            with self.assertRaises(DecodeError):
                decode_file(Path(tmpdir) / "missing.wav")

    def test_garbage_file_raises(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "garbage.wav"
            path.write_bytes(b"this is not audio at all")
            with self.assertRaises(DecodeError):
                decode_file(path)


if __name__ == "__main__":
    unittest.main()
