import unittest

from config import Config
from tap_tempo import TapTempo


class TestTapTempo(unittest.TestCase):
    def setUp(self):
        self.tapper = TapTempo(Config())

    def test_first_tap_has_no_tempo(self):
        self.assertIsNone(self.tapper.tap(0.0))

    def test_even_taps(self):
        results = [self.tapper.tap(t) for t in (0.0, 500.0, 1000.0, 1500.0)]
        self.assertEqual(results, [None, 120, 120, 120])

    def test_average_interval(self):
        for t in (0.0, 400.0, 1000.0):
            bpm = self.tapper.tap(t)
        self.assertEqual(bpm, 120)

    def test_long_pause_starts_new_sequence(self):
        self.tapper.tap(0.0)
        self.tapper.tap(500.0)
        self.assertIsNone(self.tapper.tap(3000.0))
        self.assertEqual(self.tapper.tap(3600.0), 100)

    def test_only_recent_taps_are_kept(self):
        for i in range(20):
            self.tapper.tap(i * 500.0)
        self.assertEqual(len(self.tapper.taps), 12)

    def test_reset(self):
        self.tapper.tap(0.0)
        self.tapper.reset()
        self.assertIsNone(self.tapper.tap(500.0))


if __name__ == "__main__":
    unittest.main()
