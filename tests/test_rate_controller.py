import unittest

from config import Config
from rate_controller import RateController, clamp, phase_error


class TestRateController(unittest.TestCase):
    def setUp(self):
        self.applied = []
        self.controller = RateController(Config(), self.applied.append)

    def _converge(self, ticks: int = 200) -> float:
        rate = 1.0
        for _ in range(ticks):
            rate = self.controller.tick()
        return rate

    def test_target_is_cadence_over_tempo(self):
        self.controller.set_track_tempo(120)
        self.controller.on_spm_update(150)
        self.assertAlmostEqual(self.controller.target_rate, 1.25)

    def test_target_is_clamped(self):
        self.controller.set_track_tempo(100)
        self.controller.on_spm_update(200)
        self.assertAlmostEqual(self.controller.target_rate, 1.4)

        self.controller.set_track_tempo(120)
        self.controller.on_spm_update(50)
        self.assertAlmostEqual(self.controller.target_rate, 0.7)

    def test_no_tempo_means_normal_speed(self):
        self.controller.on_spm_update(150)
        self.assertEqual(self.controller.target_rate, 1.0)
        self.assertEqual(self._converge(), 1.0)
        self.assertEqual(self.applied, [])

    def test_tick_converges_monotonically(self):
        self.controller.set_track_tempo(120)
        self.controller.on_spm_update(150)

        previous = self.controller.current_rate
        for _ in range(200):
            rate = self.controller.tick()
            self.assertGreaterEqual(rate, previous)
            self.assertLessEqual(rate, 1.25 + 1e-9)
            previous = rate
        self.assertAlmostEqual(previous, 1.25, places=3)

    def test_first_tick_moves_by_smoothing_fraction(self):
        self.controller.set_track_tempo(100)
        self.controller.on_spm_update(120)
        self.assertAlmostEqual(self.controller.tick(), 1.0 + 0.08 * 0.2)

    def test_sink_only_receives_meaningful_changes(self):
        self.controller.set_track_tempo(120)
        self.controller.on_spm_update(150)
        self._converge()

        self.assertTrue(self.applied)
        values = [1.0] + self.applied
        self.assertTrue(all(abs(b - a) > 0.002 for a, b in zip(values, values[1:])))

        count = len(self.applied)
        self._converge(50)
        self.assertEqual(len(self.applied), count)

    def test_phase_correction_slows_down_when_ahead(self):
        self.controller.set_track_tempo(120, beat_offset=0.0)
        self.controller.on_spm_update(120)

        # Step lands 0.2 of a beat after the beat: music is ahead
        self.controller.on_step_event(0.1)
        self.assertAlmostEqual(self.controller.state.phase_correction, -0.08)
        self.assertAlmostEqual(self.controller.target_rate, 0.92)

        # Step lands 0.2 of a beat before the beat: music is behind
        self.controller.on_step_event(0.4)
        self.assertAlmostEqual(self.controller.target_rate, 1.08)

        self.controller.on_step_event(1.0)
        self.assertAlmostEqual(self.controller.target_rate, 1.0)

    def test_phase_correction_needs_beat_anchor(self):
        self.controller.set_track_tempo(120)
        self.controller.on_spm_update(120)
        self.controller.on_step_event(0.1)
        self.assertEqual(self.controller.state.phase_correction, 0.0)
        self.assertAlmostEqual(self.controller.target_rate, 1.0)

    def test_phase_correction_needs_cadence(self):
        self.controller.set_track_tempo(120, beat_offset=0.0)
        self.controller.on_step_event(0.1)
        self.assertEqual(self.controller.state.phase_correction, 0.0)
        self.assertEqual(self.controller.target_rate, 1.0)

    def test_zero_spm_clears_phase_correction(self):
        self.controller.set_track_tempo(120, beat_offset=0.0)
        self.controller.on_spm_update(120)
        self.controller.on_step_event(0.1)
        self.controller.on_spm_update(0)

        state = self.controller.state
        self.assertEqual(state.phase_correction, 0.0)
        self.assertEqual(state.target_rate, 1.0)

    def test_beat_offset_is_wrapped_into_period(self):
        self.controller.set_track_tempo(120, beat_offset=1.2)
        self.assertAlmostEqual(self.controller.state.beat_offset, 0.2)

    def test_out_of_range_tempo_rejected(self):
        self.assertTrue(self.controller.set_track_tempo(120))
        self.assertFalse(self.controller.set_track_tempo(300))
        self.assertFalse(self.controller.set_track_tempo(20))
        self.assertEqual(self.controller.original_bpm, 120.0)

    def test_clearing_tempo_snaps_to_normal_speed(self):
        self.controller.set_track_tempo(120)
        self.controller.on_spm_update(150)
        self._converge()

        self.controller.set_track_tempo(None)
        state = self.controller.state
        self.assertEqual(state.current_rate, 1.0)
        self.assertEqual(state.target_rate, 1.0)
        self.assertEqual(state.original_bpm, 0.0)
        self.assertEqual(state.spm, 150)
        self.assertEqual(self.applied[-1], 1.0)

    def test_reset_keeps_current_rate_unless_immediate(self):
        self.controller.set_track_tempo(120)
        self.controller.on_spm_update(150)
        rate = self._converge()

        self.controller.reset()
        self.assertEqual(self.controller.target_rate, 1.0)
        self.assertEqual(self.controller.current_rate, rate)
        self.assertEqual(self.controller.state.spm, 0)

        self.controller.reset(immediate=True)
        self.assertEqual(self.controller.current_rate, 1.0)
        self.assertEqual(self.applied[-1], 1.0)

    def test_rate_limits(self):
        with self.assertRaises(ValueError):
            self.controller.set_rate_limits(1.2, 0.9)
        with self.assertRaises(ValueError):
            self.controller.set_rate_limits(0.0, 1.0)

        self.controller.set_track_tempo(120)
        self.controller.on_spm_update(150)
        self.controller.set_rate_limits(0.9, 1.1)
        self.assertAlmostEqual(self.controller.target_rate, 1.1)

    def test_smoothing_bounds(self):
        with self.assertRaises(ValueError):
            self.controller.set_smoothing(0.0)
        with self.assertRaises(ValueError):
            self.controller.set_smoothing(1.5)

        self.controller.set_smoothing(1.0)
        self.controller.set_track_tempo(120)
        self.controller.on_spm_update(150)
        self.assertAlmostEqual(self.controller.tick(), 1.25)

    def test_state_is_a_copy(self):
        state = self.controller.state
        state.current_rate = 3.0
        self.assertEqual(self.controller.current_rate, 1.0)


class TestRateHelpers(unittest.TestCase):
    def test_phase_error_wraps(self):
        self.assertAlmostEqual(phase_error(0.1, 0.0, 0.5), 0.2)
        self.assertAlmostEqual(phase_error(0.4, 0.0, 0.5), -0.2)
        self.assertAlmostEqual(phase_error(0.25, 0.0, 0.5), 0.5)
        self.assertAlmostEqual(phase_error(-0.1, 0.0, 0.5), -0.2)
        self.assertAlmostEqual(phase_error(2.6, 0.1, 0.5), 0.0)

    def test_clamp(self):
        self.assertEqual(clamp(2.0, 0.7, 1.4), 1.4)
        self.assertEqual(clamp(0.1, 0.7, 1.4), 0.7)
        self.assertEqual(clamp(1.0, 0.7, 1.4), 1.0)


if __name__ == "__main__":
    unittest.main()
