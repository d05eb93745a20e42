import unittest

from beat_detector import BeatDetector
from config import BeatDetectionConfig, TempoConfig

FPS = 60
BASELINE = 0.01
PEAK = 1.0


def make_detector(**overrides) -> BeatDetector:
    return BeatDetector(BeatDetectionConfig(**overrides), TempoConfig())


def feed_pulses(detector, seconds, period_frames=30, start_frame=0, peak=PEAK):
    """Feed a pulse train (one peak frame every *period_frames*) at 60 fps."""
    results = []
    for i in range(start_frame, start_frame + int(seconds * FPS)):
        energy = peak if i > 0 and i % period_frames == 0 else BASELINE
        results.append((i / FPS, detector.update(energy, i / FPS)))
    return results


class TestBeatDetector(unittest.TestCase):
    def test_steady_pulses_accepted(self):
        detector = make_detector()
        results = feed_pulses(detector, seconds=3.0)

        onset_times = [t for t, r in results if r.is_onset]
        self.assertEqual(len(onset_times), 5)
        self.assertAlmostEqual(onset_times[0], 0.5, places=6)
        for delta in detector.timestamps:
            self.assertAlmostEqual(delta, 0.5, places=6)

    def test_baseline_never_triggers(self):
        detector = make_detector()
        for i in range(600):
            result = detector.update(BASELINE, i / FPS)
            self.assertFalse(result.is_candidate)
            self.assertGreater(result.dynamic_threshold, BASELINE)

    def test_timestamp_buffer_capped(self):
        detector = make_detector()
        for i in range(int(12.0 * FPS)):
            energy = PEAK if i > 0 and i % 30 == 0 else BASELINE
            detector.update(energy, i / FPS)
            self.assertLessEqual(len(detector.timestamps), 4)
        self.assertEqual(len(detector.timestamps), 4)

    def test_energy_history_bounded(self):
        detector = make_detector(history_size=50)
        for i in range(500):
            detector.update(BASELINE if i % 7 else 0.0, i / FPS)
            self.assertLessEqual(len(detector.energy_history), 50)

    def test_refractory_blocks_close_peaks(self):
        detector = make_detector()
        detector.update(BASELINE, 0.0)
        first = detector.update(PEAK, 0.5)
        second = detector.update(PEAK * 3, 0.6)
        self.assertTrue(first.is_onset)
        self.assertFalse(second.is_candidate)

    def test_erratic_delta_rejected(self):
        detector = make_detector()
        feed_pulses(detector, seconds=1.1)
        held = list(detector.timestamps)
        self.assertEqual(held, [0.5, 0.5])

        # Off-tempo peak 0.35 s after the last accepted onset at 1.0 s
        t = 1.35
        result = detector.update(PEAK, t)
        self.assertTrue(result.is_candidate)
        self.assertFalse(result.is_onset)
        self.assertEqual(detector.timestamps, held)
        self.assertEqual(detector.state.last_detect_time, t)

    def test_first_delta_accepted_unprimed(self):
        detector = make_detector()
        detector.update(BASELINE, 0.0)
        result = detector.update(PEAK, 0.9)
        self.assertTrue(result.is_onset)
        self.assertAlmostEqual(detector.timestamps[0], 0.9)

    def test_long_interval_folded(self):
        detector = make_detector()
        self.assertAlmostEqual(detector.fold_interval(2.0), 1.0)
        self.assertAlmostEqual(detector.fold_interval(3.0), 0.75)
        self.assertAlmostEqual(detector.fold_interval(0.5), 0.5)

        detector.update(BASELINE, 0.0)
        detector.update(PEAK, 2.0)
        self.assertAlmostEqual(detector.timestamps[0], 1.0)

    def test_dynamic_threshold_offset_ramp(self):
        detector = make_detector()
        detector.update(BASELINE, 0.0)
        self.assertAlmostEqual(detector.dynamic_threshold_offset(0.0), 2.0)
        self.assertAlmostEqual(detector.dynamic_threshold_offset(5.0), 1.6)
        self.assertAlmostEqual(detector.dynamic_threshold_offset(10.0), 1.2)
        self.assertAlmostEqual(detector.dynamic_threshold_offset(60.0), 1.2)

    def test_tolerance_grows_with_time_since_accepted(self):
        detector = make_detector()
        detector.update(BASELINE, 0.0)
        self.assertAlmostEqual(detector.acceptance_tolerance(1.0), 0.03)
        self.assertAlmostEqual(detector.acceptance_tolerance(4.0), 0.12)

    def test_silence_clears_timestamps(self):
        detector = make_detector()
        feed_pulses(detector, seconds=2.5)
        self.assertGreater(len(detector.timestamps), 0)
        history_len = len(detector.energy_history)

        result = detector.update(0.0005, 2.5 + 1 / FPS)
        self.assertTrue(result.silence_reset)
        self.assertEqual(detector.timestamps, [])
        # the silent sample pushes one entry out, the reset evicts another
        self.assertEqual(len(detector.energy_history), history_len - 1)

    def test_stale_partial_lock_pruned(self):
        detector = make_detector()
        feed_pulses(detector, seconds=1.1)
        self.assertEqual(len(detector.timestamps), 2)

        # Last accepted onset at 1.0 s; update interval 1.5 s => prune after 4.0 s
        pruned_at = []
        for i in range(int(1.1 * FPS), int(8.0 * FPS)):
            result = detector.update(BASELINE, i / FPS)
            if result.pruned:
                pruned_at.append(i / FPS)

        self.assertEqual(len(pruned_at), 2)
        self.assertGreater(pruned_at[0], 4.0)
        self.assertLess(pruned_at[0], 4.1)
        self.assertGreater(pruned_at[1], 7.0)
        self.assertEqual(detector.timestamps, [])

    def test_full_buffer_not_pruned(self):
        detector = make_detector()
        feed_pulses(detector, seconds=2.6)
        self.assertEqual(len(detector.timestamps), 4)
        for i in range(int(2.6 * FPS), int(10.0 * FPS)):
            self.assertFalse(detector.update(BASELINE, i / FPS).pruned)
        self.assertEqual(len(detector.timestamps), 4)

    def test_tap_records_delta(self):
        detector = make_detector()
        detector.update(BASELINE, 0.0)
        self.assertAlmostEqual(detector.tap(0.6), 0.6)
        self.assertAlmostEqual(detector.tap(1.1), 0.5)
        self.assertEqual(len(detector.timestamps), 2)

    def test_first_tap_on_fresh_detector_only_starts_timer(self):
        detector = make_detector()
        self.assertEqual(detector.tap(5.0), 0.0)
        self.assertEqual(detector.timestamps, [])
        self.assertEqual(detector.tap(5.0), 0.0)
        self.assertEqual(detector.timestamps, [])
        self.assertAlmostEqual(detector.tap(5.5), 0.5)
        self.assertEqual(detector.timestamps, [0.5])

    def test_reset(self):
        detector = make_detector()
        feed_pulses(detector, seconds=2.0)
        detector.reset()
        self.assertEqual(detector.timestamps, [])
        self.assertEqual(len(detector.energy_history), 0)
        self.assertIsNone(detector.state.last_detect_time)


if __name__ == "__main__":
    unittest.main()
