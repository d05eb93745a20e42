import unittest

from config import TempoConfig
from tempo_estimator import BeatClock, TempoEstimator, limit_bpm


class TestLimitBpm(unittest.TestCase):
    def test_folds_into_range(self):
        self.assertAlmostEqual(limit_bpm(60.0), 120.0)
        self.assertAlmostEqual(limit_bpm(30.0), 120.0)
        self.assertAlmostEqual(limit_bpm(240.0), 120.0)
        self.assertAlmostEqual(limit_bpm(400.0), 100.0)
        self.assertAlmostEqual(limit_bpm(128.0), 128.0)
        self.assertEqual(limit_bpm(0.0), 0.0)

    def test_always_within_bounds(self):
        bpm = 1.0
        while bpm < 2000.0:
            limited = limit_bpm(bpm)
            self.assertGreaterEqual(limited, 72.0)
            self.assertLessEqual(limited, 180.0)
            bpm *= 1.07


class TestTempoEstimator(unittest.TestCase):
    def test_waits_for_interval_and_two_deltas(self):
        estimator = TempoEstimator(TempoConfig())
        self.assertFalse(estimator.update([0.5, 0.5], 0.0))
        self.assertFalse(estimator.update([0.5, 0.5], 1.5))
        self.assertFalse(estimator.update([0.5], 2.0))
        self.assertTrue(estimator.update([0.5, 0.5], 2.0))
        self.assertAlmostEqual(estimator.state.detected_bpm, 120.0)
        self.assertAlmostEqual(estimator.state.limited_bpm, 120.0)

    def test_not_recomputed_more_often_than_interval(self):
        estimator = TempoEstimator(TempoConfig())
        estimator.update([], 0.0)
        self.assertTrue(estimator.update([0.5, 0.5], 1.6))
        self.assertFalse(estimator.update([0.25, 0.25], 2.0))
        self.assertAlmostEqual(estimator.state.detected_bpm, 120.0)
        self.assertTrue(estimator.update([0.25, 0.25], 3.2))
        self.assertAlmostEqual(estimator.state.detected_bpm, 240.0)
        self.assertAlmostEqual(estimator.state.limited_bpm, 120.0)

    def test_half_time_is_folded(self):
        estimator = TempoEstimator(TempoConfig())
        estimator.update([], 0.0)
        estimator.update([1.0, 1.0, 1.0], 2.0)
        self.assertAlmostEqual(estimator.state.detected_bpm, 60.0)
        self.assertAlmostEqual(estimator.state.limited_bpm, 120.0)

    def test_display_time(self):
        estimator = TempoEstimator(TempoConfig())
        estimator.update([], 0.0)
        estimator.update([0.5, 0.5], 2.0)
        self.assertAlmostEqual(estimator.state.beat_display_time, 60.0 / 120.0 / 4.0)

    def test_keeps_deltas_closest_to_mean(self):
        estimator = TempoEstimator(TempoConfig(), keep=4)
        timestamps = [0.5, 0.9, 0.5, 0.5, 0.5, 0.1]
        estimator.update([], 0.0)
        estimator.update(timestamps, 2.0)
        self.assertEqual(timestamps, [0.5, 0.5, 0.5, 0.5])
        self.assertAlmostEqual(estimator.state.detected_bpm, 120.0)

    def test_clear_zeroes_estimates(self):
        estimator = TempoEstimator(TempoConfig())
        estimator.update([], 0.0)
        estimator.update([0.5, 0.5], 2.0)
        estimator.clear()
        self.assertEqual(estimator.state.detected_bpm, 0.0)
        self.assertEqual(estimator.state.limited_bpm, 0.0)


class TestBeatClock(unittest.TestCase):
    def test_idle_without_tempo(self):
        clock = BeatClock(TempoConfig())
        for i in range(120):
            self.assertFalse(clock.update(i / 60.0, 0.0, 0.0))
        self.assertEqual(clock.state.beat_count, 0)

    def test_ticks_and_wraps_counter(self):
        clock = BeatClock(TempoConfig())
        ticks = []
        for i in range(int(3.1 * 60)):
            now = i / 60.0
            if clock.update(now, 120.0, 0.125):
                ticks.append((now, clock.state.beat_count))

        self.assertEqual([count for _, count in ticks], [1, 2, 3, 4, 1, 2])
        self.assertAlmostEqual(ticks[0][0], 0.5, places=6)
        self.assertAlmostEqual(ticks[1][0] - ticks[0][0], 0.5, places=6)

    def test_show_beat_lasts_display_time(self):
        clock = BeatClock(TempoConfig())
        clock.update(0.0, 120.0, 0.125)
        self.assertTrue(clock.update(0.5, 120.0, 0.125))
        self.assertTrue(clock.state.show_beat)
        clock.update(0.55, 120.0, 0.125)
        self.assertTrue(clock.state.show_beat)
        clock.update(0.65, 120.0, 0.125)
        self.assertFalse(clock.state.show_beat)

    def test_pulses_decay(self):
        clock = BeatClock(TempoConfig())
        clock.update(0.0, 120.0, 0.125)
        clock.trigger_onset(3.0)
        clock.update(0.01, 120.0, 0.125)
        self.assertAlmostEqual(clock.state.onset_pulse, 3.0 * (1.0 - 12.0 * 0.01))
        for i in range(2, 200):
            clock.update(i / 100.0, 120.0, 0.125)
        self.assertLess(clock.state.onset_pulse, 0.01)
        self.assertLess(clock.state.beat_pulse, 0.01)

    def test_sync_restarts_interval(self):
        clock = BeatClock(TempoConfig())
        clock.update(0.0, 120.0, 0.125)
        clock.sync(0.4)
        self.assertFalse(clock.update(0.5, 120.0, 0.125))
        self.assertTrue(clock.update(0.95, 120.0, 0.125))


if __name__ == "__main__":
    unittest.main()
