import tempfile
import unittest
from pathlib import Path
from unittest import mock

import numpy as np
from scipy.io import wavfile

from config import Config
from run import analyze_file, iter_magnitude_frames, to_mono_float

SR = 48000
FFT = 2048


class TestRunHelpers(unittest.TestCase):
    def test_to_mono_float_scales_int16(self):
        samples = np.array([[32767, 32767], [-32768, 0]], dtype=np.int16)
        mono = to_mono_float(samples)
        self.assertEqual(mono.shape, (2,))
        self.assertAlmostEqual(mono[0], 32767 / 32768)
        self.assertAlmostEqual(mono[1], -0.5)

    def test_frames_are_full_length_and_mirrored(self):
        t = np.arange(SR) / SR
        tone = np.sin(2 * np.pi * 750.0 * t)  # exactly bin 32
        frames = list(iter_magnitude_frames(tone, SR, FFT, FFT))

        self.assertEqual(len(frames), SR // FFT)
        now, frame = frames[0]
        self.assertAlmostEqual(now, FFT / SR)
        self.assertEqual(len(frame), FFT)
        self.assertEqual(int(np.argmax(frame[:FFT // 2])), 32)
        self.assertAlmostEqual(frame[FFT - 32], frame[32])
        self.assertAlmostEqual(frame[32], 0.5, places=2)

    def test_analyze_file_runs_session(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "tone.wav"
            t = np.arange(SR * 2) / SR
            tone = (0.5 * np.sin(2 * np.pi * 440.0 * t) * 32767).astype(np.int16)
            wavfile.write(str(path), SR, tone)

            with mock.patch("builtins.print"):
                session = analyze_file(path, Config(), hop=FFT // 4)

        self.assertGreater(session.frame_count, 0)
        self.assertEqual(session.dropped_frames, 0)
        self.assertIsNotNone(session.latest)


if __name__ == "__main__":
    unittest.main()
