import unittest

import numpy as np

from frequency_utils import (
    band_bin_range,
    band_energy,
    bin_to_freq,
    extract_dominant_freq,
    freq_to_bin_floor,
    freq_to_bin_round,
)


class TestFrequencyUtils(unittest.TestCase):
    def test_bin_conversions(self):
        # sample_rate=1000, fft_size=20 => 50 Hz per bin
        self.assertEqual(freq_to_bin_floor(149.0, 1000, 20), 2)
        self.assertEqual(freq_to_bin_round(149.0, 1000, 20), 3)
        self.assertEqual(freq_to_bin_round(125.0, 1000, 20), 3)
        self.assertAlmostEqual(bin_to_freq(4, 1000, 20), 200.0, places=6)

    def test_band_energy_is_mean_of_inclusive_range(self):
        spectrum = np.arange(10, dtype=float)
        # bins 2..4 => (2 + 3 + 4) / 3
        energy = band_energy(spectrum, 100.0, 200.0, sample_rate=1000, fft_size=20)
        self.assertAlmostEqual(energy, 3.0, places=6)

    def test_band_range_clamped_to_spectrum(self):
        self.assertEqual(band_bin_range(10, 100.0, 5000.0, 1000, 20), (2, 9))
        self.assertEqual(band_bin_range(10, -50.0, 0.0, 1000, 20), (0, 0))

    def test_band_energy_single_bin_minimum(self):
        spectrum = np.array([0.0, 4.0, 8.0, 0.0])
        energy = band_energy(spectrum, 60.0, 60.0, sample_rate=1000, fft_size=20)
        self.assertAlmostEqual(energy, 4.0, places=6)

    def test_band_energy_empty_or_none(self):
        self.assertEqual(band_energy(None, 10.0, 200.0, 1000, 20), 0.0)
        self.assertEqual(band_energy(np.array([]), 10.0, 200.0, 1000, 20), 0.0)

    def test_extract_dominant_freq_basic_peak(self):
        # sample_rate=1000, fft_size=20 => freq_per_bin=50Hz
        spectrum = np.zeros(20)
        spectrum[4] = 10.0

        freq = extract_dominant_freq(spectrum, sample_rate=1000, fft_size=20, freq_low=100.0, freq_high=300.0)
        self.assertAlmostEqual(freq, 200.0, places=6)

    def test_extract_dominant_freq_ignores_mirrored_half(self):
        spectrum = np.zeros(20)
        spectrum[3] = 1.0
        spectrum[17] = 5.0
        freq = extract_dominant_freq(spectrum, sample_rate=1000, fft_size=20)
        self.assertAlmostEqual(freq, 150.0, places=6)

    def test_extract_dominant_freq_empty_or_none(self):
        self.assertEqual(extract_dominant_freq(None, 1000, 20, 10.0, 200.0), 0.0)
        self.assertEqual(extract_dominant_freq(np.array([]), 1000, 20, 10.0, 200.0), 0.0)

    def test_extract_dominant_freq_invalid_band(self):
        spectrum = np.ones(20)
        freq = extract_dominant_freq(spectrum, sample_rate=1000, fft_size=20, freq_low=400.0, freq_high=200.0)
        self.assertEqual(freq, 0.0)


if __name__ == "__main__":
    unittest.main()
