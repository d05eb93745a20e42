import math

import numpy as np


def bin_to_freq(index: float, sample_rate: float, fft_size: int) -> float:
    """Centre frequency (Hz) of FFT bin *index*."""
    return index * sample_rate / fft_size


def freq_to_bin_floor(freq: float, sample_rate: float, fft_size: int) -> int:
    """Bin index for *freq* using floor (band energy convention)."""
    return int(math.floor(freq * fft_size / sample_rate))


def freq_to_bin_round(freq: float, sample_rate: float, fft_size: int) -> int:
    """Bin index for *freq* rounded to the nearest bin (bar mapping convention)."""
    # round half up; round() would round half to even
    return int(math.floor(freq * fft_size / sample_rate + 0.5))


def band_bin_range(
    length: int,
    f_min: float,
    f_max: float,
    sample_rate: float,
    fft_size: int,
) -> tuple[int, int]:
    """Inclusive [i_min, i_max] bin range for a band, clamped to [0, length-1]."""
    last = max(0, length - 1)
    i_min = min(max(freq_to_bin_floor(f_min, sample_rate, fft_size), 0), last)
    i_max = min(max(freq_to_bin_floor(f_max, sample_rate, fft_size), 0), last)
    if i_max < i_min:
        i_max = i_min
    return i_min, i_max


def band_energy(
    spectrum: np.ndarray | None,
    f_min: float,
    f_max: float,
    sample_rate: float,
    fft_size: int,
) -> float:
    """Mean of *spectrum* over the inclusive bin range covering [f_min, f_max]."""
    if spectrum is None or len(spectrum) == 0 or sample_rate <= 0:
        return 0.0

    i_min, i_max = band_bin_range(len(spectrum), f_min, f_max, sample_rate, fft_size)
    return float(np.mean(spectrum[i_min:i_max + 1]))


def extract_dominant_freq(
    spectrum: np.ndarray | None,
    sample_rate: int,
    fft_size: int,
    freq_low: float = 0.0,
    freq_high: float | None = None,
) -> float:
    """Extract dominant frequency from a specific Hz range of the spectrum."""
    if spectrum is None or len(spectrum) == 0 or sample_rate <= 0 or fft_size <= 0:
        return 0.0

    freq_per_bin = sample_rate / fft_size
    usable = min(len(spectrum), fft_size // 2 + 1)
    if freq_high is None:
        freq_high = sample_rate / 2

    low_bin = max(0, int(freq_low / freq_per_bin))
    high_bin = min(usable - 1, int(freq_high / freq_per_bin))
    if low_bin >= high_bin:
        return 0.0

    band = spectrum[low_bin:high_bin + 1]
    peak_bin = low_bin + int(np.argmax(band))
    return peak_bin * freq_per_bin
