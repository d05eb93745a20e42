"""
spectrumbeats - Spectrum Bar Mapper
Maps a magnitude spectrum onto a fixed number of log-spaced bars for display.

Per update, each bar averages its precomputed bin range (after a noise floor),
compresses the result, smooths it against its own EMA and divides by a slowly
decaying peak, so bar values stay in [0, 1] regardless of playback volume.
Every update is also written into one row of a waterfall ring buffer.
"""

import math
from dataclasses import dataclass, field, replace
from typing import Optional

import numpy as np

from analysis_errors import ConfigurationError
from config import BarConfig, CompressMode, validate_bar_config
from frequency_utils import freq_to_bin_round
from logging_utils import log_event


def _position_to_freq(t: float, f_lo: float, f_hi: float, log_frequency: bool, log_power: float) -> float:
    if log_frequency:
        tl = math.pow(t, log_power)
        return math.exp(math.log(f_lo) + (math.log(f_hi) - math.log(f_lo)) * tl)
    return f_lo + (f_hi - f_lo) * t


def compute_bar_bin_ranges(bar_count: int, f_min: float, f_max: float, sample_rate: float,
                           fft_size: int, log_frequency: bool = True, log_power: float = 1.0,
                           use_half_spectrum: bool = True) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Per-bar [bin_start, bin_end] ranges and centre frequencies.

    Band edges sit at positions i/bar_count and (i+1)/bar_count, so adjacent
    bars share an edge bin. Indices are clamped to [0, fft_size/2] with
    *use_half_spectrum*, otherwise to [0, fft_size-1].
    """
    nyquist = sample_rate * 0.5
    f_lo = min(max(f_min, 1.0), nyquist)
    f_hi = min(max(f_max, f_lo + 1.0), nyquist)
    last_bin = fft_size // 2 if use_half_spectrum else fft_size - 1

    starts = np.zeros(bar_count, dtype=np.int64)
    ends = np.zeros(bar_count, dtype=np.int64)
    centers = np.zeros(bar_count, dtype=np.float64)

    for i in range(bar_count):
        centers[i] = _position_to_freq((i + 0.5) / bar_count, f_lo, f_hi, log_frequency, log_power)
        f0 = _position_to_freq(i / bar_count, f_lo, f_hi, log_frequency, log_power)
        f1 = _position_to_freq((i + 1) / bar_count, f_lo, f_hi, log_frequency, log_power)
        band_lo, band_hi = min(f0, f1), max(f0, f1)

        starts[i] = min(max(freq_to_bin_round(band_lo, sample_rate, fft_size), 0), last_bin)
        ends[i] = min(max(freq_to_bin_round(band_hi, sample_rate, fft_size), 0), last_bin)

    return starts, ends, centers


def compress(values: np.ndarray, mode: CompressMode, gain: float = 10.0, gamma: float = 0.6) -> np.ndarray:
    """Dynamic range compression of non-negative bar values."""
    x = np.maximum(values, 0.0)
    if mode == CompressMode.LOG10:
        return np.log10(1.0 + gain * x)
    if mode == CompressMode.POWER_GAMMA:
        return np.power(x, float(np.clip(gamma, 0.1, 3.0)))
    return x


@dataclass
class BarState:
    """Persisted per-bar arrays"""
    current: np.ndarray = field(default_factory=lambda: np.zeros(0))
    ema: np.ndarray = field(default_factory=lambda: np.zeros(0))
    rolling_max: np.ndarray = field(default_factory=lambda: np.zeros(0))


class SpectrumBarMapper:
    """Log-frequency bar mapping with compression, smoothing and rolling-max normalization."""

    def __init__(self, config: BarConfig | None = None):
        self.config = config if config is not None else BarConfig()
        self.configured = False
        self.sample_rate = 0
        self.fft_size = 0
        self.bin_start = np.zeros(0, dtype=np.int64)
        self.bin_end = np.zeros(0, dtype=np.int64)
        self.center_freqs = np.zeros(0)
        self.state = BarState()
        self.history = np.zeros((0, 0))
        self.write_row = 0
        self.update_count = 0

    # Static configuration exposed to consumers
    @property
    def bar_count(self) -> int:
        return self.config.bar_count

    @property
    def history_depth(self) -> int:
        return self.config.history_depth

    @property
    def f_min(self) -> float:
        return self.config.f_min

    @property
    def f_max(self) -> float:
        return self.config.f_max

    def configure(self, sample_rate: int, fft_size: int, config: BarConfig | None = None,
                  **overrides) -> None:
        """Precompute bar bin ranges and allocate BarState.

        *overrides* replace individual BarConfig fields (bar_count, history_depth,
        f_min, f_max, log_frequency, log_power, ...). Raises ConfigurationError;
        on failure the mapper stays unconfigured and produces no output until a
        later configure() succeeds.
        """
        candidate = config if config is not None else self.config
        if overrides:
            candidate = replace(candidate, **overrides)
        self.configured = False
        try:
            validate_bar_config(candidate, sample_rate, fft_size)
        except ConfigurationError as e:
            log_event("ERROR", "Bars", "Invalid bar configuration", error=e)
            raise

        self.config = cfg = candidate
        self.sample_rate = sample_rate
        self.fft_size = fft_size
        self.bin_start, self.bin_end, self.center_freqs = compute_bar_bin_ranges(
            cfg.bar_count, cfg.f_min, cfg.f_max, sample_rate, fft_size,
            cfg.log_frequency, cfg.log_power, cfg.use_half_spectrum,
        )
        self.reset()
        self.configured = True
        log_event("INFO", "Bars", "Configured",
                  bars=cfg.bar_count, history=cfg.history_depth,
                  f_min=f"{cfg.f_min:.0f}", f_max=f"{cfg.f_max:.0f}",
                  log=cfg.log_frequency, log_power=f"{cfg.log_power:.2f}",
                  bins=f"{int(self.bin_start[0])}-{int(self.bin_end[-1])}")

    def reset(self) -> None:
        """Clear BarState and the waterfall; bin ranges are kept."""
        cfg = self.config
        self.state = BarState(
            current=np.zeros(cfg.bar_count),
            ema=np.zeros(cfg.bar_count),
            rolling_max=np.full(cfg.bar_count, cfg.epsilon),
        )
        self.history = np.zeros((cfg.history_depth, cfg.bar_count))
        self.write_row = 0
        self.update_count = 0

    def _bar_averages(self, spectrum: np.ndarray) -> np.ndarray:
        cfg = self.config
        if cfg.use_half_spectrum:
            usable = min(len(spectrum), self.fft_size // 2)
        else:
            usable = min(len(spectrum), self.fft_size)
        usable = max(usable, 1)

        values = np.maximum(np.asarray(spectrum[:usable], dtype=np.float64) - cfg.noise_floor, 0.0)
        starts = np.clip(self.bin_start, 0, usable - 1)
        ends = np.maximum(np.clip(self.bin_end, 0, usable - 1), starts)

        cumulative = np.concatenate(([0.0], np.cumsum(values)))
        sums = cumulative[ends + 1] - cumulative[starts]
        return sums / (ends - starts + 1)

    def update(self, spectrum: np.ndarray) -> Optional[np.ndarray]:
        """Process one spectrum; returns the normalized bar vector (or None if unconfigured)."""
        if not self.configured:
            return None
        if spectrum is None or len(spectrum) == 0:
            return None

        cfg = self.config
        st = self.state
        compressed = compress(self._bar_averages(spectrum), cfg.compress_mode, cfg.gain, cfg.gamma)

        st.ema = st.ema * cfg.ema + compressed * (1.0 - cfg.ema)
        st.rolling_max = np.maximum(np.maximum(st.rolling_max * cfg.rolling_max_decay, st.ema), cfg.epsilon)
        st.current = np.clip(st.ema / st.rolling_max, 0.0, 1.0)

        self.history[self.write_row, :] = st.current
        self.write_row = (self.write_row + 1) % cfg.history_depth
        self.update_count += 1
        return st.current
