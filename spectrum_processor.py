"""
spectrumbeats - Spectrum Processor
Turns a raw magnitude frame into scaled frequency data and keeps an EMA-smoothed
copy of it across frames.
"""

from typing import Optional

import numpy as np

from analysis_errors import InvalidFrame
from config import ScaleMode
from logging_utils import log_event


def validate_frame(frame, fft_size: int) -> np.ndarray:
    """Return *frame* as a float64 array or raise InvalidFrame.

    Accepted lengths are the full FFT size or its usable half. Values must be
    finite; negative magnitudes are clamped to zero.
    """
    if frame is None:
        raise InvalidFrame("frame is None")
    try:
        data = np.asarray(frame, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise InvalidFrame(f"frame is not numeric: {e}") from e

    if data.ndim != 1:
        raise InvalidFrame(f"frame must be 1-D (got shape {data.shape})")
    if len(data) not in (fft_size, fft_size // 2):
        raise InvalidFrame(f"frame length {len(data)} does not match fft_size {fft_size} or its half")
    if not np.all(np.isfinite(data)):
        raise InvalidFrame("frame contains non-finite values")

    return np.maximum(data, 0.0)


class SpectrumProcessor:
    """Scale transform + exponential moving average of the spectrum.

    The smoothed spectrum is owned by this object and persists across frames;
    the first frame after construction or reset() is copied directly.
    """

    def __init__(self):
        self.frequency_data: Optional[np.ndarray] = None
        self.smoothed: Optional[np.ndarray] = None

    def reset(self) -> None:
        self.frequency_data = None
        self.smoothed = None

    def process(self, frame: np.ndarray, scale_mode: ScaleMode = ScaleMode.LOG1P,
                vertical_scale: float = 1.0) -> np.ndarray:
        """Apply the scale transform; returns a fresh FrequencyData vector."""
        magnitudes = np.maximum(np.nan_to_num(np.asarray(frame, dtype=np.float64), nan=0.0), 0.0)
        if scale_mode == ScaleMode.LINEAR:
            data = magnitudes * vertical_scale
        else:
            data = np.log10(magnitudes + 1.0) * vertical_scale
        self.frequency_data = data
        return data

    def smooth(self, frequency_data: np.ndarray, weight: float) -> np.ndarray:
        """EMA update s = s*w + y*(1-w), in place. Returns the smoothed spectrum."""
        if self.smoothed is None or len(self.smoothed) != len(frequency_data):
            if self.smoothed is not None:
                log_event("INFO", "Spectrum", "Frame length changed, reinitializing smoothing",
                          old=len(self.smoothed), new=len(frequency_data))
            self.smoothed = np.array(frequency_data, dtype=np.float64, copy=True)
            return self.smoothed

        self.smoothed *= weight
        self.smoothed += frequency_data * (1.0 - weight)
        return self.smoothed
