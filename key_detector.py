"""
spectrumbeats - Key Detector
Coarse major-key estimate from a single magnitude frame.

Each usable bin's magnitude is summed into the pitch class nearest to its
centre frequency; the resulting 12-bin chroma vector is correlated against
every rotation of a Krumhansl-Schmuckler major profile and the best rotation
names the key. Only a major profile is used, so relative minors report as
their major.
"""

from typing import Optional

import numpy as np

from config import KeyConfig
from logging_utils import log_event


KEY_NAMES = ("C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B")

# Krumhansl-Schmuckler major profile, tonic first
MAJOR_PROFILE = np.array([6.35, 2.23, 3.48, 2.33, 4.38, 4.09,
                          2.52, 5.19, 2.39, 3.66, 2.29, 2.88])

# Semitones from C to the A of the tuning reference
_REFERENCE_PITCH_CLASS = 9

UNKNOWN_KEY = "Unknown"


def build_chroma(frame: np.ndarray, sample_rate: float, fft_size: int,
                 reference_hz: float = 440.0) -> np.ndarray:
    """Sum bin magnitudes into 12 pitch classes (index 0 = C).

    Bins at or below 0 Hz are skipped, as are mirrored bins above Nyquist.
    """
    magnitudes = np.asarray(frame, dtype=np.float64)
    usable = min(len(magnitudes), fft_size // 2)
    if usable <= 1:
        return np.zeros(12)

    bins = np.arange(1, usable)
    freqs = bins * sample_rate / fft_size
    semitones = np.floor(12.0 * np.log2(freqs / reference_hz) + 0.5).astype(np.int64)
    pitch_classes = np.mod(semitones + _REFERENCE_PITCH_CLASS, 12)
    return np.bincount(pitch_classes, weights=magnitudes[1:usable], minlength=12)


def correlate_key(chroma: np.ndarray, template: np.ndarray = MAJOR_PROFILE) -> tuple[int, np.ndarray]:
    """Correlation of *chroma* with each tonic rotation of *template*.

    Rotation k places the template's tonic on pitch class k. Returns the best
    pitch class and the 12 correlation scores.
    """
    scores = np.array([float(np.dot(chroma, np.roll(template, shift))) for shift in range(12)])
    return int(np.argmax(scores)), scores


class KeyDetector:
    """Throttled key estimation; runs on beat ticks or on a fixed interval."""

    def __init__(self, config: KeyConfig):
        self.config = config
        self.key: str = UNKNOWN_KEY
        self.chroma: np.ndarray = np.zeros(12)
        self.last_update_time: Optional[float] = None

    def reset(self) -> None:
        self.key = UNKNOWN_KEY
        self.chroma = np.zeros(12)
        self.last_update_time = None

    def detect_key(self, frame: np.ndarray, sample_rate: float, fft_size: int) -> str:
        """Run one detection pass. An empty chroma keeps the current key."""
        chroma = build_chroma(frame, sample_rate, fft_size, self.config.reference_hz)
        self.chroma = chroma
        if not np.any(chroma > 0):
            return self.key

        best, _ = correlate_key(chroma)
        key = KEY_NAMES[best]
        if key != self.key:
            log_event("INFO", "Key", "Key changed", old=self.key, new=key)
        self.key = key
        return key

    def update(self, frame: np.ndarray, sample_rate: float, fft_size: int, now: float,
               beat_tick: bool, tempo_held: bool) -> bool:
        """Run detection when due. Returns True when a pass ran this frame."""
        if self.last_update_time is None:
            self.last_update_time = now

        if tempo_held and self.config.detect_on_beat:
            due = beat_tick
        else:
            due = now - self.last_update_time >= self.config.update_interval_s
        if not due:
            return False

        self.last_update_time = now
        self.detect_key(frame, sample_rate, fft_size)
        return True
