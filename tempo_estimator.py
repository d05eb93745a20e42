"""
spectrumbeats - Tempo Estimator
BPM from the beat detector's inter-onset deltas, folded into a display range,
plus the beat clock that ticks at the folded tempo.
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np

from config import TempoConfig
from logging_utils import log_event


def limit_bpm(bpm: float, min_bpm: float = 72.0, max_bpm: float = 180.0) -> float:
    """Octave-fold *bpm* into [min_bpm, max_bpm] by doubling/halving.

    Returns 0.0 for non-positive input.
    """
    if bpm <= 0:
        return 0.0
    limited = bpm
    while limited < min_bpm:
        limited *= 2.0
    while limited > max_bpm:
        limited /= 2.0
    return limited


@dataclass
class TempoState:
    """Current tempo estimate"""
    detected_bpm: float = 0.0
    limited_bpm: float = 0.0
    last_update_time: Optional[float] = None
    beat_display_time: float = 0.0    # 60 / limited_bpm / flash_divisor


class TempoEstimator:
    """Recomputes BPM on a fixed cadence from the timestamp buffer."""

    def __init__(self, config: TempoConfig, keep: int = 4):
        self.config = config
        self.keep = keep
        self.state = TempoState()

    def reset(self) -> None:
        self.state = TempoState()

    def clear(self) -> None:
        """Zero both estimates (silence); the update cadence is kept."""
        if self.state.detected_bpm > 0:
            log_event("INFO", "Tempo", "Tempo cleared", bpm=f"{self.state.limited_bpm:.1f}")
        self.state.detected_bpm = 0.0
        self.state.limited_bpm = 0.0

    @staticmethod
    def _retain_closest(timestamps: list, keep: int) -> None:
        """Keep the *keep* deltas closest to the mean, preserving their order."""
        mean = float(np.mean(timestamps))
        ranked = sorted(range(len(timestamps)), key=lambda i: abs(timestamps[i] - mean))
        kept = sorted(ranked[:keep])
        timestamps[:] = [timestamps[i] for i in kept]

    def update(self, timestamps: list, now: float) -> bool:
        """Recompute tempo when the update interval has elapsed.

        *timestamps* is the beat detector's delta buffer; it is trimmed in place
        when it holds more than ``keep`` entries. Returns True when the
        estimate was recomputed.
        """
        st = self.state
        if st.last_update_time is None:
            st.last_update_time = now
        if now - st.last_update_time <= self.config.update_interval_s or len(timestamps) < 2:
            return False

        st.last_update_time = now
        if len(timestamps) > self.keep:
            self._retain_closest(timestamps, self.keep)

        mean_interval = float(np.mean(timestamps))
        if mean_interval <= 0:
            return False

        previous = st.limited_bpm
        st.detected_bpm = 60.0 / mean_interval
        st.limited_bpm = limit_bpm(st.detected_bpm, self.config.min_bpm, self.config.max_bpm)
        st.beat_display_time = 60.0 / st.limited_bpm / self.config.flash_divisor

        if abs(st.limited_bpm - previous) >= 0.5:
            log_event("INFO", "Tempo", "BPM updated",
                      detected=f"{st.detected_bpm:.1f}", limited=f"{st.limited_bpm:.1f}",
                      deltas=len(timestamps))
        return True


@dataclass
class BeatClockState:
    last_beat_time: Optional[float] = None
    last_frame_time: Optional[float] = None
    beat_count: int = 0               # 1..beats_per_measure once running, 0 before the first tick
    show_beat: bool = False
    beat_timer: float = 0.0
    beat_pulse: float = 0.0
    onset_pulse: float = 0.0


class BeatClock:
    """Free-running beat counter driven by the folded tempo.

    Ticks every 60 / limited_bpm seconds while a tempo is held. Each tick
    advances the beat counter, raises ``show_beat`` for the display time and
    sets the beat pulse. Pulses decay toward zero between frames.
    """

    def __init__(self, config: TempoConfig):
        self.config = config
        self.state = BeatClockState()

    def reset(self) -> None:
        self.state = BeatClockState()

    def trigger_onset(self, level: float) -> None:
        self.state.onset_pulse = level

    def sync(self, now: float) -> None:
        """Restart the beat interval at *now* (tap tempo)."""
        self.state.last_beat_time = now

    @staticmethod
    def _decay(value: float, rate: float) -> float:
        return value * (1.0 - min(1.0, max(0.0, rate)))

    def update(self, now: float, limited_bpm: float, display_time: float) -> bool:
        """Advance the clock to *now*. Returns True when a beat ticked this frame."""
        st = self.state
        dt = 0.0 if st.last_frame_time is None else max(0.0, now - st.last_frame_time)
        st.last_frame_time = now
        if st.last_beat_time is None:
            st.last_beat_time = now

        ticked = False
        if limited_bpm > 0:
            beat_interval = 60.0 / limited_bpm
            if now - st.last_beat_time >= beat_interval:
                st.last_beat_time = now
                st.show_beat = True
                st.beat_count = st.beat_count % self.config.beats_per_measure + 1
                st.beat_timer = display_time
                st.beat_pulse = self.config.beat_pulse_level
                ticked = True

            st.onset_pulse = self._decay(st.onset_pulse, limited_bpm / 10.0 * dt)
            st.beat_pulse = self._decay(st.beat_pulse, limited_bpm * dt)

        if st.show_beat and not ticked:
            st.beat_timer -= dt
            if st.beat_timer <= 0.0:
                st.show_beat = False

        return ticked
