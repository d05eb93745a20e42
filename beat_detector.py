"""
spectrumbeats - Beat Detector
Adaptive onset detection on a single band's energy.

Keeps a rolling window of recent band energies and fires when the current
energy exceeds the window mean times a dynamic offset. The offset starts at
2.0 right after an accepted onset and relaxes to 1.2 over ten seconds, so the
detector gets more sensitive the longer it goes without a beat.

Accepted onsets contribute their inter-onset delta to a short timestamp buffer
that TempoEstimator reads. Once a delta is held, new deltas must land close to
the buffer mean; the tolerance widens with time since the last accepted onset
so a lost lock can re-acquire.
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from config import BeatDetectionConfig, TempoConfig
from logging_utils import log_event


@dataclass
class BeatDetectionResult:
    """Per-frame detector output"""
    is_onset: bool = False            # Accepted onset this frame
    is_candidate: bool = False        # Energy crossed the threshold outside the refractory window
    dynamic_threshold: float = 0.0    # avg_energy * dynamic_threshold_offset
    dynamic_threshold_offset: float = 0.0
    avg_energy: float = 0.0
    interval: float = 0.0             # Folded delta of the candidate (0 when no candidate)
    silence_reset: bool = False       # Energy fell below epsilon this frame
    pruned: bool = False              # A stale timestamp was dropped this frame


@dataclass
class BeatDetectorState:
    """Persisted detector state (rolling energies + timers + timestamp buffer)"""
    energy_history: deque = field(default_factory=deque)
    timestamps: list = field(default_factory=list)
    last_detect_time: Optional[float] = None   # Last raw detection (candidate past refractory)
    last_add_time: Optional[float] = None      # Last accepted onset
    last_prune_time: Optional[float] = None
    onset_count: int = 0


class BeatDetector:
    """Rolling-window dynamic-threshold onset detector."""

    def __init__(self, config: BeatDetectionConfig, tempo_config: TempoConfig):
        self.config = config
        self.tempo_config = tempo_config
        self.state = BeatDetectorState(energy_history=deque(maxlen=config.history_size))

    def reset(self) -> None:
        self.state = BeatDetectorState(energy_history=deque(maxlen=self.config.history_size))

    @property
    def timestamps(self) -> list[float]:
        """Inter-onset deltas (seconds), oldest first. Mutable; TempoEstimator may trim it."""
        return self.state.timestamps

    @property
    def energy_history(self) -> deque:
        return self.state.energy_history

    def _start_timers(self, now: float) -> None:
        st = self.state
        if st.last_detect_time is None:
            st.last_detect_time = now
        if st.last_add_time is None:
            st.last_add_time = now
        if st.last_prune_time is None:
            st.last_prune_time = now

    def dynamic_threshold_offset(self, now: float) -> float:
        """Linear ramp from threshold_offset_start to threshold_offset_floor."""
        cfg = self.config
        elapsed = now - self.state.last_add_time
        t = float(np.clip(elapsed / cfg.threshold_ramp_s, 0.0, 1.0))
        return cfg.threshold_offset_start + (cfg.threshold_offset_floor - cfg.threshold_offset_start) * t

    def acceptance_tolerance(self, now: float) -> float:
        return (now - self.state.last_add_time) * self.config.tolerance_per_second

    def fold_interval(self, interval: float) -> float:
        """Halve intervals longer than max_interval_s until they fit."""
        while interval > self.config.max_interval_s:
            interval /= 2.0
        return interval

    def _append_timestamp(self, interval: float) -> None:
        timestamps = self.state.timestamps
        timestamps.append(interval)
        overflow = len(timestamps) - self.config.max_timestamps
        if overflow > 0:
            del timestamps[:overflow]

    def _prune_stale(self, now: float) -> bool:
        """Drop the newest delta of a half-formed lock that has stopped growing."""
        st = self.state
        count = len(st.timestamps)
        if not 0 < count < self.config.max_timestamps:
            return False
        idle_since = max(st.last_add_time, st.last_prune_time)
        if now - idle_since <= self.tempo_config.update_interval_s * 2:
            return False
        st.timestamps.pop()
        st.last_prune_time = now
        log_event("DEBUG", "BEAT", "Stale timestamp dropped", remaining=len(st.timestamps))
        return True

    def update(self, energy: float, now: float) -> BeatDetectionResult:
        """Feed one band energy sample taken at time *now* (seconds)."""
        cfg = self.config
        st = self.state
        self._start_timers(now)
        result = BeatDetectionResult()

        st.energy_history.append(energy)
        result.pruned = self._prune_stale(now)

        avg_energy = float(np.mean(st.energy_history))
        offset = self.dynamic_threshold_offset(now)
        threshold = avg_energy * offset
        result.avg_energy = avg_energy
        result.dynamic_threshold_offset = offset
        result.dynamic_threshold = threshold

        since_detect = now - st.last_detect_time
        if energy > threshold and since_detect > cfg.refractory_s:
            interval = self.fold_interval(since_detect)
            result.is_candidate = True
            result.interval = interval

            if st.timestamps:
                mean_interval = float(np.mean(st.timestamps))
                tolerance = self.acceptance_tolerance(now)
                accepted = abs(interval - mean_interval) < tolerance
                if not accepted:
                    log_event("DEBUG", "BEAT", "Onset rejected",
                              interval=f"{interval:.3f}s", mean=f"{mean_interval:.3f}s",
                              tolerance=f"{tolerance:.3f}s")
            else:
                accepted = True

            if accepted:
                self._append_timestamp(interval)
                st.last_add_time = now
                st.onset_count += 1
                result.is_onset = True
                log_event("DEBUG", "BEAT", "Onset accepted",
                          energy=f"{energy:.4f}", threshold=f"{threshold:.4f}",
                          interval=f"{interval:.3f}s", held=len(st.timestamps))

            st.last_detect_time = now

        if energy < cfg.silence_epsilon:
            if st.energy_history:
                st.energy_history.popleft()
            if st.timestamps:
                log_event("INFO", "BEAT", "Silence, clearing beat timestamps", held=len(st.timestamps))
            st.timestamps.clear()
            result.silence_reset = True

        return result

    def tap(self, now: float) -> float:
        """Manual tap: record the delta since the last raw detection.

        The first tap of a fresh detector only starts the timer; a non-positive
        delta is never recorded. Returns the recorded delta, or 0.0.
        """
        st = self.state
        if st.last_detect_time is None:
            self._start_timers(now)
            log_event("INFO", "BEAT", "Tap timer started")
            return 0.0

        interval = now - st.last_detect_time
        if interval <= 0:
            log_event("DEBUG", "BEAT", "Tap ignored", interval=f"{interval:.3f}s")
            return 0.0

        self._append_timestamp(interval)
        st.last_detect_time = now
        log_event("INFO", "BEAT", "Tap", interval=f"{interval:.3f}s", held=len(st.timestamps))
        return interval
