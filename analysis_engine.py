"""
spectrumbeats - Analysis Engine
Owns one analysis session: every piece of state carried across frames
(smoothed spectrum, energy history, beat timestamps, tempo, key, bar state)
lives here and is updated once per magnitude frame.

Frames can be handed in directly with process_frame() from the scheduling
thread, or submitted from a capture callback thread into a latest-frame slot
and drained with tick().
"""

import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

import numpy as np

from analysis_errors import InvalidFrame
from bar_mapper import SpectrumBarMapper
from beat_detector import BeatDetector, BeatDetectionResult
from config import Config, validate_config
from frequency_utils import band_energy, extract_dominant_freq
from key_detector import KeyDetector
from logging_utils import log_event, set_log_level
from spectrum_processor import SpectrumProcessor, validate_frame
from tempo_estimator import BeatClock, TempoEstimator


@dataclass
class BandTrigger:
    """Named band output"""
    name: str
    energy: float = 0.0
    level: float = 0.0        # clamp01(energy * sensitivity)
    triggered: bool = False   # energy above the band's trigger threshold


@dataclass
class AnalysisSnapshot:
    """Everything a collaborator may read after one frame"""
    timestamp: float
    frequency_data: np.ndarray
    smoothed_spectrum: np.ndarray
    bands: dict = field(default_factory=dict)
    is_onset: bool = False
    dynamic_threshold: float = 0.0
    onset_pulse: float = 0.0
    beat_count: int = 0
    show_beat: bool = False
    beat_tick: bool = False
    beat_display_time: float = 0.0
    beat_pulse: float = 0.0
    detected_bpm: float = 0.0
    limited_bpm: float = 0.0
    key: str = "Unknown"
    bars: Optional[np.ndarray] = None
    bar_history: Optional[np.ndarray] = None    # Live waterfall ring buffer (history_depth x bar_count)
    bar_write_row: int = 0
    dominant_freq: float = 0.0


class FrameSlot:
    """Single-producer/single-consumer handoff holding only the newest frame."""

    def __init__(self):
        self._lock = threading.Lock()
        self._frame: Optional[np.ndarray] = None
        self._time: Optional[float] = None
        self.overwritten = 0

    def submit(self, frame, now: float) -> None:
        data = np.array(frame, copy=True)
        with self._lock:
            if self._frame is not None:
                self.overwritten += 1
            self._frame = data
            self._time = now

    def take(self) -> Optional[tuple[np.ndarray, float]]:
        with self._lock:
            if self._frame is None:
                return None
            item = (self._frame, self._time)
            self._frame = None
            self._time = None
            return item


class AnalysisSession:
    """Per-frame analysis pipeline (spectrum -> bands -> beat -> tempo, key, bars)."""

    def __init__(self, config: Config | None = None, clock: Callable[[], float] = time.monotonic):
        self.config = config if config is not None else Config()
        validate_config(self.config)
        set_log_level(self.config.log_level)

        self.clock = clock
        self._lock = threading.Lock()
        self.slot = FrameSlot()
        self.latest: Optional[AnalysisSnapshot] = None

        self._build_components()
        self._reset_session_stats()

    def _build_components(self) -> None:
        cfg = self.config
        self.spectrum = SpectrumProcessor()
        self.beat_detector = BeatDetector(cfg.beat, cfg.tempo)
        self.tempo = TempoEstimator(cfg.tempo, keep=cfg.beat.max_timestamps)
        self.beat_clock = BeatClock(cfg.tempo)
        self.key_detector = KeyDetector(cfg.key)
        self.bar_mapper = SpectrumBarMapper(cfg.bars)
        self.bar_mapper.configure(cfg.audio.sample_rate, cfg.audio.fft_size)

    def reconfigure(self, config: Config) -> None:
        """Validate and apply a new configuration; all persisted state starts fresh."""
        validate_config(config)
        with self._lock:
            self.config = config
            set_log_level(config.log_level)
            self._build_components()
            self.latest = None
            log_event("INFO", "Session", "Reconfigured",
                      sample_rate=config.audio.sample_rate, fft_size=config.audio.fft_size)

    def reset(self) -> None:
        """Return to a pristine pipeline with the current configuration."""
        with self._lock:
            self.spectrum.reset()
            self.beat_detector.reset()
            self.tempo.reset()
            self.beat_clock.reset()
            self.key_detector.reset()
            self.bar_mapper.reset()
            self.latest = None
            self._reset_session_stats()

    # ------------------------------------------------------------------
    # Session stats
    # ------------------------------------------------------------------
    def _reset_session_stats(self) -> None:
        self._session_started_at = time.time()
        self._session_frame_count = 0
        self._session_dropped_count = 0
        self._session_energy_min = None
        self._session_energy_max = None
        self._session_energy_sum = 0.0

    @property
    def frame_count(self) -> int:
        return self._session_frame_count

    @property
    def dropped_frames(self) -> int:
        return self._session_dropped_count

    def _update_session_stats(self, energy: float) -> None:
        self._session_frame_count += 1
        self._session_energy_sum += energy
        if self._session_energy_min is None or energy < self._session_energy_min:
            self._session_energy_min = energy
        if self._session_energy_max is None or energy > self._session_energy_max:
            self._session_energy_max = energy

    def _log_shutdown_summary(self) -> None:
        if self._session_frame_count <= 0:
            return

        elapsed_s = max(0.0, time.time() - self._session_started_at)
        energy_min = float(self._session_energy_min or 0.0)
        energy_max = float(self._session_energy_max or 0.0)
        energy_mean = self._session_energy_sum / float(self._session_frame_count)

        log_event(
            "INFO",
            "Session",
            "Shutdown summary",
            frames=self._session_frame_count,
            dropped=self._session_dropped_count,
            seconds=f"{elapsed_s:.1f}",
            energy_min=f"{energy_min:.6f}",
            energy_max=f"{energy_max:.6f}",
            energy_mean=f"{energy_mean:.6f}",
            onsets=self.beat_detector.state.onset_count,
            bpm=f"{self.tempo.state.limited_bpm:.1f}",
            key=self.key_detector.key,
        )

    def close(self) -> None:
        with self._lock:
            self._log_shutdown_summary()

    # ------------------------------------------------------------------
    # Frame ingestion
    # ------------------------------------------------------------------
    def submit(self, frame, now: float | None = None) -> None:
        """Hand a frame over from a capture thread; processed by the next tick()."""
        self.slot.submit(frame, self.clock() if now is None else now)

    def tick(self) -> Optional[AnalysisSnapshot]:
        """Process the newest submitted frame, if any."""
        item = self.slot.take()
        if item is None:
            return None
        frame, now = item
        return self.process_frame(frame, now)

    def tap(self, now: float | None = None) -> None:
        """Tap tempo: counts as a beat delta and restarts the beat clock."""
        now = self.clock() if now is None else now
        with self._lock:
            self.beat_detector.tap(now)
            self.beat_clock.sync(now)

    def band_triggers(self, spectrum: np.ndarray) -> dict[str, BandTrigger]:
        audio = self.config.audio
        triggers = {}
        for band in self.config.bands:
            energy = band_energy(spectrum, band.f_min, band.f_max, audio.sample_rate, audio.fft_size)
            threshold = band.trigger_threshold
            triggers[band.name] = BandTrigger(
                name=band.name,
                energy=energy,
                level=float(np.clip(energy * band.sensitivity, 0.0, 1.0)),
                triggered=threshold is not None and energy > threshold,
            )
        return triggers

    def process_frame(self, frame, now: float | None = None) -> Optional[AnalysisSnapshot]:
        """Run the whole pipeline on one magnitude frame.

        Invalid frames are dropped (logged, counted) and leave all state as it
        was; the return value is then None.
        """
        now = self.clock() if now is None else now
        with self._lock:
            try:
                magnitudes = validate_frame(frame, self.config.audio.fft_size)
            except InvalidFrame as e:
                self._session_dropped_count += 1
                log_event("WARN", "Session", "Frame dropped", reason=e,
                          dropped=self._session_dropped_count)
                return None
            return self._analyze(magnitudes, now)

    def _analyze(self, magnitudes: np.ndarray, now: float) -> AnalysisSnapshot:
        cfg = self.config
        audio = cfg.audio

        frequency_data = self.spectrum.process(magnitudes, cfg.spectrum.scale_mode, cfg.spectrum.vertical_scale)
        smoothed = self.spectrum.smooth(frequency_data, cfg.spectrum.smoothing_weight)

        bands = self.band_triggers(smoothed)
        trigger_energy = bands[cfg.beat.trigger_band].energy

        beat: BeatDetectionResult = self.beat_detector.update(trigger_energy, now)
        if beat.silence_reset:
            self.tempo.clear()
        self.tempo.update(self.beat_detector.timestamps, now)
        if beat.is_onset:
            self.beat_clock.trigger_onset(cfg.beat.onset_pulse_level)

        tempo_state = self.tempo.state
        beat_tick = self.beat_clock.update(now, tempo_state.limited_bpm, tempo_state.beat_display_time)
        self.key_detector.update(magnitudes, audio.sample_rate, audio.fft_size, now,
                                 beat_tick=beat_tick, tempo_held=tempo_state.limited_bpm > 0)

        bar_source = smoothed if cfg.bars.use_smoothed else magnitudes
        bars = self.bar_mapper.update(bar_source)

        self._update_session_stats(trigger_energy)

        clock_state = self.beat_clock.state
        snapshot = AnalysisSnapshot(
            timestamp=now,
            frequency_data=frequency_data,
            smoothed_spectrum=smoothed.copy(),
            bands=bands,
            is_onset=beat.is_onset,
            dynamic_threshold=beat.dynamic_threshold,
            onset_pulse=clock_state.onset_pulse,
            beat_count=clock_state.beat_count,
            show_beat=clock_state.show_beat,
            beat_tick=beat_tick,
            beat_display_time=tempo_state.beat_display_time,
            beat_pulse=clock_state.beat_pulse,
            detected_bpm=tempo_state.detected_bpm,
            limited_bpm=tempo_state.limited_bpm,
            key=self.key_detector.key,
            bars=None if bars is None else bars.copy(),
            bar_history=None if bars is None else self.bar_mapper.history,
            bar_write_row=self.bar_mapper.write_row,
            dominant_freq=extract_dominant_freq(smoothed, audio.sample_rate, audio.fft_size),
        )
        self.latest = snapshot
        return snapshot
