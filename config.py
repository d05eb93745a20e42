# spectrumbeats Configuration
# All default values and constants

import math
from dataclasses import dataclass, field, is_dataclass
from enum import IntEnum
from typing import List

from analysis_errors import ConfigurationError
from logging_utils import log_event


CURRENT_CONFIG_VERSION = 1


class ScaleMode(IntEnum):
    """Vertical scale transform applied to each magnitude bin"""
    LINEAR = 1    # y = x * vertical_scale
    LOG1P = 2     # y = log10(x + 1) * vertical_scale


class CompressMode(IntEnum):
    """Dynamic range compression applied to each bar"""
    NONE = 1
    LOG10 = 2          # y = log10(1 + gain * x)
    POWER_GAMMA = 3    # y = pow(x, gamma)


@dataclass
class AudioConfig:
    """Frame source description (set by the capture side)"""
    sample_rate: int = 48000
    fft_size: int = 2048              # Length of a full magnitude frame (power of two)
    channels: int = 2                 # Informational; frames arrive pre-mixed


@dataclass
class SpectrumConfig:
    """Scale transform and temporal smoothing of the raw spectrum"""
    scale_mode: ScaleMode = ScaleMode.LOG1P
    vertical_scale: float = 1.0
    smoothing_weight: float = 0.5     # EMA weight of the previous value (0 = instant, ->1 = heavy)


@dataclass
class BandConfig:
    """Named frequency band published to collaborators"""
    name: str = "band"
    f_min: float = 40.0
    f_max: float = 100.0
    trigger_threshold: float | None = None   # energy > threshold raises the trigger flag
    sensitivity: float = 1.0                 # level = clamp01(energy * sensitivity)


def _default_bands() -> List[BandConfig]:
    return [
        BandConfig(name="kick", f_min=40.0, f_max=100.0, trigger_threshold=0.5, sensitivity=1.0),
        BandConfig(name="bass", f_min=60.0, f_max=250.0, sensitivity=20.0),
        BandConfig(name="synth", f_min=400.0, f_max=4000.0, sensitivity=10.0),
    ]


@dataclass
class BeatDetectionConfig:
    """Onset detection parameters (rolling energy window + dynamic threshold)"""
    trigger_band: str = "kick"            # Band whose energy feeds the detector
    history_size: int = 50                # Energy samples in the rolling average
    refractory_s: float = 0.3             # Min time between raw detections
    silence_epsilon: float = 0.001        # Energy below this = silence reset
    max_timestamps: int = 4               # Inter-onset deltas kept for tempo
    threshold_offset_start: float = 2.0   # Threshold multiplier right after an accepted onset
    threshold_offset_floor: float = 1.2   # Multiplier floor reached after threshold_ramp_s
    threshold_ramp_s: float = 10.0        # Seconds to ramp from start to floor
    tolerance_per_second: float = 0.03    # Acceptance tolerance grows with time since last accepted onset
    max_interval_s: float = 1.2           # Raw deltas longer than this are halved until they fit
    onset_pulse_level: float = 3.0        # Onset intensity pulse height


@dataclass
class TempoConfig:
    """Tempo estimation and beat clock"""
    update_interval_s: float = 1.5    # BPM recomputed at most this often
    min_bpm: float = 72.0             # Octave folding range
    max_bpm: float = 180.0
    flash_divisor: float = 4.0        # Beat display time = 60 / bpm / flash_divisor
    beats_per_measure: int = 4        # Beat counter wraps after this many beats
    beat_pulse_level: float = 0.25    # Beat clock intensity pulse height


@dataclass
class KeyConfig:
    """Chroma key detection"""
    update_interval_s: float = 1.5    # Periodic cadence when no tempo is held
    reference_hz: float = 440.0       # A4 tuning reference
    detect_on_beat: bool = True       # Also run on every beat clock tick


@dataclass
class BarConfig:
    """Log-frequency bar mapping and waterfall history"""
    bar_count: int = 128
    history_depth: int = 256
    f_min: float = 20.0
    f_max: float = 18000.0
    log_frequency: bool = True
    log_power: float = 1.3            # >1 packs more bars into lows, <1 spreads toward highs
    compress_mode: CompressMode = CompressMode.LOG10
    gain: float = 10.0                # LOG10 compression gain
    gamma: float = 0.6                # POWER_GAMMA exponent
    ema: float = 0.5                  # Per-bar smoothing (higher = smoother)
    noise_floor: float = 0.005        # Subtracted before averaging, clamps at 0
    rolling_max_decay: float = 0.98   # Per-update decay of the normalization peak
    epsilon: float = 1e-6             # rolling max floor
    use_half_spectrum: bool = True    # Only bins below Nyquist
    use_smoothed: bool = True         # Map the smoothed spectrum (False = raw magnitude frame)


@dataclass
class Config:
    """Master configuration"""
    version: int = 1                  # Schema version for persisted configs
    audio: AudioConfig = field(default_factory=AudioConfig)
    spectrum: SpectrumConfig = field(default_factory=SpectrumConfig)
    bands: List[BandConfig] = field(default_factory=_default_bands)
    beat: BeatDetectionConfig = field(default_factory=BeatDetectionConfig)
    tempo: TempoConfig = field(default_factory=TempoConfig)
    key: KeyConfig = field(default_factory=KeyConfig)
    bars: BarConfig = field(default_factory=BarConfig)

    # Global
    log_level: str = "INFO"           # Logging level (DEBUG/INFO/WARNING/ERROR)

    def band(self, name: str) -> BandConfig | None:
        for band in self.bands:
            if band.name == name:
                return band
        return None


def _coerce_scalar(current, value):
    """Convert *value* to the type of *current*; raises TypeError/ValueError."""
    if isinstance(current, bool):
        if not isinstance(value, bool):
            raise TypeError(f"expected bool, got {type(value).__name__}")
        return value
    if isinstance(current, int):
        if isinstance(value, bool):
            raise TypeError("expected int, got bool")
        number = float(value)
        if not number.is_integer():
            raise ValueError(f"{value!r} is not a whole number")
        return int(number)
    if isinstance(current, float) or current is None:
        if isinstance(value, bool):
            raise TypeError("expected number, got bool")
        return float(value)
    if isinstance(current, str):
        if not isinstance(value, str):
            raise TypeError(f"expected str, got {type(value).__name__}")
        return value
    return value


def apply_dict_to_dataclass(target, data) -> None:
    """Recursively apply values from a dict onto a dataclass instance.
    Unknown keys are ignored; scalar and IntEnum fields are coerced to the
    type of their current value (unconvertible values keep the current one);
    a list of band dicts replaces the band list. None leaves a
    required field at its current value."""
    if not isinstance(data, dict):
        return

    for key, value in data.items():
        if not hasattr(target, key):
            continue

        current = getattr(target, key)

        if is_dataclass(current):
            if isinstance(value, dict):
                apply_dict_to_dataclass(current, value)
            else:
                log_event("WARN", "Config", "Expected a section, keeping default",
                          key=key, value=value)
            continue

        if key == "bands":
            if not isinstance(value, list):
                log_event("WARN", "Config", "Expected a band list, keeping default", value=value)
                continue
            bands = []
            for item in value:
                band = BandConfig()
                apply_dict_to_dataclass(band, item)
                bands.append(band)
            setattr(target, key, bands)
            continue

        if value is None:
            # null keeps the current value; optional fields already default to None
            continue

        if isinstance(current, IntEnum):
            try:
                setattr(target, key, current.__class__(value))
            except (TypeError, ValueError):
                log_event("WARN", "Config", "Could not convert value, keeping default",
                          key=key, type=current.__class__.__name__, value=value)
            continue

        try:
            setattr(target, key, _coerce_scalar(current, value))
        except (TypeError, ValueError):
            log_event("WARN", "Config", "Could not convert value, keeping default",
                      key=key, type=type(current).__name__, value=value)


def _coerce_float(value, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def migrate_config(config: Config, loaded_version) -> None:
    """Upgrade older config structures to the current schema.
    Fills defaults for missing/None fields, clamps weights and bumps version."""
    try:
        version = int(loaded_version) if loaded_version is not None else 0
    except (TypeError, ValueError):
        version = 0

    if version < 1:
        defaults = Config()
        for section in ("audio", "spectrum", "beat", "tempo", "key", "bars"):
            current = getattr(config, section)
            reference = getattr(defaults, section)
            for name in reference.__dataclass_fields__:
                if getattr(current, name, None) is None:
                    setattr(current, name, getattr(reference, name))
        if not config.bands:
            config.bands = _default_bands()

    if getattr(config, 'log_level', None) is None:
        config.log_level = "INFO"

    # Always clamp smoothing weights into [0, 1)
    weight = _coerce_float(config.spectrum.smoothing_weight, 0.5)
    config.spectrum.smoothing_weight = max(0.0, min(0.99, weight))

    ema = _coerce_float(config.bars.ema, 0.5)
    config.bars.ema = max(0.0, min(0.99, ema))

    decay = _coerce_float(config.bars.rolling_max_decay, 0.98)
    config.bars.rolling_max_decay = max(0.9, min(0.9998, decay))

    config.version = CURRENT_CONFIG_VERSION


def is_power_of_two(value: int) -> bool:
    return isinstance(value, int) and value > 0 and (value & (value - 1)) == 0


def validate_bar_config(bars: BarConfig, sample_rate: int, fft_size: int) -> None:
    """Raise ConfigurationError when the bar mapping cannot be built."""
    if sample_rate <= 0:
        raise ConfigurationError(f"sample_rate must be > 0 (got {sample_rate})")
    if fft_size <= 0:
        raise ConfigurationError(f"fft_size must be > 0 (got {fft_size})")
    if bars.bar_count <= 0:
        raise ConfigurationError(f"bar_count must be > 0 (got {bars.bar_count})")
    if bars.history_depth <= 0:
        raise ConfigurationError(f"history_depth must be > 0 (got {bars.history_depth})")
    if not bars.f_max > bars.f_min:
        raise ConfigurationError(f"bar f_max must exceed f_min ({bars.f_min} >= {bars.f_max})")
    if bars.log_frequency and bars.f_min <= 0:
        raise ConfigurationError("bar f_min must be > 0 in log-frequency mode")
    if bars.log_power <= 0:
        raise ConfigurationError(f"log_power must be > 0 (got {bars.log_power})")
    if not 0.0 <= bars.ema < 1.0:
        raise ConfigurationError(f"bar ema must be in [0, 1) (got {bars.ema})")
    if not 0.9 <= bars.rolling_max_decay < 0.9999:
        raise ConfigurationError(
            f"rolling_max_decay must be in [0.9, 0.9999) (got {bars.rolling_max_decay})")
    if bars.epsilon <= 0:
        raise ConfigurationError(f"bar epsilon must be > 0 (got {bars.epsilon})")


def validate_config(config: Config) -> None:
    """Raise ConfigurationError for settings the pipeline cannot run with."""
    audio = config.audio
    if not is_power_of_two(audio.fft_size):
        raise ConfigurationError(f"fft_size must be a positive power of two (got {audio.fft_size})")
    if audio.sample_rate <= 0:
        raise ConfigurationError(f"sample_rate must be > 0 (got {audio.sample_rate})")

    if not 0.0 <= config.spectrum.smoothing_weight < 1.0:
        raise ConfigurationError(
            f"smoothing_weight must be in [0, 1) (got {config.spectrum.smoothing_weight})")

    names = set()
    for band in config.bands:
        if band.name in names:
            raise ConfigurationError(f"duplicate band name {band.name!r}")
        names.add(band.name)
        if not band.f_max > band.f_min:
            raise ConfigurationError(
                f"band {band.name!r}: f_max must exceed f_min ({band.f_min} >= {band.f_max})")

    beat = config.beat
    if config.band(beat.trigger_band) is None:
        raise ConfigurationError(f"trigger_band {beat.trigger_band!r} is not a configured band")
    if beat.history_size <= 0:
        raise ConfigurationError(f"history_size must be > 0 (got {beat.history_size})")
    if beat.max_timestamps < 2:
        raise ConfigurationError(f"max_timestamps must be >= 2 (got {beat.max_timestamps})")
    if beat.refractory_s < 0 or beat.threshold_ramp_s <= 0 or beat.max_interval_s <= 0:
        raise ConfigurationError("beat timing parameters must be positive")

    tempo = config.tempo
    if tempo.update_interval_s <= 0:
        raise ConfigurationError(f"tempo update_interval_s must be > 0 (got {tempo.update_interval_s})")
    if not (0 < tempo.min_bpm and tempo.max_bpm >= 2 * tempo.min_bpm):
        raise ConfigurationError(
            f"tempo range must satisfy 0 < min_bpm and max_bpm >= 2 * min_bpm "
            f"({tempo.min_bpm}, {tempo.max_bpm})")
    if tempo.beats_per_measure <= 0 or tempo.flash_divisor <= 0:
        raise ConfigurationError("beats_per_measure and flash_divisor must be > 0")

    if config.key.update_interval_s <= 0 or config.key.reference_hz <= 0:
        raise ConfigurationError("key update_interval_s and reference_hz must be > 0")

    validate_bar_config(config.bars, audio.sample_rate, audio.fft_size)

    if not math.isfinite(config.spectrum.vertical_scale):
        raise ConfigurationError("vertical_scale must be finite")
