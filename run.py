#!/usr/bin/env python3
"""
spectrumbeats - offline analysis runner

Reads a WAV file, slices it into hops, computes Hann-windowed FFT magnitudes
the way a capture callback would and feeds them to an AnalysisSession with
timestamps taken from the file position.
"""

import argparse
import cProfile
import sys
from pathlib import Path

import numpy as np
from scipy.io import wavfile

from analysis_engine import AnalysisSession
from analysis_errors import ConfigurationError
from config_persistence import load_config
from logging_utils import log_event, set_log_level


def to_mono_float(samples: np.ndarray) -> np.ndarray:
    """Mix to mono and scale integer PCM into [-1, 1]."""
    data = np.asarray(samples)
    if np.issubdtype(data.dtype, np.integer):
        info = np.iinfo(data.dtype)
        scale = float(max(abs(info.min), info.max))
        data = data.astype(np.float64) / scale
    else:
        data = data.astype(np.float64)
    if data.ndim > 1:
        data = np.mean(data, axis=1)
    return data


def iter_magnitude_frames(mono: np.ndarray, sample_rate: int, fft_size: int, hop: int):
    """Yield (time_s, magnitudes) with full-length mirrored magnitude frames."""
    window = np.hanning(fft_size)
    for start in range(0, max(0, len(mono) - fft_size + 1), hop):
        chunk = mono[start:start + fft_size] * window
        half = np.abs(np.fft.rfft(chunk)) / fft_size * 2.0
        full = np.concatenate((half[:-1], half[-1:0:-1]))[:fft_size]
        yield (start + fft_size) / sample_rate, full


def analyze_file(path: Path, config, hop: int) -> AnalysisSession:
    sample_rate, samples = wavfile.read(str(path))
    config.audio.sample_rate = int(sample_rate)
    mono = to_mono_float(samples)

    session = AnalysisSession(config, clock=lambda: 0.0)
    fft_size = config.audio.fft_size
    log_event("INFO", "Run", "Analyzing", file=path, sample_rate=sample_rate,
              seconds=f"{len(mono) / sample_rate:.1f}", fft_size=fft_size, hop=hop)

    beats = 0
    for now, frame in iter_magnitude_frames(mono, sample_rate, fft_size, hop):
        snapshot = session.process_frame(frame, now)
        if snapshot is not None and snapshot.is_onset:
            beats += 1

    latest = session.latest
    if latest is not None:
        print(f"BPM: {latest.limited_bpm:.1f} (detected {latest.detected_bpm:.1f})")
        print(f"Key: {latest.key}")
        print(f"Onsets: {beats}")
    else:
        print("No frames analyzed (file shorter than one FFT window?)")
    session.close()
    return session


def main() -> None:
    parser = argparse.ArgumentParser(description="Run spectrumbeats analysis")
    subparsers = parser.add_subparsers(dest="command", required=True)

    analyze = subparsers.add_parser("analyze", help="Analyze a WAV file offline")
    analyze.add_argument("file", type=Path, help="WAV file to analyze")
    analyze.add_argument("--fft-size", type=int, default=None, help="FFT size (power of two)")
    analyze.add_argument("--hop", type=int, default=None, help="Hop size in samples (default: fft_size / 4)")
    analyze.add_argument("--config", type=Path, default=None, help="Config JSON file")
    analyze.add_argument("--log-level", default=None, help="DEBUG/INFO/WARNING/ERROR")
    analyze.add_argument(
        "--profile",
        action="store_true",
        help="Enable cProfile and save stats to --profile-out",
    )
    analyze.add_argument(
        "--profile-out",
        default="profile.prof",
        help="Path to save cProfile stats (default: profile.prof)",
    )
    args = parser.parse_args()

    config = load_config(args.config)
    if args.fft_size is not None:
        config.audio.fft_size = args.fft_size
    if args.log_level is not None:
        config.log_level = args.log_level
    set_log_level(config.log_level)
    hop = args.hop if args.hop else max(1, config.audio.fft_size // 4)

    if not args.file.exists():
        log_event("ERROR", "Run", "File not found", file=args.file)
        sys.exit(2)

    try:
        if args.profile:
            profiler = cProfile.Profile()
            profiler.enable()
            analyze_file(args.file, config, hop)
            profiler.disable()
            profiler.dump_stats(args.profile_out)
        else:
            analyze_file(args.file, config, hop)
    except ConfigurationError as e:
        log_event("ERROR", "Run", "Invalid configuration", error=e)
        sys.exit(2)


if __name__ == "__main__":
    main()
