"""Per-frame pitch, loudness and voice-activity extraction."""

from __future__ import annotations

import math

import numpy as np

from .audio_utils import to_mono_float
from .config import Config
from .models import FrameFeatures

_EPS = 1e-12
LOUDNESS_SCALE = 1000.0


def _hamming(size: int) -> np.ndarray:
    if size < 2:
        return np.ones(size)
    return np.hamming(size)


def _correlation_scores(
    windowed: np.ndarray, lags: np.ndarray, count: int
) -> np.ndarray:
    head = windowed[:count]
    head_energy = float(np.dot(head, head))
    scores = np.zeros(lags.size)
    if head_energy <= _EPS:
        return scores
    energy = np.concatenate(([0.0], np.cumsum(windowed * windowed)))
    for idx, lag in enumerate(lags):
        tail = windowed[lag : lag + count]
        tail_energy = energy[lag + count] - energy[lag]
        denom = math.sqrt(head_energy * tail_energy)
        if denom > _EPS:
            scores[idx] = float(np.dot(head, tail)) / denom
    return scores


def detect_pitch(
    frame,
    sample_rate: int,
    min_hz: float = 50.0,
    max_hz: float = 800.0,
    min_score: float = 0.1,
    max_samples: int = 4000,
    octave_tolerance: float = 0.9,
) -> float:
    """Estimate the fundamental frequency of ``frame`` in Hz.

    Hamming-windowed, energy-normalised autocorrelation over the periods
    that correspond to ``[min_hz, max_hz]``. The first correlation peak
    that reaches ``octave_tolerance`` of the strongest peak wins, which
    keeps multiples of the true period from being picked. Returns 0.0
    when no peak scores at least ``min_score``. Refinement can step just
    past the range ends, so the estimate is clamped to ``[min_hz, max_hz]``.
    """
    samples = to_mono_float(frame)
    if sample_rate <= 0 or samples.size == 0:
        return 0.0
    min_period = max(1, int(sample_rate // max_hz))
    max_period = int(sample_rate // min_hz)
    lo = max(1, min_period - 1)
    hi = max_period + 1
    count = min(samples.size - hi, max_samples)
    if count <= 0 or hi - lo < 2:
        return 0.0

    windowed = samples * _hamming(samples.size)
    lags = np.arange(lo, hi + 1)
    scores = _correlation_scores(windowed, lags, count)

    inner = scores[1:-1]
    is_peak = (inner >= scores[:-2]) & (inner > scores[2:])
    peaks = np.nonzero(is_peak)[0] + 1
    if peaks.size == 0:
        return 0.0
    best = float(scores[peaks].max())
    if best < min_score:
        return 0.0
    chosen = int(next(p for p in peaks if scores[p] >= best * octave_tolerance))

    # parabolic refinement around the chosen lag
    a, b, c = scores[chosen - 1], scores[chosen], scores[chosen + 1]
    curvature = a - 2.0 * b + c
    shift = 0.5 * (a - c) / curvature if curvature < 0 else 0.0
    shift = max(-0.5, min(0.5, shift))
    period = float(lags[chosen]) + shift
    if period <= 0:
        return 0.0

    pitch = sample_rate / period
    return float(min(max_hz, max(min_hz, pitch)))


def measure_loudness(frame) -> float:
    """RMS of the frame scaled to a 0-100 display range."""
    samples = to_mono_float(frame)
    if samples.size == 0:
        return 0.0
    rms = math.sqrt(float(np.mean(np.abs(samples) ** 2)))
    return float(min(100.0, rms * LOUDNESS_SCALE))


def spectral_centroid(frame, sample_rate: int) -> float:
    """Magnitude-weighted mean frequency; a coarse spectral-tilt proxy."""
    samples = to_mono_float(frame)
    if samples.size < 2 or sample_rate <= 0:
        return 0.0
    spectrum = np.abs(np.fft.rfft(samples * _hamming(samples.size)))
    total = float(spectrum.sum())
    if total <= _EPS:
        return 0.0
    freqs = np.fft.rfftfreq(samples.size, d=1.0 / sample_rate)
    return float(np.dot(freqs, spectrum) / total)


def pitch_for_config(frame, sample_rate: int, config: Config) -> float:
    pitch_cfg = config.pitch
    return detect_pitch(
        frame,
        sample_rate,
        min_hz=pitch_cfg.min_hz,
        max_hz=pitch_cfg.max_hz,
        min_score=pitch_cfg.min_score,
        max_samples=pitch_cfg.max_correlation_samples,
        octave_tolerance=pitch_cfg.octave_tolerance,
    )


def extract_features(frame, sample_rate: int, config: Config) -> FrameFeatures:
    """Pitch, loudness and the two-part voice-activity gate for one frame.

    Never raises for degenerate input: an empty or all-zero frame
    yields ``FrameFeatures(0.0, 0.0, False)``.
    """
    loudness = measure_loudness(frame)
    if loudness <= 0.0:
        return FrameFeatures(pitch=0.0, loudness=0.0, voice_active=False)
    pitch = pitch_for_config(frame, sample_rate, config)
    active = loudness >= config.thresholds.voice_activity_floor and pitch > 0.0
    return FrameFeatures(pitch=pitch, loudness=loudness, voice_active=active)
