"""Register classification and voice-quality tiering."""

from __future__ import annotations

from typing import List, Tuple

import numpy as np

from .audio_utils import to_mono_float
from .config import Config, ModeThresholds, QualityConfig
from .features import pitch_for_config
from .models import QUALITY_TIERS, REGISTER_FEMALE, REGISTER_MALE, REGISTER_UNKNOWN

HIGH_CONFIDENCE = 0.95
OVERLAP_CENTER_CONFIDENCE = 0.65
OVERLAP_EDGE_CONFIDENCE = 0.85


def classify_register(pitch: float, thresholds: ModeThresholds) -> Tuple[str, float]:
    """Return ``(register, confidence)`` for a pitch in Hz.

    Confidence never decreases as the pitch moves from the centre of the
    overlap zone towards the inside of either band: 0.65 at the zone
    centre, 0.85 at its edges, then a linear ramp up to 0.95 which is
    reached ``deep_band_margin`` Hz inside the far edge of the band.
    Everything is scaled by the mode's confidence multiplier.
    """
    if pitch <= 0:
        return REGISTER_UNKNOWN, 0.0

    multiplier = thresholds.confidence_multiplier
    male_lo, _ = thresholds.male_band
    _, female_hi = thresholds.female_band
    zone_start, zone_end = thresholds.overlap_zone
    if zone_start > zone_end:
        zone_start = zone_end = (zone_start + zone_end) / 2.0
    margin = thresholds.deep_band_margin

    deep_female = female_hi - margin
    deep_male = male_lo + margin
    if pitch >= deep_female:
        return REGISTER_FEMALE, HIGH_CONFIDENCE * multiplier
    if pitch <= deep_male:
        return REGISTER_MALE, HIGH_CONFIDENCE * multiplier

    if pitch > zone_end:
        ramp = max(deep_female - zone_end, 1e-6)
        confidence = OVERLAP_EDGE_CONFIDENCE + 0.10 * (pitch - zone_end) / ramp
        return REGISTER_FEMALE, min(HIGH_CONFIDENCE, confidence) * multiplier
    if pitch < zone_start:
        ramp = max(zone_start - deep_male, 1e-6)
        confidence = OVERLAP_EDGE_CONFIDENCE + 0.10 * (zone_start - pitch) / ramp
        return REGISTER_MALE, min(HIGH_CONFIDENCE, confidence) * multiplier

    center = (zone_start + zone_end) / 2.0
    half_width = (zone_end - zone_start) / 2.0
    spread = OVERLAP_EDGE_CONFIDENCE - OVERLAP_CENTER_CONFIDENCE
    share = abs(pitch - center) / half_width if half_width > 0 else 1.0
    confidence = (OVERLAP_CENTER_CONFIDENCE + spread * share) * multiplier
    register = REGISTER_FEMALE if pitch >= center else REGISTER_MALE
    return register, confidence


def pitch_stability(frame, sample_rate: int, config: Config) -> float:
    """1 - normalised std-dev of pitch across four sub-chunks (0.5 if unknown)."""
    samples = to_mono_float(frame)
    pitches: List[float] = []
    for chunk in np.array_split(samples, 4):
        pitch = pitch_for_config(chunk, sample_rate, config)
        if pitch > 0:
            pitches.append(pitch)
    if len(pitches) < 2:
        return 0.5
    values = np.asarray(pitches)
    mean = float(values.mean())
    return max(0.0, 1.0 - float(values.std()) / mean)


def audio_clarity(frame, amplitude: float = 0.02) -> float:
    """SNR proxy: energy above vs below ``amplitude``, mapped to [0, 1]."""
    magnitudes = np.abs(to_mono_float(frame))
    signal = float(magnitudes[magnitudes > amplitude].sum())
    noise = float(magnitudes[magnitudes <= amplitude].sum())
    snr = signal / (noise + 0.001)
    return min(1.0, snr / 10.0)


def loudness_points(loudness: float, quality: QualityConfig) -> float:
    for floor, points in quality.loudness_tiers:
        if loudness > floor:
            return points
    return 0.0


def quality_tier(score: float, quality: QualityConfig) -> str:
    cutoffs = (quality.excellent, quality.good, quality.fair)
    for tier, cutoff in zip(QUALITY_TIERS, cutoffs):
        if score >= cutoff:
            return tier
    return QUALITY_TIERS[-1]


def assess_quality(frame, sample_rate: int, loudness: float, config: Config) -> str:
    quality = config.quality
    score = loudness_points(loudness, quality)
    score += pitch_stability(frame, sample_rate, config) * quality.stability_points
    score += audio_clarity(frame, quality.clarity_amplitude) * quality.clarity_points
    return quality_tier(score, quality)
