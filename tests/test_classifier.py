import numpy as np
import pytest

from voicetrace.classifier import (
    assess_quality,
    audio_clarity,
    classify_register,
    loudness_points,
    quality_tier,
)
from voicetrace.config import Config, QualityConfig
from voicetrace.models import QUALITY_TIERS


def _sweep(lo, hi, step=0.5):
    return np.arange(lo, hi + step, step)


@pytest.mark.parametrize("mode", ["direct", "relayed"])
def test_confidence_grows_away_from_overlap_center(mode):
    thresholds = Config(capture_mode=mode).thresholds
    start, end = thresholds.overlap_zone
    center = (start + end) / 2.0

    previous = 0.0
    for pitch in _sweep(center, 400.0):
        _, confidence = classify_register(float(pitch), thresholds)
        assert confidence >= previous - 1e-9
        previous = confidence

    previous = 0.0
    for pitch in _sweep(55.0, center)[::-1]:
        _, confidence = classify_register(float(pitch), thresholds)
        assert confidence >= previous - 1e-9
        previous = confidence


def test_direct_mode_registers():
    thresholds = Config().thresholds
    assert classify_register(120.0, thresholds)[0] == "male"
    assert classify_register(220.0, thresholds)[0] == "female"
    assert classify_register(0.0, thresholds) == ("unknown", 0.0)


def test_deep_zone_is_high_confidence():
    thresholds = Config().thresholds
    assert classify_register(250.0, thresholds) == ("female", pytest.approx(0.95))
    assert classify_register(90.0, thresholds) == ("male", pytest.approx(0.95))


def test_overlap_zone_is_less_certain():
    thresholds = Config().thresholds
    _, inside = classify_register(172.0, thresholds)
    _, outside = classify_register(120.0, thresholds)
    assert 0.65 <= inside < 0.85
    assert outside > inside


def test_relayed_mode_scales_confidence():
    thresholds = Config(capture_mode="relayed").thresholds
    register, confidence = classify_register(375.0, thresholds)
    assert register == "female"
    assert confidence == pytest.approx(0.95 * 0.9)
    # 190 Hz is inside the widened overlap zone when relayed
    _, relayed = classify_register(190.0, thresholds)
    _, direct = classify_register(190.0, Config().thresholds)
    assert relayed < direct


def test_loudness_points_and_tiers():
    quality = QualityConfig()
    assert loudness_points(25.0, quality) == 40.0
    assert loudness_points(12.0, quality) == 25.0
    assert loudness_points(6.0, quality) == 10.0
    assert loudness_points(3.0, quality) == 0.0
    assert quality_tier(85.0, quality) == "excellent"
    assert quality_tier(60.0, quality) == "good"
    assert quality_tier(45.0, quality) == "fair"
    assert quality_tier(10.0, quality) == "poor"


def test_quality_tiers_come_from_the_shared_tier_list():
    quality = QualityConfig()
    tiers = [quality_tier(score, quality) for score in range(0, 101, 5)]
    assert set(tiers) == set(QUALITY_TIERS)
    # higher scores never land in a lower tier
    ranks = [QUALITY_TIERS.index(t) for t in tiers]
    assert ranks == sorted(ranks, reverse=True)


def test_clarity_prefers_signal_over_hiss():
    t = np.arange(4096) / 44100.0
    tone = 0.5 * np.sin(2 * np.pi * 200.0 * t)
    hiss = np.random.default_rng(3).normal(0, 0.002, 4096)
    assert audio_clarity(tone) == pytest.approx(1.0)
    assert audio_clarity(hiss) < 0.1


def test_clean_loud_tone_is_high_quality():
    t = np.arange(4096) / 44100.0
    tone = 0.5 * np.sin(2 * np.pi * 220.0 * t)
    assert assess_quality(tone, 44100, 100.0, Config()) in ("excellent", "good")
