"""Online speaker-profile clustering."""

from __future__ import annotations

import logging
import time
from dataclasses import replace
from typing import Callable, Dict, List, Optional

from .audio_utils import smooth
from .config import Config
from .models import SpeakerProfile

logger = logging.getLogger("voicetrace")


class SpeakerRegistry:
    """Greedy single-pass clustering of voiced frames into speaker profiles.

    A frame matches a profile of the same register when its pitch is within
    ``pitch_match_delta`` of the smoothed average, or inside the profile's
    adaptive range widened by ``range_slack``. Among matching profiles the
    closest average wins. Unmatched frames start a new profile whose register
    is fixed for the rest of the session.
    """

    def __init__(self, config: Config, clock: Callable[[], float] = time.time) -> None:
        self._config = config
        self._clock = clock
        self._profiles: Dict[str, SpeakerProfile] = {}

    def __len__(self) -> int:
        return len(self._profiles)

    def __contains__(self, speaker_id: str) -> bool:
        return speaker_id in self._profiles

    def get(self, speaker_id: str) -> Optional[SpeakerProfile]:
        profile = self._profiles.get(speaker_id)
        return replace(profile, pitch_range=list(profile.pitch_range)) if profile else None

    def profiles(self) -> List[SpeakerProfile]:
        return [
            replace(p, pitch_range=list(p.pitch_range)) for p in self._profiles.values()
        ]

    def _matches(
        self, profile: SpeakerProfile, pitch: float, register: str, centroid: float
    ) -> bool:
        if profile.register != register:
            return False
        thresholds = self._config.thresholds
        near_average = abs(pitch - profile.avg_pitch) < thresholds.pitch_match_delta
        lo, hi = profile.pitch_range
        in_range = lo - thresholds.range_slack <= pitch <= hi + thresholds.range_slack
        if not (near_average or in_range):
            return False
        gate = self._config.profiles.centroid_gate_hz
        if gate and centroid > 0 and profile.spectral_centroid > 0:
            return abs(centroid - profile.spectral_centroid) <= gate
        return True

    def resolve(
        self,
        pitch: float,
        register: str,
        quality: Optional[str] = None,
        spectral_centroid: float = 0.0,
        timestamp: Optional[float] = None,
    ) -> str:
        """Return the speaker id for a voiced frame, creating or updating a profile."""
        now = self._clock() if timestamp is None else timestamp
        candidates = [
            p
            for p in self._profiles.values()
            if self._matches(p, pitch, register, spectral_centroid)
        ]
        if candidates:
            profile = min(candidates, key=lambda p: abs(pitch - p.avg_pitch))
            self._update(profile, pitch, quality, spectral_centroid, now)
            return profile.speaker_id
        return self._create(pitch, register, quality, spectral_centroid, now)

    def _update(
        self,
        profile: SpeakerProfile,
        pitch: float,
        quality: Optional[str],
        centroid: float,
        now: float,
    ) -> None:
        settings = self._config.profiles
        profile.avg_pitch = smooth(profile.avg_pitch, pitch, settings.smoothing_weight)
        if centroid > 0:
            profile.spectral_centroid = (
                smooth(profile.spectral_centroid, centroid, settings.smoothing_weight)
                if profile.spectral_centroid > 0
                else centroid
            )
        if pitch < profile.pitch_range[0]:
            profile.pitch_range[0] = pitch - settings.range_growth
        if pitch > profile.pitch_range[1]:
            profile.pitch_range[1] = pitch + settings.range_growth
        if quality:
            profile.quality = quality
        profile.sample_count += 1
        profile.last_seen = now

    def _create(
        self,
        pitch: float,
        register: str,
        quality: Optional[str],
        centroid: float,
        now: float,
    ) -> str:
        half = self._config.profiles.initial_half_width
        speaker_id = f"{register}_speaker_{len(self._profiles) + 1}"
        self._profiles[speaker_id] = SpeakerProfile(
            speaker_id=speaker_id,
            register=register,
            avg_pitch=pitch,
            pitch_range=[pitch - half, pitch + half],
            quality=quality or "unknown",
            sample_count=1,
            last_seen=now,
            spectral_centroid=centroid,
        )
        logger.info(
            "New speaker %s (%s, %.0f Hz, range %.0f-%.0f Hz)",
            speaker_id,
            register,
            pitch,
            pitch - half,
            pitch + half,
        )
        return speaker_id

    def clear(self) -> None:
        self._profiles.clear()
