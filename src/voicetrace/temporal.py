"""Sliding-window statistics over the characteristics stream."""

from __future__ import annotations

import logging
from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Deque, Dict, List, Optional, Sequence

from .audio_utils import variance
from .config import Config
from .models import (
    BehavioralPattern,
    ConversationDynamics,
    DiarizedSegment,
    LowConfidenceSegment,
    TemporalPattern,
    VoiceCharacteristics,
    VoiceTurn,
)

logger = logging.getLogger("voicetrace")

_QUALITY_SCORES = {"excellent": 1.0, "good": 0.7, "fair": 0.5, "poor": 0.3}

MAX_STRESS = 10.0


def _voiced_pitches(window: Sequence[VoiceCharacteristics]) -> List[float]:
    return [c.pitch for c in window if c.pitch > 0]


@dataclass
class _OpenTurn:
    speaker_id: str
    start: float
    last_confident: float
    pitches: List[float] = field(default_factory=list)
    loudness: List[float] = field(default_factory=list)

    def close(self, end: float) -> VoiceTurn:
        return VoiceTurn(
            speaker_id=self.speaker_id,
            start=self.start,
            duration=max(0.0, end - self.start),
            avg_pitch=sum(self.pitches) / len(self.pitches),
            avg_loudness=sum(self.loudness) / len(self.loudness),
            frames=len(self.pitches),
        )


class TemporalTracker:
    """Capped rolling history with per-entry context windows.

    Purely advisory: nothing here feeds back into frame analysis.
    """

    def __init__(self, config: Config) -> None:
        self._config = config
        self._history: Deque[TemporalPattern] = deque(
            maxlen=config.temporal.history_limit
        )
        self._flagged_segments: List[LowConfidenceSegment] = []
        self._stress_levels: Dict[str, float] = {}
        self._turns: Deque[VoiceTurn] = deque(
            maxlen=config.temporal.turn_history_limit
        )
        self._open_turn: Optional[_OpenTurn] = None

    def __len__(self) -> int:
        return len(self._history)

    @property
    def threshold(self) -> float:
        return self._config.thresholds.low_confidence_threshold

    def history(self) -> List[TemporalPattern]:
        return list(self._history)

    def record(
        self, characteristics: VoiceCharacteristics, timestamp: float
    ) -> TemporalPattern:
        settings = self._config.temporal
        size = settings.context_window
        window = tuple(p.characteristics for p in list(self._history)[-size:])

        pitch_var = loudness_var = 0.0
        stress = False
        if len(window) >= size:
            pitch_var = variance(_voiced_pitches(window))
            loudness_var = variance([c.loudness for c in window])
            stress = (
                pitch_var > settings.stress_pitch_variance
                and loudness_var > settings.stress_volume_variance
            )
            if not characteristics.is_silence:
                self._update_stress(characteristics.speaker_id, stress)
            if stress:
                logger.warning(
                    "Stress-like transient (%s): pitch var %.1f, loudness var %.1f",
                    characteristics.speaker_id,
                    pitch_var,
                    loudness_var,
                )

        pattern = TemporalPattern(
            timestamp=timestamp,
            characteristics=characteristics,
            context_window=window,
            pitch_variance=pitch_var,
            loudness_variance=loudness_var,
            stress=stress,
        )
        self._history.append(pattern)
        self._track_turn(characteristics, timestamp)
        return pattern

    def _update_stress(self, speaker_id: str, stress: bool) -> None:
        level = self._stress_levels.get(speaker_id, 0.0)
        if stress:
            level = min(MAX_STRESS, level + 1.0)
        else:
            level = max(0.0, level - 0.5)
        self._stress_levels[speaker_id] = level

    def stress_level(self, speaker_id: str) -> float:
        return self._stress_levels.get(speaker_id, 0.0)

    def _track_turn(self, characteristics: VoiceCharacteristics, timestamp: float) -> None:
        """A turn ends on a speaker change or after ``turn_gap_seconds`` without
        a confident frame, in which case it ends at its last confident frame."""
        settings = self._config.temporal
        turn = self._open_turn
        lapsed = turn is not None and timestamp - turn.last_confident > settings.turn_gap_seconds
        if lapsed:
            self._save_turn(turn.close(turn.last_confident))
            turn = self._open_turn = None
        if characteristics.confidence > settings.turn_confidence:
            if turn is None or turn.speaker_id != characteristics.speaker_id:
                if turn is not None:
                    self._save_turn(turn.close(timestamp))
                turn = self._open_turn = _OpenTurn(
                    speaker_id=characteristics.speaker_id,
                    start=timestamp,
                    last_confident=timestamp,
                )
            turn.pitches.append(characteristics.pitch)
            turn.loudness.append(characteristics.loudness)
            turn.last_confident = timestamp

    def _save_turn(self, turn: VoiceTurn) -> None:
        self._turns.append(turn)
        logger.debug(
            "Voice turn: %s (%.2fs, avg %.0f Hz)", turn.speaker_id, turn.duration, turn.avg_pitch
        )

    def voice_turns(self, include_open: bool = False) -> List[VoiceTurn]:
        """Completed turns, oldest first; optionally the one still in progress."""
        turns = list(self._turns)
        if include_open and self._open_turn is not None:
            turns.append(self._open_turn.close(self._open_turn.last_confident))
        return turns

    def data_points(self, speaker_id: str) -> int:
        return sum(1 for p in self._history if p.characteristics.speaker_id == speaker_id)

    def diagnose(
        self,
        characteristics: Optional[VoiceCharacteristics],
        window: Sequence[VoiceCharacteristics] = (),
    ) -> List[str]:
        if characteristics is None:
            return ["no voice activity"]
        settings = self._config.temporal
        reasons: List[str] = []
        if characteristics.loudness < settings.low_volume_loudness:
            reasons.append("low volume")
        if _QUALITY_SCORES.get(characteristics.quality, 0.3) < 0.5:
            reasons.append("poor audio quality")
        low, high = settings.unusual_pitch_range
        if characteristics.pitch < low or characteristics.pitch > high:
            reasons.append("unusual pitch range")
        if variance(_voiced_pitches(window)) > settings.unstable_pitch_variance:
            reasons.append("high pitch instability")
        return reasons

    def flag_segment(self, segment: DiarizedSegment) -> Optional[LowConfidenceSegment]:
        """Queue a diarized segment for re-analysis if its evidence was weak."""
        characteristics = segment.characteristics
        if characteristics is not None and characteristics.confidence >= self.threshold:
            return None
        size = self._config.temporal.context_window
        window = [p.characteristics for p in list(self._history)[-size:]]
        flagged = LowConfidenceSegment(
            timestamp=segment.timestamp,
            characteristics=characteristics,
            reasons=tuple(self.diagnose(characteristics, window)),
            text=segment.text,
        )
        self._flagged_segments.append(flagged)
        return flagged

    def low_confidence_frames(self) -> List[LowConfidenceSegment]:
        return [
            LowConfidenceSegment(
                timestamp=p.timestamp,
                characteristics=p.characteristics,
                reasons=tuple(self.diagnose(p.characteristics, p.context_window)),
            )
            for p in self._history
            if p.characteristics.confidence < self.threshold
        ]

    def low_confidence_segments(self) -> List[LowConfidenceSegment]:
        return list(self._flagged_segments)

    def behavioral_pattern(self, speaker_id: str) -> BehavioralPattern:
        entries = [
            p.characteristics
            for p in self._history
            if p.characteristics.speaker_id == speaker_id
        ]
        if not entries:
            return BehavioralPattern(speaker_id, False, False, False, 5)
        mean_loudness = sum(c.loudness for c in entries) / len(entries) / 100.0
        pitch_var = variance(_voiced_pitches(entries))
        stress = self.stress_level(speaker_id)
        engagement = round((mean_loudness + (1.0 - min(pitch_var, 100.0) / 100.0)) * 5)
        return BehavioralPattern(
            speaker_id=speaker_id,
            is_confident=mean_loudness > 0.6 and pitch_var < 30,
            is_hesitant=pitch_var > 60 or mean_loudness < 0.3,
            is_emotional=pitch_var > 80 or stress > 7,
            engagement_level=int(max(0, min(10, engagement))),
        )

    def conversation_dynamics(self) -> ConversationDynamics:
        speakers = [
            p.characteristics.speaker_id
            for p in self._history
            if not p.characteristics.is_silence
        ]
        if not speakers:
            return ConversationDynamics("balanced", None, 0)

        turns = Counter(speakers)
        changes = sum(1 for prev, cur in zip(speakers, speakers[1:]) if prev != cur)
        dominant, max_turns = turns.most_common(1)[0]
        avg_turns = len(speakers) / len(turns)

        pattern = "balanced"
        if len(turns) > 1 and max_turns > avg_turns * 2:
            pattern = "dominated"
        elif changes > len(speakers) * 0.4:
            pattern = "rapid-fire"
        elif changes < len(speakers) * 0.1:
            pattern = "monologue"

        balance = 1.0 - abs(0.5 - max_turns / len(speakers))
        return ConversationDynamics(
            turn_taking_pattern=pattern,
            dominant_speaker=dominant,
            interaction_quality=int(round(balance * 10)),
        )

    def clear(self) -> None:
        self._history.clear()
        self._flagged_segments.clear()
        self._stress_levels.clear()
        self._turns.clear()
        self._open_turn = None
