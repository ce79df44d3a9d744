"""Role diarization by fusing voice, timing, lexical and flow evidence."""

from __future__ import annotations

import logging
import re
from dataclasses import asdict, replace
from typing import Dict, List, Optional, Sequence, Tuple

from .audio_utils import smooth
from .config import Config
from .models import DiarizationStats, DiarizedSegment, RoleSignature, VoiceCharacteristics

logger = logging.getLogger("voicetrace")


def _term_pattern(term: str) -> "re.Pattern[str]":
    return re.compile(r"(?<!\w)" + re.escape(term.strip().lower()) + r"(?!\w)")


def count_terms(text: str, terms: Sequence[str]) -> int:
    lowered = (text or "").lower()
    return sum(1 for term in terms if term.strip() and _term_pattern(term).search(lowered))


class FusionEngine:
    """Two-role diarization state machine.

    ``current_role`` is only a running bias: each finalized segment is
    labelled from its own evidence, falling back on the bias when the
    evidence is weak.
    """

    def __init__(self, config: Config) -> None:
        self._config = config
        settings = config.diarization
        self.role_a = settings.role_a
        self.role_b = settings.role_b
        self.reset()

    def reset(self) -> None:
        self.current_role = self.role_a
        self._last_timestamp: Optional[float] = None
        self._signatures: Dict[str, Optional[RoleSignature]] = {
            self.role_a: None,
            self.role_b: None,
        }
        self._segments: List[DiarizedSegment] = []

    def other(self, role: str) -> str:
        return self.role_b if role == self.role_a else self.role_a

    @property
    def segments(self) -> List[DiarizedSegment]:
        return list(self._segments)

    def signature(self, role: str) -> Optional[RoleSignature]:
        sig = self._signatures.get(role)
        if sig is None:
            return None
        return replace(
            sig, pitch_range=list(sig.pitch_range), volume_pattern=list(sig.volume_pattern)
        )

    # -- evidence -----------------------------------------------------------

    def match_score(self, voice: VoiceCharacteristics, role: str) -> float:
        """Weighted pitch/register/quality agreement with a role's signature."""
        sig = self._signatures.get(role)
        if sig is None or voice.pitch <= 0:
            return 0.0
        settings = self._config.diarization
        pitch_diff = abs(voice.pitch - sig.avg_pitch)
        pitch_close = max(0.0, 1.0 - pitch_diff / settings.pitch_difference_hz)
        weights = (settings.pitch_weight, settings.register_weight, settings.quality_weight)
        score = (
            weights[0] * pitch_close
            + weights[1] * (1.0 if voice.register == sig.register else 0.0)
            + weights[2] * (1.0 if voice.quality == sig.quality else 0.0)
        ) / sum(weights)
        return min(score * voice.confidence, 1.0)

    def voice_match(
        self, voice: Optional[VoiceCharacteristics]
    ) -> Tuple[float, Optional[str]]:
        settings = self._config.diarization
        if voice is None or voice.confidence <= settings.voice_confidence_floor:
            return 0.0, None
        score_a = self.match_score(voice, self.role_a)
        score_b = self.match_score(voice, self.role_b)
        if score_a > score_b and score_a > settings.profile_match_floor:
            return score_a, self.role_a
        if score_b > settings.profile_match_floor:
            return score_b, self.role_b
        return 0.0, None

    def lexical_score(self, text: str, role: str) -> float:
        settings = self._config.diarization
        terms = settings.clinician_terms if role == self.role_a else settings.patient_terms
        return min(count_terms(text, terms) / float(settings.lexical_hit_cap), 1.0)

    def flow_score(self) -> float:
        """Continuity over the recent segments: 1.0 is a monologue."""
        if len(self._segments) < 3:
            return 0.5
        recent = self._segments[-self._config.diarization.flow_window :]
        alternations = sum(
            1 for prev, cur in zip(recent, recent[1:]) if prev.role != cur.role
        )
        return 1.0 - alternations / (len(recent) - 1)

    # -- decision -----------------------------------------------------------

    def decide(
        self,
        text: str,
        voice: Optional[VoiceCharacteristics],
        timestamp: float,
    ) -> Tuple[str, float]:
        settings = self._config.diarization
        match_score, matched_role = self.voice_match(voice)
        if matched_role is not None and match_score > settings.trust_match_score:
            return matched_role, match_score

        if self._last_timestamp is None:
            # opening segment: no turn to switch from, vocabulary picks the role
            lex_a = self.lexical_score(text, self.role_a)
            lex_b = self.lexical_score(text, self.role_b)
            role = self.role_b if lex_b > lex_a else self.role_a
            lexical = max(lex_a, lex_b)
            return role, 0.65 + match_score * 0.2 + lexical * 0.15

        elapsed = timestamp - self._last_timestamp
        if elapsed > settings.switch_silence_seconds:
            role = self.other(self.current_role)
            lexical = self.lexical_score(text, role)
            return role, 0.65 + match_score * 0.2 + lexical * 0.15

        flow = self.flow_score()
        return self.current_role, 0.55 + match_score * 0.25 + flow * 0.2

    def process_segment(
        self,
        text: str,
        characteristics: Optional[VoiceCharacteristics],
        timestamp: float,
    ) -> DiarizedSegment:
        role, confidence = self.decide(text, characteristics, timestamp)
        confidence = max(0.0, min(1.0, confidence))
        segment = DiarizedSegment(
            role=role,
            text=text,
            confidence=confidence,
            timestamp=timestamp,
            characteristics=replace(characteristics) if characteristics else None,
        )
        if characteristics is not None and characteristics.pitch > 0:
            self._update_signature(role, characteristics, timestamp)

        elapsed = (
            timestamp - self._last_timestamp if self._last_timestamp is not None else None
        )
        self._segments.append(segment)
        self.current_role = role
        self._last_timestamp = timestamp
        logger.debug(
            "Diarization: %s (confidence %.2f, pitch %s, since last %s)",
            role,
            confidence,
            f"{characteristics.pitch:.0f}" if characteristics else "-",
            f"{elapsed:.2f}s" if elapsed is not None else "-",
        )
        return segment

    def _update_signature(
        self, role: str, voice: VoiceCharacteristics, timestamp: float
    ) -> None:
        settings = self._config.diarization
        sig = self._signatures.get(role)
        if sig is None:
            self._signatures[role] = RoleSignature(
                role=role,
                avg_pitch=voice.pitch,
                pitch_range=[voice.pitch - 10.0, voice.pitch + 10.0],
                register=voice.register,
                quality=voice.quality,
                volume_pattern=[voice.loudness],
                confidence=voice.confidence,
                sample_count=1,
                last_updated=timestamp,
            )
            logger.info(
                "New %s signature: %.0f Hz (%s)", role, voice.pitch, voice.register
            )
            return

        sig.avg_pitch = smooth(sig.avg_pitch, voice.pitch, settings.signature_smoothing)
        sig.pitch_range = [
            min(sig.pitch_range[0], voice.pitch),
            max(sig.pitch_range[1], voice.pitch),
        ]
        sig.quality = voice.quality
        sig.volume_pattern.append(voice.loudness)
        del sig.volume_pattern[: -settings.volume_pattern_size]
        sig.sample_count += 1
        sig.confidence = min(sig.confidence + 0.01, 0.95)
        sig.last_updated = timestamp

    # -- read paths ---------------------------------------------------------

    def label(self, role: str) -> str:
        labels = self._config.diarization.role_labels
        return labels.get(role, role.capitalize())

    def formatted_transcript(self) -> str:
        """Consecutive same-role segments grouped into ``Label: text`` blocks."""
        blocks: List[str] = []
        current: Optional[str] = None
        parts: List[str] = []
        for segment in self._segments:
            if segment.role != current:
                if parts and current:
                    blocks.append(f"{self.label(current)}: {' '.join(parts)}")
                parts = []
                current = segment.role
            text = segment.text.strip()
            if text:
                parts.append(text)
        if parts and current:
            blocks.append(f"{self.label(current)}: {' '.join(parts)}")
        return "\n\n".join(blocks)

    def statistics(self) -> DiarizationStats:
        counts: Dict[str, int] = {}
        averages: Dict[str, float] = {}
        for role in (self.role_a, self.role_b):
            confidences = [s.confidence for s in self._segments if s.role == role]
            counts[role] = len(confidences)
            averages[role] = sum(confidences) / max(len(confidences), 1)
        return DiarizationStats(
            total_segments=len(self._segments),
            segments_by_role=counts,
            avg_confidence_by_role=averages,
            signatures={role: self.signature(role) for role in (self.role_a, self.role_b)},
        )

    def export(self) -> dict:
        stats = self.statistics()
        return {
            "signatures": {
                role: asdict(sig) if sig else None for role, sig in stats.signatures.items()
            },
            "segments": [asdict(s) for s in self._segments],
            "statistics": {
                "total_segments": stats.total_segments,
                "segments_by_role": dict(stats.segments_by_role),
                "avg_confidence_by_role": dict(stats.avg_confidence_by_role),
            },
        }
