"""Data models for voicetrace."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

REGISTER_MALE = "male"
REGISTER_FEMALE = "female"
REGISTER_UNKNOWN = "unknown"

QUALITY_TIERS = ("excellent", "good", "fair", "poor")

SILENCE = "silence"


@dataclass(frozen=True)
class FrameFeatures:
    pitch: float
    loudness: float
    voice_active: bool


@dataclass(frozen=True)
class VoiceCharacteristics:
    register: str
    pitch: float
    confidence: float
    loudness: float
    quality: str
    speaker_id: str
    spectral_centroid: float = 0.0

    @property
    def is_silence(self) -> bool:
        return self.speaker_id == SILENCE


def silence(loudness: float = 0.0) -> VoiceCharacteristics:
    return VoiceCharacteristics(
        register=REGISTER_UNKNOWN,
        pitch=0.0,
        confidence=0.0,
        loudness=loudness,
        quality="poor",
        speaker_id=SILENCE,
    )


@dataclass
class SpeakerProfile:
    speaker_id: str
    register: str
    avg_pitch: float
    pitch_range: List[float]
    quality: str = "unknown"
    sample_count: int = 1
    last_seen: float = 0.0
    spectral_centroid: float = 0.0


@dataclass(frozen=True)
class TemporalPattern:
    timestamp: float
    characteristics: VoiceCharacteristics
    context_window: Tuple[VoiceCharacteristics, ...]
    pitch_variance: float = 0.0
    loudness_variance: float = 0.0
    stress: bool = False


@dataclass(frozen=True)
class LowConfidenceSegment:
    timestamp: float
    characteristics: Optional[VoiceCharacteristics]
    reasons: Tuple[str, ...]
    text: Optional[str] = None

    @property
    def reason(self) -> str:
        return ", ".join(self.reasons) if self.reasons else "unknown factor"


@dataclass
class RoleSignature:
    role: str
    avg_pitch: float
    pitch_range: List[float]
    register: str
    quality: str
    volume_pattern: List[float] = field(default_factory=list)
    confidence: float = 0.0
    sample_count: int = 1
    last_updated: float = 0.0


@dataclass(frozen=True)
class DiarizedSegment:
    role: str
    text: str
    confidence: float
    timestamp: float
    characteristics: Optional[VoiceCharacteristics] = None


@dataclass(frozen=True)
class SpeakerStats:
    speaker_id: str
    register: str
    avg_pitch: int
    pitch_range: Tuple[int, int]
    samples: int
    last_seen: float
    stress_level: float = 0.0


@dataclass(frozen=True)
class ProfileDump:
    speakers: Tuple[SpeakerStats, ...]

    def by_id(self) -> Dict[str, SpeakerStats]:
        return {s.speaker_id: s for s in self.speakers}


@dataclass(frozen=True)
class RealtimeMetrics:
    characteristics: VoiceCharacteristics
    stress: bool
    frames_processed: int
    voiced_frames: int
    paused: bool


@dataclass(frozen=True)
class DiagnosticReport:
    threshold: float
    segments: Tuple[LowConfidenceSegment, ...]


@dataclass(frozen=True)
class DiarizationStats:
    total_segments: int
    segments_by_role: Dict[str, int]
    avg_confidence_by_role: Dict[str, float]
    signatures: Dict[str, Optional[RoleSignature]]


@dataclass(frozen=True)
class BehavioralPattern:
    speaker_id: str
    is_confident: bool
    is_hesitant: bool
    is_emotional: bool
    engagement_level: int


@dataclass(frozen=True)
class ConversationDynamics:
    turn_taking_pattern: str
    dominant_speaker: Optional[str]
    interaction_quality: int


@dataclass(frozen=True)
class VoiceTurn:
    """One stretch of confident frames from a single speaker."""

    speaker_id: str
    start: float
    duration: float
    avg_pitch: float
    avg_loudness: float
    frames: int


@dataclass(frozen=True)
class SpeakerAnalytics:
    stats: SpeakerStats
    behavioral: BehavioralPattern
    temporal_data_points: int
