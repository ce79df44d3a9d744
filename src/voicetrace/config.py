"""Configuration handling."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional, Tuple

import yaml

MODE_DIRECT = "direct"
MODE_RELAYED = "relayed"
CAPTURE_MODES = (MODE_DIRECT, MODE_RELAYED)

MODE_ALIASES = {
    "mic": MODE_DIRECT,
    "microphone": MODE_DIRECT,
    "system": MODE_RELAYED,
    "loopback": MODE_RELAYED,
    "playback": MODE_RELAYED,
    "degraded": MODE_RELAYED,
}


def normalize_mode(mode: Optional[str]) -> str:
    value = (mode or MODE_DIRECT).strip().lower()
    value = MODE_ALIASES.get(value, value)
    if value not in CAPTURE_MODES:
        raise ValueError(f"Unknown capture mode: {mode!r}")
    return value


@dataclass
class ModeThresholds:
    """Heuristic thresholds that depend on how the audio was captured."""

    voice_activity_floor: float = 2.0
    male_band: Tuple[float, float] = (85.0, 180.0)
    female_band: Tuple[float, float] = (165.0, 255.0)
    deep_band_margin: float = 10.0
    confidence_multiplier: float = 1.0
    pitch_match_delta: float = 20.0
    range_slack: float = 10.0
    low_confidence_threshold: float = 0.75

    @property
    def overlap_zone(self) -> Tuple[float, float]:
        return (self.female_band[0], self.male_band[1])


def default_modes() -> Dict[str, ModeThresholds]:
    return {
        MODE_DIRECT: ModeThresholds(),
        MODE_RELAYED: ModeThresholds(
            voice_activity_floor=1.0,
            male_band=(65.0, 210.0),
            female_band=(140.0, 380.0),
            confidence_multiplier=0.9,
            pitch_match_delta=25.0,
            low_confidence_threshold=0.65,
        ),
    }


@dataclass
class PitchConfig:
    min_hz: float = 50.0
    max_hz: float = 800.0
    min_score: float = 0.1
    max_correlation_samples: int = 4000
    octave_tolerance: float = 0.9


@dataclass
class QualityConfig:
    loudness_tiers: List[Tuple[float, float]] = field(
        default_factory=lambda: [(20.0, 40.0), (10.0, 25.0), (5.0, 10.0)]
    )
    stability_points: float = 30.0
    clarity_points: float = 30.0
    clarity_amplitude: float = 0.02
    excellent: float = 80.0
    good: float = 60.0
    fair: float = 40.0


@dataclass
class ProfileConfig:
    smoothing_weight: float = 0.15
    initial_half_width: float = 15.0
    range_growth: float = 5.0
    centroid_gate_hz: Optional[float] = None


@dataclass
class TemporalConfig:
    context_window: int = 5
    history_limit: int = 1000
    stress_pitch_variance: float = 50.0
    stress_volume_variance: float = 4.0
    low_volume_loudness: float = 5.0
    unusual_pitch_range: Tuple[float, float] = (80.0, 400.0)
    unstable_pitch_variance: float = 100.0
    turn_confidence: float = 0.6
    turn_gap_seconds: float = 2.0
    turn_history_limit: int = 100


DEFAULT_CLINICIAN_TERMS = [
    "how are you feeling",
    "symptom",
    "diagnosis",
    "treatment",
    "prescription",
    "prescribe",
    "medical",
    "condition",
    "history",
    "exam",
    "assessment",
    "plan",
    "medication",
    "dose",
    "mg",
    "ml",
    "blood pressure",
    "temperature",
    "chronic",
    "acute",
    "therapy",
    "follow-up",
    "lab",
    "allergies",
    "any other",
    "let's",
]

DEFAULT_PATIENT_TERMS = [
    "i have",
    "i feel",
    "i've been",
    "i am",
    "i'm",
    "my",
    "pain",
    "hurts",
    "ache",
    "chest",
    "tired",
    "dizzy",
    "since",
    "worried",
    "can't sleep",
]


@dataclass
class DiarizationConfig:
    role_a: str = "doctor"
    role_b: str = "patient"
    role_labels: Dict[str, str] = field(
        default_factory=lambda: {"doctor": "Doctor", "patient": "Patient"}
    )
    switch_silence_seconds: float = 2.0
    voice_confidence_floor: float = 0.5
    profile_match_floor: float = 0.6
    trust_match_score: float = 0.7
    pitch_difference_hz: float = 40.0
    pitch_weight: float = 0.5
    register_weight: float = 0.3
    quality_weight: float = 0.2
    signature_smoothing: float = 0.2
    volume_pattern_size: int = 20
    flow_window: int = 5
    lexical_hit_cap: int = 5
    characteristics_max_age: float = 3.0
    clinician_terms: List[str] = field(
        default_factory=lambda: list(DEFAULT_CLINICIAN_TERMS)
    )
    patient_terms: List[str] = field(default_factory=lambda: list(DEFAULT_PATIENT_TERMS))


@dataclass
class Config:
    capture_mode: str = MODE_DIRECT
    sample_rate_hz: int = 44100
    frame_size: int = 4096
    queue_size: int = 50
    log_dir: str = "logs"
    debug_logging: bool = False
    pitch: PitchConfig = field(default_factory=PitchConfig)
    quality: QualityConfig = field(default_factory=QualityConfig)
    profiles: ProfileConfig = field(default_factory=ProfileConfig)
    temporal: TemporalConfig = field(default_factory=TemporalConfig)
    diarization: DiarizationConfig = field(default_factory=DiarizationConfig)
    modes: Dict[str, ModeThresholds] = field(default_factory=default_modes)

    def __post_init__(self) -> None:
        self.capture_mode = normalize_mode(self.capture_mode)
        if self.sample_rate_hz <= 0:
            raise ValueError("sample_rate_hz must be > 0.")
        if self.frame_size <= 0:
            raise ValueError("frame_size must be > 0.")

    @property
    def thresholds(self) -> ModeThresholds:
        return self.modes[self.capture_mode]


def config_for_mode(mode: str, **overrides) -> Config:
    return Config(capture_mode=mode, **overrides)


def _tuple_fields(data: dict, names: Tuple[str, ...]) -> dict:
    out = dict(data)
    for name in names:
        if name in out and out[name] is not None:
            out[name] = tuple(out[name])
    return out


def _load_modes(raw: dict) -> Dict[str, ModeThresholds]:
    modes = default_modes()
    for name, values in (raw or {}).items():
        key = normalize_mode(name)
        base = asdict(modes[key])
        base.update(values or {})
        modes[key] = ModeThresholds(
            **_tuple_fields(base, ("male_band", "female_band"))
        )
    return modes


def load_config(path: str) -> Config:
    with open(path, "r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}

    quality = dict(data.get("quality", {}))
    if "loudness_tiers" in quality:
        quality["loudness_tiers"] = [tuple(t) for t in quality["loudness_tiers"]]
    temporal = _tuple_fields(data.get("temporal", {}), ("unusual_pitch_range",))

    return Config(
        capture_mode=data.get("capture_mode", MODE_DIRECT),
        sample_rate_hz=int(data.get("sample_rate_hz", 44100)),
        frame_size=int(data.get("frame_size", 4096)),
        queue_size=int(data.get("queue_size", 50)),
        log_dir=data.get("log_dir", "logs"),
        debug_logging=bool(data.get("debug_logging", False)),
        pitch=PitchConfig(**data.get("pitch", {})),
        quality=QualityConfig(**quality),
        profiles=ProfileConfig(**data.get("profiles", {})),
        temporal=TemporalConfig(**temporal),
        diarization=DiarizationConfig(**data.get("diarization", {})),
        modes=_load_modes(data.get("modes", {})),
    )


def _plain(value):
    if isinstance(value, tuple):
        return [_plain(v) for v in value]
    if isinstance(value, list):
        return [_plain(v) for v in value]
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    return value


def save_config(path: str, config: Config) -> None:
    data = _plain(asdict(config))
    with open(path, "w", encoding="utf-8") as handle:
        yaml.safe_dump(data, handle, sort_keys=False)
