"""Markdown session report rendering."""

from __future__ import annotations

from typing import List, Optional

from .models import (
    ConversationDynamics,
    DiarizedSegment,
    LowConfidenceSegment,
    ProfileDump,
    SpeakerAnalytics,
    VoiceTurn,
)


def _yaml_quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f"\"{escaped}\""


def _clean_text(value: str) -> str:
    return " ".join(value.split())


def _format_stamp(seconds: float) -> str:
    mins, secs = divmod(max(0.0, seconds), 60.0)
    return f"{int(mins):02d}:{secs:05.2f}"


def _speaker_table(profiles: ProfileDump) -> List[str]:
    lines = [
        "| Speaker | Register | Avg pitch (Hz) | Range (Hz) | Samples | Stress |",
        "| --- | --- | --- | --- | --- | --- |",
    ]
    for stats in profiles.speakers:
        lo, hi = stats.pitch_range
        lines.append(
            f"| {stats.speaker_id} | {stats.register} | {stats.avg_pitch} "
            f"| {lo}-{hi} | {stats.samples} | {stats.stress_level:.1f} |"
        )
    return lines


def _low_confidence_lines(items: List[LowConfidenceSegment]) -> List[str]:
    lines = []
    for item in items:
        confidence = (
            f"{item.characteristics.confidence:.2f}" if item.characteristics else "n/a"
        )
        text = f" \"{_clean_text(item.text)}\"" if item.text else ""
        lines.append(
            f"- [{_format_stamp(item.timestamp)}] confidence {confidence}: "
            f"{item.reason}{text}"
        )
    return lines


def _analytics_table(items: List[SpeakerAnalytics]) -> List[str]:
    lines = [
        "| Speaker | Confident | Hesitant | Emotional | Engagement | Data points |",
        "| --- | --- | --- | --- | --- | --- |",
    ]
    for item in items:
        behavior = item.behavioral
        flags = [
            "yes" if flag else "no"
            for flag in (behavior.is_confident, behavior.is_hesitant, behavior.is_emotional)
        ]
        lines.append(
            f"| {item.stats.speaker_id} | {' | '.join(flags)} "
            f"| {behavior.engagement_level}/10 | {item.temporal_data_points} |"
        )
    return lines


def _turn_lines(turns: List[VoiceTurn]) -> List[str]:
    return [
        f"- [{_format_stamp(turn.start)}] {turn.speaker_id} for {turn.duration:.1f}s "
        f"(avg {turn.avg_pitch:.0f} Hz, loudness {turn.avg_loudness:.0f})"
        for turn in turns
    ]


def render_report(
    title: str,
    date: str,
    capture_mode: str,
    sample_rate_hz: int,
    segments: List[DiarizedSegment],
    transcript: str,
    profiles: ProfileDump,
    low_confidence: Optional[List[LowConfidenceSegment]] = None,
    audio_filename: Optional[str] = None,
    duration_seconds: Optional[float] = None,
    role_labels: Optional[dict] = None,
    analytics: Optional[List[SpeakerAnalytics]] = None,
    dynamics: Optional[ConversationDynamics] = None,
    voice_turns: Optional[List[VoiceTurn]] = None,
) -> str:
    lines: List[str] = []
    lines.append("---")
    lines.append("schema: 1")
    lines.append(f"title: {_yaml_quote(title)}")
    lines.append(f"date: {_yaml_quote(date)}")
    if audio_filename:
        lines.append(f"audio: {_yaml_quote(audio_filename)}")
    if duration_seconds is not None:
        lines.append(f"duration_seconds: {duration_seconds:.1f}")
    lines.append(f"capture_mode: {_yaml_quote(capture_mode)}")
    lines.append(f"sample_rate_hz: {sample_rate_hz}")
    lines.append(f"segments: {len(segments)}")
    lines.append(f"speakers: {len(profiles.speakers)}")
    lines.append("---")
    lines.append("")
    lines.append(f"# {_clean_text(title)}")
    lines.append("")

    lines.append("## Speakers")
    lines.append("")
    if profiles.speakers:
        lines.extend(_speaker_table(profiles))
    else:
        lines.append("No voiced audio detected.")
    lines.append("")

    if analytics:
        lines.append("## Speaker Analytics")
        lines.append("")
        lines.extend(_analytics_table(analytics))
        lines.append("")

    if dynamics is not None and dynamics.dominant_speaker:
        lines.append("## Conversation")
        lines.append("")
        lines.append(f"- Turn taking: {dynamics.turn_taking_pattern}")
        lines.append(f"- Dominant speaker: {dynamics.dominant_speaker}")
        lines.append(f"- Interaction quality: {dynamics.interaction_quality}/10")
        lines.append("")

    if voice_turns:
        lines.append("## Voice Turns")
        lines.append("")
        lines.extend(_turn_lines(voice_turns))
        lines.append("")

    lines.append("## Transcript")
    lines.append("")
    if transcript:
        lines.append(transcript)
    else:
        lines.append("No transcript segments.")
    lines.append("")

    if segments:
        labels = role_labels or {}
        lines.append("## Timeline")
        lines.append("")
        for seg in segments:
            label = labels.get(seg.role, seg.role)
            lines.append(
                f"[{_format_stamp(seg.timestamp)}] {label} "
                f"({seg.confidence:.2f}): {_clean_text(seg.text)}"
            )
        lines.append("")

    if low_confidence:
        lines.append("## Low Confidence")
        lines.append("")
        lines.extend(_low_confidence_lines(low_confidence))
        lines.append("")
    return "\n".join(lines)
