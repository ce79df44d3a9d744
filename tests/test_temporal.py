import pytest

from voicetrace.config import Config
from voicetrace.models import SILENCE, DiarizedSegment, VoiceCharacteristics, silence
from voicetrace.temporal import TemporalTracker


def _voice(pitch, loudness=30.0, confidence=0.9, quality="good", speaker="male_speaker_1"):
    return VoiceCharacteristics(
        register="male",
        pitch=pitch,
        confidence=confidence,
        loudness=loudness,
        quality=quality,
        speaker_id=speaker,
    )


def test_history_is_capped():
    cfg = Config()
    cfg.temporal.history_limit = 10
    tracker = TemporalTracker(cfg)
    for i in range(25):
        tracker.record(_voice(120.0), float(i))
    history = tracker.history()
    assert len(history) == 10
    assert history[0].timestamp == 15.0


def test_context_window_holds_previous_entries():
    tracker = TemporalTracker(Config())
    for i in range(3):
        tracker.record(_voice(120.0 + i), float(i))
    pattern = tracker.record(_voice(130.0), 3.0)
    assert [c.pitch for c in pattern.context_window] == [120.0, 121.0, 122.0]
    assert pattern.stress is False


def test_steady_voice_is_not_stress():
    tracker = TemporalTracker(Config())
    for i in range(10):
        pattern = tracker.record(_voice(120.0, loudness=30.0), float(i))
    assert pattern.stress is False
    assert tracker.stress_level("male_speaker_1") == 0.0


def test_erratic_pitch_and_volume_is_stress():
    tracker = TemporalTracker(Config())
    flagged = []
    for i in range(12):
        pitch = 100.0 if i % 2 else 200.0
        loudness = 10.0 if i % 2 else 40.0
        flagged.append(tracker.record(_voice(pitch, loudness=loudness), float(i)).stress)
    assert not any(flagged[:5])
    assert all(flagged[5:])
    assert tracker.stress_level("male_speaker_1") == 7.0


def test_erratic_pitch_alone_is_not_stress():
    tracker = TemporalTracker(Config())
    for i in range(8):
        pitch = 100.0 if i % 2 else 200.0
        pattern = tracker.record(_voice(pitch, loudness=30.0), float(i))
    assert pattern.stress is False


def test_diagnose_reasons():
    tracker = TemporalTracker(Config())
    assert tracker.diagnose(None) == ["no voice activity"]
    reasons = tracker.diagnose(_voice(60.0, loudness=3.0, quality="poor"))
    assert reasons == ["low volume", "poor audio quality", "unusual pitch range"]
    window = [_voice(100.0), _voice(150.0), _voice(120.0)]
    assert tracker.diagnose(_voice(120.0), window) == ["high pitch instability"]
    assert tracker.diagnose(_voice(120.0)) == []


def test_low_confidence_frames_use_mode_threshold():
    tracker = TemporalTracker(Config())
    tracker.record(_voice(120.0, confidence=0.9), 0.0)
    tracker.record(_voice(170.0, confidence=0.7), 1.0)
    tracker.record(silence(), 2.0)
    frames = tracker.low_confidence_frames()
    assert [f.timestamp for f in frames] == [1.0, 2.0]

    relayed = TemporalTracker(Config(capture_mode="relayed"))
    relayed.record(_voice(170.0, confidence=0.7), 0.0)
    assert relayed.low_confidence_frames() == []


def test_flag_segment_without_voice():
    tracker = TemporalTracker(Config())
    segment = DiarizedSegment(role="doctor", text="Hello", confidence=0.65, timestamp=1.0)
    flagged = tracker.flag_segment(segment)
    assert flagged.reason == "no voice activity"
    assert flagged.text == "Hello"
    assert tracker.low_confidence_segments() == [flagged]


def test_confident_segment_is_not_flagged():
    tracker = TemporalTracker(Config())
    segment = DiarizedSegment(
        role="doctor", text="Hi", confidence=0.8, timestamp=1.0, characteristics=_voice(120.0)
    )
    assert tracker.flag_segment(segment) is None
    assert tracker.low_confidence_segments() == []


def test_behavioral_pattern_and_dynamics():
    tracker = TemporalTracker(Config())
    for i in range(6):
        tracker.record(_voice(120.0, loudness=80.0), float(i))
    pattern = tracker.behavioral_pattern("male_speaker_1")
    assert pattern.is_confident
    assert not pattern.is_hesitant
    assert 0 <= pattern.engagement_level <= 10

    dynamics = tracker.conversation_dynamics()
    assert dynamics.turn_taking_pattern == "monologue"
    assert dynamics.dominant_speaker == "male_speaker_1"

    unknown = tracker.behavioral_pattern("female_speaker_9")
    assert unknown.engagement_level == 5


def test_clear_resets_everything():
    tracker = TemporalTracker(Config())
    tracker.record(_voice(120.0), 0.0)
    tracker.flag_segment(DiarizedSegment("doctor", "x", 0.6, 0.0))
    tracker.clear()
    assert len(tracker) == 0
    assert tracker.low_confidence_segments() == []
    assert tracker.voice_turns(include_open=True) == []


def test_silence_frames_do_not_get_a_stress_level():
    tracker = TemporalTracker(Config())
    for i in range(6):
        pitch = 100.0 if i % 2 else 200.0
        loudness = 10.0 if i % 2 else 40.0
        tracker.record(_voice(pitch, loudness=loudness), float(i))
    level = tracker.stress_level("male_speaker_1")
    assert level > 0.0
    for i in range(6, 10):
        tracker.record(silence(), float(i))
    assert tracker.stress_level(SILENCE) == 0.0
    assert SILENCE not in tracker._stress_levels
    assert tracker.stress_level("male_speaker_1") == level


def test_voice_turn_closes_on_speaker_change():
    tracker = TemporalTracker(Config())
    for i in range(11):
        tracker.record(_voice(120.0, loudness=30.0), i * 0.1)
    assert tracker.voice_turns() == []
    tracker.record(_voice(210.0, speaker="female_speaker_1"), 1.1)

    turns = tracker.voice_turns()
    assert len(turns) == 1
    turn = turns[0]
    assert turn.speaker_id == "male_speaker_1"
    assert turn.start == 0.0
    assert turn.duration == pytest.approx(1.1)
    assert turn.avg_pitch == pytest.approx(120.0)
    assert turn.avg_loudness == pytest.approx(30.0)
    assert turn.frames == 11

    current = tracker.voice_turns(include_open=True)[-1]
    assert current.speaker_id == "female_speaker_1"
    assert current.start == pytest.approx(1.1)


def test_voice_turn_closes_after_a_gap():
    tracker = TemporalTracker(Config())
    for i in range(6):
        tracker.record(_voice(120.0), i * 0.1)
    tracker.record(_voice(120.0, confidence=0.5), 1.0)
    tracker.record(silence(), 2.0)
    tracker.record(silence(), 2.5)
    assert tracker.voice_turns() == []
    assert len(tracker.voice_turns(include_open=True)) == 1

    tracker.record(silence(), 2.6)
    turns = tracker.voice_turns()
    assert len(turns) == 1
    assert turns[0].duration == pytest.approx(0.5)
    assert turns[0].frames == 6
    assert tracker.voice_turns(include_open=True) == turns


def test_voice_turn_history_is_capped():
    cfg = Config()
    cfg.temporal.turn_history_limit = 3
    tracker = TemporalTracker(cfg)
    for i in range(6):
        speaker = "male_speaker_1" if i % 2 == 0 else "female_speaker_1"
        tracker.record(_voice(120.0, speaker=speaker), float(i))
    turns = tracker.voice_turns()
    assert [t.start for t in turns] == [2.0, 3.0, 4.0]
    assert [t.speaker_id for t in turns] == [
        "male_speaker_1",
        "female_speaker_1",
        "male_speaker_1",
    ]


def test_data_points_count_history_entries_per_speaker():
    tracker = TemporalTracker(Config())
    for i in range(4):
        tracker.record(_voice(120.0), float(i))
    tracker.record(_voice(210.0, speaker="female_speaker_1"), 4.0)
    tracker.record(silence(), 5.0)
    assert tracker.data_points("male_speaker_1") == 4
    assert tracker.data_points("female_speaker_1") == 1
    assert tracker.data_points("female_speaker_9") == 0


def test_same_speaker_after_long_pause_starts_a_new_turn():
    tracker = TemporalTracker(Config())
    tracker.record(_voice(120.0), 0.0)
    tracker.record(_voice(120.0), 0.5)
    tracker.record(_voice(121.0), 5.0)
    turns = tracker.voice_turns(include_open=True)
    assert [(t.start, t.duration) for t in turns] == [(0.0, 0.5), (5.0, 0.0)]
