import threading
import time

import numpy as np
import pytest

from voicetrace.config import Config
from voicetrace.session import AnalysisSession, FrameWorker

RATE = 44100


def _sine(freq, size=4096, amplitude=0.3):
    t = np.arange(size) / float(RATE)
    return amplitude * np.sin(2 * np.pi * freq * t)


def _session(**overrides):
    return AnalysisSession(Config(**overrides), sample_rate_hz=RATE, session_id="test")


def test_silent_session_flags_every_segment():
    session = _session()
    for i in range(10):
        result = session.analyze_frame(np.zeros(4096), i * 0.1)
        assert result.is_silence
    session.submit_segment("Hello there", 1.0)
    session.submit_segment("How are you feeling?", 4.0)

    report = session.diagnostics()
    assert len(report.segments) == 2
    assert all(s.reason == "no voice activity" for s in report.segments)
    assert len(session.profile_dump().speakers) == 0
    assert session.realtime_metrics().voiced_frames == 0


def test_voiced_frames_build_a_profile():
    session = _session()
    for i in range(6):
        characteristics = session.analyze_frame(_sine(120.0), i * 0.1)
    assert characteristics.register == "male"
    assert characteristics.speaker_id == "male_speaker_1"
    assert characteristics.pitch == pytest.approx(120.0, rel=0.03)

    dump = session.profile_dump()
    stats = dump.by_id()["male_speaker_1"]
    assert stats.samples == 6
    assert stats.avg_pitch == pytest.approx(120, abs=4)
    metrics = session.realtime_metrics()
    assert metrics.frames_processed == 6
    assert metrics.voiced_frames == 6


def test_segment_attaches_recent_characteristics():
    session = _session()
    session.analyze_frame(_sine(120.0), 1.0)
    near = session.submit_segment("How are you feeling?", 2.0)
    far = session.submit_segment("Okay", 9.0)
    assert near.characteristics is not None
    assert near.characteristics.speaker_id == "male_speaker_1"
    assert far.characteristics is None


def test_pause_and_resume_keep_profiles():
    session = _session()
    session.analyze_frame(_sine(120.0), 0.0)
    session.pause()
    assert session.analyze_frame(_sine(220.0), 0.1) is None
    assert session.realtime_metrics().paused
    assert session.realtime_metrics().frames_processed == 1
    session.resume()
    again = session.analyze_frame(_sine(121.0), 0.2)
    assert again.speaker_id == "male_speaker_1"
    assert len(session.profile_dump().speakers) == 1


def test_closed_session_rejects_work():
    session = _session()
    session.analyze_frame(_sine(120.0), 0.0)
    session.close()
    assert session.closed
    with pytest.raises(RuntimeError):
        session.analyze_frame(_sine(120.0), 0.1)
    with pytest.raises(RuntimeError):
        session.submit_segment("Hello", 0.2)
    assert session.profile_dump().speakers == ()


def test_sessions_do_not_share_state():
    first = _session()
    second = _session()
    first.analyze_frame(_sine(120.0), 0.0)
    assert len(second.profile_dump().speakers) == 0


def test_export_includes_profiles_and_segments():
    session = _session()
    session.analyze_frame(_sine(120.0), 0.0)
    session.submit_segment("How are you feeling?", 0.5)
    data = session.export()
    assert data["session_id"] == "test"
    assert data["capture_mode"] == "direct"
    assert data["profiles"][0]["speaker_id"] == "male_speaker_1"
    assert len(data["segments"]) == 1
    assert session.transcript().startswith("Doctor: ")


def test_worker_drops_frames_when_queue_is_full():
    session = _session(queue_size=1)
    worker = FrameWorker(session)
    assert worker.submit_frame(np.zeros(4096), 0.0)
    assert not worker.submit_frame(np.zeros(4096), 0.1)
    assert not worker.submit_frame(np.zeros(4096), 0.2)
    assert worker.dropped_frames == 2


def test_worker_discards_frames_while_paused():
    session = _session()
    worker = FrameWorker(session)
    session.pause()
    assert not worker.submit_frame(np.zeros(4096), 0.0)
    assert worker.dropped_frames == 0


def test_worker_stop_drains_frames_and_segments():
    session = _session()
    seen = []
    segments = []
    worker = FrameWorker(
        session, on_characteristics=seen.append, on_segment=segments.append
    )
    worker.start()
    for i in range(5):
        assert worker.submit_frame(_sine(120.0), i * 0.1)
    worker.submit_segment("How are you feeling?", 0.6)
    worker.stop(timeout=10.0)

    assert not worker.running
    assert len(seen) == 5
    assert len(segments) == 1
    assert session.realtime_metrics().frames_processed == 5


def test_worker_cannot_start_twice():
    worker = FrameWorker(_session())
    worker.start()
    try:
        with pytest.raises(RuntimeError):
            worker.start()
    finally:
        worker.stop(timeout=10.0)


def test_worker_survives_callback_errors():
    session = _session()

    def _boom(_characteristics):
        raise ValueError("display failed")

    worker = FrameWorker(session, on_characteristics=_boom)
    worker.start()
    worker.submit_frame(_sine(120.0), 0.0)
    worker.submit_frame(_sine(120.0), 0.1)
    worker.stop(timeout=10.0)
    assert session.realtime_metrics().frames_processed == 2


def _consultation(session):
    results = []
    for i in range(10):
        results.append(session.analyze_frame(_sine(120.0), i * 0.1))
    first = session.submit_segment("How are you feeling today?", 1.0)
    for i in range(10):
        results.append(session.analyze_frame(_sine(230.0), 3.0 + i * 0.1))
    second = session.submit_segment("I have chest pain", 4.0)
    return results, [first, second]


def test_two_voice_consultation_is_labelled_by_role():
    session = _session()
    frames, (first, second) = _consultation(session)

    assert first.role == "doctor"
    assert first.confidence == pytest.approx(0.68)
    assert first.characteristics.register == "male"
    assert second.role == "patient"
    assert second.confidence == pytest.approx(0.74)
    assert second.characteristics.register == "female"
    assert first.characteristics.speaker_id != second.characteristics.speaker_id
    assert session.transcript() == "Doctor: How are you feeling today?\n\nPatient: I have chest pain"
    assert session.diagnostics().segments == ()

    stats = session.statistics()
    assert stats.segments_by_role == {"doctor": 1, "patient": 1}
    assert stats.signatures["doctor"].avg_pitch == pytest.approx(120.0, rel=0.03)
    assert stats.signatures["patient"].avg_pitch == pytest.approx(230.0, rel=0.03)


def test_same_input_gives_same_labels():
    runs = []
    for _ in range(2):
        frames, segments = _consultation(_session())
        runs.append(
            (
                [(c.speaker_id, c.confidence) for c in frames],
                [(s.role, s.confidence) for s in segments],
            )
        )
    assert runs[0] == runs[1]


def test_analytics_join_profiles_and_behavior():
    session = _session()
    for i in range(6):
        session.analyze_frame(_sine(120.0), i * 0.1)
    session.analyze_frame(np.zeros(4096), 0.6)

    entry = session.speaker_analytics("male_speaker_1")
    assert entry.stats.samples == 6
    assert entry.behavioral.speaker_id == "male_speaker_1"
    assert entry.temporal_data_points == 6
    assert session.speaker_analytics("female_speaker_1") is None
    assert [a.stats.speaker_id for a in session.analytics()] == ["male_speaker_1"]

    dynamics = session.conversation_dynamics()
    assert dynamics.dominant_speaker == "male_speaker_1"
    assert session.voice_turns() == []
    open_turn = session.voice_turns(include_open=True)[0]
    assert open_turn.speaker_id == "male_speaker_1"
    assert open_turn.frames == 6


def test_export_includes_dynamics_and_voice_turns():
    session = _session()
    _consultation(session)
    data = session.export()
    assert data["dynamics"]["turn_taking_pattern"] in (
        "balanced",
        "dominated",
        "rapid-fire",
        "monologue",
    )
    turns = data["voice_turns"]
    assert len(turns) == 1
    assert turns[0]["speaker_id"] == "male_speaker_1"
    assert turns[0]["start"] == 0.0
    assert turns[0]["duration"] == pytest.approx(0.9)


def test_worker_stop_returns_when_queue_stays_full():
    session = _session(queue_size=1)
    started = threading.Event()
    release = threading.Event()

    def _slow(_characteristics):
        started.set()
        release.wait(10.0)

    worker = FrameWorker(session, on_characteristics=_slow)
    worker.start()
    try:
        assert worker.submit_frame(_sine(120.0), 0.0)
        assert started.wait(10.0)
        assert worker.submit_frame(_sine(120.0), 0.1)

        began = time.monotonic()
        worker.stop(timeout=0.5)
        assert time.monotonic() - began < 5.0
        assert worker.running
    finally:
        release.set()
        worker.stop(timeout=10.0)
    assert not worker.running
    assert session.realtime_metrics().frames_processed == 2


def test_worker_rejects_segments_after_stop():
    session = _session()
    segments = []
    worker = FrameWorker(session, on_segment=segments.append)
    worker.start()
    worker.stop(timeout=10.0)
    assert worker.submit_segment("Anything else?", 5.0) is False
    assert segments == []
    assert session.segments() == []
