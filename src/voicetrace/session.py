"""Per-session analysis context and its processing thread."""

from __future__ import annotations

import logging
import queue
import threading
import time
import uuid
from typing import Callable, List, Optional

from .classifier import assess_quality, classify_register
from .config import Config
from .diarizer import FusionEngine
from .features import extract_features, spectral_centroid
from .models import (
    DiagnosticReport,
    ConversationDynamics,
    DiarizationStats,
    DiarizedSegment,
    LowConfidenceSegment,
    ProfileDump,
    RealtimeMetrics,
    REGISTER_MALE,
    REGISTER_UNKNOWN,
    SpeakerAnalytics,
    SpeakerStats,
    VoiceCharacteristics,
    VoiceTurn,
    silence,
)
from .profiles import SpeakerRegistry
from .temporal import TemporalTracker

logger = logging.getLogger("voicetrace")

_STOP = object()


class AnalysisSession:
    """Everything one recording session owns.

    Created when recording starts and closed when it ends; nothing is
    shared between sessions. All public methods take the session lock,
    so frames and transcript segments may arrive from different threads.
    """

    def __init__(
        self,
        config: Config,
        sample_rate_hz: Optional[int] = None,
        session_id: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self.sample_rate_hz = int(sample_rate_hz or config.sample_rate_hz)
        if self.sample_rate_hz <= 0:
            raise ValueError("sample_rate_hz must be > 0.")
        self.session_id = session_id or uuid.uuid4().hex[:12]
        self._clock = clock
        self._lock = threading.RLock()
        self.registry = SpeakerRegistry(config, clock=clock)
        self.tracker = TemporalTracker(config)
        self.engine = FusionEngine(config)
        self._latest: VoiceCharacteristics = silence()
        self._latest_stress = False
        self._last_voiced: Optional[VoiceCharacteristics] = None
        self._last_voiced_at: Optional[float] = None
        self._frames = 0
        self._voiced = 0
        self._paused = False
        self._closed = False
        logger.info(
            "Session %s started (%s, %d Hz)",
            self.session_id,
            config.capture_mode,
            self.sample_rate_hz,
        )

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError(f"Session {self.session_id} is closed.")

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def closed(self) -> bool:
        return self._closed

    def pause(self) -> None:
        with self._lock:
            self._ensure_open()
            if not self._paused:
                self._paused = True
                logger.info("Session %s paused", self.session_id)

    def resume(self) -> None:
        with self._lock:
            self._ensure_open()
            if self._paused:
                self._paused = False
                logger.info("Session %s resumed", self.session_id)

    def analyze_frame(
        self, frame, timestamp: Optional[float] = None
    ) -> Optional[VoiceCharacteristics]:
        """Run one frame through the pipeline; ``None`` while paused."""
        with self._lock:
            self._ensure_open()
            if self._paused:
                return None
            now = self._clock() if timestamp is None else timestamp
            characteristics = self._characterize(frame, now)
            pattern = self.tracker.record(characteristics, now)
            self._latest = characteristics
            self._latest_stress = pattern.stress
            self._frames += 1
            if not characteristics.is_silence:
                self._voiced += 1
                self._last_voiced = characteristics
                self._last_voiced_at = now
            return characteristics

    def _characterize(self, frame, now: float) -> VoiceCharacteristics:
        rate = self.sample_rate_hz
        features = extract_features(frame, rate, self.config)
        if not features.voice_active:
            return silence(features.loudness)
        register, confidence = classify_register(features.pitch, self.config.thresholds)
        quality = assess_quality(frame, rate, features.loudness, self.config)
        centroid = spectral_centroid(frame, rate)
        speaker_id = self.registry.resolve(
            features.pitch,
            REGISTER_MALE if register == REGISTER_UNKNOWN else register,
            quality=quality,
            spectral_centroid=centroid,
            timestamp=now,
        )
        return VoiceCharacteristics(
            register=register,
            pitch=features.pitch,
            confidence=confidence,
            loudness=features.loudness,
            quality=quality,
            speaker_id=speaker_id,
            spectral_centroid=centroid,
        )

    def characteristics_near(self, timestamp: float) -> Optional[VoiceCharacteristics]:
        """Latest voiced characteristics, if recent enough to describe ``timestamp``."""
        with self._lock:
            if self._last_voiced is None or self._last_voiced_at is None:
                return None
            age = abs(timestamp - self._last_voiced_at)
            if age > self.config.diarization.characteristics_max_age:
                return None
            return self._last_voiced

    def submit_segment(
        self,
        text: str,
        timestamp: float,
        characteristics: Optional[VoiceCharacteristics] = None,
    ) -> DiarizedSegment:
        with self._lock:
            self._ensure_open()
            if characteristics is None:
                characteristics = self.characteristics_near(timestamp)
            segment = self.engine.process_segment(text, characteristics, timestamp)
            self.tracker.flag_segment(segment)
            return segment

    # -- read paths ---------------------------------------------------------

    def realtime_metrics(self) -> RealtimeMetrics:
        with self._lock:
            return RealtimeMetrics(
                characteristics=self._latest,
                stress=self._latest_stress,
                frames_processed=self._frames,
                voiced_frames=self._voiced,
                paused=self._paused,
            )

    def profile_dump(self) -> ProfileDump:
        with self._lock:
            speakers = tuple(
                SpeakerStats(
                    speaker_id=p.speaker_id,
                    register=p.register,
                    avg_pitch=int(round(p.avg_pitch)),
                    pitch_range=(int(round(p.pitch_range[0])), int(round(p.pitch_range[1]))),
                    samples=p.sample_count,
                    last_seen=p.last_seen,
                    stress_level=self.tracker.stress_level(p.speaker_id),
                )
                for p in self.registry.profiles()
            )
            return ProfileDump(speakers=speakers)

    def diagnostics(self, include_frames: bool = False) -> DiagnosticReport:
        with self._lock:
            segments: List[LowConfidenceSegment] = []
            if include_frames:
                segments.extend(self.tracker.low_confidence_frames())
            segments.extend(self.tracker.low_confidence_segments())
            segments.sort(key=lambda s: s.timestamp)
            return DiagnosticReport(
                threshold=self.tracker.threshold, segments=tuple(segments)
            )

    def analytics(self) -> List[SpeakerAnalytics]:
        """Profile stats joined with behavior and history counts, per speaker."""
        with self._lock:
            return [
                SpeakerAnalytics(
                    stats=stats,
                    behavioral=self.tracker.behavioral_pattern(stats.speaker_id),
                    temporal_data_points=self.tracker.data_points(stats.speaker_id),
                )
                for stats in self.profile_dump().speakers
            ]

    def speaker_analytics(self, speaker_id: str) -> Optional[SpeakerAnalytics]:
        with self._lock:
            for entry in self.analytics():
                if entry.stats.speaker_id == speaker_id:
                    return entry
            return None

    def conversation_dynamics(self) -> ConversationDynamics:
        with self._lock:
            return self.tracker.conversation_dynamics()

    def voice_turns(self, include_open: bool = False) -> List[VoiceTurn]:
        with self._lock:
            return self.tracker.voice_turns(include_open=include_open)

    def segments(self) -> List[DiarizedSegment]:
        with self._lock:
            return self.engine.segments

    def transcript(self) -> str:
        with self._lock:
            return self.engine.formatted_transcript()

    def statistics(self) -> DiarizationStats:
        with self._lock:
            return self.engine.statistics()

    def export(self) -> dict:
        with self._lock:
            data = self.engine.export()
            data["session_id"] = self.session_id
            data["capture_mode"] = self.config.capture_mode
            data["profiles"] = [
                {
                    "speaker_id": s.speaker_id,
                    "register": s.register,
                    "avg_pitch": s.avg_pitch,
                    "pitch_range": list(s.pitch_range),
                    "samples": s.samples,
                }
                for s in self.profile_dump().speakers
            ]
            dynamics = self.tracker.conversation_dynamics()
            data["dynamics"] = {
                "turn_taking_pattern": dynamics.turn_taking_pattern,
                "dominant_speaker": dynamics.dominant_speaker,
                "interaction_quality": dynamics.interaction_quality,
            }
            data["voice_turns"] = [
                {
                    "speaker_id": t.speaker_id,
                    "start": t.start,
                    "duration": t.duration,
                    "avg_pitch": t.avg_pitch,
                    "avg_loudness": t.avg_loudness,
                }
                for t in self.tracker.voice_turns()
            ]
            return data

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self.registry.clear()
            self.tracker.clear()
            self.engine.reset()
            self._last_voiced = None
            self._last_voiced_at = None
            self._closed = True
            logger.info(
                "Session %s closed after %d frames", self.session_id, self._frames
            )


class FrameWorker:
    """Dedicated processing thread for one session.

    Frames go through a bounded queue and are dropped, never buffered
    without limit, when analysis falls behind. Transcript segments use a
    separate queue and are never dropped.
    """

    def __init__(
        self,
        session: AnalysisSession,
        on_characteristics: Optional[Callable[[VoiceCharacteristics], None]] = None,
        on_segment: Optional[Callable[[DiarizedSegment], None]] = None,
    ) -> None:
        self.session = session
        self._on_characteristics = on_characteristics
        self._on_segment = on_segment
        self._frames: "queue.Queue" = queue.Queue(maxsize=session.config.queue_size)
        self._segments: "queue.Queue" = queue.Queue()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.dropped_frames = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self._thread is not None:
            raise RuntimeError("Worker already started.")
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, name=f"voicetrace-{self.session.session_id}", daemon=True
        )
        self._thread.start()
        logger.info("Worker started for session %s", self.session.session_id)

    def submit_frame(self, frame, timestamp: Optional[float] = None) -> bool:
        if self.session.paused or self._stop_event.is_set():
            return False
        try:
            self._frames.put_nowait((frame, timestamp))
        except queue.Full:
            self.dropped_frames += 1
            if self.dropped_frames == 1 or self.dropped_frames % 50 == 0:
                logger.warning(
                    "Analysis behind real time: %d frames dropped", self.dropped_frames
                )
            return False
        return True

    def submit_segment(self, text: str, timestamp: float) -> bool:
        """Queue a transcript segment; ``False`` once the worker is stopping."""
        if self._stop_event.is_set():
            logger.warning("Segment at %.2fs rejected: worker stopping", timestamp)
            return False
        self._segments.put((text, timestamp))
        try:
            # wake the loop if it is waiting on frames
            self._frames.put_nowait(None)
        except queue.Full:
            pass
        return True

    def _drain_segments(self) -> None:
        while True:
            try:
                text, timestamp = self._segments.get_nowait()
            except queue.Empty:
                return
            try:
                segment = self.session.submit_segment(text, timestamp)
                if self._on_segment is not None:
                    self._on_segment(segment)
            except Exception:
                logger.exception("Segment processing failed")

    def _run(self) -> None:
        while True:
            self._drain_segments()
            try:
                item = self._frames.get(timeout=0.25)
            except queue.Empty:
                if self._stop_event.is_set():
                    break
                continue
            if item is _STOP:
                break
            if item is None:
                continue
            frame, timestamp = item
            try:
                characteristics = self.session.analyze_frame(frame, timestamp)
                if characteristics is not None and self._on_characteristics is not None:
                    self._on_characteristics(characteristics)
            except Exception:
                logger.exception("Frame analysis failed")
        self._drain_segments()

    def stop(self, timeout: Optional[float] = None) -> None:
        """Process everything already queued, then join the thread."""
        self._stop_event.set()
        if self._thread is None:
            return
        try:
            self._frames.put(_STOP, timeout=timeout)
        except queue.Full:
            # a full queue still ends on the stop event once it drains
            logger.warning("Worker queue full at stop; waiting on the stop event")
        self._thread.join(timeout)
        logger.info(
            "Worker stopped for session %s (%d frames dropped)",
            self.session.session_id,
            self.dropped_frames,
        )
