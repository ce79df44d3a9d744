"""Live capture that feeds fixed-size frames to the analyzer."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Optional, List, Dict, Any, Callable

from .audio_utils import FrameAssembler

logger = logging.getLogger("voicetrace")


@dataclass
class CaptureResult:
    device_name: str
    frames_delivered: int
    duration_seconds: float
    status_errors: int = 0


def list_input_devices(loopback: bool = False) -> List[Dict[str, Any]]:
    try:
        import sounddevice as sd
    except Exception as exc:  # pragma: no cover - environment-dependent
        raise RuntimeError("sounddevice is required for device detection.") from exc

    devices = sd.query_devices()
    if loopback:
        return [d for d in devices if d.get("max_output_channels", 0) > 0]
    return [d for d in devices if d.get("max_input_channels", 0) > 0]


# Inputs that carry system playback rather than a microphone.
RELAY_NAME_MARKERS = (
    "stereo mix",
    "loopback",
    "what u hear",
    "monitor of",
)


def find_relay_name_from_candidates(
    candidates: List[Dict[str, Any]],
) -> Optional[str]:
    for device in candidates:
        name = device.get("name", "").lower()
        if any(marker in name for marker in RELAY_NAME_MARKERS):
            return device.get("name")
    return None


def select_preferred_device(
    candidates: List[Dict[str, Any]],
    prefer_name: Optional[str] = None,
    relayed: bool = False,
) -> Dict[str, Any]:
    if not candidates:
        raise RuntimeError("No input devices found.")
    if prefer_name:
        preferred = [
            d for d in candidates if prefer_name.lower() in d.get("name", "").lower()
        ]
        if preferred:
            return preferred[0]

    if relayed:
        relay_name = find_relay_name_from_candidates(candidates)
        if relay_name:
            return next(d for d in candidates if d.get("name") == relay_name)
        return candidates[0]

    direct = [
        d
        for d in candidates
        if not any(m in d.get("name", "").lower() for m in RELAY_NAME_MARKERS)
    ]
    return (direct or candidates)[0]


def find_input_device(
    prefer_name: Optional[str] = None,
    loopback: bool = False,
    relayed: bool = False,
) -> dict:
    candidates = list_input_devices(loopback=loopback)
    return select_preferred_device(candidates, prefer_name=prefer_name, relayed=relayed)


def stream_frames(
    on_frame: Callable[[Any, float], None],
    sample_rate_hz: int = 44100,
    frame_size: int = 4096,
    device_name: Optional[str] = None,
    loopback: bool = False,
    relayed: bool = False,
    stop_event=None,
    duration_seconds: Optional[float] = None,
) -> CaptureResult:
    """Capture mono int16 audio and call ``on_frame(frame, elapsed_seconds)``.

    ``on_frame`` runs on the audio callback thread and must return quickly;
    hand the frame to a :class:`~voicetrace.session.FrameWorker` rather than
    analysing it in place.
    """
    try:
        import sounddevice as sd
    except Exception as exc:  # pragma: no cover - environment-dependent
        raise RuntimeError("sounddevice is required for recording.") from exc

    device = find_input_device(device_name, loopback=loopback, relayed=relayed)
    device_index = device.get("index")
    assembler = FrameAssembler(frame_size)
    delivered = 0
    status_errors = 0
    started = time.monotonic()

    def _callback(indata, _frames, _time, status):
        nonlocal delivered, status_errors
        if status:
            status_errors += 1
            logger.debug("Input stream status: %s", status)
        for frame in assembler.push(indata.copy()):
            on_frame(frame, delivered * frame_size / float(sample_rate_hz))
            delivered += 1

    extra_settings = None
    if loopback and hasattr(sd, "WasapiSettings"):
        try:
            extra_settings = sd.WasapiSettings(loopback=True)
        except TypeError:
            extra_settings = None

    logger.info(
        "Capturing from %s at %d Hz (frame %d)",
        device.get("name", "?"),
        sample_rate_hz,
        frame_size,
    )
    try:
        with sd.InputStream(
            samplerate=sample_rate_hz,
            channels=1,
            dtype="int16",
            device=device_index,
            callback=_callback,
            extra_settings=extra_settings,
        ):
            while True:
                if stop_event is not None and stop_event.is_set():
                    break
                if duration_seconds and time.monotonic() - started >= duration_seconds:
                    break
                sd.sleep(100)
    except KeyboardInterrupt:
        pass

    return CaptureResult(
        device_name=str(device.get("name", "")),
        frames_delivered=delivered,
        duration_seconds=time.monotonic() - started,
        status_errors=status_errors,
    )
