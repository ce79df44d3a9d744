"""Audio helpers."""

from __future__ import annotations

from typing import Iterator, List, Sequence, Tuple

import numpy as np


def to_mono_float(chunk) -> np.ndarray:
    """Return a 1-D float64 array in [-1, 1] from int16 or float PCM."""
    data = np.asarray(chunk)
    if data.ndim == 2:
        if data.dtype == np.int16:
            data = data.astype(np.float64) / 32768.0
        data = data.mean(axis=1)
    elif data.dtype == np.int16:
        data = data.astype(np.float64) / 32768.0
    return np.asarray(data, dtype=np.float64).ravel()


def smooth(current: float, sample: float, weight: float) -> float:
    """Exponential smoothing: ``weight`` is the share given to ``sample``."""
    return current * (1.0 - weight) + sample * weight


def variance(values: Sequence[float]) -> float:
    if len(values) == 0:
        return 0.0
    return float(np.var(np.asarray(values, dtype=np.float64)))


class FrameAssembler:
    """Slices arbitrarily sized capture blocks into fixed-size frames.

    Any remainder is kept for the next push.
    """

    def __init__(self, frame_size: int) -> None:
        if frame_size <= 0:
            raise ValueError("frame_size must be > 0.")
        self.frame_size = frame_size
        self._buffer = np.zeros(0, dtype=np.float64)

    def push(self, chunk) -> List[np.ndarray]:
        data = to_mono_float(chunk)
        self._buffer = np.concatenate([self._buffer, data])
        frames: List[np.ndarray] = []
        while self._buffer.shape[0] >= self.frame_size:
            frames.append(self._buffer[: self.frame_size].copy())
            self._buffer = self._buffer[self.frame_size :]
        return frames

    def remaining(self) -> int:
        return int(self._buffer.shape[0])

    def clear(self) -> None:
        self._buffer = np.zeros(0, dtype=np.float64)


def read_wav_frames(path: str, frame_size: int) -> Tuple[int, Iterator[np.ndarray]]:
    """Open an audio file and return ``(sample_rate, frames)``.

    Trailing samples that do not fill a whole frame are dropped.
    """
    try:
        import soundfile as sf
    except Exception as exc:  # pragma: no cover - environment-dependent
        raise RuntimeError("soundfile is required to read audio files.") from exc

    info = sf.info(path)

    def _frames() -> Iterator[np.ndarray]:
        for block in sf.blocks(path, blocksize=frame_size, always_2d=True):
            if block.shape[0] < frame_size:
                break
            yield to_mono_float(block)

    return int(info.samplerate), _frames()
