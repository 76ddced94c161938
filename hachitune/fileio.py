"""Audio file loading, WAV export and drag-and-drop filtering."""

from __future__ import annotations

import os
import struct
import threading
import wave
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path

import numpy as np

__all__ = [
    "SAMPLE_RATE",
    "AUDIO_EXTENSIONS",
    "is_interested_in_file_drag",
    "first_audio_file",
    "resample",
    "convert_to_mono",
    "load_wav",
    "export_wav",
    "AudioFileLoader",
]

SAMPLE_RATE = 44100
AUDIO_EXTENSIONS = frozenset({".wav", ".mp3", ".flac", ".aiff", ".htpx"})

_FORMAT_PCM = 0x0001
_FORMAT_FLOAT = 0x0003
_FORMAT_EXTENSIBLE = 0xFFFE

ProgressCallback = Callable[[float, str], None]
LoadCompleteCallback = Callable[[np.ndarray, int, Path], None]


def _as_buffer(buffer) -> np.ndarray:
    return np.atleast_2d(np.asarray(buffer, dtype=np.float32))


def first_audio_file(files: Iterable[str | os.PathLike]) -> Path | None:
    """Return the first path with a supported audio or project extension."""
    for name in files:
        path = Path(name)
        if path.suffix.lower() in AUDIO_EXTENSIONS:
            return path
    return None


def is_interested_in_file_drag(files: Iterable[str | os.PathLike]) -> bool:
    """True if any of the dragged files can be opened."""
    return first_audio_file(files) is not None


def resample(buffer, src_rate: int, target_rate: int) -> np.ndarray:
    """Linearly resample the first channel; returns shape (1, samples)."""
    data = _as_buffer(buffer)
    if src_rate == target_rate:
        return data.copy()

    source = data[0].astype(np.float64)
    total = len(source)
    ratio = src_rate / target_rate
    out_len = int(total / ratio)
    result = np.zeros((1, out_len), dtype=np.float32)
    if out_len == 0 or total == 0:
        return result

    pos = np.arange(out_len, dtype=np.float64) * ratio
    idx = pos.astype(np.int64)
    frac = pos - idx
    interp = idx + 1 < total
    lo = idx[interp]
    result[0, interp] = source[lo] * (1.0 - frac[interp]) + source[lo + 1] * frac[interp]
    edge = ~interp & (idx < total)
    result[0, edge] = source[idx[edge]]
    return result


def convert_to_mono(stereo) -> np.ndarray:
    """Average the first two channels; returns shape (1, samples)."""
    data = _as_buffer(stereo)
    if data.shape[0] < 2:
        raise ValueError("need at least two channels to downmix")
    return ((data[0] + data[1]) * np.float32(0.5)).reshape(1, -1)


def _parse_fmt(body: bytes) -> tuple[int, int, int, int]:
    if len(body) < 16:
        raise ValueError("truncated fmt chunk")
    tag, channels, rate, _, block_align, _ = struct.unpack("<HHIIHH", body[:16])
    if tag == _FORMAT_EXTENSIBLE:
        if len(body) < 26:
            raise ValueError("truncated extensible fmt chunk")
        tag = struct.unpack_from("<H", body, 24)[0]
    if channels == 0 or block_align == 0 or block_align % channels:
        raise ValueError("invalid channel layout")
    return tag, channels, rate, block_align // channels


def _decode(raw: bytes, tag: int, width: int) -> np.ndarray:
    if tag == _FORMAT_PCM:
        if width == 1:
            return (np.frombuffer(raw, dtype=np.uint8).astype(np.float64) - 128.0) / 128.0
        if width == 2:
            return np.frombuffer(raw, dtype="<i2").astype(np.float64) / 32768.0
        if width == 3:
            b = np.frombuffer(raw, dtype=np.uint8).reshape(-1, 3).astype(np.int32)
            values = b[:, 0] | (b[:, 1] << 8) | (b[:, 2] << 16)
            values = np.where(values >= 1 << 23, values - (1 << 24), values)
            return values.astype(np.float64) / float(1 << 23)
        if width == 4:
            return np.frombuffer(raw, dtype="<i4").astype(np.float64) / float(1 << 31)
    elif tag == _FORMAT_FLOAT:
        if width == 4:
            return np.frombuffer(raw, dtype="<f4").astype(np.float64)
        if width == 8:
            return np.frombuffer(raw, dtype="<f8")
    raise ValueError(f"unsupported WAV encoding (format {tag}, {width * 8} bits)")


def _read_wav(path: str | os.PathLike) -> tuple[np.ndarray, int]:
    """Read a RIFF WAVE file into (channels, samples) float32 and its rate."""
    data = Path(path).read_bytes()
    if len(data) < 12 or data[:4] != b"RIFF" or data[8:12] != b"WAVE":
        raise ValueError(f"not a WAV file: {path}")

    fmt = None
    payload = None
    offset = 12
    while offset + 8 <= len(data):
        chunk_id = data[offset:offset + 4]
        size = struct.unpack_from("<I", data, offset + 4)[0]
        body = data[offset + 8:offset + 8 + size]
        if chunk_id == b"fmt ":
            fmt = _parse_fmt(body)
        elif chunk_id == b"data":
            payload = body
        offset += 8 + size + (size & 1)

    if fmt is None or payload is None:
        raise ValueError(f"WAV file lacks fmt or data chunk: {path}")

    tag, channels, rate, width = fmt
    frames = len(payload) // (width * channels)
    values = _decode(payload[:frames * width * channels], tag, width)
    return values.reshape(frames, channels).T.astype(np.float32), rate


def _to_mono(channels: np.ndarray) -> np.ndarray:
    if channels.shape[0] == 1:
        return channels.copy()
    return convert_to_mono(channels[:2])


def load_wav(path: str | os.PathLike, target_rate: int = SAMPLE_RATE) -> np.ndarray:
    """Load a WAV file as mono at ``target_rate``; shape (1, samples)."""
    channels, rate = _read_wav(path)
    buffer = _to_mono(channels)
    if rate != target_rate:
        buffer = resample(buffer, rate, target_rate)
    return buffer


def export_wav(path: str | os.PathLike, buffer, sample_rate: int) -> None:
    """Write the buffer (channels, samples) as a 16-bit PCM WAV file."""
    data = _as_buffer(buffer)
    if data.shape[0] == 0:
        raise ValueError("buffer has no channels")
    ints = np.round(np.clip(data, -1.0, 1.0) * 32767.0).astype("<i2")
    with wave.open(os.fspath(path), "wb") as writer:
        writer.setnchannels(data.shape[0])
        writer.setsampwidth(2)
        writer.setframerate(int(sample_rate))
        writer.writeframes(np.ascontiguousarray(ints.T).tobytes())


@dataclass
class _LoadTask:
    path: Path
    on_progress: ProgressCallback | None
    on_complete: LoadCompleteCallback | None
    cancelled: threading.Event = field(default_factory=threading.Event)


class AudioFileLoader:
    """Loads audio files one at a time on a background thread.

    Completed loads are passed to ``on_complete(buffer, sample_rate, path)``
    from the worker thread; unreadable or cancelled files produce no call.
    """

    def __init__(self, target_rate: int = SAMPLE_RATE) -> None:
        self.target_rate = target_rate
        self._cond = threading.Condition()
        self._queue: deque[_LoadTask] = deque()
        self._current: threading.Event | None = None
        self._loading = False
        self._shutting_down = False
        self._worker = threading.Thread(target=self._run, name="audio-loader", daemon=True)
        self._worker.start()

    def __enter__(self) -> AudioFileLoader:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def is_loading(self) -> bool:
        return self._loading

    def load_async(
        self,
        path: str | os.PathLike,
        on_progress: ProgressCallback | None = None,
        on_complete: LoadCompleteCallback | None = None,
    ) -> threading.Event:
        """Queue a file for loading; returns the task's cancel event."""
        task = _LoadTask(Path(path), on_progress, on_complete)
        with self._cond:
            if self._shutting_down:
                raise RuntimeError("loader is closed")
            self._queue.append(task)
            self._cond.notify()
        return task.cancelled

    def cancel(self) -> None:
        """Cancel the running load and drop everything queued."""
        with self._cond:
            if self._current is not None:
                self._current.set()
            for task in self._queue:
                task.cancelled.set()
            self._queue.clear()

    def close(self) -> None:
        """Cancel all work and stop the worker thread."""
        self.cancel()
        with self._cond:
            self._shutting_down = True
            self._cond.notify_all()
        if self._worker.is_alive() and threading.current_thread() is not self._worker:
            self._worker.join()

    def _run(self) -> None:
        while True:
            with self._cond:
                self._cond.wait_for(lambda: self._shutting_down or bool(self._queue))
                if self._shutting_down and not self._queue:
                    return
                task = self._queue.popleft()
                self._current = task.cancelled
                self._loading = True

            try:
                buffer = self._load(task)
            finally:
                with self._cond:
                    self._current = None
                    self._loading = False

            if buffer is None or task.cancelled.is_set() or self._shutting_down:
                continue
            if task.on_complete is not None:
                task.on_complete(buffer, self.target_rate, task.path)

    def _load(self, task: _LoadTask) -> np.ndarray | None:
        def stopped() -> bool:
            return task.cancelled.is_set() or self._shutting_down

        def report(value: float, message: str) -> None:
            if task.on_progress is not None:
                task.on_progress(value, message)

        if stopped():
            return None
        report(0.05, "Loading audio...")
        try:
            channels, rate = _read_wav(task.path)
        except (OSError, ValueError):
            return None
        if stopped():
            return None

        report(0.10, "Reading audio...")
        buffer = _to_mono(channels)
        if stopped():
            return None

        if rate != self.target_rate:
            report(0.18, "Resampling...")
            buffer = resample(buffer, rate, self.target_rate)
        if stopped():
            return None

        report(0.22, "Audio loaded")
        return buffer