"""SOME note detection: silence slicing, chunk inference and note building."""

from __future__ import annotations

import math
from collections.abc import Callable, Sequence
from dataclasses import dataclass

import numpy as np

from hachitune.rmvpe import ModelNotLoadedError

__all__ = [
    "SAMPLE_RATE",
    "HOP_SIZE",
    "ModelNotLoadedError",
    "SOMEInferenceError",
    "NoteEvent",
    "resample_to_44k",
    "get_rms",
    "slice_audio",
    "build_chunk_notes",
    "frame_for_sample",
    "sample_for_frame",
    "SOMEDetector",
]

SAMPLE_RATE = 44100
HOP_SIZE = 512

_SLICE_THRESHOLD = 0.02
_SLICE_WIN_SIZE = HOP_SIZE * 4
_SLICE_MIN_LENGTH = 500
_SLICE_MIN_INTERVAL = 30
_SLICE_MAX_SIL_KEPT = 50

SOMEModel = Callable[[np.ndarray], Sequence]
ProgressCallback = Callable[[float], None]
NoteCallback = Callable[[list["NoteEvent"]], None]


class SOMEInferenceError(RuntimeError):
    """Raised when the SOME model fails on a chunk of audio."""


@dataclass
class NoteEvent:
    """A detected note in frames of HOP_SIZE samples at SAMPLE_RATE."""

    start_frame: int
    end_frame: int
    midi_note: float
    is_rest: bool = False


def _trunc_div(numerator: int, denominator: int) -> int:
    quotient = abs(numerator) // abs(denominator)
    return quotient if (numerator >= 0) == (denominator > 0) else -quotient


def _round_half_away(value: float) -> int:
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


def resample_to_44k(audio: Sequence[float], src_rate: int) -> np.ndarray:
    """Resample audio to 44.1 kHz with linear interpolation."""
    samples = np.asarray(audio, dtype=np.float32)
    if src_rate == SAMPLE_RATE:
        return samples.copy()

    total = len(samples)
    ratio = SAMPLE_RATE / src_rate
    out_len = int(total * ratio)
    result = np.zeros(out_len, dtype=np.float32)
    if out_len == 0 or total == 0:
        return result

    src_pos = np.arange(out_len, dtype=np.float64) / ratio
    idx = src_pos.astype(np.int64)
    frac = src_pos - idx
    source = samples.astype(np.float64)

    interp = idx + 1 < total
    lo = idx[interp]
    result[interp] = (
        source[lo] * (1.0 - frac[interp]) + source[lo + 1] * frac[interp]
    ).astype(np.float32)
    edge = ~interp & (idx < total)
    result[edge] = samples[idx[edge]]
    return result


def get_rms(samples: Sequence[float], frame_length: int, hop_length: int) -> list[float]:
    """Centred RMS per hop, normalised by the full frame length."""
    data = np.asarray(samples, dtype=np.float32)
    total = len(data)
    squares = (data * data).astype(np.float64)
    half = frame_length // 2
    result: list[float] = []
    for i in range(total // hop_length):
        center = i * hop_length
        start = max(0, center - half)
        end = min(total, center + half)
        energy = float(squares[start:end].sum()) if end > start else 0.0
        result.append(math.sqrt(energy / frame_length))
    return result


def _argmin(values: list[float], begin: int, end: int) -> int:
    if begin >= end or end > len(values):
        return 0
    window = values[begin:end]
    return window.index(min(window))


def slice_audio(samples: Sequence[float]) -> list[tuple[int, int]]:
    """Split audio at silences into (start_sample, end_sample) chunks."""
    total = len(samples)
    if (total + HOP_SIZE - 1) // HOP_SIZE <= _SLICE_MIN_LENGTH:
        return [(0, total)]

    rms = get_rms(samples, _SLICE_WIN_SIZE, HOP_SIZE)
    tags: list[tuple[int, int]] = []
    silence_start = -1
    clip_start = 0
    max_kept = _SLICE_MAX_SIL_KEPT

    for i, level in enumerate(rms):
        if level < _SLICE_THRESHOLD:
            if silence_start < 0:
                silence_start = i
            continue
        if silence_start < 0:
            continue

        is_leading = silence_start == 0 and i > max_kept
        need_slice = (
            i - silence_start >= _SLICE_MIN_INTERVAL
            and i - clip_start >= _SLICE_MIN_LENGTH
        )
        if not is_leading and not need_slice:
            silence_start = -1
            continue

        if i - silence_start <= max_kept:
            pos = _argmin(rms, silence_start, i + 1) + silence_start
            tags.append((0 if silence_start == 0 else pos, pos))
            clip_start = pos
        else:
            pos_l = _argmin(rms, silence_start, silence_start + max_kept + 1) + silence_start
            pos_r = _argmin(rms, i - max_kept, i + 1) + i - max_kept
            tags.append((0 if silence_start == 0 else pos_l, pos_r))
            clip_start = pos_r
        silence_start = -1

    if silence_start >= 0 and len(rms) - silence_start >= _SLICE_MIN_INTERVAL:
        silence_end = min(len(rms) - 1, silence_start + max_kept)
        pos = _argmin(rms, silence_start, silence_end + 1) + silence_start
        tags.append((pos, len(rms) + 1))

    if not tags:
        return [(0, total)]

    chunks: list[tuple[int, int]] = []
    if tags[0][0] > 0:
        chunks.append((0, tags[0][0] * HOP_SIZE))
    for current, following in zip(tags, tags[1:]):
        chunks.append((current[1] * HOP_SIZE, following[0] * HOP_SIZE))
    if tags[-1][1] < len(rms):
        chunks.append((tags[-1][1] * HOP_SIZE, len(rms) * HOP_SIZE))
    return chunks


def build_chunk_notes(
    midi: Sequence[float],
    rest: Sequence[bool],
    durations: Sequence[float],
    start_frame: int,
) -> tuple[list[NoteEvent], int]:
    """Lay out one chunk's notes from ``start_frame``.

    Durations are in seconds; rests advance the position without a note.
    Returns the notes and the frame position after the last note or rest.
    """
    cumulative = np.cumsum(np.asarray(durations, dtype=np.float32).astype(np.float64))
    scaled = [_round_half_away(value * SAMPLE_RATE / HOP_SIZE) for value in cumulative.tolist()]
    note_frames = [b - a for a, b in zip([0] + scaled[:-1], scaled)]

    notes: list[NoteEvent] = []
    position = start_frame
    for i, pitch in enumerate(midi):
        if i >= len(note_frames):
            break
        length = max(1, note_frames[i])
        if not bool(rest[i]):
            notes.append(NoteEvent(position, position + length, float(pitch), False))
        position += length
    return notes, position


def frame_for_sample(sample_index: int) -> int:
    """Frame index containing a sample at SAMPLE_RATE."""
    return _trunc_div(sample_index, HOP_SIZE)


def sample_for_frame(frame_index: int) -> int:
    """First sample of a frame at SAMPLE_RATE."""
    return frame_index * HOP_SIZE


class SOMEDetector:
    """Detects sung notes with a SOME model over silence-sliced chunks.

    ``model`` is called with a float32 waveform of shape (1, n) at 44.1 kHz and
    returns a sequence of three arrays: MIDI pitches, rest flags and note
    durations in seconds.
    """

    def __init__(self, model: SOMEModel | None = None) -> None:
        self.model = model

    @property
    def is_loaded(self) -> bool:
        return self.model is not None

    def _require_model(self) -> SOMEModel:
        if self.model is None:
            raise ModelNotLoadedError("SOME model not loaded")
        return self.model

    def _infer_chunk(
        self, chunk: np.ndarray
    ) -> tuple[list[float], list[bool], list[float]]:
        model = self._require_model()
        waveform = np.ascontiguousarray(chunk, dtype=np.float32).reshape(1, -1)
        try:
            outputs = model(waveform)
            midi = np.asarray(outputs[0], dtype=np.float32).reshape(-1)
            rest = np.asarray(outputs[1]).reshape(-1).astype(bool)
            dur = np.asarray(outputs[2], dtype=np.float32).reshape(-1)
        except Exception as exc:
            raise SOMEInferenceError(f"SOME chunk inference failed: {exc}") from exc
        count = len(midi)
        if len(rest) < count or len(dur) < count:
            raise SOMEInferenceError("SOME model returned outputs of mismatched length")
        return midi.tolist(), rest[:count].tolist(), dur[:count].tolist()

    def _prepare(
        self, audio: Sequence[float], sample_rate: int, report: ProgressCallback
    ) -> tuple[np.ndarray, list[tuple[int, int]]]:
        self._require_model()
        report(0.05)
        waveform = resample_to_44k(audio, sample_rate)
        report(0.1)
        return waveform, slice_audio(waveform)

    def detect_notes(self, audio: Sequence[float], sample_rate: int) -> list[NoteEvent]:
        """Detect all notes in the audio."""
        return self.detect_notes_with_progress(audio, sample_rate)

    def detect_notes_with_progress(
        self,
        audio: Sequence[float],
        sample_rate: int,
        progress: ProgressCallback | None = None,
    ) -> list[NoteEvent]:
        """Detect all notes, reporting progress from 0 to 1.

        Raises SOMEInferenceError if the model fails on any chunk.
        """

        def report(value: float) -> None:
            if progress is not None:
                progress(value)

        waveform, chunks = self._prepare(audio, sample_rate, report)
        if not chunks:
            return []

        total_size = len(waveform)
        total_frames = sum(end - start for start, end in chunks)
        notes: list[NoteEvent] = []
        processed = 0

        for begin, end in chunks:
            if end <= begin or begin >= total_size:
                continue
            actual_end = min(end, total_size)
            midi, rest, dur = self._infer_chunk(waveform[begin:actual_end])
            if not midi:
                continue

            start = max(begin // HOP_SIZE, notes[-1].end_frame if notes else 0)
            chunk_notes, _ = build_chunk_notes(midi, rest, dur, start)
            notes.extend(chunk_notes)

            processed += actual_end - begin
            report(0.1 + 0.85 * processed / total_frames)

        report(1.0)
        return notes

    def detect_notes_streaming(
        self,
        audio: Sequence[float],
        sample_rate: int,
        note_callback: NoteCallback | None = None,
        progress: ProgressCallback | None = None,
    ) -> None:
        """Detect notes chunk by chunk, passing each chunk's notes to ``note_callback``.

        Chunks on which the model fails are skipped.
        """

        def report(value: float) -> None:
            if progress is not None:
                progress(value)

        waveform, chunks = self._prepare(audio, sample_rate, report)
        if not chunks:
            return

        total_size = len(waveform)
        total_frames = sum(end - start for start, end in chunks)
        last_end = 0
        processed = 0

        for begin, end in chunks:
            if end <= begin or begin >= total_size:
                continue
            actual_end = min(end, total_size)
            try:
                midi, rest, dur = self._infer_chunk(waveform[begin:actual_end])
            except SOMEInferenceError:
                continue
            if not midi:
                continue

            start = max(begin // HOP_SIZE, last_end)
            chunk_notes, last_end = build_chunk_notes(midi, rest, dur, start)
            if note_callback is not None and chunk_notes:
                note_callback(chunk_notes)

            processed += actual_end - begin
            report(0.1 + 0.85 * processed / total_frames)

        report(1.0)