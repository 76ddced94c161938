"""Pitch extraction and note segmentation across the available detectors."""

from __future__ import annotations

import enum
import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

import numpy as np

from hachitune.some import SAMPLE_RATE as SOME_SAMPLE_RATE
from hachitune.some import NoteEvent
from hachitune.yin import PitchDetector

__all__ = [
    "HOP_SIZE",
    "SAMPLE_RATE",
    "PitchDetectorType",
    "AnalyzedNote",
    "freq_to_midi",
    "align_f0",
    "voiced_mask",
    "segment_fallback",
    "notes_from_events",
    "AudioAnalyzer",
]

SAMPLE_RATE = 44100
HOP_SIZE = 512

_DETECTOR_FRAME_TIME = 160.0 / 16000.0
_SOME_MIN_FRAMES = 3
_FALLBACK_MIN_FRAMES = 5
_PITCH_SPLIT_THRESHOLD = 0.5
_MIN_FRAMES_FOR_SPLIT = 3


class PitchDetectorType(enum.Enum):
    """Which pitch detector to prefer."""

    RMVPE = "rmvpe"
    FCPE = "fcpe"
    YIN = "yin"


@dataclass
class AnalyzedNote:
    """A segmented note in vocoder frames with its raw F0 values."""

    start_frame: int
    end_frame: int
    midi_note: float
    f0_values: list[float] = field(default_factory=list)


def freq_to_midi(freq: float) -> float:
    """Convert a frequency in Hz to a (fractional) MIDI note number."""
    if freq <= 0.0:
        raise ValueError(f"frequency must be positive, got {freq}")
    return 69.0 + 12.0 * math.log2(freq / 440.0)


def _round_half_away(value: float) -> int:
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


def align_f0(
    source_f0: Sequence[float],
    target_frames: int,
    sample_rate: int,
    hop_size: int = HOP_SIZE,
) -> list[float]:
    """Map 10 ms detector frames onto vocoder frames of ``hop_size`` samples.

    Voiced neighbours are interpolated in the log domain; an unvoiced neighbour
    yields the voiced one. Returns an empty list when there is nothing to map.
    """
    source = [float(v) for v in source_f0]
    if not source or target_frames <= 0:
        return []

    frame_time = hop_size / max(1, sample_rate)
    count = len(source)
    result: list[float] = []
    for i in range(target_frames):
        pos = i * frame_time / _DETECTOR_FRAME_TIME
        idx = int(pos)
        frac = pos - idx
        if idx + 1 < count:
            a, b = source[idx], source[idx + 1]
            if a > 0.0 and b > 0.0:
                result.append(math.exp(math.log(a) * (1.0 - frac) + math.log(b) * frac))
            elif a > 0.0:
                result.append(a)
            elif b > 0.0:
                result.append(b)
            else:
                result.append(0.0)
        elif idx < count:
            result.append(source[idx])
        else:
            result.append(source[-1] if source[-1] > 0.0 else 0.0)
    return result


def voiced_mask(f0: Iterable[float]) -> list[bool]:
    """True for every frame with a positive F0."""
    return [value > 0 for value in f0]


def _mean_voiced_midi(
    f0: Sequence[float], voiced: Sequence[bool], start: int, end: int
) -> float | None:
    values = [
        freq_to_midi(f0[j])
        for j in range(start, end)
        if j < len(voiced) and voiced[j] and f0[j] > 0
    ]
    return sum(values) / len(values) if values else None


def segment_fallback(f0: Sequence[float], voiced: Sequence[bool]) -> list[AnalyzedNote]:
    """Split voiced F0 into notes wherever the pitch moves to another semitone."""
    f0 = [float(v) for v in f0]
    notes: list[AnalyzedNote] = []

    def finalize(start: int, end: int) -> None:
        if end - start < _FALLBACK_MIN_FRAMES:
            return
        midi = _mean_voiced_midi(f0, voiced, start, end)
        if midi is None:
            return
        notes.append(AnalyzedNote(start, end, midi, f0[start:end]))

    in_note = False
    note_start = 0
    current_note = 0
    change_count = 0
    change_start = 0

    for i, freq in enumerate(f0):
        is_voiced = i < len(voiced) and bool(voiced[i])
        if not is_voiced:
            continue
        if not in_note:
            in_note = True
            note_start = i
            current_note = _round_half_away(freq_to_midi(freq))
            change_count = 0
            continue

        midi = freq_to_midi(freq)
        quantized = _round_half_away(midi)
        if quantized != current_note and abs(midi - current_note) > _PITCH_SPLIT_THRESHOLD:
            if change_count == 0:
                change_start = i
            change_count += 1
            if change_count >= _MIN_FRAMES_FOR_SPLIT:
                finalize(note_start, change_start)
                note_start = change_start
                current_note = quantized
                change_count = 0
        else:
            change_count = 0

    if in_note:
        finalize(note_start, len(f0))
    return notes


def notes_from_events(
    events: Iterable[NoteEvent], f0: Sequence[float], voiced: Sequence[bool]
) -> list[AnalyzedNote]:
    """Turn detected note events into notes, taking pitch from the F0 where voiced."""
    f0 = [float(v) for v in f0]
    size = len(f0)
    notes: list[AnalyzedNote] = []
    for event in events:
        if event.is_rest:
            continue
        start = max(0, min(event.start_frame, size - 1))
        end = max(start + 1, min(event.end_frame, size))
        if end - start < _SOME_MIN_FRAMES:
            continue
        midi = _mean_voiced_midi(f0, voiced, start, end)
        if midi is None:
            midi = float(event.midi_note)
        notes.append(AnalyzedNote(start, end, midi, f0[start:end]))
    return notes


class AudioAnalyzer:
    """Chooses a pitch detector, aligns its output and segments notes.

    Detectors are optional; F0 extraction falls back from the preferred
    detector to RMVPE, then FCPE, then YIN.
    """

    def __init__(
        self,
        yin: PitchDetector | None = None,
        rmvpe=None,
        fcpe=None,
        some=None,
        detector_type: PitchDetectorType = PitchDetectorType.RMVPE,
    ) -> None:
        self.yin = yin if yin is not None else PitchDetector(SAMPLE_RATE, HOP_SIZE)
        self.rmvpe = rmvpe
        self.fcpe = fcpe
        self.some = some
        self.detector_type = detector_type

    @property
    def is_rmvpe_available(self) -> bool:
        return self.rmvpe is not None and bool(self.rmvpe.is_loaded)

    @property
    def is_fcpe_available(self) -> bool:
        return self.fcpe is not None and bool(self.fcpe.is_loaded)

    def _aligned(self, detector, samples, sample_rate: int, target_frames: int):
        raw = detector.extract_f0(samples, sample_rate)
        f0 = align_f0(raw, target_frames, sample_rate, HOP_SIZE)
        return f0, voiced_mask(f0)

    def extract_f0(
        self, samples: Sequence[float], sample_rate: int, target_frames: int
    ) -> tuple[list[float], list[bool]]:
        """Return per-frame F0 in Hz and the voiced mask."""
        samples = np.asarray(samples, dtype=np.float32)
        if self.detector_type is PitchDetectorType.RMVPE and self.is_rmvpe_available:
            return self._aligned(self.rmvpe, samples, sample_rate, target_frames)
        if self.detector_type is PitchDetectorType.FCPE and self.is_fcpe_available:
            return self._aligned(self.fcpe, samples, sample_rate, target_frames)

        if self.is_rmvpe_available:
            return self._aligned(self.rmvpe, samples, sample_rate, target_frames)
        if self.is_fcpe_available:
            return self._aligned(self.fcpe, samples, sample_rate, target_frames)
        return self.yin.extract_f0(samples)

    def segment_notes(
        self, samples: Sequence[float], f0: Sequence[float], voiced: Sequence[bool]
    ) -> list[AnalyzedNote]:
        """Segment notes with the SOME model when loaded, else from F0 changes."""
        if len(f0) == 0:
            return []
        samples = np.asarray(samples, dtype=np.float32)
        if self.some is not None and self.some.is_loaded and len(samples) > 0:
            notes: list[AnalyzedNote] = []

            def collect(events: list[NoteEvent]) -> None:
                notes.extend(notes_from_events(events, f0, voiced))

            self.some.detect_notes_streaming(samples, SOME_SAMPLE_RATE, collect, None)
            return notes
        return segment_fallback(f0, voiced)