"""Export of note data to standard MIDI files."""

from __future__ import annotations

import math
import os
from collections.abc import Iterable
from dataclasses import dataclass

import mido

DEFAULT_HOP_SIZE = 512
DEFAULT_SAMPLE_RATE = 44100


@dataclass
class MidiExportOptions:
    """Settings for MIDI export."""

    ticks_per_quarter_note: int = 480
    tempo: float = 120.0
    channel: int = 0
    velocity: int = 100
    include_tempo_track: bool = True
    quantize_pitch: bool = True


@dataclass
class ExportNote:
    """A note in analysis frames with its user pitch offset."""

    start_frame: int
    end_frame: int
    midi_note: float
    pitch_offset: float = 0.0
    is_rest: bool = False

    @property
    def adjusted_midi_note(self) -> float:
        return self.midi_note + self.pitch_offset


def _round_half_away(value: float) -> float:
    return math.copysign(math.floor(abs(value) + 0.5), value)


def seconds_to_ticks(seconds: float, tempo: float, ppq: int) -> int:
    """Convert seconds to MIDI ticks at the given tempo."""
    beats = seconds * (tempo / 60.0)
    return int(beats * ppq)


def frame_to_ticks(
    frame: int,
    tempo: float,
    ppq: int,
    hop_size: int = DEFAULT_HOP_SIZE,
    sample_rate: int = DEFAULT_SAMPLE_RATE,
) -> int:
    """Convert an analysis frame index to MIDI ticks."""
    return seconds_to_ticks(frame * hop_size / sample_rate, tempo, ppq)


def clamp_midi_note(midi_note: float) -> int:
    """Truncate to an integer note and clamp to 0..127."""
    return min(max(int(midi_note), 0), 127)


def create_midi_file(
    notes: Iterable[ExportNote],
    options: MidiExportOptions | None = None,
    hop_size: int = DEFAULT_HOP_SIZE,
    sample_rate: int = DEFAULT_SAMPLE_RATE,
) -> mido.MidiFile:
    """Build a single-track MIDI file from notes, skipping rests."""
    options = options or MidiExportOptions()
    ppq = options.ticks_per_quarter_note
    events: list[tuple[int, mido.Message | mido.MetaMessage]] = []

    if options.include_tempo_track:
        micros_per_quarter = int(60000000.0 / options.tempo)
        events.append((0, mido.MetaMessage("set_tempo", tempo=micros_per_quarter)))

    for note in notes:
        if note.is_rest:
            continue
        pitch = note.adjusted_midi_note
        value = clamp_midi_note(_round_half_away(pitch) if options.quantize_pitch else pitch)

        start = frame_to_ticks(note.start_frame, options.tempo, ppq, hop_size, sample_rate)
        end = frame_to_ticks(note.end_frame, options.tempo, ppq, hop_size, sample_rate)
        if end <= start:
            end = start + 1

        events.append(
            (start, mido.Message("note_on", channel=options.channel, note=value,
                                 velocity=options.velocity))
        )
        events.append(
            (end, mido.Message("note_off", channel=options.channel, note=value, velocity=0))
        )

    events.sort(key=lambda item: item[0])
    last_time = events[-1][0] if events else 0
    events.append((last_time, mido.MetaMessage("end_of_track")))

    track = mido.MidiTrack()
    previous = 0
    for tick, message in events:
        track.append(message.copy(time=tick - previous))
        previous = tick

    midi_file = mido.MidiFile(type=1, ticks_per_beat=ppq)
    midi_file.tracks.append(track)
    return midi_file


def export_to_file(
    notes: Iterable[ExportNote],
    path: str | os.PathLike,
    options: MidiExportOptions | None = None,
    hop_size: int = DEFAULT_HOP_SIZE,
    sample_rate: int = DEFAULT_SAMPLE_RATE,
) -> None:
    """Write notes to a MIDI file; raises ValueError when there are no notes."""
    notes = list(notes)
    if not notes:
        raise ValueError("no notes to export")
    create_midi_file(notes, options, hop_size, sample_rate).save(os.fspath(path))