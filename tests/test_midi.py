import mido
import pytest

from hachitune.midi import (
    ExportNote,
    MidiExportOptions,
    clamp_midi_note,
    create_midi_file,
    export_to_file,
    frame_to_ticks,
    seconds_to_ticks,
)


def absolute(track):
    now = 0
    result = []
    for msg in track:
        now += msg.time
        result.append((now, msg))
    return result


def test_seconds_to_ticks_one_second_at_120():
    assert seconds_to_ticks(1.0, 120.0, 480) == 960


def test_frame_to_ticks_matches_seconds():
    assert frame_to_ticks(0, 120.0, 480) == 0
    assert frame_to_ticks(100, 120.0, 480, hop_size=441, sample_rate=44100) == seconds_to_ticks(
        1.0, 120.0, 480
    )


def test_clamp_midi_note():
    assert clamp_midi_note(200.0) == 127
    assert clamp_midi_note(-5.0) == 0
    assert clamp_midi_note(60.9) == 60


def test_tempo_and_resolution():
    midi = create_midi_file([ExportNote(0, 10, 60.0)])
    assert midi.ticks_per_beat == 480
    tempos = [m for m in midi.tracks[0] if m.type == "set_tempo"]
    assert tempos[0].tempo == 500000
    assert midi.tracks[0][-1].type == "end_of_track"


def test_no_tempo_track_option():
    midi = create_midi_file([ExportNote(0, 10, 60.0)], MidiExportOptions(include_tempo_track=False))
    assert not any(m.type == "set_tempo" for m in midi.tracks[0])


def test_rests_skipped_and_pitch_offset_applied():
    notes = [
        ExportNote(0, 10, 60.0, pitch_offset=2.0),
        ExportNote(10, 20, 62.0, is_rest=True),
        ExportNote(20, 30, 64.0),
    ]
    midi = create_midi_file(notes)
    ons = [m.note for m in midi.tracks[0] if m.type == "note_on"]
    assert ons == [62, 64]


def test_quantize_option():
    note = ExportNote(0, 10, 60.6)
    quantized = create_midi_file([note], MidiExportOptions(quantize_pitch=True))
    truncated = create_midi_file([note], MidiExportOptions(quantize_pitch=False))
    assert [m.note for m in quantized.tracks[0] if m.type == "note_on"] == [61]
    assert [m.note for m in truncated.tracks[0] if m.type == "note_on"] == [60]


def test_zero_length_note_gets_one_tick():
    midi = create_midi_file([ExportNote(5, 5, 60.0)])
    events = absolute(midi.tracks[0])
    on = next(t for t, m in events if m.type == "note_on")
    off = next(t for t, m in events if m.type == "note_off")
    assert off - on == 1


def test_events_sorted_and_channel_velocity():
    options = MidiExportOptions(channel=3, velocity=90)
    notes = [ExportNote(100, 200, 67.0), ExportNote(0, 50, 60.0)]
    midi = create_midi_file(notes, options)
    events = absolute(midi.tracks[0])
    times = [t for t, _ in events]
    assert times == sorted(times)
    ons = [m for _, m in events if m.type == "note_on"]
    assert [m.note for m in ons] == [60, 67]
    assert all(m.channel == 3 and m.velocity == 90 for m in ons)


def test_export_round_trip(tmp_path):
    path = tmp_path / "out.mid"
    notes = [ExportNote(0, 40, 60.0), ExportNote(40, 80, 65.0)]
    export_to_file(notes, path)
    loaded = mido.MidiFile(str(path))
    assert loaded.ticks_per_beat == 480
    assert [m.note for m in loaded.tracks[0] if m.type == "note_on" and m.velocity > 0] == [60, 65]


def test_export_empty_raises(tmp_path):
    with pytest.raises(ValueError):
        export_to_file([], tmp_path / "empty.mid")
    assert not (tmp_path / "empty.mid").exists()