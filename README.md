# hachitune

A library for analysing the pitch of vocal recordings: F0 extraction,
note segmentation, MIDI export, WAV input/output and a block-based
playback engine.

## Modules

- `hachitune.yin` — `PitchDetector(sample_rate, hop_size)`, a YIN pitch
  detector. `extract_f0(audio)` returns per-frame F0 in Hz (0 when
  unvoiced) and a voiced mask; `set_f0_range(f0_min, f0_max)` limits the
  accepted range (default 50–1000 Hz).
- `hachitune.rmvpe` — processing around an RMVPE pitch model:
  `resample_to_16k`, `decode_f0`, `num_frames`, `time_for_frame`,
  `hop_size_for_sample_rate`, and `RMVPEPitchDetector`, which splits input
  longer than 30 s into overlapping chunks.
- `hachitune.fcpe` — processing around an FCPE pitch model: the mel
  filterbank, Hann window and cent table, `extract_mel` (log-mel spectrogram
  at 16 kHz), `decode_f0`, `load_float_table` for raw float32 tables, and
  `FCPEPitchDetector`, which can replace its filterbank and cent table with
  tables read from files.
- `hachitune.some` — silence-based slicing (`get_rms`, `slice_audio`), note
  layout from model durations (`build_chunk_notes`, `NoteEvent`) and
  `SOMEDetector` with `detect_notes`, `detect_notes_with_progress` and
  `detect_notes_streaming`.
- `hachitune.analyzer` — `AudioAnalyzer`, which uses the preferred detector
  (`PitchDetectorType`) and otherwise falls back from RMVPE to FCPE to YIN,
  maps 10 ms detector frames onto 512-sample frames (`align_f0`), and
  segments notes (`AnalyzedNote`) with the SOME detector when loaded or from
  semitone changes in the F0 (`segment_fallback`).
- `hachitune.midi` — `create_midi_file` and `export_to_file` write notes
  (`ExportNote`, with a pitch offset and rest flag) to a one-track MIDI file
  using `MidiExportOptions` (PPQ, tempo, channel, velocity, tempo event,
  pitch quantisation). `export_to_file` raises `ValueError` for no notes.
- `hachitune.fileio` — `load_wav` (PCM 8/16/24/32-bit and float WAV,
  downmixed to mono and resampled), `export_wav` (16-bit PCM), `resample`,
  `convert_to_mono`, drag-and-drop filters `is_interested_in_file_drag` and
  `first_audio_file`, and `AudioFileLoader`, which loads files one at a time
  on a background thread and can cancel queued work.
- `hachitune.engine` — `AudioEngine`, which renders output blocks from a
  loaded waveform with Lagrange sample-rate conversion
  (`LagrangeInterpolator`), play/pause/stop/seek, a `volume_db` property
  clamped to ±12 dB, and position and finish callbacks.
- `hachitune.playback` — `PlaybackController`, tracking playing state on top
  of an `AudioEngine`.
- `hachitune.synthesis` — `expand_to_silence_boundaries` widens an edited
  frame range to silences of at least 5 frames; `replace_region` overwrites
  that part of a waveform in place.

## Models

No neural models are included. `RMVPEPitchDetector`, `FCPEPitchDetector`
and `SOMEDetector` take a callable you provide:

- RMVPE: called with a float32 waveform of shape `(1, n)` at 16 kHz and a
  threshold array of shape `(1,)`; returns F0 values per frame.
- FCPE: called with a log-mel array of shape `(1, frames, 128)`; returns
  salience of shape `(1, frames, 360)`.
- SOME: called with a float32 waveform of shape `(1, n)` at 44.1 kHz;
  returns MIDI pitches, rest flags and note durations in seconds.

Calling a detector without a model raises `ModelNotLoadedError`.

## Example

```python
import numpy as np
from hachitune.yin import PitchDetector
from hachitune.midi import ExportNote, MidiExportOptions, export_to_file

sr = 44100
t = np.arange(sr) / sr
audio = 0.5 * np.sin(2 * np.pi * 220.0 * t).astype(np.float32)

f0, voiced = PitchDetector(sr, 512).extract_f0(audio)

notes = [ExportNote(start_frame=0, end_frame=86, midi_note=57.0)]
export_to_file(notes, "out.mid", MidiExportOptions(tempo=120.0), 512, sr)
```

## What it does not do

- It has no command-line tool and no graphical editor.
- `AudioEngine` only returns sample arrays from `render`; it does not open
  an audio device or play sound.
- There is no vocoder: `hachitune.synthesis` places already synthesised
  audio into a waveform but does not produce it.
- Only WAV files are decoded. `.mp3`, `.flac`, `.aiff` and `.htpx` names
  pass the drag-and-drop filters, but `load_wav` raises `ValueError` on
  them and `AudioFileLoader` skips them without a completion call.
- No project files are read or written.

## Installation

```
pip install .
```

## Tests

```
pip install .[test]
pytest
```