import math

import numpy as np
import pytest

from hachitune import fcpe
from hachitune.fcpe import (
    FCPEPitchDetector,
    ModelNotLoadedError,
    cent_table,
    cent_to_f0,
    decode_f0,
    extract_mel,
    f0_to_cent,
    hann_window,
    hop_size_for_sample_rate,
    load_float_table,
    mel_filterbank,
    num_frames,
    resample_to_16k,
    time_for_frame,
)


def _sine(freq, seconds=0.5, rate=16000, amp=0.5):
    t = np.arange(int(seconds * rate)) / rate
    return (amp * np.sin(2 * np.pi * freq * t)).astype(np.float32)


def test_cent_round_trip():
    for f0 in (55.0, 220.0, 1000.0):
        assert cent_to_f0(f0_to_cent(f0)) == pytest.approx(f0)
    assert f0_to_cent(10.0) == 0.0
    assert f0_to_cent(20.0) == pytest.approx(1200.0)


def test_hann_window_shape():
    window = hann_window()
    assert window.shape == (fcpe.WIN_SIZE,)
    assert window[0] == pytest.approx(0.0, abs=1e-7)
    assert window[-1] == pytest.approx(0.0, abs=1e-6)
    assert np.allclose(window, window[::-1], atol=1e-6)
    assert window.max() <= 1.0


def test_cent_table_range():
    table = cent_table()
    assert table.shape == (fcpe.OUT_DIMS,)
    assert table[0] == pytest.approx(f0_to_cent(fcpe.F0_MIN), rel=1e-5)
    assert table[-1] == pytest.approx(f0_to_cent(fcpe.F0_MAX), rel=1e-5)
    assert np.all(np.diff(table) > 0)


def test_mel_filterbank_shape_and_values():
    bank = mel_filterbank()
    assert bank.shape == (fcpe.N_MELS, fcpe.N_FFT // 2 + 1)
    assert np.all(bank >= 0)
    assert np.all(bank.max(axis=1) > 0)
    assert bank[0, 0] == 0.0


def test_load_float_table_round_trip(tmp_path):
    values = np.arange(6, dtype=np.float32) * 0.5
    path = tmp_path / "table.bin"
    values.tofile(path)
    assert np.array_equal(load_float_table(path, 6), values)
    padded = load_float_table(path, 8)
    assert padded.shape == (8,)
    assert np.array_equal(padded[:6], values)
    assert np.all(padded[6:] == 0)


def test_resample_identity_and_length():
    audio = _sine(440.0)
    assert np.array_equal(resample_to_16k(audio, 16000), audio)
    audio_44k = np.zeros(44100, dtype=np.float32)
    assert len(resample_to_16k(audio_44k, 44100)) == 16000


@pytest.mark.parametrize("length", [0, 100, 1000, 8000, 16001])
def test_extract_mel_frame_count_matches_num_frames(length):
    audio = np.random.default_rng(0).standard_normal(length).astype(np.float32) * 0.1
    mel = extract_mel(audio)
    assert mel.shape == (num_frames(length, 16000), fcpe.N_MELS)
    assert np.all(mel >= np.log(np.float32(fcpe.CLIP_VAL)) - 1e-6)


def test_extract_mel_louder_is_larger():
    quiet = extract_mel(_sine(440.0, amp=0.01))
    loud = extract_mel(_sine(440.0, amp=0.5))
    assert loud.mean() > quiet.mean()


def test_decode_single_peak():
    table = cent_table()
    latent = np.zeros((2, fcpe.OUT_DIMS), dtype=np.float32)
    latent[0, 100] = 1.0
    latent[1, 5] = 0.01
    f0 = decode_f0(latent, table, 0.05)
    assert f0[0] == pytest.approx(cent_to_f0(float(table[100])), rel=1e-5)
    assert f0[1] == 0.0


def test_decode_threshold_is_exclusive_and_zero_weights():
    latent = np.zeros((1, fcpe.OUT_DIMS))
    latent[0, 10] = 0.05
    assert decode_f0(latent, None, 0.05) == [0.0]
    assert decode_f0(np.zeros((1, fcpe.OUT_DIMS)), None, -1.0) == [0.0]


def test_decode_symmetric_neighbours_keep_center():
    table = cent_table()
    latent = np.zeros((1, fcpe.OUT_DIMS))
    latent[0, 200] = 1.0
    latent[0, 199] = 0.5
    latent[0, 201] = 0.5
    f0 = decode_f0(latent, table, 0.05)[0]
    assert f0 == pytest.approx(cent_to_f0(float(table[200])), rel=1e-4)


def test_frame_helpers():
    assert time_for_frame(0) == 0.0
    assert time_for_frame(100) == pytest.approx(1.0)
    assert hop_size_for_sample_rate(16000) == fcpe.HOP_SIZE
    assert num_frames(16000, 16000) == num_frames(32000, 32000)


def test_detector_requires_model():
    detector = FCPEPitchDetector()
    assert not detector.is_loaded
    with pytest.raises(ModelNotLoadedError):
        detector.extract_f0(np.zeros(1000), 16000)


def test_detector_runs_model():
    seen = []

    def model(inputs):
        seen.append(inputs.shape)
        out = np.zeros((1, inputs.shape[1], fcpe.OUT_DIMS), dtype=np.float32)
        out[0, :, 150] = 1.0
        return out

    detector = FCPEPitchDetector(model)
    audio = _sine(220.0, seconds=0.25)
    progress = []
    f0 = detector.extract_f0_with_progress(audio, 16000, 0.05, progress.append)
    frames = num_frames(len(audio), 16000)
    assert seen[0] == (1, frames, fcpe.N_MELS)
    assert len(f0) == frames
    expected = cent_to_f0(float(cent_table()[150]))
    assert all(math.isclose(v, expected, rel_tol=1e-5) for v in f0)
    assert progress == sorted(progress)
    assert progress[-1] == 1.0


def test_detector_loads_tables(tmp_path):
    bank_path = tmp_path / "mel.bin"
    np.zeros(fcpe.N_MELS * (fcpe.N_FFT // 2 + 1), dtype=np.float32).tofile(bank_path)
    cents_path = tmp_path / "cents.bin"
    custom = np.full(fcpe.OUT_DIMS, 1200.0, dtype=np.float32)
    custom.tofile(cents_path)
    captured = []

    def model(inputs):
        captured.append(inputs.copy())
        out = np.zeros((1, inputs.shape[1], fcpe.OUT_DIMS), dtype=np.float32)
        out[0, :, 50] = 1.0
        return out

    detector = FCPEPitchDetector(model, bank_path, cents_path)
    f0 = detector.extract_f0(_sine(440.0, seconds=0.1), 16000)
    assert np.allclose(captured[0], np.log(np.float32(fcpe.CLIP_VAL)))
    assert all(v == pytest.approx(cent_to_f0(1200.0)) for v in f0)


def test_detector_ignores_missing_table_paths(tmp_path):
    detector = FCPEPitchDetector(None, tmp_path / "none.bin", tmp_path / "none2.bin")
    assert np.array_equal(detector.filterbank, mel_filterbank())
    assert np.array_equal(detector.cents, cent_table())