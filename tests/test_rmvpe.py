import numpy as np
import pytest

from hachitune.rmvpe import (
    HOP_SIZE,
    MAX_CHUNK_SAMPLES,
    N_CLASS,
    OVERLAP_SAMPLES,
    SAMPLE_RATE,
    ModelNotLoadedError,
    RMVPEPitchDetector,
    decode_f0,
    hop_size_for_sample_rate,
    num_frames,
    resample_to_16k,
    time_for_frame,
)


class FakeModel:
    def __init__(self):
        self.calls = []

    def __call__(self, waveform, threshold):
        self.calls.append((waveform.copy(), threshold.copy()))
        frames = waveform.shape[1] // HOP_SIZE + 1
        return np.full((1, frames), float(len(self.calls) - 1), dtype=np.float32)


def test_resample_identity_at_16k():
    audio = [0.1, -0.2, 0.3]
    out = resample_to_16k(audio, SAMPLE_RATE)
    assert np.allclose(out, audio)


def test_resample_halves_rate():
    audio = np.arange(10, dtype=np.float32)
    out = resample_to_16k(audio, 2 * SAMPLE_RATE)
    assert len(out) == 5
    assert np.allclose(out, audio[::2])


def test_resample_upsampling_interpolates_between_neighbours():
    audio = np.array([0.0, 1.0, 0.0, -1.0], dtype=np.float32)
    out = resample_to_16k(audio, SAMPLE_RATE // 2)
    assert len(out) == 2 * len(audio)
    assert np.allclose(out[::2], audio)
    assert out[1] == pytest.approx(0.5)


def test_decode_below_threshold_is_unvoiced():
    hidden = np.full((3, N_CLASS), 0.01, dtype=np.float32)
    assert decode_f0(hidden, 0.03) == [0.0, 0.0, 0.0]


def test_decode_octave_apart_bins():
    hidden = np.zeros((2, N_CLASS), dtype=np.float32)
    hidden[0, 100] = 1.0
    hidden[1, 160] = 1.0
    low, high = decode_f0(hidden, 0.03)
    assert low > 0.0
    assert high / low == pytest.approx(2.0)


def test_decode_symmetric_neighbours_keep_center():
    single = np.zeros((1, N_CLASS), dtype=np.float32)
    single[0, 50] = 1.0
    spread = single.copy()
    spread[0, 49] = 0.5
    spread[0, 51] = 0.5
    assert decode_f0(spread, 0.03)[0] == pytest.approx(decode_f0(single, 0.03)[0])


def test_frame_helpers():
    assert num_frames(SAMPLE_RATE, SAMPLE_RATE) == SAMPLE_RATE // HOP_SIZE + 1
    assert time_for_frame(SAMPLE_RATE // HOP_SIZE) == pytest.approx(1.0)
    assert hop_size_for_sample_rate(SAMPLE_RATE) == HOP_SIZE
    assert hop_size_for_sample_rate(2 * SAMPLE_RATE) == 2 * HOP_SIZE


def test_unloaded_detector_raises():
    detector = RMVPEPitchDetector()
    assert detector.is_loaded is False
    with pytest.raises(ModelNotLoadedError):
        detector.extract_f0([0.0] * 100, SAMPLE_RATE)
    with pytest.raises(ModelNotLoadedError):
        detector.extract_f0_with_progress([0.0] * 100, SAMPLE_RATE)


def test_short_audio_single_call_with_threshold():
    model = FakeModel()
    detector = RMVPEPitchDetector(model)
    audio = np.zeros(SAMPLE_RATE, dtype=np.float32)
    f0 = detector.extract_f0(audio, SAMPLE_RATE, threshold=0.2)
    assert len(model.calls) == 1
    waveform, threshold = model.calls[0]
    assert waveform.shape == (1, SAMPLE_RATE)
    assert threshold[0] == pytest.approx(0.2)
    assert len(f0) == num_frames(SAMPLE_RATE, SAMPLE_RATE)


def test_long_audio_is_chunked_and_overlap_skipped():
    model = FakeModel()
    detector = RMVPEPitchDetector(model)
    audio = np.zeros(MAX_CHUNK_SAMPLES + 1, dtype=np.float32)
    f0 = detector.extract_f0(audio, SAMPLE_RATE)
    assert len(model.calls) == 2
    first_len = model.calls[0][0].shape[1] // HOP_SIZE + 1
    second_len = model.calls[1][0].shape[1] // HOP_SIZE + 1
    skip = OVERLAP_SAMPLES // HOP_SIZE
    assert len(f0) == first_len + second_len - skip
    assert all(v == 0.0 for v in f0[:first_len])
    assert all(v == 1.0 for v in f0[first_len:])


def test_progress_sequence():
    seen = []
    detector = RMVPEPitchDetector(FakeModel())
    f0 = detector.extract_f0_with_progress(np.zeros(1600), SAMPLE_RATE, 0.03, seen.append)
    assert seen == [0.1, 0.3, 0.5, 0.9, 1.0]
    assert len(f0) == num_frames(1600, SAMPLE_RATE)