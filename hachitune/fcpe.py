"""FCPE pitch estimation: mel front end, cent decoding and model driver."""

from __future__ import annotations

import math
import os
from collections.abc import Callable, Sequence
from pathlib import Path

import numpy as np

from hachitune.rmvpe import ModelNotLoadedError

__all__ = [
    "F0_MIN",
    "F0_MAX",
    "OUT_DIMS",
    "INPUT_CHANNELS",
    "FCPE_SAMPLE_RATE",
    "N_MELS",
    "N_FFT",
    "WIN_SIZE",
    "HOP_SIZE",
    "FMIN",
    "FMAX",
    "CLIP_VAL",
    "DEFAULT_THRESHOLD",
    "ModelNotLoadedError",
    "f0_to_cent",
    "cent_to_f0",
    "mel_filterbank",
    "hann_window",
    "cent_table",
    "load_float_table",
    "resample_to_16k",
    "extract_mel",
    "decode_f0",
    "num_frames",
    "time_for_frame",
    "hop_size_for_sample_rate",
    "FCPEPitchDetector",
]

F0_MIN = 32.7
F0_MAX = 1975.5
OUT_DIMS = 360
INPUT_CHANNELS = 128

FCPE_SAMPLE_RATE = 16000
N_MELS = 128
N_FFT = 1024
WIN_SIZE = 1024
HOP_SIZE = 160
FMIN = 0.0
FMAX = 8000.0
CLIP_VAL = 1e-5
DEFAULT_THRESHOLD = 0.05

NUM_BINS = N_FFT // 2 + 1
_PAD_LEFT = (WIN_SIZE - HOP_SIZE) // 2
_MIN_PAD_RIGHT = (WIN_SIZE - HOP_SIZE + 1) // 2

FCPEModel = Callable[[np.ndarray], np.ndarray]
ProgressCallback = Callable[[float], None]


def f0_to_cent(f0: float) -> float:
    """Convert a frequency in Hz to cents above 10 Hz."""
    return 1200.0 * math.log2(f0 / 10.0)


def cent_to_f0(cent: float) -> float:
    """Convert cents above 10 Hz back to a frequency in Hz."""
    return 10.0 * 2.0 ** (cent / 1200.0)


def _hz_to_mel(hz: np.ndarray | float) -> np.ndarray:
    return 2595.0 * np.log10(1.0 + np.asarray(hz, dtype=np.float64) / 700.0)


def _mel_to_hz(mel: np.ndarray) -> np.ndarray:
    return 700.0 * (10.0 ** (mel / 2595.0) - 1.0)


def mel_filterbank() -> np.ndarray:
    """Triangular mel filterbank of shape (N_MELS, N_FFT // 2 + 1), area-normalised."""
    mel_min = float(_hz_to_mel(FMIN))
    mel_max = float(_hz_to_mel(FMAX))
    steps = np.arange(N_MELS + 2, dtype=np.float64)
    hz_points = _mel_to_hz(mel_min + (mel_max - mel_min) * steps / (N_MELS + 1))
    freqs = np.arange(NUM_BINS, dtype=np.float64) * FCPE_SAMPLE_RATE / N_FFT

    bank = np.zeros((N_MELS, NUM_BINS), dtype=np.float64)
    for m, (low, center, high) in enumerate(
        zip(hz_points[:-2], hz_points[1:-1], hz_points[2:])
    ):
        enorm = 2.0 / (high - low)
        rising = (freqs >= low) & (freqs < center)
        falling = (freqs >= center) & (freqs <= high)
        bank[m, rising] = enorm * (freqs[rising] - low) / (center - low)
        bank[m, falling] = enorm * (high - freqs[falling]) / (high - center)
    return bank.astype(np.float32)


def hann_window() -> np.ndarray:
    """Symmetric Hann window of WIN_SIZE samples."""
    i = np.arange(WIN_SIZE, dtype=np.float64)
    return (0.5 * (1.0 - np.cos(2.0 * np.pi * i / (WIN_SIZE - 1)))).astype(np.float32)


def cent_table() -> np.ndarray:
    """OUT_DIMS cent values spaced evenly between F0_MIN and F0_MAX."""
    return np.linspace(f0_to_cent(F0_MIN), f0_to_cent(F0_MAX), OUT_DIMS).astype(np.float32)


def load_float_table(path: str | os.PathLike, count: int) -> np.ndarray:
    """Read ``count`` raw float32 values from a file; missing values are zero."""
    data = np.fromfile(os.fspath(path), dtype=np.float32, count=count)
    if len(data) < count:
        data = np.concatenate((data, np.zeros(count - len(data), dtype=np.float32)))
    return data


def resample_to_16k(audio: Sequence[float], src_rate: int) -> np.ndarray:
    """Linearly resample audio to 16 kHz."""
    samples = np.asarray(audio, dtype=np.float32)
    if src_rate == FCPE_SAMPLE_RATE:
        return samples.copy()

    n = len(samples)
    ratio = float(FCPE_SAMPLE_RATE) / src_rate
    out_count = int(n * ratio)
    out = np.zeros(out_count, dtype=np.float32)
    if out_count == 0 or n == 0:
        return out

    positions = np.arange(out_count, dtype=np.float64) / ratio
    index = positions.astype(np.int64)
    frac = positions - index

    inner = index + 1 < n
    idx = index[inner]
    out[inner] = (
        samples[idx].astype(np.float64) * (1.0 - frac[inner])
        + samples[idx + 1].astype(np.float64) * frac[inner]
    ).astype(np.float32)

    edge = (~inner) & (index < n)
    out[edge] = samples[index[edge]]
    return out


def extract_mel(
    audio: Sequence[float],
    filterbank: np.ndarray | None = None,
    window: np.ndarray | None = None,
) -> np.ndarray:
    """Log-mel spectrogram of 16 kHz audio, shape (frames, N_MELS)."""
    bank = mel_filterbank() if filterbank is None else np.asarray(filterbank, dtype=np.float32)
    win = hann_window() if window is None else np.asarray(window, dtype=np.float32)
    samples = np.asarray(audio, dtype=np.float32)
    n = len(samples)

    pad_right = max(_MIN_PAD_RIGHT, WIN_SIZE - n - _PAD_LEFT)
    if pad_right < n:
        left = samples[np.minimum(np.arange(_PAD_LEFT, 0, -1), n - 1)]
        right = samples[np.maximum(n - 2 - np.arange(pad_right), 0)]
        padded = np.concatenate((left, samples, right))
    else:
        padded = np.zeros(_PAD_LEFT + n + pad_right, dtype=np.float32)
        padded[_PAD_LEFT:_PAD_LEFT + n] = samples

    frame_count = max(1, 1 + int((len(padded) - WIN_SIZE) / HOP_SIZE))
    needed = (frame_count - 1) * HOP_SIZE + WIN_SIZE
    if len(padded) < needed:
        padded = np.concatenate((padded, np.zeros(needed - len(padded), dtype=np.float32)))

    index = np.arange(frame_count)[:, None] * HOP_SIZE + np.arange(WIN_SIZE)[None, :]
    frames = padded[index] * win[None, :]
    spectrum = np.fft.rfft(frames, n=N_FFT, axis=1)
    power = (spectrum.real ** 2 + spectrum.imag ** 2).astype(np.float32)
    magnitude = np.sqrt(power + np.float32(1e-9))
    mel = magnitude @ bank.T
    return np.log(np.maximum(mel, np.float32(CLIP_VAL))).astype(np.float32)


def decode_f0(
    latent, cents: np.ndarray | None = None, threshold: float = DEFAULT_THRESHOLD
) -> list[float]:
    """Decode per-frame salience (frames x OUT_DIMS) into F0 values in Hz."""
    table = cent_table() if cents is None else np.asarray(cents, dtype=np.float64)
    frames = np.asarray(latent, dtype=np.float64).reshape(-1, OUT_DIMS)
    f0: list[float] = []
    for frame in frames:
        peak = int(np.argmax(frame))
        if frame[peak] <= threshold:
            f0.append(0.0)
            continue
        start = max(0, peak - 4)
        end = min(OUT_DIMS - 1, peak + 4) + 1
        weights = frame[start:end]
        weight_sum = float(weights.sum())
        if weight_sum > 1e-9:
            f0.append(cent_to_f0(float((weights * table[start:end]).sum()) / weight_sum))
        else:
            f0.append(0.0)
    return f0


def num_frames(num_samples: int, sample_rate: int) -> int:
    """Number of F0 frames produced for audio of the given length."""
    samples_16k = int(num_samples * float(FCPE_SAMPLE_RATE) / sample_rate)
    pad_right = max(_MIN_PAD_RIGHT, WIN_SIZE - samples_16k - _PAD_LEFT)
    padded = samples_16k + _PAD_LEFT + pad_right
    return 1 + int((padded - WIN_SIZE) / HOP_SIZE)


def time_for_frame(frame_index: int) -> float:
    """Time in seconds at the start of a frame."""
    return frame_index * HOP_SIZE / FCPE_SAMPLE_RATE


def hop_size_for_sample_rate(sample_rate: int) -> int:
    """Hop size expressed in samples at another sample rate."""
    return int(HOP_SIZE * float(sample_rate) / FCPE_SAMPLE_RATE)


class FCPEPitchDetector:
    """Runs an FCPE model on a log-mel spectrogram of the input.

    ``model`` is called with a float32 array of shape (1, frames, N_MELS) and
    returns salience of shape (1, frames, OUT_DIMS).  Optional binary tables
    of raw float32 values replace the built-in filterbank and cent table.
    """

    def __init__(
        self,
        model: FCPEModel | None = None,
        mel_filterbank_path: str | os.PathLike | None = None,
        cent_table_path: str | os.PathLike | None = None,
    ) -> None:
        self.model = model
        self.filterbank = mel_filterbank()
        self.window = hann_window()
        self.cents = cent_table()
        if mel_filterbank_path is not None and Path(mel_filterbank_path).is_file():
            self.filterbank = load_float_table(
                mel_filterbank_path, N_MELS * NUM_BINS
            ).reshape(N_MELS, NUM_BINS)
        if cent_table_path is not None and Path(cent_table_path).is_file():
            self.cents = load_float_table(cent_table_path, OUT_DIMS)

    @property
    def is_loaded(self) -> bool:
        return self.model is not None

    def _require_model(self) -> FCPEModel:
        if self.model is None:
            raise ModelNotLoadedError("FCPE model not loaded")
        return self.model

    def extract_f0(
        self,
        audio: Sequence[float],
        sample_rate: int,
        threshold: float = DEFAULT_THRESHOLD,
    ) -> list[float]:
        """Return F0 in Hz per 10 ms frame (0 for unvoiced frames)."""
        return self.extract_f0_with_progress(audio, sample_rate, threshold)

    def extract_f0_with_progress(
        self,
        audio: Sequence[float],
        sample_rate: int,
        threshold: float = DEFAULT_THRESHOLD,
        progress: ProgressCallback | None = None,
    ) -> list[float]:
        """Like :meth:`extract_f0`, reporting progress from 0 to 1."""
        model = self._require_model()

        def report(value: float) -> None:
            if progress is not None:
                progress(value)

        report(0.1)
        audio_16k = resample_to_16k(audio, sample_rate)
        report(0.3)
        mel = extract_mel(audio_16k, self.filterbank, self.window)
        report(0.5)
        inputs = np.ascontiguousarray(mel, dtype=np.float32).reshape(1, -1, N_MELS)
        report(0.6)
        output = np.asarray(model(inputs), dtype=np.float32)
        report(0.8)
        latent = output.reshape(-1, OUT_DIMS)
        report(0.9)
        f0 = decode_f0(latent, self.cents, threshold)
        report(1.0)
        return f0