"""RMVPE vocal pitch estimation around a pluggable inference model."""

from __future__ import annotations

from collections.abc import Callable, Sequence

import numpy as np

SAMPLE_RATE = 16000
N_CLASS = 360
N_MELS = 128
MEL_FMIN = 30
MEL_FMAX = SAMPLE_RATE // 2
WINDOW_LENGTH = 1024
HOP_SIZE = 160
RMVPE_CONST = 1997.3794084376191
DEFAULT_THRESHOLD = 0.03

MAX_CHUNK_SAMPLES = SAMPLE_RATE * 30
OVERLAP_SAMPLES = SAMPLE_RATE

RMVPEModel = Callable[[np.ndarray, np.ndarray], Sequence[float]]
ProgressCallback = Callable[[float], None]


class ModelNotLoadedError(RuntimeError):
    """Raised when inference is requested without a loaded model."""


def resample_to_16k(audio: Sequence[float], src_rate: int) -> np.ndarray:
    """Resample audio to 16 kHz with linear interpolation."""
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
    result[interp] = (source[lo] * (1.0 - frac[interp]) + source[lo + 1] * frac[interp]).astype(
        np.float32
    )
    edge = ~interp & (idx < total)
    result[edge] = samples[idx[edge]]
    return result


def decode_f0(hidden, threshold: float) -> list[float]:
    """Decode per-frame class salience (frames x 360) into F0 values in Hz."""
    frames = np.asarray(hidden, dtype=np.float64).reshape(-1, N_CLASS)
    f0: list[float] = []
    for frame in frames:
        center = int(np.argmax(frame))
        if frame[center] < threshold:
            f0.append(0.0)
            continue

        start = max(0, center - 4)
        end = min(N_CLASS, center + 5)
        weights = frame[start:end]
        cents = np.arange(start, end, dtype=np.float64) * 20.0 + RMVPE_CONST
        weight_sum = float(weights.sum())
        if weight_sum > 0.0:
            mean_cents = float((weights * cents).sum()) / weight_sum
            f0.append(10.0 * 2.0 ** (mean_cents / 1200.0))
        else:
            f0.append(0.0)
    return f0


def num_frames(num_samples: int, sample_rate: int) -> int:
    """Number of F0 frames produced for audio of the given length."""
    samples_16k = int(num_samples * float(SAMPLE_RATE) / sample_rate)
    return samples_16k // HOP_SIZE + 1


def time_for_frame(frame_index: int) -> float:
    """Time in seconds at the start of a frame."""
    return frame_index * HOP_SIZE / SAMPLE_RATE


def hop_size_for_sample_rate(sample_rate: int) -> int:
    """Hop size expressed in samples at another sample rate."""
    return int(HOP_SIZE * float(sample_rate) / SAMPLE_RATE)


class RMVPEPitchDetector:
    """Runs an RMVPE model over audio, chunking long inputs.

    ``model`` is called with a float32 waveform of shape (1, n) at 16 kHz and a
    threshold array of shape (1,), and returns F0 values of shape (1, frames)
    or (frames,).
    """

    def __init__(self, model: RMVPEModel | None = None) -> None:
        self.model = model

    @property
    def is_loaded(self) -> bool:
        return self.model is not None

    def _require_model(self) -> RMVPEModel:
        if self.model is None:
            raise ModelNotLoadedError("RMVPE model not loaded")
        return self.model

    def _infer(self, audio_16k: np.ndarray, threshold: float) -> list[float]:
        model = self._require_model()
        waveform = np.ascontiguousarray(audio_16k, dtype=np.float32).reshape(1, -1)
        threshold_tensor = np.array([threshold], dtype=np.float32)
        output = np.asarray(model(waveform, threshold_tensor), dtype=np.float32)
        return output.reshape(-1).tolist()

    def extract_f0(
        self,
        audio: Sequence[float],
        sample_rate: int,
        threshold: float = DEFAULT_THRESHOLD,
    ) -> list[float]:
        """Return F0 in Hz per 10 ms frame (0 for unvoiced frames)."""
        self._require_model()
        audio_16k = resample_to_16k(audio, sample_rate)
        total = len(audio_16k)

        if total <= MAX_CHUNK_SAMPLES:
            return self._infer(audio_16k, threshold)

        overlap_frames = OVERLAP_SAMPLES // HOP_SIZE
        result: list[float] = []
        for pos in range(0, total, MAX_CHUNK_SAMPLES - OVERLAP_SAMPLES):
            chunk_f0 = self._infer(audio_16k[pos:pos + MAX_CHUNK_SAMPLES], threshold)
            if pos == 0:
                result = chunk_f0
            elif len(chunk_f0) > overlap_frames:
                result.extend(chunk_f0[overlap_frames:])
        return result

    def extract_f0_with_progress(
        self,
        audio: Sequence[float],
        sample_rate: int,
        threshold: float = DEFAULT_THRESHOLD,
        progress: ProgressCallback | None = None,
    ) -> list[float]:
        """Like :meth:`extract_f0` in one pass, reporting progress from 0 to 1."""
        self._require_model()

        def report(value: float) -> None:
            if progress is not None:
                progress(value)

        report(0.1)
        audio_16k = resample_to_16k(audio, sample_rate)
        report(0.3)
        report(0.5)
        f0 = self._infer(audio_16k, threshold)
        report(0.9)
        report(1.0)
        return f0