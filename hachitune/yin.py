"""YIN fundamental-frequency estimator."""

from __future__ import annotations

import math
from collections.abc import Sequence

import numpy as np

_MIN_FRAME_SAMPLES = 512


def _trunc_div(numerator: int, denominator: int) -> int:
    """Integer division rounding toward zero."""
    return int(numerator / denominator)


class PitchDetector:
    """Frame-wise pitch detection with the YIN algorithm."""

    def __init__(self, sample_rate: int = 44100, hop_size: int = 512) -> None:
        self.sample_rate = sample_rate
        self.hop_size = hop_size
        self.f0_min = 50.0
        self.f0_max = 1000.0
        self.threshold = 0.1
        self.window_size = max(2048, int(sample_rate / self.f0_min) * 2)

    def set_f0_range(self, f0_min: float, f0_max: float) -> None:
        """Restrict the accepted pitch range in Hz."""
        self.f0_min = f0_min
        self.f0_max = f0_max

    def extract_f0(self, audio: Sequence[float]) -> tuple[list[float], list[bool]]:
        """Return per-frame F0 values (0 when unvoiced) and the voiced mask."""
        samples = np.asarray(audio, dtype=np.float64)
        total = len(samples)

        num_frames = _trunc_div(total - self.window_size, self.hop_size) + 1
        if num_frames < 1:
            num_frames = max(1, total // self.hop_size)

        f0_values: list[float] = []
        voiced: list[bool] = []
        for frame in range(num_frames):
            start = frame * self.hop_size
            length = min(self.window_size, total - start)
            if length < _MIN_FRAME_SAMPLES:
                f0_values.append(0.0)
                voiced.append(False)
                continue

            pitch = self._yin(samples[start:start + length])
            if pitch > 0.0 and self.f0_min <= pitch <= self.f0_max:
                f0_values.append(pitch)
                voiced.append(True)
            else:
                f0_values.append(0.0)
                voiced.append(False)

        return f0_values, voiced

    def _yin(self, buffer: np.ndarray) -> float:
        half = len(buffer) // 2
        if half < 2:
            return -1.0

        segment = buffer[:2 * half]
        head = segment[:half]
        squares = segment * segment
        cumulative = np.concatenate(([0.0], np.cumsum(squares)))
        taus = np.arange(half)
        shifted_energy = cumulative[taus + half] - cumulative[taus]
        cross = np.correlate(segment, head, mode="valid")[:half]
        diff = np.clip(squares[:half].sum() + shifted_energy - 2.0 * cross, 0.0, None)

        running = np.cumsum(diff[1:])
        d_prime = np.empty(half)
        d_prime[0] = 1.0
        with np.errstate(divide="ignore", invalid="ignore"):
            d_prime[1:] = diff[1:] * np.arange(1, half) / running
        d_prime_list = d_prime.tolist()

        tau_min = int(self.sample_rate / self.f0_max)
        tau_max = min(half - 1, int(self.sample_rate / self.f0_min))

        tau = tau_min
        while tau < tau_max:
            if d_prime_list[tau] < self.threshold:
                while tau + 1 < tau_max and d_prime_list[tau + 1] < d_prime_list[tau]:
                    tau += 1
                break
            tau += 1

        if tau >= tau_max or not d_prime_list[tau] < self.threshold:
            return -1.0

        better_tau = _parabolic_interpolation(d_prime_list, tau)
        if better_tau > 0.0:
            return float(self.sample_rate) / better_tau
        return -1.0


def _parabolic_interpolation(values: list[float], tau: int) -> float:
    if tau < 1 or tau >= len(values) - 1:
        return float(tau)

    s0, s1, s2 = values[tau - 1], values[tau], values[tau + 1]
    numerator = s2 - s0
    denominator = 2.0 * (2.0 * s1 - s2 - s0)
    if denominator == 0.0:
        return math.nan if numerator == 0.0 else float(tau)

    adjustment = numerator / denominator
    if abs(adjustment) > 1.0:
        adjustment = 0.0
    return tau + adjustment