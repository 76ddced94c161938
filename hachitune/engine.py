"""Playback engine producing output blocks from a loaded waveform."""

from __future__ import annotations

import math
import threading
from collections.abc import Callable, Sequence

import numpy as np

PositionCallback = Callable[[float], None]
FinishCallback = Callable[[], None]

_MIN_DB = -60.0
_MAX_VOLUME_DB = 12.0


class LagrangeInterpolator:
    """Five-point Lagrange resampler that keeps state between calls."""

    _POINTS = 5

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        """Clear the sample history and the fractional position."""
        self._history = [0.0] * self._POINTS
        self._index = 0
        self._sub_sample_pos = 1.0

    def _push(self, value: float) -> None:
        self._history[self._index] = value
        self._index = (self._index + 1) % self._POINTS

    def _value_at(self, offset: float) -> float:
        ordered = self._history[self._index:] + self._history[:self._index]
        result = 0.0
        for k, sample in enumerate(ordered):
            coefficient = sample
            for j in range(self._POINTS):
                if j != k:
                    coefficient *= (offset - (j - 2)) / (k - j)
            result += coefficient
        return result

    def process(
        self, ratio: float, source: Sequence[float], num_out: int
    ) -> tuple[np.ndarray, int]:
        """Produce ``num_out`` samples read at ``ratio`` input samples per output.

        Returns the output and the number of input samples consumed.
        """
        source = np.asarray(source, dtype=np.float32)
        available = len(source)
        output = np.zeros(num_out, dtype=np.float32)

        if ratio == 1.0:
            used = min(num_out, available)
            output[:used] = source[:used]
            for value in source[max(0, used - self._POINTS):used]:
                self._push(float(value))
            return output, used

        consumed = 0

        def take() -> float:
            nonlocal consumed
            if consumed < available:
                value = float(source[consumed])
                consumed += 1
                return value
            return 0.0

        pos = self._sub_sample_pos
        if ratio < 1.0:
            for i in range(num_out):
                if pos >= 1.0:
                    self._push(take())
                    pos -= 1.0
                output[i] = self._value_at(pos)
                pos += ratio
        else:
            for i in range(num_out):
                while pos < ratio:
                    self._push(take())
                    pos += 1.0
                pos -= ratio
                output[i] = self._value_at(pos)
        self._sub_sample_pos = pos
        return output, consumed


def _decibels_to_gain(db: float) -> float:
    return 10.0 ** (db / 20.0) if db > _MIN_DB else 0.0


def _gain_to_decibels(gain: float) -> float:
    return max(_MIN_DB, 20.0 * math.log10(gain)) if gain > 0.0 else _MIN_DB


class AudioEngine:
    """Plays a mono waveform at the device rate with volume control."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._waveform = np.zeros((1, 0), dtype=np.float32)
        self._waveform_rate = 44100
        self._device_rate = 44100.0
        self._position = 0
        self._playing = False
        self._ratio = 1.0
        self._interpolator = LagrangeInterpolator()
        self._gain = 1.0
        self._position_callback: PositionCallback | None = None
        self._finish_callback: FinishCallback | None = None

    def prepare_to_play(self, samples_per_block: int, sample_rate: float) -> None:
        """Set the output device rate."""
        self._device_rate = sample_rate
        self._ratio = self._waveform_rate / sample_rate
        self._interpolator.reset()

    def load_waveform(
        self, buffer, sample_rate: int, preserve_position: bool = False
    ) -> None:
        """Replace the waveform; optionally keep the position and playing state."""
        was_playing = self._playing
        self._playing = False

        with self._lock:
            self._waveform = np.atleast_2d(np.asarray(buffer, dtype=np.float32)).copy()
            self._waveform_rate = sample_rate
            if not preserve_position:
                self._position = 0
            if self._device_rate > 0:
                self._ratio = self._waveform_rate / self._device_rate
            else:
                self._ratio = 1.0
            self._interpolator.reset()

        if preserve_position and was_playing:
            self._playing = True

    def play(self) -> None:
        """Start playback if a waveform is loaded."""
        if self._waveform.shape[1] == 0:
            return
        self._playing = True

    def pause(self) -> None:
        self._playing = False

    def stop(self) -> None:
        """Stop playback and rewind to the start."""
        self._playing = False
        with self._lock:
            self._position = 0
            self._interpolator.reset()

    def seek(self, time_seconds: float) -> None:
        """Move the play position, clamped to the waveform."""
        with self._lock:
            new_pos = int(time_seconds * self._waveform_rate)
            self._position = min(max(new_pos, 0), self._waveform.shape[1])
            self._interpolator.reset()

    def render(self, num_samples: int, num_channels: int = 2) -> np.ndarray:
        """Produce the next output block as an array of shape (channels, samples)."""
        output = np.zeros((num_channels, num_samples), dtype=np.float32)
        if not self._playing or self._waveform.shape[1] == 0:
            return output

        if not self._lock.acquire(blocking=False):
            return output

        finished = False
        try:
            pos = self._position
            length = self._waveform.shape[1]
            if pos >= length:
                self._playing = False
                finished = True
            else:
                block, used = self._interpolator.process(
                    self._ratio, self._waveform[0, pos:], num_samples
                )
                gain = self._gain
                if abs(gain - 1.0) > 0.0001:
                    block = block * np.float32(gain)
                new_pos = pos + used
                self._position = new_pos
                output[:] = block
                if new_pos >= length:
                    self._playing = False
                    finished = True
        finally:
            self._lock.release()

        if finished and self._finish_callback is not None:
            self._finish_callback()
        if self._position_callback is not None and (
            not finished or self._position > 0
        ):
            self._position_callback(self.position)
        return output

    def set_position_callback(self, callback: PositionCallback) -> None:
        self._position_callback = callback

    def set_finish_callback(self, callback: FinishCallback) -> None:
        self._finish_callback = callback

    def clear_callbacks(self) -> None:
        self._position_callback = None
        self._finish_callback = None

    @property
    def is_playing(self) -> bool:
        return self._playing

    @property
    def position(self) -> float:
        """Play position in seconds."""
        return self._position / self._waveform_rate

    @property
    def duration(self) -> float:
        """Waveform length in seconds."""
        if self._waveform.shape[1] == 0:
            return 0.0
        return self._waveform.shape[1] / self._waveform_rate

    @property
    def volume_db(self) -> float:
        return _gain_to_decibels(self._gain)

    @volume_db.setter
    def volume_db(self, db: float) -> None:
        db = min(max(db, -_MAX_VOLUME_DB), _MAX_VOLUME_DB)
        self._gain = _decibels_to_gain(db)