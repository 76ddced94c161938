"""Helpers for resynthesising edited regions of a waveform."""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np

__all__ = ["MIN_SILENCE_FRAMES", "expand_to_silence_boundaries", "replace_region"]

MIN_SILENCE_FRAMES = 5


def expand_to_silence_boundaries(
    voiced_mask: Sequence[bool], dirty_start: int, dirty_end: int
) -> tuple[int, int]:
    """Widen a dirty frame range out to the nearest silences of 5+ frames.

    Without such a silence on a side, that side extends to the start or end.
    """
    total = len(voiced_mask)
    if total == 0:
        return dirty_start, dirty_end

    def is_voiced(i: int) -> bool:
        return 0 <= i < total and bool(voiced_mask[i])

    expanded_start = dirty_start
    silence = 0
    for i in range(dirty_start - 1, -1, -1):
        if not is_voiced(i):
            silence += 1
            if silence >= MIN_SILENCE_FRAMES:
                expanded_start = i + silence
                break
        else:
            silence = 0
            expanded_start = i
    expanded_start = min(expanded_start, dirty_start)
    if silence < MIN_SILENCE_FRAMES and expanded_start > 0:
        expanded_start = 0

    expanded_end = dirty_end
    silence = 0
    for i in range(dirty_end, total):
        if not is_voiced(i):
            silence += 1
            if silence >= MIN_SILENCE_FRAMES:
                expanded_end = i - silence + 1
                break
        else:
            silence = 0
            expanded_end = i + 1
    expanded_end = max(expanded_end, dirty_end)
    if silence < MIN_SILENCE_FRAMES and expanded_end < total:
        expanded_end = total

    return expanded_start, expanded_end


def replace_region(
    waveform: np.ndarray, synthesized: Sequence[float], start_frame: int, hop_size: int
) -> int:
    """Overwrite every channel of ``waveform`` in place from ``start_frame``.

    Samples past the end of the waveform are dropped. Returns the number of
    samples replaced (0 when nothing fits).
    """
    target = np.atleast_2d(waveform)
    audio = np.asarray(synthesized, dtype=target.dtype).reshape(-1)
    start = start_frame * hop_size
    count = min(len(audio), target.shape[1] - start)
    if count <= 0 or start < 0:
        return 0
    target[:, start:start + count] = audio[:count]
    return count