"""Pitch detection, note segmentation, MIDI export, WAV I/O and playback helpers for vocal pitch editing."""

__version__ = "1.0.0"