"""Playback control on top of an audio engine."""

from __future__ import annotations

from collections.abc import Callable

from hachitune.engine import AudioEngine


class PlaybackController:
    """Tracks playback state and forwards engine events to listeners."""

    def __init__(self, engine: AudioEngine | None = None) -> None:
        self.engine = engine
        self._playing = False
        self.on_position_changed: Callable[[float], None] | None = None
        self.on_playback_finished: Callable[[], None] | None = None

    def setup_callbacks(self) -> None:
        """Connect engine position and finish events to this controller."""
        if self.engine is None:
            return

        def position_changed(position: float) -> None:
            if self.on_position_changed is not None:
                self.on_position_changed(position)

        def finished() -> None:
            self._playing = False
            if self.on_playback_finished is not None:
                self.on_playback_finished()

        self.engine.set_position_callback(position_changed)
        self.engine.set_finish_callback(finished)

    def play(self) -> None:
        if self.engine is None:
            return
        self.engine.play()
        self._playing = True

    def pause(self) -> None:
        if self.engine is None:
            return
        self.engine.pause()
        self._playing = False

    def stop(self) -> None:
        if self.engine is None:
            return
        self.engine.stop()
        self._playing = False

    def seek(self, time_seconds: float) -> None:
        if self.engine is None:
            return
        self.engine.seek(time_seconds)

    @property
    def is_playing(self) -> bool:
        return self._playing

    @property
    def current_time(self) -> float:
        return self.engine.position if self.engine is not None else 0.0

    @property
    def duration(self) -> float:
        return self.engine.duration if self.engine is not None else 0.0

    def load_waveform(self, buffer, sample_rate: int) -> None:
        if self.engine is None:
            return
        self.engine.load_waveform(buffer, sample_rate)