"""Session metronome with optional Ableton Link tempo sync (aalink)."""

from __future__ import annotations

import threading

from rig.config import DEFAULT_BPM
from rig.deps import HAS_LINK, aalink


class Metronome:
    """Beat counter for the session scheduler.

    ``metro()`` returns the current beat, ``advance()`` moves to the next
    one.  The tempo is shared with Link peers once ``enable_link`` is called.
    """

    def __init__(self, bpm: float = DEFAULT_BPM, start_beat: int = 0):
        self._link = None
        self._bpm = bpm
        self._beat = start_beat
        self._lock = threading.Lock()

    def __call__(self) -> int:
        return self.beat

    @property
    def beat(self) -> int:
        with self._lock:
            return self._beat

    def advance(self) -> int:
        with self._lock:
            self._beat += 1
            return self._beat

    def reset(self, beat: int = 0):
        with self._lock:
            self._beat = beat

    # -- Link ------------------------------------------------------------------

    def enable_link(self):
        if not HAS_LINK:
            raise RuntimeError("aalink not installed")
        if self._link is not None:
            return
        self._link = aalink.Link(self._bpm)
        self._link.enabled = True

    def disable_link(self):
        if self._link:
            self._link.enabled = False
            self._link = None

    @property
    def link_enabled(self) -> bool:
        return self._link is not None

    @property
    def bpm(self) -> float:
        return self._link.tempo if self._link else self._bpm

    @bpm.setter
    def bpm(self, value: float):
        self._bpm = value
        if self._link:
            self._link.tempo = value

    @property
    def num_peers(self) -> int:
        return self._link.num_peers if self._link else 0

    def __repr__(self):
        return f"<Metronome beat={self.beat} bpm={self.bpm:.1f}>"
