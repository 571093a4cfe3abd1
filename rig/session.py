"""Minimal session scheduler.

A session is a set of named tracks, each bound to an instrument and an
optional note function.  ``advance()`` moves the metronome one beat on and
calls every note function as ``fn(metro, beat, player)``; the function
decides what to play.  Tracks without a function stay silent.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Tuple

from rig.instrument import InstrumentManager, inst_name
from rig.link import Metronome
from rig.models import Track
from rig.state import Snapshot, StudioState

logger = logging.getLogger(__name__)

NoteFn = Callable[[Metronome, int, Any], Any]


class Session:
    def __init__(self, state: StudioState, instruments: InstrumentManager,
                 metro: Metronome):
        self.state = state
        self.instruments = instruments
        self.metro = metro

    # -- tracks ------------------------------------------------------------------

    def define_track(self, name: str, inst) -> Track:
        track = Track(name=name, inst=inst_name(inst))
        self.state.update(lambda s: s.with_track(track))
        return track

    def remove_track(self, name: str):
        self.state.update(lambda s: s.without_track(name))

    def _alter_track(self, name: str, note_fn):
        def commit(snap: Snapshot) -> Snapshot:
            track = snap.track(name)
            return snap.with_track(Track(track.name, track.inst, note_fn))

        self.state.update(commit)

    def set_track_callback(self, name: str, fn: NoteFn):
        self._alter_track(name, fn)

    def remove_track_callback(self, name: str):
        self._alter_track(name, None)

    def tracks(self) -> Tuple[Track, ...]:
        return tuple(self.state.snapshot().tracks.values())

    def set_metronome(self, metro: Metronome):
        self.metro = metro

    # -- playback ----------------------------------------------------------------

    def is_playing(self) -> bool:
        return self.state.snapshot().playing

    def advance(self) -> int:
        """Play one beat: call the note function of every track.

        A failing track does not keep the others from playing; once all have
        run, the first failure is raised to the caller.
        """
        beat = self.metro.advance()
        snap = self.state.update(lambda s: s.replace(playing=True))
        failures = []
        for track in snap.tracks.values():
            if track.note_fn is None:
                continue
            try:
                player = self.instruments.player(track.inst)
                track.note_fn(self.metro, beat, player)
            except Exception as e:
                logger.exception("[Session] track '%s' failed on beat %d", track.name, beat)
                failures.append(e)
        if failures:
            raise failures[0]
        return beat

    def stop(self):
        """Mark the session stopped.  Running voices are left alone."""
        self.state.update(lambda s: s.replace(playing=False))

