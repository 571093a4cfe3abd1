"""Transactional studio state.

One ``StudioState`` per studio session holds the instrument registry, the
four root group handles, the mixer node and the session tracks.  Readers get
immutable ``Snapshot`` values; writers pass a function to ``update`` which
either returns a complete new snapshot or raises, in which case nothing
changes.
"""

from __future__ import annotations

import dataclasses
import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Callable, Mapping, Optional

from rig.errors import UnknownInstrument, UnknownTrack
from rig.models import Instrument, Track


def _empty() -> Mapping:
    return MappingProxyType({})


@dataclass(frozen=True)
class Snapshot:
    instruments: Mapping[str, Instrument] = field(default_factory=_empty)
    inst_group: Optional[int] = None
    fx_group: Optional[int] = None
    mixer_group: Optional[int] = None
    record_group: Optional[int] = None
    mixer_id: Optional[int] = None
    tracks: Mapping[str, Track] = field(default_factory=_empty)
    playing: bool = False
    version: int = 0

    @property
    def groups_ready(self) -> bool:
        return None not in (self.inst_group, self.fx_group,
                            self.mixer_group, self.record_group)

    def instrument(self, name: str) -> Instrument:
        try:
            return self.instruments[name]
        except KeyError:
            raise UnknownInstrument(f"no instrument named '{name}'") from None

    def track(self, name: str) -> Track:
        try:
            return self.tracks[name]
        except KeyError:
            raise UnknownTrack(f"no track named '{name}'") from None

    # -- copy-on-write helpers -------------------------------------------------

    def replace(self, **changes) -> Snapshot:
        for key in ("instruments", "tracks"):
            if key in changes:
                changes[key] = MappingProxyType(dict(changes[key]))
        return dataclasses.replace(self, **changes)

    def with_instrument(self, inst: Instrument) -> Snapshot:
        return self.replace(instruments={**self.instruments, inst.name: inst})

    def without_instrument(self, name: str) -> Snapshot:
        instruments = dict(self.instruments)
        instruments.pop(name, None)
        return self.replace(instruments=instruments)

    def alter_instrument(self, name: str, **changes) -> Snapshot:
        inst = dataclasses.replace(self.instrument(name), **changes)
        return self.with_instrument(inst)

    def with_track(self, track: Track) -> Snapshot:
        return self.replace(tracks={**self.tracks, track.name: track})

    def without_track(self, name: str) -> Snapshot:
        tracks = dict(self.tracks)
        tracks.pop(name, None)
        return self.replace(tracks=tracks)


class StudioState:
    """Single owner of the studio snapshot."""

    def __init__(self, initial: Optional[Snapshot] = None):
        self._lock = threading.RLock()
        self._snap = initial or Snapshot()

    def snapshot(self) -> Snapshot:
        with self._lock:
            return self._snap

    def update(self, fn: Callable[[Snapshot], Snapshot]) -> Snapshot:
        """Atomically replace the snapshot with ``fn(snapshot)``.

        The lock is re-entrant, but ``fn`` should be a pure function of the
        snapshot: engine calls belong outside of it.
        """
        with self._lock:
            new = fn(self._snap)
            if not isinstance(new, Snapshot):
                raise TypeError(f"update function returned {type(new).__name__}, not Snapshot")
            self._snap = dataclasses.replace(new, version=self._snap.version + 1)
            return self._snap

    # -- convenience readers ---------------------------------------------------

    def instrument(self, name: str) -> Instrument:
        return self.snapshot().instrument(name)

    def track(self, name: str) -> Track:
        return self.snapshot().track(name)

    def groups_ready(self) -> bool:
        return self.snapshot().groups_ready
