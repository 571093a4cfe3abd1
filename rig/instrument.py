"""Instrument definition, registry and playback.

An instrument is a synth definition that is made stereo and routed to the
master mix automatically, and whose voices all live in one group of their
own, so the whole instrument can be controlled or stopped with one message::

    beep = instruments.define("beep", [("freq", 440), ("amp", 0.3)],
                              lambda freq, amp: ar("SinOsc", freq) * amp)
    beep(freq=660)
    beep({"freq": 660})
    beep("freq", 660)
    beep(660)

The registry record (``Instrument``) is plain data kept in the studio state;
``InstrumentPlayer`` is the callable handed back to users.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Iterable, Mapping, Tuple

from rig.config import StudioConfig
from rig.engine import EngineConnection
from rig.errors import ChainAttached, NotConnected, UnassignedGroup
from rig.events import NEW_INST, EventBus
from rig.models import Instrument, SynthDef
from rig.state import Snapshot, StudioState
from rig.synthdef import Graph, ParamSpec, inst_wrap, synthdef

logger = logging.getLogger(__name__)


def normalize_args(arg_names: Iterable[str], args: Tuple[Any, ...],
                   kwargs: Mapping[str, Any]) -> Dict[str, Any]:
    """Turn any supported argument form into an ordered control dict.

    A single mapping is flattened into key/value pairs.  Leading non-string
    values fill the parameters in declaration order; after the first string
    the rest is read as key/value pairs.  Keyword arguments come last.
    """
    if len(args) == 1 and isinstance(args[0], Mapping):
        args = tuple(item for pair in args[0].items() for item in pair)

    controls: Dict[str, Any] = {}
    names = list(arg_names)
    i = 0
    while i < len(args) and not isinstance(args[i], str):
        if i >= len(names):
            raise TypeError(f"too many positional arguments ({len(args)}) for {names}")
        controls[names[i]] = args[i]
        i += 1
    rest = args[i:]
    if len(rest) % 2:
        raise TypeError(f"unpaired control argument: {rest[-1]!r}")
    for key, value in zip(rest[::2], rest[1::2]):
        if not isinstance(key, str):
            raise TypeError(f"control name must be a string, got {key!r}")
        controls[key] = value
    for key, value in kwargs.items():
        controls[key.replace("_", "-")] = value
    return controls


class InstrumentPlayer:
    """Callable handle for a registered instrument.

    Holds only the name; every call reads the current registry record, so a
    redefinition or a re-routed output is picked up immediately.
    """

    def __init__(self, manager: InstrumentManager, name: str):
        self._manager = manager
        self.name = name

    @property
    def inst(self) -> Instrument:
        return self._manager.get(self.name)

    def __call__(self, *args, **kwargs) -> int:
        return self._manager.play(self.name, *args, **kwargs)

    def ctl(self, **controls):
        self._manager.ctl(self.name, **controls)

    def stop(self):
        self._manager.stop(self.name)

    def __eq__(self, other):
        return isinstance(other, InstrumentPlayer) and other.name == self.name

    def __hash__(self):
        return hash(("instrument", self.name))

    def __repr__(self):
        return f"#<instrument: {self.name}>"


def is_instrument(obj) -> bool:
    return isinstance(obj, (Instrument, InstrumentPlayer))


def inst_name(inst) -> str:
    """Accept a name, an ``Instrument`` record or an ``InstrumentPlayer``."""
    if isinstance(inst, str):
        return inst
    if is_instrument(inst):
        return inst.name
    raise TypeError(f"not an instrument: {inst!r}")


class InstrumentManager:
    """Owns instrument definitions and their per-instrument groups."""

    def __init__(self, engine: EngineConnection, state: StudioState,
                 events: EventBus, config: StudioConfig):
        self.engine = engine
        self.state = state
        self.events = events
        self.config = config
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    def lock(self, name: str) -> threading.RLock:
        """Per-instrument lock guarding its routing (out-bus and effect chain)."""
        with self._locks_guard:
            return self._locks.setdefault(name, threading.RLock())

    # -- definition ------------------------------------------------------------

    def define(self, name: str, params: Iterable[ParamSpec], graph: Graph,
               constants: Iterable[float] = ()) -> InstrumentPlayer:
        return self.define_sdef(synthdef(name, params, graph, constants))

    def define_sdef(self, sdef: SynthDef) -> InstrumentPlayer:
        """Register an existing definition as an instrument."""
        sdef = inst_wrap(sdef, self.config.mixer_bus)
        name = sdef.name
        connected = self.engine.is_connected()
        if connected:
            self.engine.compile_and_load(sdef)

        snap = self.state.snapshot()
        prior = snap.instruments.get(name)
        group = prior.group if prior is not None else None
        created = None
        if group is None and connected and snap.inst_group is not None:
            created = group = self.engine.create_group("tail", snap.inst_group)

        def commit(s: Snapshot) -> Snapshot:
            old = s.instruments.get(name)
            if old is not None and old.group is not None:
                keep = old.group
            else:
                keep = group
            inst = Instrument(name=name, sdef=sdef, group=keep,
                              out_bus=old.out_bus if old else self.config.mixer_bus,
                              fx_chain=old.fx_chain if old else ())
            return s.with_instrument(inst)

        inst = self.state.update(commit).instruments[name]
        if created is not None and inst.group != created:
            # lost a race with a concurrent definition of the same name
            self.engine.terminate(created)
        if inst.group is None:
            logger.info("[Inst] '%s' defined without a group (engine not ready)", name)
        else:
            logger.info("[Inst] '%s' defined in group %s", name, inst.group)
        self.events.publish(NEW_INST, inst=inst)
        return InstrumentPlayer(self, name)

    def load_all(self):
        """Load every registered definition, e.g. after the engine reconnects."""
        for inst in self.state.snapshot().instruments.values():
            self.engine.compile_and_load(inst.sdef)

    # -- registry ----------------------------------------------------------------

    def get(self, name: str) -> Instrument:
        return self.state.instrument(name)

    def player(self, name: str) -> InstrumentPlayer:
        self.get(name)
        return InstrumentPlayer(self, name)

    def names(self) -> Tuple[str, ...]:
        return tuple(self.state.snapshot().instruments)

    def remove(self, name: str):
        """Forget an instrument.  Its running voices keep playing.

        An instrument with effects has to go through the fx linker, which
        frees the chain as well.
        """
        def commit(s: Snapshot) -> Snapshot:
            if s.instrument(name).fx_chain:
                raise ChainAttached(f"'{name}' has an effect chain; remove it via the fx linker")
            return s.without_instrument(name)

        with self.lock(name):
            self.state.update(commit)
        logger.info("[Inst] removed '%s'", name)

    def clear(self):
        for name in self.names():
            self.remove(name)

    # -- playback ----------------------------------------------------------------

    def _group(self, inst: Instrument) -> int:
        if inst.group is None:
            raise UnassignedGroup(f"instrument '{inst.name}' has no group; is the studio booted?")
        return inst.group

    def play(self, name: str, *args, **kwargs) -> int:
        """Start a voice in the instrument's group, writing to its out-bus."""
        inst = self.get(name)
        group = self._group(inst)
        if not self.engine.is_connected():
            raise NotConnected(f"cannot play '{name}': engine not connected")
        controls = normalize_args(inst.args, args, kwargs)
        controls.pop("out-bus", None)
        controls["out-bus"] = inst.out_bus
        return self.engine.instantiate_node(inst.sdef.name, group, "tail", controls)

    def stop(self, name: str):
        """Kill every running voice of the instrument."""
        self.engine.clear_group(self._group(self.get(name)))

    def ctl(self, name: str, **controls):
        """Set controls on every running voice of the instrument."""
        self.engine.set_controls(self._group(self.get(name)),
                                 normalize_args((), (), controls))

    def set_volume(self, name: str, volume: float):
        self.engine.set_controls(self._group(self.get(name)), {"volume": volume})

    def set_out_bus(self, name: str, bus: int):
        """Route the instrument (running voices and future ones) to ``bus``.

        Refused while an effect chain is attached: the chain owns the out-bus.
        """
        def commit(s: Snapshot) -> Snapshot:
            if s.instrument(name).fx_chain:
                raise ChainAttached(f"'{name}' is routed through its effect chain")
            return s.alter_instrument(name, out_bus=bus)

        with self.lock(name):
            inst = self.state.update(commit).instruments[name]
            self.reroute_out_bus(inst, bus)

    def reroute_out_bus(self, inst: Instrument, bus: int):
        """Engine side of ``set_out_bus``, for callers committing themselves."""
        if inst.group is not None:
            self.engine.set_controls(inst.group, {"out-bus": bus})

