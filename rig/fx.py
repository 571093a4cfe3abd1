"""Per-instrument effect chains.

Appending an effect allocates a bus, starts the effect at the tail of the fx
group reading that bus and writing the master mix, then points the previous
link of the chain (the instrument, or the last effect) at the new bus::

    beep -> [bus 16] -> reverb -> [bus 17] -> echo -> MIXER_BUS

At any time exactly one path leads from the instrument to the master mix.
"""

from __future__ import annotations

import logging
from typing import Tuple

from rig.config import StudioConfig
from rig.engine import EngineConnection
from rig.errors import TopologyNotReady
from rig.instrument import InstrumentManager
from rig.models import Effect, FxEntry, Instrument
from rig.state import Snapshot, StudioState
from rig.synthdef import ar, synthdef
from rig.topology import BusAllocator

logger = logging.getLogger(__name__)


# ===========================================================================
# Stock effects
# ===========================================================================

def effect(name: str, params, graph, **controls) -> Effect:
    """Wrap a graph reading ``in-bus`` and writing ``out-bus`` as an Effect."""
    params = [("in-bus", 20), ("out-bus", 0)] + list(params)
    return Effect(name, synthdef(name, params, graph), tuple(controls.items()))


def _stereo_out(out_bus, sig):
    return ar("Out", out_bus, sig, n_outputs=0)


def fx_reverb(mix: float = 0.4, room: float = 0.6, damp: float = 0.5) -> Effect:
    return effect(
        "fx-reverb", [("wet-dry", mix), ("room-size", room), ("dampening", damp)],
        lambda in_bus, out_bus, wet_dry, room_size, dampening: _stereo_out(
            out_bus, ar("FreeVerb2", ar("In", in_bus, 2, n_outputs=2), wet_dry,
                        room_size, dampening, n_outputs=2)))


def fx_echo(delay: float = 0.25, decay: float = 2.0, max_delay: float = 1.0) -> Effect:
    def graph(in_bus, out_bus, delay_time, decay_time, max_delay):
        source = ar("In", in_bus, 2, n_outputs=2)
        echo = ar("CombN", source, max_delay, delay_time, decay_time)
        return _stereo_out(out_bus, ar("BinaryOpUGen+", echo, source))

    return effect("fx-echo", [("delay-time", delay), ("decay-time", decay),
                              ("max-delay", max_delay, "ir")], graph)


def fx_chorus(rate: float = 0.002, depth: float = 0.01) -> Effect:
    def graph(in_bus, out_bus, rate, depth):
        source = ar("In", in_bus, 2, n_outputs=2)
        lfo = ar("MulAdd", ar("SinOsc", rate), depth, depth)
        return _stereo_out(out_bus, ar("DelayC", source, 1, lfo))

    return effect("fx-chorus", [("rate", rate), ("depth", depth)], graph)


def fx_distortion(amount: float = 0.5) -> Effect:
    def graph(in_bus, out_bus, amount):
        source = ar("In", in_bus, 2, n_outputs=2)
        return _stereo_out(out_bus, ar("Distort", source * amount))

    return effect("fx-distortion", [("amount", amount)], graph)


def fx_compressor(threshold: float = 0.5, slope_above: float = 0.5) -> Effect:
    def graph(in_bus, out_bus, threshold, slope_above):
        source = ar("In", in_bus, 2, n_outputs=2)
        return _stereo_out(out_bus, ar("Compander", source, source, threshold,
                                       1, slope_above, 0.01, 0.01))

    return effect("fx-compressor", [("threshold", threshold),
                                    ("slope-above", slope_above)], graph)


# ===========================================================================
# Chain linking
# ===========================================================================

class EffectChainLinker:
    """Only component allowed to allocate and reassign chain busses."""

    def __init__(self, engine: EngineConnection, state: StudioState,
                 instruments: InstrumentManager, busses: BusAllocator,
                 config: StudioConfig):
        self.engine = engine
        self.state = state
        self.instruments = instruments
        self.busses = busses
        self.mixer_bus = config.mixer_bus

    def chain(self, name: str) -> Tuple[FxEntry, ...]:
        return self.state.instrument(name).fx_chain

    def append_effect(self, name: str, fx: Effect) -> FxEntry:
        """Insert ``fx`` between the end of the chain and the master mix."""
        with self.instruments.lock(name):
            inst = self.state.instrument(name)
            fx_group = self.state.snapshot().fx_group
            if fx_group is None:
                raise TopologyNotReady("fx group does not exist yet; boot the studio first")

            bus = self.busses.alloc()
            fx_id = None
            try:
                self.engine.compile_and_load(fx.sdef)
                controls = dict(fx.controls)
                controls.update({"in-bus": bus, "out-bus": self.mixer_bus})
                fx_id = self.engine.instantiate_node(fx.sdef.name, fx_group, "tail", controls)
                src = inst.fx_chain[-1].fx_id if inst.fx_chain else None
                entry = FxEntry(fx=fx, fx_id=fx_id, bus=bus, src=src)

                if src is None:
                    self.instruments.reroute_out_bus(inst, bus)
                else:
                    self.engine.set_controls(src, {"out-bus": bus})

                def commit(snap: Snapshot) -> Snapshot:
                    current = snap.instrument(name)
                    changes = {"fx_chain": current.fx_chain + (entry,)}
                    if src is None:
                        changes["out_bus"] = bus
                    return snap.alter_instrument(name, **changes)

                self.state.update(commit)
            except Exception:
                self._rollback(inst, fx_id, bus)
                raise

        logger.info("[FX] '%s' -> %s (node %s, in-bus %s, reading %s)", fx.name, name,
                    fx_id, bus, "instrument" if src is None else f"node {src}")
        return entry

    def _rollback(self, inst: Instrument, fx_id, bus: int):
        """Undo a half-done append so the previous routing stays intact."""
        try:
            if inst.fx_chain:
                self.engine.set_controls(inst.fx_chain[-1].fx_id, {"out-bus": self.mixer_bus})
            else:
                self.instruments.reroute_out_bus(inst, inst.out_bus)
            if fx_id is not None:
                self.engine.terminate(fx_id)
        except Exception:
            logger.exception("[FX] rollback for '%s' failed", inst.name)
        self.busses.release(bus)

    def clear_effects(self, name: str) -> Instrument:
        """Route the instrument straight to the master mix and free its chain."""
        with self.instruments.lock(name):
            inst = self.state.instrument(name)
            self.instruments.reroute_out_bus(inst, self.mixer_bus)
            for entry in inst.fx_chain:
                self.engine.terminate(entry.fx_id)
            cleared = self.state.update(
                lambda s: s.alter_instrument(name, out_bus=self.mixer_bus, fx_chain=()))
            for entry in inst.fx_chain:
                self.busses.release(entry.bus)
        logger.info("[FX] cleared %d effect(s) from '%s'", len(inst.fx_chain), name)
        return cleared.instruments[name]

    def remove_instrument(self, name: str):
        """Free the instrument's chain, then forget it.  Voices keep playing."""
        with self.instruments.lock(name):
            inst = self.state.instrument(name)
            for entry in inst.fx_chain:
                self.engine.terminate(entry.fx_id)
            self.state.update(lambda s: s.without_instrument(name))
            for entry in inst.fx_chain:
                self.busses.release(entry.bus)
        logger.info("[FX] removed '%s' with %d effect(s)", name, len(inst.fx_chain))

    def clear_instruments(self):
        for name in self.instruments.names():
            self.remove_instrument(name)
