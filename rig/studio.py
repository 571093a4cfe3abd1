"""Studio - the central coordinator for all subsystems.

One ``Studio`` owns the state store, the boot gate and every manager, and is
the only object callers need::

    studio = Studio(LoopbackEngine())
    studio.boot()
    beep = studio.definst("beep", [("freq", 440), ("amp", 0.3)],
                          lambda freq, amp: ar("SinOsc", freq) * amp)
    studio.append_effect(beep, fx_reverb())
    beep(freq=660)
    studio.shutdown()
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Hashable, Iterable, Optional

from rig.config import StudioConfig
from rig.engine import CLIP_TOPIC, RESET_TOPIC, EngineConnection
from rig.errors import BootFailed
from rig.events import RESET, EventBus
from rig.fx import EffectChainLinker
from rig.gate import (RIG_BOOT_DEPS, SERVER_READY, STUDIO_SETUP_COMPLETED, BootSequence,
                      BootState, DependencyGate)
from rig.instrument import InstrumentManager, InstrumentPlayer, inst_name
from rig.link import Metronome
from rig.mixer import Mixer
from rig.models import Effect, FxEntry, Instrument, SynthDef, Track
from rig.session import NoteFn, Session
from rig.state import StudioState
from rig.synthdef import Graph, ParamSpec
from rig.topology import TopologyManager

logger = logging.getLogger(__name__)


class Studio:
    def __init__(self, engine: EngineConnection, config: Optional[StudioConfig] = None,
                 metro: Optional[Metronome] = None):
        self.config = config or StudioConfig()
        self.engine = engine
        self.state = StudioState()
        self.events = EventBus()
        self.gate = DependencyGate()
        self._boot = BootSequence()

        self.topology = TopologyManager(engine, self.state, self.gate, self.config)
        self.instruments = InstrumentManager(engine, self.state, self.events, self.config)
        self.fx = EffectChainLinker(engine, self.state, self.instruments,
                                    self.topology.busses, self.config)
        self.mixer = Mixer(engine, self.state, self.events, self.config)
        self.session = Session(self.state, self.instruments,
                               metro or Metronome(self.config.bpm))

        self.gate.register_requirement(RIG_BOOT_DEPS)
        self.gate.on_satisfied([SERVER_READY], self._setup_studio, key="setup-studio")
        self.gate.on_satisfied([STUDIO_SETUP_COMPLETED], self.mixer.schedule_start,
                               key="start-mixer")
        engine.subscribe(CLIP_TOPIC, self.mixer.on_clip)
        engine.subscribe(RESET_TOPIC, self._on_reset)

    # -- boot ------------------------------------------------------------------

    @property
    def boot_state(self) -> BootState:
        return self._boot.state

    def is_booted(self) -> bool:
        return self._boot.state is BootState.READY

    def boot_failed(self) -> bool:
        return self._boot.state is BootState.FAILED

    def boot(self, timeout: Optional[float] = None) -> bool:
        """Connect to the engine and wait until the studio is set up.

        A second call, concurrent or later, only waits for the first one.
        """
        if self._boot.begin():
            try:
                self.engine.connect()
                self.instruments.load_all()
            except Exception as e:
                self._boot.fail(e)
                raise BootFailed(f"studio boot failed: {e}", e) from e
            self.server_ready()
        return self.wait_until_booted(timeout)

    def server_ready(self):
        """Signal that the engine is up; builds the topology in this thread."""
        self.gate.satisfy(SERVER_READY)

    def wait_until_booted(self, timeout: Optional[float] = None) -> bool:
        """Block until booted.  Raises ``BootFailed`` if booting failed."""
        booted = self._boot.wait(timeout)
        if not booted:
            logger.warning("[Studio] still booting, waiting on %s", sorted(self.gate.unsatisfied))
        return booted

    def _setup_studio(self):
        self._boot.begin()
        try:
            self._boot.advance(BootState.BUILDING_TOPOLOGY)
            self.topology.setup_studio()
            self._boot.advance(BootState.READY)
        except Exception as e:
            self._boot.fail(e)
            raise BootFailed(f"studio setup failed: {e}", e) from e

    def _on_reset(self, *args):
        self.topology.reset_inst_groups()
        self.events.publish(RESET)

    def on_event(self, topic: str, handler: Callable[..., Any],
                 key: Optional[Hashable] = None) -> Hashable:
        return self.events.subscribe(topic, handler, key)

    # -- instruments -------------------------------------------------------------

    def definst(self, name: str, params: Iterable[ParamSpec], graph: Graph,
                constants: Iterable[float] = ()) -> InstrumentPlayer:
        """Define an instrument and return its player.

        The definition gets pan and out stages unless it already writes to an
        output, and is placed in a group of its own so that ``stop`` and
        ``ctl`` reach every running voice at once.
        """
        return self.instruments.define(name, params, graph, constants)

    def inst(self, sdef: SynthDef) -> InstrumentPlayer:
        return self.instruments.define_sdef(sdef)

    def instrument(self, inst) -> Instrument:
        return self.instruments.get(inst_name(inst))

    def play(self, inst, *args, **kwargs) -> int:
        return self.instruments.play(inst_name(inst), *args, **kwargs)

    def stop(self, inst):
        self.instruments.stop(inst_name(inst))

    def ctl(self, inst, **controls):
        self.instruments.ctl(inst_name(inst), **controls)

    def inst_volume(self, inst, vol: float):
        self.instruments.set_volume(inst_name(inst), vol)

    def remove_instrument(self, inst):
        self.fx.remove_instrument(inst_name(inst))

    def clear_instruments(self):
        self.fx.clear_instruments()

    # -- effects -------------------------------------------------------------------

    def append_effect(self, inst, fx: Effect) -> FxEntry:
        return self.fx.append_effect(inst_name(inst), fx)

    def clear_effects(self, inst) -> Instrument:
        return self.fx.clear_effects(inst_name(inst))

    # -- master ----------------------------------------------------------------------

    def set_master_volume(self, vol: float):
        self.mixer.set_volume(vol)

    def set_master_pan(self, pan: float):
        self.mixer.set_pan(pan)

    # -- session ---------------------------------------------------------------------

    def define_track(self, name: str, inst) -> Track:
        return self.session.define_track(name, inst)

    def remove_track(self, name: str):
        self.session.remove_track(name)

    def set_track_callback(self, name: str, fn: NoteFn):
        self.session.set_track_callback(name, fn)

    def remove_track_callback(self, name: str):
        self.session.remove_track_callback(name)

    def advance_session(self) -> int:
        return self.session.advance()

    def stop_session(self):
        self.session.stop()

    # -- shutdown --------------------------------------------------------------------

    def shutdown(self):
        self.mixer.cancel()
        self.session.stop()
        self.session.metro.disable_link()
        self.engine.disconnect()
        logger.info("[Studio] Shutdown complete")

    def __enter__(self) -> Studio:
        self.boot()
        return self

    def __exit__(self, *exc):
        self.shutdown()
