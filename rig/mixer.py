"""Master mixer: volume, pan and limiting on the master-mix bus."""

from __future__ import annotations

import logging
import threading
from typing import Optional

from rig.config import HW_OUT_BUS, StudioConfig
from rig.engine import CLIP_TOPIC, EngineConnection
from rig.errors import MixerNotRunning, TopologyNotReady
from rig.events import CLIP, EventBus
from rig.models import SynthDef
from rig.state import StudioState
from rig.synthdef import ar, kr, synthdef

logger = logging.getLogger(__name__)

CLIP_LEVEL = 5


def mixer_synthdef(mixer_bus: int) -> SynthDef:
    # TODO: basic EQ stage between the limiter and the panner
    def graph(in_bus, out_bus, volume, pan, threshold, slope_below, slope_above,
              clamp_time, relax_time):
        source = ar("In", in_bus)
        limited = ar("Compander", source, source, threshold, slope_below, slope_above,
                     clamp_time, relax_time)
        clipped = ar("Clip2", limited, CLIP_LEVEL)
        trig = kr("Trig1", kr("A2K", source) > CLIP_LEVEL, 0.25)
        reply = kr("SendReply", trig, CLIP_TOPIC, n_outputs=0)
        out = ar("Out", out_bus, ar("Pan2", clipped, pan, volume, n_outputs=2), n_outputs=0)
        return [reply, out]

    return synthdef("mixer", [("in-bus", mixer_bus), ("out-bus", HW_OUT_BUS),
                              ("volume", 0.5), ("pan", 0.0), ("threshold", 0.7),
                              ("slope-below", 1), ("slope-above", 0.1),
                              ("clamp-time", 0.005), ("relax-time", 0.005)], graph)


class Mixer:
    """The single always-on mixer node in the mixer group."""

    def __init__(self, engine: EngineConnection, state: StudioState,
                 events: EventBus, config: StudioConfig):
        self.engine = engine
        self.state = state
        self.events = events
        self.config = config
        self.sdef = mixer_synthdef(config.mixer_bus)
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self.error: Optional[BaseException] = None

    @property
    def node(self) -> Optional[int]:
        return self.state.snapshot().mixer_id

    def start(self) -> int:
        """Start the mixer node once; later calls return the running node."""
        with self._lock:
            snap = self.state.snapshot()
            if snap.mixer_id is not None:
                return snap.mixer_id
            if snap.mixer_group is None:
                raise TopologyNotReady("mixer group does not exist yet")
            self.engine.compile_and_load(self.sdef)
            mix = self.engine.instantiate_node(self.sdef.name, snap.mixer_group, "tail", {})
            self.state.update(lambda s: s.replace(mixer_id=mix))
        logger.info("[Mixer] started node %s reading bus %s", mix, self.config.mixer_bus)
        return mix

    def _start_later(self):
        try:
            self.start()
        except Exception as e:
            self.error = e
            logger.exception("[Mixer] failed to start")

    def schedule_start(self):
        """Start after the settle delay, giving the engine time to finish groups."""
        delay = self.config.mixer_settle_delay
        if delay <= 0:
            self.start()
            return
        self._timer = threading.Timer(delay, self._start_later)
        self._timer.daemon = True
        self._timer.start()

    def cancel(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    # -- master controls -------------------------------------------------------

    def _ctl(self, **controls):
        mix = self.node
        if mix is None:
            if self.error is not None:
                raise MixerNotRunning(f"mixer failed to start: {self.error}") from self.error
            raise MixerNotRunning("mixer node has not been started")
        self.engine.set_controls(mix, controls)

    def set_volume(self, vol: float):
        """Master volume.  The value goes to the engine unchecked."""
        self._ctl(volume=vol)

    def set_pan(self, pan: float):
        """Master pan.  The value goes to the engine unchecked."""
        self._ctl(pan=pan)

    def on_clip(self, *args):
        logger.warning("[Mixer] TOO LOUD!! (audio clipped)")
        self.events.publish(CLIP, args=args)
