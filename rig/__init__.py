"""rig - studio routing and instrument lifecycle for an external synth engine."""

from rig.config import MIXER_BUS, StudioConfig
from rig.engine import EngineConnection, LoopbackEngine
from rig.fx import fx_chorus, fx_compressor, fx_distortion, fx_echo, fx_reverb
from rig.studio import Studio
from rig.synthdef import ar, kr, synthdef

__all__ = [
    "Studio", "StudioConfig", "EngineConnection", "LoopbackEngine", "MIXER_BUS",
    "synthdef", "ar", "kr",
    "fx_reverb", "fx_echo", "fx_chorus", "fx_distortion", "fx_compressor",
]
