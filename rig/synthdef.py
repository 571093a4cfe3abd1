"""Synth definition builder.

A definition is built by an ordinary function: give it the parameter list
and a graph function (or a ready UGen) and it returns a plain ``SynthDef``
record with the ugens sorted inputs-first and the numeric constants
collected::

    beep = synthdef("beep", [("freq", 440), ("amp", 0.3)],
                    lambda freq, amp: ar("SinOsc", freq) * amp)

Compiling the record to the engine's binary format is the engine
connection's job.
"""

from __future__ import annotations

import numbers
from typing import Any, Callable, Iterable, List, Sequence, Tuple, Union

from rig.config import MIXER_BUS
from rig.models import DEFAULT_RATE, Param, SynthDef, UGen

# Ugens that already write the signal somewhere; instruments ending in one
# of these are left as they are.
OUTPUT_UGENS = frozenset({"Out", "RecordBuf", "DiskOut", "LocalOut", "OffsetOut",
                          "ReplaceOut", "SharedOut", "XOut"})

DEFAULT_INST_VOLUME = 0.6

ParamSpec = Union[Param, str, Tuple[str, float], Tuple[str, float, str]]
Graph = Union[UGen, Sequence[UGen], Callable[..., Any]]


def ar(name: str, *inputs, n_outputs: int = 1) -> UGen:
    """Audio-rate ugen."""
    return UGen(name, "ar", tuple(inputs), n_outputs)


def kr(name: str, *inputs, n_outputs: int = 1) -> UGen:
    """Control-rate ugen."""
    return UGen(name, "kr", tuple(inputs), n_outputs)


def control(name: str, rate: str = DEFAULT_RATE) -> UGen:
    """Reference to the synth control ``name``."""
    return UGen("Control", rate, (name,))


def as_param(spec: ParamSpec) -> Param:
    if isinstance(spec, Param):
        return spec
    if isinstance(spec, str):
        return Param(spec)
    return Param(*spec)


def _walk(node, out: List[UGen], seen: set, constants: set):
    if isinstance(node, UGen):
        if node in seen:
            return
        for inp in node.inputs:
            _walk(inp, out, seen, constants)
        seen.add(node)
        if node.name != "Control":
            out.append(node)
    elif isinstance(node, numbers.Number) and not isinstance(node, bool):
        constants.add(float(node))


def collect(roots: Iterable[UGen]) -> Tuple[Tuple[UGen, ...], frozenset]:
    """Sort the graph under ``roots`` so every ugen follows its inputs."""
    out: List[UGen] = []
    seen: set = set()
    constants: set = set()
    for root in roots:
        _walk(root, out, seen, constants)
    return tuple(out), frozenset(constants)


def _build_graph(params: Sequence[Param], graph: Graph) -> Sequence[UGen]:
    if callable(graph) and not isinstance(graph, UGen):
        # "out-bus" is passed to the graph function as out_bus
        graph = graph(**{p.name.replace("-", "_"): control(p.name, p.rate) for p in params})
    if isinstance(graph, UGen):
        return [graph]
    return list(graph)


def synthdef(name: str, params: Iterable[ParamSpec], graph: Graph,
             constants: Iterable[float] = ()) -> SynthDef:
    """Build a definition from a parameter list and a graph."""
    params = tuple(as_param(p) for p in params)
    names = [p.name for p in params]
    if len(set(names)) != len(names):
        raise ValueError(f"duplicate parameter names in '{name}': {names}")
    ugens, found = collect(_build_graph(params, graph))
    if not ugens:
        raise ValueError(f"synthdef '{name}' has an empty graph")
    return SynthDef(name, params, ugens, found | frozenset(float(c) for c in constants))


def inst_wrap(sdef: SynthDef, out_bus: int = MIXER_BUS,
              volume: float = DEFAULT_INST_VOLUME) -> SynthDef:
    """Make ``sdef`` a stereo instrument routed to the master mix.

    ``(sin-osc 440)`` becomes ``Out(out-bus, Pan2(volume * SinOsc(440)))``,
    declaring the ``out-bus`` and ``volume`` params.  Definitions that end in
    an output ugen are returned unchanged.
    """
    root = sdef.ugens[-1]
    if root.name in OUTPUT_UGENS:
        return sdef

    params = list(sdef.params)
    existing = {p.name for p in params}
    if "out-bus" not in existing:
        params.append(Param("out-bus", out_bus, DEFAULT_RATE))
    if "volume" not in existing:
        params.append(Param("volume", volume, DEFAULT_RATE))

    vol_ugen = control("volume") * root
    pan_ugen = ar("Pan2", vol_ugen, 0, 1, n_outputs=2)
    out_ugen = ar("Out", control("out-bus"), pan_ugen, n_outputs=0)
    constants = sdef.constants | {float(out_bus), 1.0, 0.0}
    return SynthDef(sdef.name, tuple(params),
                    sdef.ugens + (vol_ugen, pan_ugen, out_ugen), frozenset(constants))
