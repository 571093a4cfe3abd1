"""Shared data models and constants."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Tuple

from rig.config import MIXER_BUS

DEFAULT_RATE = "kr"
RATES = ("ar", "kr", "ir", "tr")


@dataclass(frozen=True)
class Param:
    """A named synth control with a default value."""

    name: str
    default: float = 0.0
    rate: str = DEFAULT_RATE

    def __post_init__(self):
        if self.rate not in RATES:
            raise ValueError(f"unknown rate '{self.rate}' for param '{self.name}'")


@dataclass(frozen=True)
class UGen:
    """One stage of a synthesis graph.

    ``inputs`` holds constants, control names (``str``) or other UGens.
    """

    name: str
    rate: str = "ar"
    inputs: Tuple[Any, ...] = ()
    n_outputs: int = 1

    def _binop(self, op: str, other) -> UGen:
        rate = "ar" if "ar" in (self.rate, getattr(other, "rate", None)) else self.rate
        return UGen("BinaryOpUGen" + op, rate, (self, other))

    def __mul__(self, other) -> UGen:
        return self._binop("*", other)

    __rmul__ = __mul__

    def __gt__(self, other) -> UGen:
        return self._binop(">", other)


@dataclass(frozen=True)
class SynthDef:
    """A compiled-ready synth program: params, ugens in order, constants."""

    name: str
    params: Tuple[Param, ...]
    ugens: Tuple[UGen, ...]
    constants: frozenset = frozenset()

    @property
    def arg_names(self) -> Tuple[str, ...]:
        return tuple(p.name for p in self.params)

    def param(self, name: str) -> Param:
        for p in self.params:
            if p.name == name:
                return p
        raise KeyError(name)


@dataclass(frozen=True)
class Effect:
    """An effect program; instances read ``in-bus`` and write ``out-bus``."""

    name: str
    sdef: SynthDef
    controls: Tuple[Tuple[str, Any], ...] = ()


@dataclass(frozen=True)
class FxEntry:
    """One link in an instrument's effect chain.

    ``src`` is ``None`` when the entry reads straight from the instrument,
    otherwise the node id of the previous entry.
    """

    fx: Effect
    fx_id: int
    bus: int
    src: Optional[int] = None

    @property
    def reads_instrument(self) -> bool:
        return self.src is None


@dataclass(frozen=True)
class Instrument:
    """Registry record for a defined instrument."""

    name: str
    sdef: SynthDef
    group: Optional[int] = None
    out_bus: int = MIXER_BUS
    fx_chain: Tuple[FxEntry, ...] = ()

    @property
    def params(self) -> Tuple[Param, ...]:
        return self.sdef.params

    @property
    def args(self) -> Tuple[str, ...]:
        return self.sdef.arg_names


@dataclass(frozen=True)
class Track:
    """A session track: an instrument and an optional per-beat function."""

    name: str
    inst: str
    note_fn: Optional[Callable[..., Any]] = field(default=None, compare=False)
