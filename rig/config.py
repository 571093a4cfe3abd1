"""Runtime configuration for a studio session."""

from __future__ import annotations

import os
from dataclasses import dataclass

# Busses
# 0 & 1 => default stereo output
# 2 & 3 => default stereo input
MIXER_BUS = 10
HW_OUT_BUS = 0
RESERVED_BUSSES = frozenset({0, 1, 2, 3, MIXER_BUS})

# Dynamic busses start above the on-board I/O channels and the mixer bus.
FIRST_DYNAMIC_BUS = 16
BUS_LIMIT = 128

MIXER_SETTLE_DELAY = 2.0
DEFAULT_BPM = 120.0


@dataclass
class StudioConfig:
    mixer_bus: int = MIXER_BUS
    first_dynamic_bus: int = FIRST_DYNAMIC_BUS
    bus_limit: int = BUS_LIMIT
    mixer_settle_delay: float = MIXER_SETTLE_DELAY
    bpm: float = DEFAULT_BPM

    @classmethod
    def from_env(cls, prefix: str = "RIG_") -> StudioConfig:
        """Build a config from ``RIG_*`` environment variables.

        Unset variables keep their defaults, e.g. ``RIG_MIXER_SETTLE_DELAY=0``
        starts the mixer as soon as the groups exist.
        """
        cfg = cls()
        for name, conv in (("first_dynamic_bus", int), ("bus_limit", int),
                           ("mixer_settle_delay", float), ("bpm", float)):
            raw = os.environ.get(prefix + name.upper())
            if raw is not None:
                try:
                    setattr(cfg, name, conv(raw))
                except ValueError as exc:
                    raise ValueError(f"{prefix}{name.upper()}: {raw!r} is not a valid {conv.__name__}") from exc
        return cfg
