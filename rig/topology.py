"""Root group hierarchy and audio bus allocation.

Signal flows strictly forward through four root groups::

    root
    ├── instrument-group   (head)  one child group per instrument
    ├── fx-group           (after instrument-group)
    ├── mixer-group        (tail)
    └── record-group       (tail)
"""

from __future__ import annotations

import logging
import threading
from typing import Iterable, Set

from rig.config import RESERVED_BUSSES, StudioConfig
from rig.engine import EngineConnection
from rig.errors import BusExhaustion
from rig.gate import STUDIO_SETUP_COMPLETED, DependencyGate
from rig.state import Snapshot, StudioState

logger = logging.getLogger(__name__)


class BusAllocator:
    """Hands out audio bus numbers from ``[first, limit)``.

    The lowest free number is returned first; released numbers go back to
    the pool.  Reserved busses are never handed out.
    """

    def __init__(self, first: int, limit: int, reserved: Iterable[int] = RESERVED_BUSSES):
        if first >= limit:
            raise ValueError(f"empty bus range [{first}, {limit})")
        self.first = first
        self.limit = limit
        self._reserved = frozenset(reserved)
        self._used: Set[int] = set()
        self._lock = threading.Lock()

    def alloc(self) -> int:
        with self._lock:
            for bus in range(self.first, self.limit):
                if bus not in self._used and bus not in self._reserved:
                    self._used.add(bus)
                    return bus
        raise BusExhaustion(f"no free audio bus in [{self.first}, {self.limit})")

    def release(self, bus: int):
        with self._lock:
            self._used.discard(bus)

    def in_use(self) -> frozenset:
        with self._lock:
            return frozenset(self._used)


class TopologyManager:
    """Builds the root groups and clears instrument groups on reset."""

    def __init__(self, engine: EngineConnection, state: StudioState,
                 gate: DependencyGate, config: StudioConfig):
        self.engine = engine
        self.state = state
        self.gate = gate
        self.busses = BusAllocator(config.first_dynamic_bus, config.bus_limit,
                                   RESERVED_BUSSES | {config.mixer_bus})
        self._setup_lock = threading.Lock()

    def setup_studio(self):
        """Create the root groups, re-home known instruments, then signal.

        Each ``create_group`` returns only after the engine confirmed the
        group, so the children created after it always have a parent.
        """
        with self._setup_lock:
            if self.state.groups_ready():
                logger.debug("[Topology] groups already built")
                return
            root = self.engine.root_group()
            logger.info("[Topology] creating studio group at head of %s", root)
            g = self.engine.create_group("head", root)
            f = self.engine.create_group("after", g)
            m = self.engine.create_group("tail", root)
            r = self.engine.create_group("tail", root)

            known = list(self.state.snapshot().instruments)
            snap = self.state.update(lambda s: s.replace(
                inst_group=g, fx_group=f, mixer_group=m, record_group=r))

            # Instruments defined from here on get their group at definition
            # time; the ones known before, or still without a group, are
            # re-homed under the new instrument group.
            pending = known + [name for name, inst in snap.instruments.items()
                               if inst.group is None and name not in known]
            for name in pending:
                self._rehome(name, g)
            logger.info("[Topology] groups inst=%s fx=%s mixer=%s record=%s, %d instrument(s)",
                        g, f, m, r, len(pending))
        self.gate.satisfy(STUDIO_SETUP_COMPLETED)

    def _rehome(self, name: str, inst_group: int):
        group = self.engine.create_group("tail", inst_group)

        def commit(snap: Snapshot) -> Snapshot:
            inst = snap.instruments.get(name)
            if inst is None or inst.group is not None:
                return snap
            return snap.alter_instrument(name, group=group)

        inst = self.state.update(commit).instruments.get(name)
        if inst is None or inst.group != group:
            # removed, or given a group by a concurrent definition
            self.engine.terminate(group)

    def reset_inst_groups(self, *args):
        """Free all synth nodes of each instrument; groups and registry stay."""
        snap = self.state.snapshot()
        cleared = 0
        for inst in snap.instruments.values():
            if inst.group is not None:
                self.engine.clear_group(inst.group)
                cleared += 1
        logger.info("[Topology] reset cleared %d instrument group(s)", cleared)
