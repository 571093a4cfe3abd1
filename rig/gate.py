"""Boot-time dependency gating.

``DependencyGate`` tracks named facts (``server-ready``,
``studio-setup-completed``) and lets callers block on, or react to, a set of
them becoming true.  ``BootSequence`` layers the studio's explicit boot
states on top so permanent failure is distinguishable from "still booting".
"""

from __future__ import annotations

import enum
import itertools
import logging
import threading
from typing import Callable, Dict, Hashable, Iterable, List, Optional, Set, Tuple

from rig.errors import BootFailed

logger = logging.getLogger(__name__)

SERVER_READY = "server-ready"
STUDIO_SETUP_COMPLETED = "studio-setup-completed"
RIG_BOOT_DEPS = (SERVER_READY, STUDIO_SETUP_COMPLETED)


class DependencyGate:
    """Set of monotonically satisfied facts with waiters and callbacks."""

    def __init__(self):
        self._cond = threading.Condition()
        self._known: Set[str] = set()
        self._satisfied: Set[str] = set()
        self._pending: Dict[Hashable, Tuple[frozenset, Callable[[], None]]] = {}
        self._ids = itertools.count()

    def register_requirement(self, names: Iterable[str]):
        with self._cond:
            self._known.update(names)

    def is_satisfied(self, names: Iterable[str]) -> bool:
        with self._cond:
            return set(names) <= self._satisfied

    @property
    def satisfied(self) -> frozenset:
        with self._cond:
            return frozenset(self._satisfied)

    @property
    def unsatisfied(self) -> frozenset:
        """Registered facts that are still false."""
        with self._cond:
            return frozenset(self._known - self._satisfied)

    def satisfy(self, name: str):
        """Mark ``name`` true and run every callback that became due.

        Calling it again for a satisfied fact does nothing.  Callbacks run in
        the calling thread, after the lock is released; an exception from one
        propagates to the caller.
        """
        with self._cond:
            if name in self._satisfied:
                return
            self._known.add(name)
            self._satisfied.add(name)
            due = [key for key, (needs, _) in self._pending.items()
                   if needs <= self._satisfied]
            callbacks = [self._pending.pop(key)[1] for key in due]
            self._cond.notify_all()
        logger.debug("[Gate] satisfied %s", name)
        for cb in callbacks:
            cb()

    def wait_until_satisfied(self, names: Iterable[str],
                             timeout: Optional[float] = None) -> bool:
        """Block until every fact in ``names`` is true.

        Returns ``False`` only when ``timeout`` expires first.
        """
        needs = set(names)
        with self._cond:
            return self._cond.wait_for(lambda: needs <= self._satisfied, timeout)

    def on_satisfied(self, names: Iterable[str], callback: Callable[[], None],
                     key: Optional[Hashable] = None) -> Hashable:
        """Run ``callback`` once, the first time all ``names`` are true.

        If they already are, the callback runs immediately.  Registering
        again under the same ``key`` replaces a callback that has not fired.
        """
        needs = frozenset(names)
        if key is None:
            key = next(self._ids)
        with self._cond:
            self._known.update(needs)
            if not needs <= self._satisfied:
                self._pending[key] = (needs, callback)
                return key
        callback()
        return key


class BootState(enum.Enum):
    UNBOOTED = "unbooted"
    AWAITING_ENGINE = "awaiting-engine"
    BUILDING_TOPOLOGY = "building-topology"
    READY = "ready"
    FAILED = "failed"


_TRANSITIONS = {
    BootState.UNBOOTED: {BootState.AWAITING_ENGINE, BootState.FAILED},
    BootState.AWAITING_ENGINE: {BootState.BUILDING_TOPOLOGY, BootState.FAILED},
    BootState.BUILDING_TOPOLOGY: {BootState.READY, BootState.FAILED},
    BootState.READY: set(),
    BootState.FAILED: set(),
}


class BootSequence:
    """Unbooted -> AwaitingEngine -> BuildingTopology -> Ready (or Failed)."""

    def __init__(self):
        self._cond = threading.Condition()
        self._state = BootState.UNBOOTED
        self._error: Optional[BaseException] = None
        self._ready_listeners: List[Callable[[], None]] = []

    @property
    def state(self) -> BootState:
        with self._cond:
            return self._state

    @property
    def error(self) -> Optional[BaseException]:
        with self._cond:
            return self._error

    def begin(self) -> bool:
        """Claim the boot.  Only the first caller gets ``True``."""
        with self._cond:
            if self._state is not BootState.UNBOOTED:
                return False
            self._state = BootState.AWAITING_ENGINE
            self._cond.notify_all()
        logger.info("[Boot] awaiting engine")
        return True

    def advance(self, state: BootState):
        with self._cond:
            if state not in _TRANSITIONS[self._state]:
                raise RuntimeError(f"invalid boot transition {self._state.value} -> {state.value}")
            self._state = state
            listeners = list(self._ready_listeners) if state is BootState.READY else []
            self._cond.notify_all()
        logger.info("[Boot] %s", state.value)
        for listener in listeners:
            listener()

    def fail(self, error: BaseException):
        with self._cond:
            if self._state in (BootState.READY, BootState.FAILED):
                return
            self._state = BootState.FAILED
            self._error = error
            self._cond.notify_all()
        logger.error("[Boot] failed: %s", error)

    def on_ready(self, listener: Callable[[], None]):
        with self._cond:
            if self._state is not BootState.READY:
                self._ready_listeners.append(listener)
                return
        listener()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until ready.  Raises ``BootFailed`` if the boot failed.

        Returns ``False`` if ``timeout`` expired while still booting.
        """
        with self._cond:
            done = self._cond.wait_for(
                lambda: self._state in (BootState.READY, BootState.FAILED), timeout)
            if self._state is BootState.FAILED:
                raise BootFailed(f"studio boot failed: {self._error}", self._error)
            return done
