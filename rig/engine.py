"""Connection to the external synthesis engine.

``EngineConnection`` is the narrow interface the rig drives: groups, nodes,
controls and definition loading, plus topic notifications coming back from
the engine.  ``LoopbackEngine`` implements it in-process by keeping the node
tree the engine would build, which is enough to run the studio offline and
to inspect routing in tests.
"""

from __future__ import annotations

import abc
import itertools
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional

from rig.errors import NotConnected
from rig.models import SynthDef

logger = logging.getLogger(__name__)

POSITIONS = ("head", "tail", "before", "after")

# Notification topics emitted by the engine.
CLIP_TOPIC = "/server-audio-clipping"
RESET_TOPIC = "reset"


class EngineConnection(abc.ABC):
    """What the rig needs from an engine connection."""

    @abc.abstractmethod
    def connect(self):
        """Open the connection.  Returns once the engine is ready."""

    @abc.abstractmethod
    def disconnect(self):
        ...

    @abc.abstractmethod
    def is_connected(self) -> bool:
        ...

    @abc.abstractmethod
    def root_group(self) -> int:
        ...

    @abc.abstractmethod
    def create_group(self, position: str, target: int) -> int:
        """Create a group and return its id once the engine confirmed it."""

    @abc.abstractmethod
    def instantiate_node(self, definition: str, target: int, position: str,
                         controls: Mapping[str, Any]) -> int:
        ...

    @abc.abstractmethod
    def set_controls(self, node: int, controls: Mapping[str, Any]):
        """Set controls on a node, or on every node inside a group."""

    @abc.abstractmethod
    def terminate(self, node: int):
        """Free a node; groups are freed with everything inside them."""

    @abc.abstractmethod
    def clear_group(self, group: int):
        """Free every node inside ``group`` but keep the group."""

    @abc.abstractmethod
    def compile_and_load(self, sdef: SynthDef):
        ...

    @abc.abstractmethod
    def subscribe(self, topic: str, handler: Callable[..., Any]):
        """Call ``handler(*args)`` whenever the engine emits ``topic``."""


@dataclass
class Node:
    id: int
    parent: Optional[int]
    definition: Optional[str] = None  # None for groups
    controls: Dict[str, Any] = field(default_factory=dict)
    children: List[int] = field(default_factory=list)

    @property
    def is_group(self) -> bool:
        return self.definition is None


class LoopbackEngine(EngineConnection):
    """In-process engine that keeps the node tree without rendering audio."""

    ROOT = 0

    def __init__(self):
        self.nodes: Dict[int, Node] = {}
        self.definitions: Dict[str, SynthDef] = {}
        self.calls: List[tuple] = []
        self._subscribers: Dict[str, List[Callable[..., Any]]] = {}
        self._ids = itertools.count(1)
        self._lock = threading.RLock()
        self._connected = False

    # -- connection ----------------------------------------------------------

    def connect(self):
        with self._lock:
            if self._connected:
                return
            self.nodes = {self.ROOT: Node(self.ROOT, None)}
            self._connected = True
        logger.info("[Engine] loopback connected")

    def disconnect(self):
        with self._lock:
            self._connected = False
        logger.info("[Engine] loopback disconnected")

    def is_connected(self) -> bool:
        return self._connected

    def _check(self):
        if not self._connected:
            raise NotConnected("engine is not connected")

    def _node(self, node_id: int) -> Node:
        try:
            return self.nodes[node_id]
        except KeyError:
            raise ValueError(f"node {node_id} not found") from None

    # -- tree ------------------------------------------------------------------

    def root_group(self) -> int:
        return self.ROOT

    def _place(self, node: Node, position: str, target: int):
        if position not in POSITIONS:
            raise ValueError(f"invalid position '{position}'")
        tgt = self._node(target)
        if position in ("head", "tail"):
            if not tgt.is_group:
                raise ValueError(f"target {target} is not a group")
            node.parent = tgt.id
            if position == "head":
                tgt.children.insert(0, node.id)
            else:
                tgt.children.append(node.id)
            return
        parent = self._node(tgt.parent)
        node.parent = parent.id
        idx = parent.children.index(target)
        parent.children.insert(idx if position == "before" else idx + 1, node.id)

    def create_group(self, position: str, target: int) -> int:
        with self._lock:
            self._check()
            node = Node(next(self._ids), None)
            self._place(node, position, target)
            self.nodes[node.id] = node
            self.calls.append(("create_group", position, target, node.id))
            return node.id

    def instantiate_node(self, definition: str, target: int, position: str,
                         controls: Mapping[str, Any]) -> int:
        with self._lock:
            self._check()
            if definition not in self.definitions:
                raise ValueError(f"definition '{definition}' not loaded")
            node = Node(next(self._ids), None, definition, dict(controls))
            self._place(node, position, target)
            self.nodes[node.id] = node
            self.calls.append(("instantiate_node", definition, target, position,
                               dict(controls), node.id))
            return node.id

    def set_controls(self, node: int, controls: Mapping[str, Any]):
        with self._lock:
            self._check()
            n = self._node(node)
            self.calls.append(("set_controls", node, dict(controls)))
            if n.is_group:
                for synth in self.synths(node):
                    synth.controls.update(controls)
            else:
                n.controls.update(controls)

    def _free(self, node_id: int):
        n = self.nodes.pop(node_id)
        for child in list(n.children):
            self._free(child)

    def terminate(self, node: int):
        with self._lock:
            self._check()
            n = self._node(node)
            self.calls.append(("terminate", node))
            if n.parent is not None:
                self.nodes[n.parent].children.remove(node)
            self._free(node)

    def clear_group(self, group: int):
        with self._lock:
            self._check()
            g = self._node(group)
            self.calls.append(("clear_group", group))
            for child in list(g.children):
                self._free(child)
            g.children.clear()

    def compile_and_load(self, sdef: SynthDef):
        with self._lock:
            self._check()
            self.definitions[sdef.name] = sdef
            self.calls.append(("compile_and_load", sdef.name))

    # -- notifications -------------------------------------------------------

    def subscribe(self, topic: str, handler: Callable[..., Any]):
        with self._lock:
            self._subscribers.setdefault(topic, []).append(handler)

    def emit(self, topic: str, *args):
        """Deliver ``topic`` to subscribers as the engine would."""
        with self._lock:
            handlers = list(self._subscribers.get(topic, []))
        for handler in handlers:
            handler(*args)

    def reset(self):
        """Announce a reset; listeners decide which nodes to stop."""
        self._check()
        self.emit(RESET_TOPIC)

    # -- inspection ------------------------------------------------------------

    def synths(self, group: int) -> List[Node]:
        """All synth nodes below ``group``, depth first."""
        with self._lock:
            found = []
            for child in self._node(group).children:
                n = self.nodes[child]
                if n.is_group:
                    found.extend(self.synths(child))
                else:
                    found.append(n)
            return found

    def order(self, group: Optional[int] = None) -> List[int]:
        """Node ids under ``group`` in render order."""
        group = self.ROOT if group is None else group
        with self._lock:
            out = []
            for child in self._node(group).children:
                out.append(child)
                if self.nodes[child].is_group:
                    out.extend(self.order(child))
            return out
