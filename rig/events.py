"""Publish/subscribe hub for studio notifications.

Topics used by the rig:

    new-inst   an instrument was (re)defined    payload: inst
    clip       the mixer input clipped          payload: args
    reset      the engine freed all nodes       payload: none
"""

from __future__ import annotations

import itertools
import logging
import threading
from typing import Any, Callable, Dict, Hashable, Optional

logger = logging.getLogger(__name__)

NEW_INST = "new-inst"
CLIP = "clip"
RESET = "reset"


class EventBus:
    """Synchronous topic fan-out.

    Listeners are keyed; subscribing again with the same key replaces the
    earlier listener, so modules can re-register handlers on reload.
    """

    def __init__(self):
        self._handlers: Dict[str, Dict[Hashable, Callable[..., Any]]] = {}
        self._ids = itertools.count()
        self._lock = threading.Lock()

    def subscribe(self, topic: str, handler: Callable[..., Any],
                  key: Optional[Hashable] = None) -> Hashable:
        if key is None:
            key = next(self._ids)
        with self._lock:
            self._handlers.setdefault(topic, {})[key] = handler
        return key

    def unsubscribe(self, topic: str, key: Hashable) -> bool:
        with self._lock:
            return self._handlers.get(topic, {}).pop(key, None) is not None

    def publish(self, topic: str, **payload) -> int:
        """Call every listener of ``topic``; returns the number called.

        A failing listener is logged and does not stop the fan-out.
        """
        with self._lock:
            handlers = list(self._handlers.get(topic, {}).values())
        for handler in handlers:
            try:
                handler(**payload)
            except Exception:
                logger.exception("[Events] listener for '%s' failed", topic)
        return len(handlers)
