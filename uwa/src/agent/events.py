"""Structured event stream for observers (activity feed, terminal, tests)."""
from __future__ import annotations

import logging
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional

from .models import SessionEvent

logger = logging.getLogger("uwa.events")

EventListener = Callable[[SessionEvent], None]


class RingBuffer:
    def __init__(self, maxlen: int = 500) -> None:
        self._buf: Deque[SessionEvent] = deque(maxlen=maxlen)

    def add(self, item: SessionEvent) -> None:
        self._buf.append(item)

    def clear(self) -> None:
        self._buf.clear()

    def list(self, limit: int = 100) -> List[SessionEvent]:
        if limit <= 0:
            return []
        return list(self._buf)[-limit:]


class EventBus:
    """Fan-out to listeners. Listeners observe; they never steer the loop."""

    def __init__(self, *, maxlen: int = 500) -> None:
        self._listeners: List[EventListener] = []
        self.history = RingBuffer(maxlen=maxlen)

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def emit(self, node: str, message: str, data: Optional[Dict[str, Any]] = None) -> SessionEvent:
        event = SessionEvent(node=node, message=message, data=dict(data or {}))
        self.history.add(event)
        logger.debug("[%s] %s %s", node, message, event.data)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("event listener failed on %s/%s", node, message)
        return event

    def recent(self, limit: int = 100) -> List[SessionEvent]:
        return self.history.list(limit=limit)
