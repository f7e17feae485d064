"""Lifecycle and progress notifications.

Components publish :class:`Event` objects on an :class:`EventBus`; an
external observer (a UI, a log sink, a test) subscribes per event type or
to everything. Each component owns its bus unless one is injected, so two
engines never share listeners by accident.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    # Index
    FILE_INDEXED = "index:file_indexed"
    FILE_FAILED = "index:file_failed"
    FILE_REMOVED = "index:file_removed"
    INDEX_UPDATED = "index:updated"
    # Search
    SEARCH_COMPLETED = "search:completed"
    CACHE_HIT = "cache:hit"
    CACHE_MISS = "cache:miss"
    # Context window
    CONTEXT_ADDED = "window:added"
    CONTEXT_REMOVED = "window:removed"
    CONTEXT_COMPRESSED = "window:compressed"
    # Research / orchestration
    STATE_CHANGED = "state_changed"
    TASK_STARTED = "task:started"
    TASK_COMPLETED = "task:completed"
    TASK_FAILED = "task:failed"
    TASK_CANCELLED = "task:cancelled"
    REQUEST_COMPLETED = "request:completed"
    REQUEST_FAILED = "request:failed"


@dataclass
class Event:
    type: EventType
    source: str
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


Listener = Callable[[Event], None]


class EventBus:
    """Listener lists per event type plus a wildcard list."""

    def __init__(self, history_size: int = 200) -> None:
        self._listeners: Dict[EventType, List[Listener]] = {}
        self._wildcard: List[Listener] = []
        self.history: Deque[Event] = deque(maxlen=history_size)

    def subscribe(self, event_type: EventType, callback: Listener) -> None:
        callbacks = self._listeners.setdefault(event_type, [])
        if callback not in callbacks:
            callbacks.append(callback)

    def subscribe_all(self, callback: Listener) -> None:
        if callback not in self._wildcard:
            self._wildcard.append(callback)

    def unsubscribe(self, callback: Listener, event_type: Optional[EventType] = None) -> None:
        """Remove *callback* from one event type, or from everything."""
        if event_type is not None:
            callbacks = self._listeners.get(event_type, [])
            if callback in callbacks:
                callbacks.remove(callback)
            return
        for callbacks in self._listeners.values():
            if callback in callbacks:
                callbacks.remove(callback)
        if callback in self._wildcard:
            self._wildcard.remove(callback)

    def emit(self, event_type: EventType, source: str, **data: Any) -> Event:
        event = Event(type=event_type, source=source, data=data)
        self.history.append(event)
        for callback in list(self._listeners.get(event_type, ())) + list(self._wildcard):
            try:
                callback(event)
            except Exception:
                # Observers must not break the emitting component
                logger.exception("Listener %r failed on %s", callback, event_type.value)
        return event

    def events_of(self, event_type: EventType) -> List[Event]:
        """Recent events of one type, oldest first."""
        return [e for e in self.history if e.type == event_type]
