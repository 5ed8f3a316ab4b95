"""Observability hooks emitted while synchronizing commands."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
import logging
from typing import Any, Callable, Deque, Dict, List, Optional

logger = logging.getLogger("cinder.events")


class EventKind(str, Enum):
    FILE_LOADED = "file_loaded"
    FILE_UNCHANGED = "file_unchanged"
    FILE_REJECTED = "file_rejected"
    FILE_RETIRED = "file_retired"
    RECONCILE_STARTED = "reconcile_started"
    RECONCILE_COMPLETED = "reconcile_completed"
    PARTITION_FAILED = "partition_failed"
    STORE_DEGRADED = "store_degraded"
    STORE_RECOVERED = "store_recovered"


@dataclass
class SyncEvent:
    kind: EventKind
    path: Optional[str] = None
    name: Optional[str] = None
    partition: Optional[str] = None
    detail: str = ""
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "path": self.path,
            "name": self.name,
            "partition": self.partition,
            "detail": self.detail,
            "timestamp": self.timestamp,
        }


EventListener = Callable[[SyncEvent], None]


class EventHub:
    """Fan-out of sync events to observers, with a short history."""

    def __init__(self, history_size: int = 200) -> None:
        self._listeners: List[EventListener] = []
        self._history: Deque[SyncEvent] = deque(maxlen=history_size)

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        """Register ``listener``; returns a callable that removes it again."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def emit(self, event: SyncEvent) -> None:
        self._history.append(event)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Event listener failed for %s", event.kind.value)

    def history(self, kind: Optional[EventKind] = None) -> List[SyncEvent]:
        if kind is None:
            return list(self._history)
        return [event for event in self._history if event.kind is kind]


__all__ = ["EventHub", "EventKind", "EventListener", "SyncEvent"]
