"""
Event Emitter — one structured event per state-changing action.

Emission is synchronous with the action. Subscribers are plain callables;
a failing subscriber is logged and skipped so observers can never break
a healing step. Recent events are kept in a bounded buffer for the status
surface.
"""

import logging
import threading
from collections import deque
from typing import Callable, Deque, List, Optional

from heal_kernel.models.events import PAYLOAD_MODELS, EventType, HealEvent
from heal_kernel.state.store import now_sec

logger = logging.getLogger(__name__)

Subscriber = Callable[[HealEvent], None]


class EventEmitter:
    """Validates, records and fans out heal events."""

    def __init__(self, history_size: int = 100):
        self._subscribers: List[Subscriber] = []
        self._recent: Deque[HealEvent] = deque(maxlen=history_size)
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber) -> None:
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def emit(self, event_type: EventType, **payload) -> HealEvent:
        """Build the typed payload, record it and notify every subscriber."""
        model = PAYLOAD_MODELS[event_type](**payload)
        event = HealEvent(
            type=event_type,
            payload=model.model_dump(mode="json", by_alias=True),
            emitted_at=now_sec(),
        )
        with self._lock:
            self._recent.append(event)

        logger.info("[self-heal] event %s %s", event_type.value, event.payload)

        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                logger.exception("[self-heal] event subscriber failed for %s", event_type.value)
        return event

    def recent(self, limit: Optional[int] = None) -> List[HealEvent]:
        """Most recent events, oldest first."""
        with self._lock:
            events = list(self._recent)
        if limit is not None:
            events = events[-limit:] if limit > 0 else []
        return events
