from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional
import logging
import threading

logger = logging.getLogger(__name__)


class Event(str, Enum):
    NEW_OFFER = "new-offer"
    SENT_OFFER_CHANGED = "sent-offer-changed"
    RECEIVED_OFFER_CHANGED = "received-offer-changed"
    SENT_OFFER_CANCELED = "sent-offer-canceled"
    SENT_PENDING_OFFER_CANCELED = "sent-pending-offer-canceled"
    UNKNOWN_OFFER_SENT = "unknown-offer-sent"
    REAL_TIME_CONFIRMATION_REQUIRED = "real-time-confirmation-required"
    REAL_TIME_TRADE_COMPLETED = "real-time-trade-completed"
    POLL_FAILURE = "poll-failure"
    POLL_SUCCESS = "poll-success"
    POLL_DATA_UPDATED = "poll-data-updated"
    OFFER_LIST_FETCHED = "offer-list-fetched"
    SESSION_EXPIRED = "session-expired"


class EventHub:
    """Набор типизированных каналов событий с подписчиками"""

    def __init__(self, listeners: Optional[Dict[Event, Iterable[Callable]]] = None):
        self._listeners: Dict[Event, List[Callable]] = {event: [] for event in Event}
        self._lock = threading.Lock()
        for event, callbacks in (listeners or {}).items():
            for callback in callbacks:
                self.on(event, callback)

    def on(self, event: Event, callback: Callable):
        with self._lock:
            self._listeners[Event(event)].append(callback)

    def off(self, event: Event, callback: Callable):
        with self._lock:
            if callback in self._listeners[Event(event)]:
                self._listeners[Event(event)].remove(callback)

    def emit(self, event: Event, *args):
        with self._lock:
            callbacks = list(self._listeners[event])

        for callback in callbacks:
            try:
                callback(*args)
            except Exception:
                # Ошибка подписчика не должна ломать цикл опроса
                logger.exception(f"Listener for {event.value} failed")

    def listener_count(self, event: Event) -> int:
        with self._lock:
            return len(self._listeners[event])
