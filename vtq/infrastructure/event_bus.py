import logging
import threading
from typing import Type, Callable, List, Dict, Any
from vtq.domain.events import Event

logger = logging.getLogger(__name__)

class EventBus:
    """A simple synchronous event bus. Publishing is allowed from any thread."""

    def __init__(self):
        self._subscribers: Dict[Type[Event], List[Callable[[Any], None]]] = {}
        self._lock = threading.Lock()

    def subscribe(self, event_type: Type[Event], callback: Callable[[Any], None]):
        """Subscribes a callback to a specific event type."""
        with self._lock:
            self._subscribers.setdefault(event_type, []).append(callback)

    def unsubscribe(self, event_type: Type[Event], callback: Callable[[Any], None]):
        with self._lock:
            callbacks = self._subscribers.get(event_type, [])
            if callback in callbacks:
                callbacks.remove(callback)

    def publish(self, event: Event):
        """Publishes an event to all interested subscribers.

        A failing subscriber is logged and does not stop delivery to the rest.
        """
        with self._lock:
            callbacks = list(self._subscribers.get(type(event), []))
        for callback in callbacks:
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Subscriber {callback!r} failed on {type(event).__name__}: {e}")
