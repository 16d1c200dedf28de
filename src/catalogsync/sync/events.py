"""Ordered fan-out of SyncEvents to subscribers."""
import logging
from typing import Callable, List

from catalogsync.sync.types import SyncEvent

logger = logging.getLogger(__name__)

SyncEventListener = Callable[[SyncEvent], None]


class EventBroadcaster:
    """
    Delivers every event to all current listeners, in subscription order.

    A listener that raises is logged and skipped; it never interrupts the
    emitter or the remaining listeners.
    """

    def __init__(self):
        self._listeners: List[SyncEventListener] = []

    def subscribe(self, listener: SyncEventListener) -> Callable[[], None]:
        """Register a listener. Returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, event: SyncEvent) -> None:
        # Snapshot so listeners may unsubscribe while being notified
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Sync event listener failed on %s", event.type.value)

    def clear(self) -> None:
        self._listeners.clear()

    def __len__(self) -> int:
        return len(self._listeners)
