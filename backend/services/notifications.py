"""In-process fan-out of change events to connected clients."""

import logging
from threading import Lock
from typing import Callable

logger = logging.getLogger(__name__)

QUEUE_UPDATE = 'queue_update'

Subscriber = Callable[[dict], None]


class NotificationBus:
    def __init__(self):
        self._subscribers: list[Subscriber] = []
        self._lock = Lock()

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            with self._lock:
                if subscriber in self._subscribers:
                    self._subscribers.remove(subscriber)

        return unsubscribe

    def publish(self, event: dict) -> None:
        with self._lock:
            subscribers = list(self._subscribers)

        for subscriber in subscribers:
            # A dead client must not undo a mutation that already committed.
            try:
                subscriber(event)
            except Exception:
                logger.warning('Dropping %s event for a failing subscriber', event.get('type'), exc_info=True)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)


notification_bus = NotificationBus()


def get_notification_bus() -> NotificationBus:
    return notification_bus


def queue_update_event() -> dict:
    return {'type': QUEUE_UPDATE}
