"""In-process change feed delivering newly inserted readings."""

from __future__ import annotations

import logging
from threading import Lock
from typing import Callable, List

from models.records import SensorReading

logger = logging.getLogger(__name__)

ReadingListener = Callable[[SensorReading], None]


class ReadingFeed:
    """Fan out insert events to subscribers in insertion order.

    Delivery is synchronous on the publishing thread. No deduplication is
    performed; a reading published twice reaches every listener twice.
    """

    def __init__(self) -> None:
        self._listeners: List[ReadingListener] = []
        self._lock = Lock()
        self._publish_lock = Lock()

    def subscribe(self, listener: ReadingListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def publish(self, reading: SensorReading) -> None:
        with self._lock:
            listeners = list(self._listeners)
        with self._publish_lock:
            for listener in listeners:
                try:
                    listener(reading)
                except Exception:
                    logger.exception(
                        "Reading listener failed",
                        extra={"reading_id": reading.id, "source_id": reading.source_id},
                    )

    @property
    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)
