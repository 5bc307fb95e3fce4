from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor

from invoice_extractor.domain.events import ALL_EVENT_TYPES, ExtractionEvent
from invoice_extractor.ports.event_sink_port import EventSinkPort

logger = logging.getLogger(__name__)

Subscriber = Callable[[ExtractionEvent], None]


class EventBus(EventSinkPort):
    """Fan-out event sink.

    With ``asynchronous=True`` delivery happens on a dedicated worker thread and
    ``publish`` returns immediately. Subscriber errors are logged and dropped in
    both modes.
    """

    def __init__(self, asynchronous: bool = True) -> None:
        self._subscribers: list[Subscriber] = []
        self._lock = threading.Lock()
        self._executor = (
            ThreadPoolExecutor(max_workers=1, thread_name_prefix="extraction-events")
            if asynchronous
            else None
        )

    def subscribe(self, subscriber: Subscriber) -> None:
        with self._lock:
            self._subscribers.append(subscriber)

    def unsubscribe(self, subscriber: Subscriber) -> None:
        with self._lock:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

    def publish(self, event: ExtractionEvent) -> None:
        if not isinstance(event, ALL_EVENT_TYPES):
            raise TypeError(f"Unknown extraction event: {type(event).__name__}")
        logger.debug("Publishing %s for %s", event.event_type.value, event.extraction_key)
        with self._lock:
            subscribers = list(self._subscribers)
        if self._executor is None:
            self._deliver(event, subscribers)
            return
        try:
            self._executor.submit(self._deliver, event, subscribers)
        except RuntimeError:
            logger.warning("Event bus is closed, dropping %s", event.event_type.value)

    def close(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)

    @staticmethod
    def _deliver(event: ExtractionEvent, subscribers: list[Subscriber]) -> None:
        for subscriber in subscribers:
            try:
                subscriber(event)
            except Exception:
                logger.exception(
                    "Event subscriber failed for %s (%s)",
                    event.event_type.value,
                    event.extraction_key,
                )
