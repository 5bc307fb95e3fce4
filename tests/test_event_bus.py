from unittest.mock import Mock

import pytest

from invoice_extractor.domain.events import ExtractionEvent, ExtractionStarted, OcrCompleted
from invoice_extractor.ports.event_sink_port import EventSinkPort
from invoice_extractor.services.event_bus import EventBus


def test_synchronous_bus_delivers_in_order() -> None:
    bus = EventBus(asynchronous=False)
    received: list[str] = []
    bus.subscribe(lambda event: received.append(event.event_type.value))
    bus.publish(ExtractionStarted("k1", "a.pdf"))
    bus.publish(OcrCompleted("k1", 0.9, 1, 10, "Tesseract 5"))
    assert received == ["EXTRACTION_STARTED", "OCR_COMPLETED"]
    assert isinstance(bus, EventSinkPort)


def test_failing_subscriber_does_not_block_others() -> None:
    bus = EventBus(asynchronous=False)
    broken = Mock(side_effect=RuntimeError("subscriber down"))
    healthy = Mock()
    bus.subscribe(broken)
    bus.subscribe(healthy)
    event = ExtractionStarted("k1", "a.pdf")
    bus.publish(event)
    broken.assert_called_once_with(event)
    healthy.assert_called_once_with(event)


def test_asynchronous_bus_delivers_before_close() -> None:
    bus = EventBus()
    subscriber = Mock()
    bus.subscribe(subscriber)
    bus.publish(ExtractionStarted("k1", "a.pdf"))
    bus.close()
    assert subscriber.call_count == 1


def test_publish_after_close_is_dropped() -> None:
    bus = EventBus()
    subscriber = Mock()
    bus.subscribe(subscriber)
    bus.close()
    bus.publish(ExtractionStarted("k1", "a.pdf"))
    subscriber.assert_not_called()


def test_unsubscribe_stops_delivery() -> None:
    bus = EventBus(asynchronous=False)
    subscriber = Mock()
    bus.subscribe(subscriber)
    bus.unsubscribe(subscriber)
    bus.unsubscribe(subscriber)
    bus.publish(ExtractionStarted("k1", "a.pdf"))
    subscriber.assert_not_called()


def test_unknown_event_class_is_rejected() -> None:
    bus = EventBus(asynchronous=False)
    with pytest.raises(TypeError):
        bus.publish(ExtractionEvent("k1"))
