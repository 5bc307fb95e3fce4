from datetime import timedelta

import pytest

from invoice_extractor.domain.events import (
    ExtractionCompleted,
    ExtractionFailed,
    ExtractionStarted,
    InvoiceSaved,
    LlmCompleted,
    OcrCompleted,
)
from invoice_extractor.domain.models import utc_now
from invoice_extractor.services.event_bus import EventBus
from invoice_extractor.services.metrics_listener import MetricsListener


def test_metrics_count_outcomes_and_paths() -> None:
    metrics = MetricsListener()
    started = utc_now()
    metrics(ExtractionStarted("k1", "a.pdf", timestamp=started))
    metrics(OcrCompleted("k1", 0.8, 1, 120, "Tesseract 5"))
    metrics(LlmCompleted("k1", used=True, confidence=0.9))
    metrics(InvoiceSaved("k1", "inv-1"))
    metrics(ExtractionCompleted("k1", "inv-1", 0.9, timestamp=started + timedelta(seconds=2)))

    metrics(ExtractionStarted("k2", "b.pdf", timestamp=started))
    metrics(OcrCompleted("k2", 0.6, 1, 80, "Tesseract 5"))
    metrics(LlmCompleted("k2", used=False, reason="LLM unavailable"))
    metrics(ExtractionFailed("k2", "disk full", "INV-010", timestamp=started))

    snap = metrics.snapshot()
    assert snap.total == 2
    assert snap.successful == 1
    assert snap.failed == 1
    assert snap.llm_used == 1
    assert snap.fallback_used == 1
    assert snap.success_rate == 50.0
    assert snap.failure_rate == 50.0
    assert snap.average_processing_ms == 1000
    assert snap.average_ocr_confidence == pytest.approx(0.7)
    assert metrics.summary().startswith("Extraction Metrics - Total: 2, Successful: 1, Failed: 1")


def test_rates_are_zero_without_finished_jobs() -> None:
    metrics = MetricsListener()
    metrics(ExtractionStarted("k1", "a.pdf"))
    snap = metrics.snapshot()
    assert snap.success_rate == 0.0
    assert snap.average_ocr_confidence is None


def test_reset_clears_counters() -> None:
    metrics = MetricsListener()
    metrics(ExtractionStarted("k1", "a.pdf"))
    metrics.reset()
    assert metrics.snapshot().total == 0


def test_listener_subscribes_to_bus() -> None:
    bus = EventBus(asynchronous=False)
    metrics = MetricsListener()
    bus.subscribe(metrics)
    bus.publish(ExtractionStarted("k1", "a.pdf"))
    assert metrics.snapshot().total == 1
