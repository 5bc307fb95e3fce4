from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

from invoice_extractor.domain.events import (
    EventType,
    ExtractionCompleted,
    ExtractionEvent,
    ExtractionFailed,
    ExtractionStarted,
    LlmCompleted,
    OcrCompleted,
    dispatch_event,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MetricsSnapshot:
    total: int
    successful: int
    failed: int
    llm_used: int
    fallback_used: int
    average_processing_ms: int
    average_ocr_confidence: float | None

    @property
    def success_rate(self) -> float:
        finished = self.successful + self.failed
        if finished == 0:
            return 0.0
        return self.successful * 100.0 / finished

    @property
    def failure_rate(self) -> float:
        finished = self.successful + self.failed
        if finished == 0:
            return 0.0
        return self.failed * 100.0 / finished


class MetricsListener:
    """Event subscriber that keeps in-process extraction counters.

    Register it with ``EventBus.subscribe``; it is never called by the
    orchestrator directly.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handlers = {
            EventType.STARTED: self._on_started,
            EventType.OCR_COMPLETED: self._on_ocr_completed,
            EventType.LLM_COMPLETED: self._on_llm_completed,
            EventType.COMPLETED: self._on_completed,
            EventType.FAILED: self._on_failed,
        }
        self.reset()

    def __call__(self, event: ExtractionEvent) -> None:
        dispatch_event(event, self._handlers)

    def snapshot(self) -> MetricsSnapshot:
        with self._lock:
            finished = self._successful + self._failed
            average_ms = self._total_processing_ms // finished if finished else 0
            average_ocr = (
                sum(self._ocr_confidences) / len(self._ocr_confidences)
                if self._ocr_confidences
                else None
            )
            return MetricsSnapshot(
                total=self._total,
                successful=self._successful,
                failed=self._failed,
                llm_used=self._llm_used,
                fallback_used=self._fallback_used,
                average_processing_ms=average_ms,
                average_ocr_confidence=average_ocr,
            )

    def summary(self) -> str:
        snap = self.snapshot()
        return (
            f"Extraction Metrics - Total: {snap.total}, Successful: {snap.successful}, "
            f"Failed: {snap.failed}, Success Rate: {snap.success_rate:.2f}%, "
            f"Avg Time: {snap.average_processing_ms}ms"
        )

    def reset(self) -> None:
        with self._lock:
            self._total = 0
            self._successful = 0
            self._failed = 0
            self._llm_used = 0
            self._fallback_used = 0
            self._total_processing_ms = 0
            self._ocr_confidences: list[float] = []
            self._started_at: dict[str, object] = {}

    def _on_started(self, event: ExtractionStarted) -> None:
        with self._lock:
            self._total += 1
            self._started_at[event.extraction_key] = event.timestamp

    def _on_ocr_completed(self, event: OcrCompleted) -> None:
        with self._lock:
            self._ocr_confidences.append(event.confidence)
        logger.debug("Metrics: OCR confidence %.2f for %s", event.confidence, event.extraction_key)

    def _on_llm_completed(self, event: LlmCompleted) -> None:
        with self._lock:
            if event.used:
                self._llm_used += 1
            else:
                self._fallback_used += 1

    def _on_completed(self, event: ExtractionCompleted) -> None:
        with self._lock:
            self._successful += 1
            self._record_duration(event)
        logger.info("Metrics: extraction completed, %s", self.summary())

    def _on_failed(self, event: ExtractionFailed) -> None:
        with self._lock:
            self._failed += 1
            self._record_duration(event)
        logger.warning("Metrics: extraction failed, failure rate %.2f%%", self.snapshot().failure_rate)

    def _record_duration(self, event: ExtractionEvent) -> None:
        started = self._started_at.pop(event.extraction_key, None)
        if started is None:
            return
        elapsed = event.timestamp - started
        self._total_processing_ms += int(elapsed.total_seconds() * 1000)
