"""Lifecycle events emitted by the extraction pipeline.

The set of events is closed: ``ALL_EVENT_TYPES`` lists every concrete class and
``dispatch_event`` is the single place that maps an event to its handler.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TypeVar

from invoice_extractor.domain.models import utc_now


class EventType(str, Enum):
    STARTED = "EXTRACTION_STARTED"
    OCR_COMPLETED = "OCR_COMPLETED"
    LLM_COMPLETED = "LLM_COMPLETED"
    INVOICE_SAVED = "INVOICE_SAVED"
    COMPLETED = "EXTRACTION_COMPLETED"
    FAILED = "EXTRACTION_FAILED"


@dataclass(frozen=True)
class ExtractionEvent:
    extraction_key: str
    timestamp: datetime = field(default_factory=utc_now, kw_only=True)

    event_type = None  # type: EventType | None


@dataclass(frozen=True)
class ExtractionStarted(ExtractionEvent):
    file_name: str
    event_type = EventType.STARTED


@dataclass(frozen=True)
class OcrCompleted(ExtractionEvent):
    confidence: float
    page_count: int
    text_length: int
    engine_version: str
    event_type = EventType.OCR_COMPLETED


@dataclass(frozen=True)
class LlmCompleted(ExtractionEvent):
    """Outcome of the LLM phase; ``used`` is False when the fallback parser took over."""

    used: bool
    confidence: float | None = None
    reason: str | None = None
    event_type = EventType.LLM_COMPLETED


@dataclass(frozen=True)
class InvoiceSaved(ExtractionEvent):
    invoice_key: str
    event_type = EventType.INVOICE_SAVED


@dataclass(frozen=True)
class ExtractionCompleted(ExtractionEvent):
    invoice_key: str
    confidence: float
    event_type = EventType.COMPLETED


@dataclass(frozen=True)
class ExtractionFailed(ExtractionEvent):
    error_message: str
    error_code: str | None = None
    event_type = EventType.FAILED


ALL_EVENT_TYPES: tuple[type[ExtractionEvent], ...] = (
    ExtractionStarted,
    OcrCompleted,
    LlmCompleted,
    InvoiceSaved,
    ExtractionCompleted,
    ExtractionFailed,
)


def ensure_exhaustive(event_classes: tuple[type[ExtractionEvent], ...]) -> None:
    """Raise ``TypeError`` unless every ``EventType`` has exactly one event class."""

    covered = [cls.event_type for cls in event_classes]
    missing = sorted(member.value for member in set(EventType) - set(covered))
    if missing:
        raise TypeError(f"No event class for: {', '.join(missing)}")
    if len(covered) != len(set(covered)):
        raise TypeError("Event types are covered by more than one class")


ensure_exhaustive(ALL_EVENT_TYPES)

T = TypeVar("T")


def dispatch_event(
    event: ExtractionEvent,
    handlers: Mapping[EventType, Callable[[ExtractionEvent], T]],
    default: Callable[[ExtractionEvent], T] | None = None,
) -> T | None:
    """Route an event to the handler registered for its type.

    Raises ``TypeError`` for an event class outside the closed set so that a
    new event type cannot slip past subscribers unnoticed.
    """

    if type(event) not in ALL_EVENT_TYPES:
        raise TypeError(f"Unknown extraction event: {type(event).__name__}")
    handler = handlers.get(event.event_type)
    if handler is None:
        if default is None:
            return None
        return default(event)
    return handler(event)
