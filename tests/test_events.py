from dataclasses import dataclass

import pytest

from invoice_extractor.domain.events import (
    ALL_EVENT_TYPES,
    EventType,
    ExtractionEvent,
    ExtractionFailed,
    ExtractionStarted,
    LlmCompleted,
    dispatch_event,
    ensure_exhaustive,
)


@dataclass(frozen=True)
class RogueEvent(ExtractionEvent):
    note: str = ""


def test_every_event_type_has_one_class() -> None:
    assert sorted(cls.event_type.value for cls in ALL_EVENT_TYPES) == sorted(
        member.value for member in EventType
    )


def test_dispatch_routes_by_event_type() -> None:
    handlers = {
        EventType.STARTED: lambda event: f"started {event.file_name}",
        EventType.FAILED: lambda event: f"failed {event.error_code}",
    }
    assert dispatch_event(ExtractionStarted("k1", "a.pdf"), handlers) == "started a.pdf"
    assert dispatch_event(ExtractionFailed("k1", "boom", "INV-004"), handlers) == "failed INV-004"


def test_dispatch_uses_default_for_unhandled_types() -> None:
    event = LlmCompleted("k1", used=False, reason="LLM unavailable")
    assert dispatch_event(event, {}) is None
    assert dispatch_event(event, {}, default=lambda e: e.event_type) is EventType.LLM_COMPLETED


def test_dispatch_rejects_events_outside_the_closed_set() -> None:
    with pytest.raises(TypeError):
        dispatch_event(RogueEvent("k1"), {})


def test_events_are_timestamped() -> None:
    event = ExtractionStarted("k1", "a.pdf")
    assert event.timestamp.tzinfo is not None


def test_exhaustiveness_check_reports_missing_types() -> None:
    ensure_exhaustive(ALL_EVENT_TYPES)
    with pytest.raises(TypeError, match="LLM_COMPLETED"):
        ensure_exhaustive(tuple(cls for cls in ALL_EVENT_TYPES if cls is not LlmCompleted))


def test_exhaustiveness_check_rejects_duplicates() -> None:
    with pytest.raises(TypeError):
        ensure_exhaustive(ALL_EVENT_TYPES + (ExtractionStarted,))
