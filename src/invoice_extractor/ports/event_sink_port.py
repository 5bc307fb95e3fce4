from __future__ import annotations

from typing import Protocol, runtime_checkable

from invoice_extractor.domain.events import ExtractionEvent


@runtime_checkable
class EventSinkPort(Protocol):
    def publish(self, event: ExtractionEvent) -> None:
        """Deliver an event best-effort without blocking the caller."""
