from __future__ import annotations

from typing import Protocol, runtime_checkable

from invoice_extractor.domain.models import ExtractedFields


@runtime_checkable
class LLMPort(Protocol):
    def is_available(self) -> bool:
        """Return True when the provider is configured and not known to be down."""

    def extract_invoice_data(self, ocr_text: str) -> ExtractedFields:
        """Extract invoice fields from OCR text.

        Raises ``LlmUnavailable`` or ``LlmInvalidResult``; neither is fatal.
        """
