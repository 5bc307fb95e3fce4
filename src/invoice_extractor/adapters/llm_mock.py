from __future__ import annotations

from invoice_extractor.domain.errors import LlmUnavailable
from invoice_extractor.domain.models import ExtractedFields
from invoice_extractor.ports.llm_port import LLMPort


class MockLLMAdapter(LLMPort):
    """Stand-in used when no LLM provider is configured; every job takes the fallback path."""

    def is_available(self) -> bool:
        return False

    def extract_invoice_data(self, ocr_text: str) -> ExtractedFields:
        _ = ocr_text
        raise LlmUnavailable("LLM provider not configured")
