from __future__ import annotations

from typing import Protocol, runtime_checkable

from invoice_extractor.domain.models import OcrOutcome


@runtime_checkable
class OCRPort(Protocol):
    @property
    def engine_name(self) -> str:
        """Return the engine name and version, e.g. ``Tesseract 5.3.0``."""

    def extract_text(self, file_bytes: bytes, file_name: str, mime_type: str) -> OcrOutcome:
        """Extract text from PDF or image bytes.

        Raises ``FileUnreadable`` or ``EngineUnavailable``.
        """
