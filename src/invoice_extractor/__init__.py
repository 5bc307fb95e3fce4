"""Invoice field extraction: OCR, LLM extraction with a deterministic fallback, and job tracking."""

__version__ = "0.1.0"
