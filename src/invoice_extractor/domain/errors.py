from __future__ import annotations


class InvoiceExtractorError(Exception):
    """Base error carrying a stable error code and optional structured details."""

    code = "INV-999"
    default_message = "An unexpected internal error occurred"
    fatal = True

    def __init__(self, message: str | None = None, **details: object) -> None:
        self.message = message or self.default_message
        self.details = dict(details)
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message


class FileUnreadable(InvoiceExtractorError):
    code = "INV-003"
    default_message = "The uploaded file could not be read or is corrupted"


class EngineUnavailable(InvoiceExtractorError):
    code = "INV-004"
    default_message = "OCR service is currently unavailable"


class ExtractionEmpty(InvoiceExtractorError):
    code = "INV-005"
    default_message = "OCR extraction returned empty text"


class JobNotFound(InvoiceExtractorError):
    code = "INV-009"
    default_message = "Extraction metadata not found"


class PersistenceError(InvoiceExtractorError):
    code = "INV-010"
    default_message = "Database operation failed"


class LlmUnavailable(InvoiceExtractorError):
    code = "INV-015"
    default_message = "LLM service is not available for invoice data extraction"
    fatal = False


class LlmInvalidResult(InvoiceExtractorError):
    code = "INV-016"
    default_message = "LLM extraction returned invalid data"
    fatal = False


class JobInProgress(InvoiceExtractorError):
    code = "INV-017"
    default_message = "Extraction is still processing"


class SourceUnavailable(InvoiceExtractorError):
    code = "INV-018"
    default_message = "Source document for the extraction is not stored"


class IllegalStateTransition(InvoiceExtractorError):
    code = "INV-019"
    default_message = "Illegal extraction job state transition"


class InternalError(InvoiceExtractorError):
    pass
