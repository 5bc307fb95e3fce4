from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from uuid import uuid4

from invoice_extractor.domain.confidence import clamp_confidence
from invoice_extractor.domain.errors import IllegalStateTransition

DEFAULT_CURRENCY = "USD"
UNKNOWN = "UNKNOWN"
ZERO_AMOUNT = Decimal("0.00")

ACCEPTED_MIME_TYPES = frozenset({"application/pdf", "image/png", "image/jpeg", "image/jpg"})
MAX_FILE_SIZE_BYTES = 10 * 1024 * 1024


class JobStatus(str, Enum):
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class InvoiceStatus(str, Enum):
    EXTRACTED = "EXTRACTED"
    EXTRACTION_FAILED = "EXTRACTION_FAILED"


class FieldSource(str, Enum):
    LLM = "llm"
    FALLBACK = "fallback"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class OcrOutcome:
    text: str
    confidence: float
    page_count: int = 1
    engine_version: str = "unknown"
    language: str | None = None
    processing_ms: int | None = None

    def is_empty(self) -> bool:
        return not self.text or not self.text.strip()


@dataclass(frozen=True)
class ExtractedFields:
    """Per-field optional values plus one aggregate confidence.

    ``None`` means the field was not found. Sentinel defaults are only applied
    when the fields are merged into an ``InvoiceRecord``.
    """

    invoice_number: str | None = None
    amount: Decimal | None = None
    client_name: str | None = None
    client_address: str | None = None
    currency: str | None = None
    confidence: float = 0.0
    source: FieldSource = FieldSource.LLM

    def is_valid(self) -> bool:
        """A field set is usable when an invoice number or an amount is present."""

        return self.invoice_number is not None or self.amount is not None


@dataclass(frozen=True)
class InvoiceRecord:
    key: str
    invoice_number: str
    amount: Decimal
    client_name: str
    client_address: str | None
    currency: str
    status: InvoiceStatus
    source_file_name: str
    extraction_key: str | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class ExtractionJob:
    key: str
    source_file_name: str
    status: JobStatus
    created_at: datetime
    mime_type: str | None = None
    confidence_score: float | None = None
    engine_used: str | None = None
    payload: dict | None = None
    error_code: str | None = None
    error_message: str | None = None
    invoice_key: str | None = None
    completed_at: datetime | None = None

    @classmethod
    def start(cls, source_file_name: str, mime_type: str | None = None) -> ExtractionJob:
        return cls(
            key=str(uuid4()),
            source_file_name=source_file_name,
            status=JobStatus.PROCESSING,
            created_at=utc_now(),
            mime_type=mime_type,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status is not JobStatus.PROCESSING

    def complete(
        self,
        invoice_key: str,
        confidence_score: float,
        engine_used: str,
        payload: dict,
    ) -> ExtractionJob:
        self._require_processing(JobStatus.COMPLETED)
        return replace(
            self,
            status=JobStatus.COMPLETED,
            invoice_key=invoice_key,
            confidence_score=clamp_confidence(confidence_score),
            engine_used=engine_used,
            payload=payload,
            error_code=None,
            error_message=None,
            completed_at=utc_now(),
        )

    def fail(
        self,
        error_code: str,
        error_message: str,
        engine_used: str | None = None,
        payload: dict | None = None,
    ) -> ExtractionJob:
        self._require_processing(JobStatus.FAILED)
        return replace(
            self,
            status=JobStatus.FAILED,
            invoice_key=None,
            confidence_score=None,
            engine_used=engine_used,
            payload=payload,
            error_code=error_code,
            error_message=error_message,
            completed_at=utc_now(),
        )

    def restart(self) -> ExtractionJob:
        """Return this job back in PROCESSING for an explicit retry of the same key."""

        if not self.is_terminal:
            raise IllegalStateTransition(
                f"Job {self.key} is still {self.status.value}", job_key=self.key
            )
        return replace(
            self,
            status=JobStatus.PROCESSING,
            confidence_score=None,
            engine_used=None,
            payload=None,
            error_code=None,
            error_message=None,
            invoice_key=None,
            completed_at=None,
        )

    def _require_processing(self, target: JobStatus) -> None:
        if self.status is not JobStatus.PROCESSING:
            raise IllegalStateTransition(
                f"Cannot move job {self.key} from {self.status.value} to {target.value}",
                job_key=self.key,
            )
