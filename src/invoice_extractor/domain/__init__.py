from .fallback_parser import parse_invoice_fields
from .invoice_factory import build_invoice
from .models import (
    ExtractedFields,
    ExtractionJob,
    FieldSource,
    InvoiceRecord,
    InvoiceStatus,
    JobStatus,
    OcrOutcome,
)

__all__ = [
    "ExtractedFields",
    "ExtractionJob",
    "FieldSource",
    "InvoiceRecord",
    "InvoiceStatus",
    "JobStatus",
    "OcrOutcome",
    "build_invoice",
    "parse_invoice_fields",
]
