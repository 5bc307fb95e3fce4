from __future__ import annotations

import logging
import re
from decimal import Decimal
from uuid import uuid4

from invoice_extractor.domain.models import (
    DEFAULT_CURRENCY,
    UNKNOWN,
    ZERO_AMOUNT,
    ExtractedFields,
    FieldSource,
    InvoiceRecord,
    InvoiceStatus,
    OcrOutcome,
    utc_now,
)

logger = logging.getLogger(__name__)

_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")
_CENTS = Decimal("0.01")


def build_invoice(
    primary: ExtractedFields | None,
    fallback: ExtractedFields | None,
    source_file_name: str,
    extraction_key: str | None = None,
) -> InvoiceRecord:
    """Merge extracted fields into a new invoice record.

    Each field independently takes the primary (LLM) value when present, then
    the fallback value, then the sentinel default. A missing address stays
    ``None``.
    """

    sources = [fields for fields in (primary, fallback) if fields is not None]

    invoice_number = _first(sources, "invoice_number", _valid_text) or UNKNOWN
    amount = _first(sources, "amount", _valid_amount)
    client_name = _first(sources, "client_name", _valid_text) or UNKNOWN
    client_address = _first(sources, "client_address", _valid_text)
    currency = normalize_currency(_first(sources, "currency", _valid_text))

    return InvoiceRecord(
        key=str(uuid4()),
        invoice_number=invoice_number,
        amount=(amount if amount is not None else ZERO_AMOUNT).quantize(_CENTS),
        client_name=client_name,
        client_address=client_address,
        currency=currency,
        status=InvoiceStatus.EXTRACTED,
        source_file_name=source_file_name,
        extraction_key=extraction_key,
        created_at=utc_now(),
    )


def normalize_currency(currency: str | None) -> str:
    if not currency or not currency.strip():
        return DEFAULT_CURRENCY
    normalized = currency.strip().upper()
    if _CURRENCY_RE.match(normalized):
        return normalized
    logger.warning("Invalid currency code %r, using default %s", currency, DEFAULT_CURRENCY)
    return DEFAULT_CURRENCY


def engine_label(ocr_engine: str, source: FieldSource) -> str:
    return f"{ocr_engine}+{source.value}"


def build_payload(
    ocr: OcrOutcome,
    source: FieldSource,
    fallback_reason: str | None = None,
) -> dict:
    """Audit detail stored on the job: raw OCR text and how the fields were produced."""

    payload = {
        "text": ocr.text,
        "length": len(ocr.text),
        "page_count": ocr.page_count,
        "engine_version": ocr.engine_version,
        "language": ocr.language,
        "ocr_confidence": ocr.confidence,
        "processing_ms": ocr.processing_ms,
        "extraction_path": source.value,
    }
    if fallback_reason:
        payload["fallback_reason"] = fallback_reason
    return payload


def _first(sources: list[ExtractedFields], attribute: str, is_valid) -> object:
    for fields in sources:
        value = getattr(fields, attribute)
        if value is not None and is_valid(value):
            return value
    return None


def _valid_text(value: object) -> bool:
    if not isinstance(value, str):
        return False
    stripped = value.strip()
    return bool(stripped) and stripped.upper() not in {UNKNOWN, "NULL", "NONE", "N/A"}


def _valid_amount(value: object) -> bool:
    return isinstance(value, Decimal) and value > 0
