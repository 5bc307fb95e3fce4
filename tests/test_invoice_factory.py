from decimal import Decimal

from invoice_extractor.domain.invoice_factory import (
    build_invoice,
    build_payload,
    engine_label,
    normalize_currency,
)
from invoice_extractor.domain.models import (
    UNKNOWN,
    ExtractedFields,
    FieldSource,
    InvoiceStatus,
    OcrOutcome,
)


def test_primary_fields_take_precedence_per_field() -> None:
    primary = ExtractedFields(invoice_number="LLM-1", amount=None, client_name="N/A")
    fallback = ExtractedFields(
        invoice_number="RX-9",
        amount=Decimal("42.5"),
        client_name="Fallback Co",
        source=FieldSource.FALLBACK,
    )
    invoice = build_invoice(primary, fallback, "a.pdf", extraction_key="job-1")
    assert invoice.invoice_number == "LLM-1"
    assert invoice.amount == Decimal("42.50")
    assert invoice.client_name == "Fallback Co"
    assert invoice.extraction_key == "job-1"
    assert invoice.status is InvoiceStatus.EXTRACTED


def test_missing_values_get_defaults_and_address_stays_absent() -> None:
    invoice = build_invoice(None, ExtractedFields(source=FieldSource.FALLBACK), "a.png")
    assert invoice.invoice_number == UNKNOWN
    assert invoice.amount == Decimal("0.00")
    assert invoice.client_name == UNKNOWN
    assert invoice.client_address is None
    assert invoice.currency == "USD"


def test_non_positive_amount_is_not_used() -> None:
    primary = ExtractedFields(amount=Decimal("0"))
    fallback = ExtractedFields(amount=Decimal("13.00"))
    assert build_invoice(primary, fallback, "a.pdf").amount == Decimal("13.00")


def test_each_build_gets_a_fresh_key() -> None:
    fields = ExtractedFields(invoice_number="A-1")
    assert build_invoice(fields, None, "a.pdf").key != build_invoice(fields, None, "a.pdf").key


def test_normalize_currency() -> None:
    assert normalize_currency(None) == "USD"
    assert normalize_currency(" eur ") == "EUR"
    assert normalize_currency("dollars") == "USD"


def test_engine_label_and_payload() -> None:
    ocr = OcrOutcome(text="hello", confidence=0.8, engine_version="Tesseract 5.3.0")
    assert engine_label(ocr.engine_version, FieldSource.FALLBACK) == "Tesseract 5.3.0+fallback"
    payload = build_payload(ocr, FieldSource.FALLBACK, "LLM unavailable")
    assert payload["text"] == "hello"
    assert payload["length"] == 5
    assert payload["extraction_path"] == "fallback"
    assert payload["fallback_reason"] == "LLM unavailable"
    assert "fallback_reason" not in build_payload(ocr, FieldSource.LLM)
