from __future__ import annotations

from invoice_extractor.domain.errors import InvoiceExtractorError
from invoice_extractor.domain.models import InvoiceRecord
from invoice_extractor.ports.metadata_store_port import MetadataStorePort


class InvoiceNotFound(InvoiceExtractorError):
    code = "INV-007"
    default_message = "Invoice not found with the provided key"


class InvoiceService:
    def __init__(self, store: MetadataStorePort) -> None:
        self._store = store

    def get_invoice(self, key: str) -> InvoiceRecord:
        invoice = self._store.get_invoice(key)
        if invoice is None:
            raise InvoiceNotFound(f"Invoice not found with key: {key}", invoice_key=key)
        return invoice

    def get_invoice_for_extraction(self, extraction_key: str) -> InvoiceRecord | None:
        return self._store.get_invoice_by_extraction(extraction_key)

    def list_invoices(self) -> list[InvoiceRecord]:
        return self._store.list_invoices()

    def find_by_invoice_number(self, invoice_number: str) -> list[InvoiceRecord]:
        return self._store.find_invoices_by_number(invoice_number.strip())
