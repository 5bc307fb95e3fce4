from __future__ import annotations

from typing import Protocol

from invoice_extractor.domain.models import ExtractionJob, InvoiceRecord, JobStatus


class MetadataStorePort(Protocol):
    def save_job(self, job: ExtractionJob) -> ExtractionJob:
        """Insert a new extraction job."""

    def update_job(self, key: str, job: ExtractionJob) -> ExtractionJob:
        """Upsert an extraction job by key."""

    def get_job(self, key: str) -> ExtractionJob | None:
        """Return a job by key, or None if missing."""

    def list_jobs_by_status(self, status: JobStatus) -> list[ExtractionJob]:
        """Return jobs with the given status, newest first."""

    def list_jobs_by_invoice(self, invoice_key: str) -> list[ExtractionJob]:
        """Return jobs that produced the given invoice."""

    def save_invoice(self, invoice: InvoiceRecord) -> InvoiceRecord:
        """Persist an invoice; at most one invoice is kept per extraction key."""

    def get_invoice(self, key: str) -> InvoiceRecord | None:
        """Return an invoice by key, or None if missing."""

    def get_invoice_by_extraction(self, extraction_key: str) -> InvoiceRecord | None:
        """Return the invoice produced by an extraction job, if any."""

    def list_invoices(self) -> list[InvoiceRecord]:
        """Return all invoices, newest first."""

    def find_invoices_by_number(self, invoice_number: str) -> list[InvoiceRecord]:
        """Return invoices with the given invoice number."""

    def save_job_source(
        self, key: str, file_bytes: bytes, file_name: str, mime_type: str
    ) -> None:
        """Persist the source document of a job so it can be retried."""

    def get_job_source(self, key: str) -> tuple[bytes, str, str] | None:
        """Return (bytes, file_name, mime_type) for a job, if stored."""
