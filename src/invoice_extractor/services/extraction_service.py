from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout

from invoice_extractor.domain.errors import (
    EngineUnavailable,
    ExtractionEmpty,
    InternalError,
    InvoiceExtractorError,
    JobInProgress,
    JobNotFound,
    PersistenceError,
    SourceUnavailable,
)
from invoice_extractor.domain.events import (
    ExtractionCompleted,
    ExtractionEvent,
    ExtractionFailed,
    ExtractionStarted,
    InvoiceSaved,
    LlmCompleted,
    OcrCompleted,
)
from invoice_extractor.domain.fallback_parser import parse_invoice_fields
from invoice_extractor.domain.invoice_factory import build_invoice, build_payload, engine_label
from invoice_extractor.domain.models import (
    ExtractedFields,
    ExtractionJob,
    FieldSource,
    InvoiceRecord,
    JobStatus,
    OcrOutcome,
)
from invoice_extractor.ports.event_sink_port import EventSinkPort
from invoice_extractor.ports.llm_port import LLMPort
from invoice_extractor.ports.metadata_store_port import MetadataStorePort
from invoice_extractor.ports.ocr_port import OCRPort
from invoice_extractor.settings import (
    EXTRACTION_WORKERS,
    LLM_TIMEOUT_SECONDS,
    OCR_TIMEOUT_SECONDS,
    PIPELINE_TIMEOUT_SECONDS,
)

logger = logging.getLogger(__name__)


class ExtractionService:
    """Runs the OCR -> LLM -> fallback pipeline and drives each job to a terminal state.

    Every job is written once as PROCESSING and once more as COMPLETED or
    FAILED. Failures inside the pipeline are recorded on the job instead of
    being raised; only lookups and retry preconditions raise to the caller.
    """

    def __init__(
        self,
        ocr: OCRPort,
        llm: LLMPort,
        store: MetadataStorePort,
        events: EventSinkPort | None = None,
        fallback_parser: Callable[[str], ExtractedFields] = parse_invoice_fields,
        ocr_timeout: float = OCR_TIMEOUT_SECONDS,
        llm_timeout: float = LLM_TIMEOUT_SECONDS,
        pipeline_timeout: float = PIPELINE_TIMEOUT_SECONDS,
        workers: int = EXTRACTION_WORKERS,
    ) -> None:
        self._ocr = ocr
        self._llm = llm
        self._store = store
        self._events = events
        self._fallback_parser = fallback_parser
        self._ocr_timeout = ocr_timeout
        self._llm_timeout = llm_timeout
        self._pipeline_timeout = pipeline_timeout
        workers = max(1, workers)
        self._job_executor = ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="extraction-job"
        )
        self._call_executor = ThreadPoolExecutor(
            max_workers=workers * 2, thread_name_prefix="extraction-call"
        )
        self._active_lock = threading.Lock()
        self._active_keys: set[str] = set()

    def __enter__(self) -> ExtractionService:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self, wait: bool = True) -> None:
        self._job_executor.shutdown(wait=wait)
        self._call_executor.shutdown(wait=wait)

    def extract_and_save_invoice(
        self, file_bytes: bytes, file_name: str, mime_type: str
    ) -> ExtractionJob:
        """Run a new extraction and wait (bounded) for its terminal job."""

        job = ExtractionJob.start(file_name, mime_type)
        future = self._submit_new(job, file_bytes)
        return self._await(job, future)

    def submit_extraction(
        self, file_bytes: bytes, file_name: str, mime_type: str
    ) -> Future[ExtractionJob]:
        job = ExtractionJob.start(file_name, mime_type)
        return self._submit_new(job, file_bytes)

    def get_extraction_metadata(self, key: str) -> ExtractionJob:
        job = self._store.get_job(key)
        if job is None:
            raise JobNotFound(f"Extraction metadata not found with key: {key}", job_key=key)
        return job

    def list_extractions_by_status(self, status: JobStatus | str) -> list[ExtractionJob]:
        return self._store.list_jobs_by_status(JobStatus(status))

    def list_extractions_by_invoice(self, invoice_key: str) -> list[ExtractionJob]:
        return self._store.list_jobs_by_invoice(invoice_key)

    def retry_extraction(self, key: str) -> ExtractionJob:
        """Re-run the pipeline for a finished job, keeping its key.

        The stored job is reset to PROCESSING with an upsert and the invoice
        write is keyed by the job, so a retry never leaves a second invoice.
        When a retry fails, an invoice from an earlier successful run stays
        stored under the job key; look it up with
        ``InvoiceService.get_invoice_for_extraction``.
        """

        job = self.get_extraction_metadata(key)
        if not job.is_terminal:
            raise JobInProgress(f"Extraction {key} is still processing", job_key=key)
        source = self._store.get_job_source(key)
        if source is None:
            raise SourceUnavailable(f"No stored source document for extraction {key}", job_key=key)
        file_bytes, _file_name, _mime_type = source
        if not self._claim(key):
            raise JobInProgress(f"Extraction {key} is already being retried", job_key=key)
        try:
            restarted = job.restart()
            self._store.update_job(key, restarted)
        except Exception:
            self._release(key)
            raise
        logger.info("Retrying extraction %s (%s)", key, job.source_file_name)
        future = self._job_executor.submit(self._run_claimed, restarted, file_bytes)
        return self._await(restarted, future)

    def _submit_new(self, job: ExtractionJob, file_bytes: bytes) -> Future[ExtractionJob]:
        self._claim(job.key)
        return self._job_executor.submit(self._run_new_job, job, file_bytes)

    def _await(self, job: ExtractionJob, future: Future[ExtractionJob]) -> ExtractionJob:
        try:
            return future.result(timeout=self._pipeline_timeout)
        except FuturesTimeout:
            logger.warning(
                "Extraction %s still running after %.0fs; returning stored state",
                job.key,
                self._pipeline_timeout,
            )
        try:
            stored = self._store.get_job(job.key)
        except InvoiceExtractorError as exc:
            logger.error("Failed to read extraction %s: %s", job.key, exc)
            stored = None
        return stored or job

    def _run_new_job(self, job: ExtractionJob, file_bytes: bytes) -> ExtractionJob:
        try:
            self._store.save_job(job)
        except Exception as exc:
            self._release(job.key)
            logger.error("Failed to save initial metadata for %s: %s", job.source_file_name, exc)
            failed = job.fail(
                PersistenceError.code, f"Failed to save initial metadata: {exc}"
            )
            self._publish(ExtractionFailed(job.key, failed.error_message, failed.error_code))
            return failed
        try:
            self._store.save_job_source(
                job.key, file_bytes, job.source_file_name, job.mime_type or ""
            )
        except Exception as exc:
            logger.warning("Source document for %s not stored, retry disabled: %s", job.key, exc)
        return self._run_claimed(job, file_bytes)

    def _run_claimed(self, job: ExtractionJob, file_bytes: bytes) -> ExtractionJob:
        try:
            return self._run_pipeline(job, file_bytes)
        finally:
            self._release(job.key)

    def _run_pipeline(self, job: ExtractionJob, file_bytes: bytes) -> ExtractionJob:
        logger.info("Extraction %s started for %s", job.key, job.source_file_name)
        self._publish(ExtractionStarted(job.key, job.source_file_name))
        try:
            return self._process(job, file_bytes)
        except InvoiceExtractorError as exc:
            return self._fail(job, exc)
        except Exception as exc:
            logger.exception("Unexpected error during extraction %s", job.key)
            return self._fail(job, InternalError(f"Unexpected error: {exc}"))

    def _process(self, job: ExtractionJob, file_bytes: bytes) -> ExtractionJob:
        ocr = self._perform_ocr(job, file_bytes)
        self._publish(
            OcrCompleted(
                job.key,
                confidence=ocr.confidence,
                page_count=ocr.page_count,
                text_length=len(ocr.text),
                engine_version=ocr.engine_version,
            )
        )

        llm_fields, fallback_fields, fallback_reason = self._extract_fields(job, ocr.text)
        source = FieldSource.LLM if fallback_fields is None else FieldSource.FALLBACK
        confidence = llm_fields.confidence if source is FieldSource.LLM else ocr.confidence

        invoice = build_invoice(
            llm_fields, fallback_fields, job.source_file_name, extraction_key=job.key
        )
        saved = self._save_invoice(invoice)
        self._publish(InvoiceSaved(job.key, saved.key))

        completed = job.complete(
            invoice_key=saved.key,
            confidence_score=confidence,
            engine_used=engine_label(ocr.engine_version, source),
            payload=build_payload(ocr, source, fallback_reason),
        )
        self._store.update_job(job.key, completed)
        logger.info(
            "Extraction %s completed via %s (invoice %s, confidence %.2f)",
            job.key,
            source.value,
            saved.key,
            completed.confidence_score,
        )
        self._publish(ExtractionCompleted(job.key, saved.key, completed.confidence_score))
        return completed

    def _perform_ocr(self, job: ExtractionJob, file_bytes: bytes) -> OcrOutcome:
        future = self._call_executor.submit(
            self._ocr.extract_text, file_bytes, job.source_file_name, job.mime_type or ""
        )
        try:
            ocr = future.result(timeout=self._ocr_timeout)
        except FuturesTimeout as exc:
            future.cancel()
            raise EngineUnavailable(
                f"OCR processing timed out after {self._ocr_timeout:.0f} seconds"
            ) from exc
        except InvoiceExtractorError:
            raise
        except Exception as exc:
            raise EngineUnavailable(f"OCR extraction failed: {exc}") from exc
        if ocr.is_empty():
            raise ExtractionEmpty(f"OCR extraction returned empty text for {job.source_file_name}")
        return ocr

    def _extract_fields(
        self, job: ExtractionJob, text: str
    ) -> tuple[ExtractedFields | None, ExtractedFields | None, str | None]:
        """Return (llm_fields, fallback_fields, fallback_reason).

        ``fallback_fields`` is None exactly when the LLM produced a valid result.
        """

        llm_fields: ExtractedFields | None = None
        reason: str | None = None
        if not self._llm_available():
            reason = "LLM unavailable"
        else:
            future = self._call_executor.submit(self._llm.extract_invoice_data, text)
            try:
                llm_fields = future.result(timeout=self._llm_timeout)
            except FuturesTimeout:
                future.cancel()
                reason = f"LLM timed out after {self._llm_timeout:.0f} seconds"
            except InvoiceExtractorError as exc:
                reason = f"{type(exc).__name__}: {exc}"
            except Exception as exc:
                reason = f"LLM extraction failed: {exc}"
            else:
                if llm_fields is None or not llm_fields.is_valid():
                    reason = "LLM returned neither invoice number nor amount"

        if reason is None:
            logger.info(
                "LLM extraction for %s succeeded with confidence %.2f",
                job.key,
                llm_fields.confidence,
            )
            self._publish(LlmCompleted(job.key, used=True, confidence=llm_fields.confidence))
            return llm_fields, None, None

        logger.warning("Using fallback parser for %s: %s", job.key, reason)
        self._publish(LlmCompleted(job.key, used=False, reason=reason))
        return llm_fields, self._fallback_parser(text), reason

    def _llm_available(self) -> bool:
        try:
            return bool(self._llm.is_available())
        except Exception as exc:
            logger.warning("LLM availability check failed: %s", exc)
            return False

    def _save_invoice(self, invoice: InvoiceRecord) -> InvoiceRecord:
        try:
            return self._store.save_invoice(invoice)
        except PersistenceError:
            raise
        except Exception as exc:
            raise PersistenceError(f"Failed to save invoice: {exc}") from exc

    def _fail(self, job: ExtractionJob, error: InvoiceExtractorError) -> ExtractionJob:
        logger.error(
            "Extraction %s failed for %s: [%s] %s",
            job.key,
            job.source_file_name,
            error.code,
            error.message,
        )
        failed = job.fail(error.code, error.message)
        try:
            self._store.update_job(job.key, failed)
        except Exception as exc:
            logger.error("Failed to save failed metadata for %s: %s", job.key, exc)
        self._publish(ExtractionFailed(job.key, error.message, error.code))
        return failed

    def _publish(self, event: ExtractionEvent) -> None:
        if self._events is None:
            return
        try:
            self._events.publish(event)
        except Exception as exc:
            logger.warning(
                "Dropping %s event for %s: %s",
                event.event_type.value,
                event.extraction_key,
                exc,
            )

    def _claim(self, key: str) -> bool:
        with self._active_lock:
            if key in self._active_keys:
                return False
            self._active_keys.add(key)
            return True

    def _release(self, key: str) -> None:
        with self._active_lock:
            self._active_keys.discard(key)
