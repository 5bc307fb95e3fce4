from __future__ import annotations

import json
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal

from invoice_extractor.domain.errors import PersistenceError
from invoice_extractor.domain.models import (
    ExtractionJob,
    InvoiceRecord,
    InvoiceStatus,
    JobStatus,
    utc_now,
)
from invoice_extractor.ports.metadata_store_port import MetadataStorePort

_JOB_COLUMNS = """
    job_key, source_file_name, mime_type, status, confidence_score, engine_used,
    payload_json, error_code, error_message, invoice_key, created_at, completed_at
"""
_INVOICE_COLUMNS = """
    invoice_key, invoice_number, amount, client_name, client_address, currency,
    status, source_file_name, extraction_key, created_at
"""


class SQLiteStorage(MetadataStorePort):
    def __init__(self, sqlite_path: str) -> None:
        self._sqlite_path = sqlite_path
        self._locks_guard = threading.Lock()
        self._key_locks: dict[str, threading.Lock] = {}
        self._ensure_schema()

    def save_job(self, job: ExtractionJob) -> ExtractionJob:
        try:
            with self._job_lock(job.key), self._connect() as conn:
                conn.execute(
                    f"INSERT INTO extraction_jobs({_JOB_COLUMNS}) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    self._job_row(job),
                )
            return job
        except sqlite3.IntegrityError as exc:
            raise PersistenceError(f"Extraction job already exists: {job.key}") from exc
        except sqlite3.Error as exc:
            raise PersistenceError("Failed to save extraction job") from exc

    def update_job(self, key: str, job: ExtractionJob) -> ExtractionJob:
        if job.key != key:
            raise PersistenceError(f"Job key mismatch: {key} != {job.key}")
        try:
            with self._job_lock(key), self._connect() as conn:
                conn.execute(
                    f"""
                    INSERT INTO extraction_jobs({_JOB_COLUMNS})
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(job_key)
                    DO UPDATE SET
                        status = excluded.status,
                        confidence_score = excluded.confidence_score,
                        engine_used = excluded.engine_used,
                        payload_json = excluded.payload_json,
                        error_code = excluded.error_code,
                        error_message = excluded.error_message,
                        invoice_key = excluded.invoice_key,
                        completed_at = excluded.completed_at
                    """,
                    self._job_row(job),
                )
            return job
        except sqlite3.Error as exc:
            raise PersistenceError("Failed to update extraction job") from exc

    def get_job(self, key: str) -> ExtractionJob | None:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    f"SELECT {_JOB_COLUMNS} FROM extraction_jobs WHERE job_key = ?",
                    (key,),
                ).fetchone()
            return self._row_to_job(row) if row else None
        except sqlite3.Error as exc:
            raise PersistenceError("Failed to fetch extraction job") from exc

    def list_jobs_by_status(self, status: JobStatus) -> list[ExtractionJob]:
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    f"""
                    SELECT {_JOB_COLUMNS}
                    FROM extraction_jobs
                    WHERE status = ?
                    ORDER BY created_at DESC
                    """,
                    (JobStatus(status).value,),
                ).fetchall()
            return [self._row_to_job(row) for row in rows]
        except sqlite3.Error as exc:
            raise PersistenceError("Failed to list extraction jobs") from exc

    def list_jobs_by_invoice(self, invoice_key: str) -> list[ExtractionJob]:
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    f"""
                    SELECT {_JOB_COLUMNS}
                    FROM extraction_jobs
                    WHERE invoice_key = ?
                    ORDER BY created_at DESC
                    """,
                    (invoice_key,),
                ).fetchall()
            return [self._row_to_job(row) for row in rows]
        except sqlite3.Error as exc:
            raise PersistenceError("Failed to list extraction jobs") from exc

    def save_invoice(self, invoice: InvoiceRecord) -> InvoiceRecord:
        """Insert an invoice, or refresh the one already stored for the same extraction.

        The stored invoice keeps its original key so repeated writes for one job
        never leave two invoices behind.
        """

        conflict_target = "extraction_key" if invoice.extraction_key else "invoice_key"
        lock_key = f"invoice:{invoice.extraction_key or invoice.key}"
        try:
            with self._job_lock(lock_key), self._connect() as conn:
                conn.execute(
                    f"""
                    INSERT INTO invoices({_INVOICE_COLUMNS}, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT({conflict_target})
                    DO UPDATE SET
                        invoice_number = excluded.invoice_number,
                        amount = excluded.amount,
                        client_name = excluded.client_name,
                        client_address = excluded.client_address,
                        currency = excluded.currency,
                        status = excluded.status,
                        source_file_name = excluded.source_file_name,
                        updated_at = excluded.updated_at
                    """,
                    (*self._invoice_row(invoice), utc_now().isoformat()),
                )
                if invoice.extraction_key:
                    row = conn.execute(
                        f"SELECT {_INVOICE_COLUMNS} FROM invoices WHERE extraction_key = ?",
                        (invoice.extraction_key,),
                    ).fetchone()
                else:
                    row = conn.execute(
                        f"SELECT {_INVOICE_COLUMNS} FROM invoices WHERE invoice_key = ?",
                        (invoice.key,),
                    ).fetchone()
            if row is None:
                raise PersistenceError(f"Invoice was not stored: {invoice.key}")
            return self._row_to_invoice(row)
        except sqlite3.Error as exc:
            raise PersistenceError("Failed to save invoice") from exc

    def get_invoice(self, key: str) -> InvoiceRecord | None:
        return self._fetch_invoice("invoice_key", key)

    def get_invoice_by_extraction(self, extraction_key: str) -> InvoiceRecord | None:
        return self._fetch_invoice("extraction_key", extraction_key)

    def list_invoices(self) -> list[InvoiceRecord]:
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    f"SELECT {_INVOICE_COLUMNS} FROM invoices ORDER BY created_at DESC"
                ).fetchall()
            return [self._row_to_invoice(row) for row in rows]
        except sqlite3.Error as exc:
            raise PersistenceError("Failed to list invoices") from exc

    def find_invoices_by_number(self, invoice_number: str) -> list[InvoiceRecord]:
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    f"""
                    SELECT {_INVOICE_COLUMNS}
                    FROM invoices
                    WHERE invoice_number = ?
                    ORDER BY created_at DESC
                    """,
                    (invoice_number,),
                ).fetchall()
            return [self._row_to_invoice(row) for row in rows]
        except sqlite3.Error as exc:
            raise PersistenceError("Failed to search invoices") from exc

    def save_job_source(
        self, key: str, file_bytes: bytes, file_name: str, mime_type: str
    ) -> None:
        try:
            with self._job_lock(key), self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO job_sources(job_key, file_name, mime_type, content, stored_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(job_key)
                    DO UPDATE SET
                        file_name = excluded.file_name,
                        mime_type = excluded.mime_type,
                        content = excluded.content,
                        stored_at = excluded.stored_at
                    """,
                    (key, file_name, mime_type, sqlite3.Binary(file_bytes), utc_now().isoformat()),
                )
        except sqlite3.Error as exc:
            raise PersistenceError("Failed to save source document") from exc

    def get_job_source(self, key: str) -> tuple[bytes, str, str] | None:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    SELECT content, file_name, mime_type
                    FROM job_sources
                    WHERE job_key = ?
                    """,
                    (key,),
                ).fetchone()
            if row is None:
                return None
            return bytes(row[0]), row[1], row[2]
        except sqlite3.Error as exc:
            raise PersistenceError("Failed to fetch source document") from exc

    def _fetch_invoice(self, column: str, value: str) -> InvoiceRecord | None:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    f"SELECT {_INVOICE_COLUMNS} FROM invoices WHERE {column} = ?",
                    (value,),
                ).fetchone()
            return self._row_to_invoice(row) if row else None
        except sqlite3.Error as exc:
            raise PersistenceError("Failed to fetch invoice") from exc

    @contextmanager
    def _job_lock(self, key: str) -> Iterator[None]:
        with self._locks_guard:
            lock = self._key_locks.setdefault(key, threading.Lock())
        with lock:
            yield

    @staticmethod
    def _job_row(job: ExtractionJob) -> tuple:
        return (
            job.key,
            job.source_file_name,
            job.mime_type,
            job.status.value,
            job.confidence_score,
            job.engine_used,
            json.dumps(job.payload) if job.payload is not None else None,
            job.error_code,
            job.error_message,
            job.invoice_key,
            job.created_at.isoformat(),
            job.completed_at.isoformat() if job.completed_at else None,
        )

    @staticmethod
    def _row_to_job(row: tuple) -> ExtractionJob:
        return ExtractionJob(
            key=row[0],
            source_file_name=row[1],
            mime_type=row[2],
            status=JobStatus(row[3]),
            confidence_score=row[4],
            engine_used=row[5],
            payload=json.loads(row[6]) if row[6] else None,
            error_code=row[7],
            error_message=row[8],
            invoice_key=row[9],
            created_at=datetime.fromisoformat(row[10]),
            completed_at=datetime.fromisoformat(row[11]) if row[11] else None,
        )

    @staticmethod
    def _invoice_row(invoice: InvoiceRecord) -> tuple:
        created_at = invoice.created_at or utc_now()
        return (
            invoice.key,
            invoice.invoice_number,
            str(invoice.amount),
            invoice.client_name,
            invoice.client_address,
            invoice.currency,
            invoice.status.value,
            invoice.source_file_name,
            invoice.extraction_key,
            created_at.isoformat(),
        )

    @staticmethod
    def _row_to_invoice(row: tuple) -> InvoiceRecord:
        return InvoiceRecord(
            key=row[0],
            invoice_number=row[1],
            amount=Decimal(row[2]),
            client_name=row[3],
            client_address=row[4],
            currency=row[5],
            status=InvoiceStatus(row[6]),
            source_file_name=row[7],
            extraction_key=row[8],
            created_at=datetime.fromisoformat(row[9]) if row[9] else None,
        )

    def _ensure_schema(self) -> None:
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS invoices(
                        invoice_key TEXT PRIMARY KEY,
                        invoice_number TEXT NOT NULL,
                        amount TEXT NOT NULL,
                        client_name TEXT NOT NULL,
                        client_address TEXT,
                        currency TEXT NOT NULL DEFAULT 'USD',
                        status TEXT NOT NULL,
                        source_file_name TEXT NOT NULL,
                        extraction_key TEXT UNIQUE,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS extraction_jobs(
                        job_key TEXT PRIMARY KEY,
                        source_file_name TEXT NOT NULL,
                        mime_type TEXT,
                        status TEXT NOT NULL,
                        confidence_score REAL,
                        engine_used TEXT,
                        payload_json TEXT,
                        error_code TEXT,
                        error_message TEXT,
                        invoice_key TEXT,
                        created_at TEXT NOT NULL,
                        completed_at TEXT
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS job_sources(
                        job_key TEXT PRIMARY KEY,
                        file_name TEXT NOT NULL,
                        mime_type TEXT,
                        content BLOB NOT NULL,
                        stored_at TEXT NOT NULL
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_jobs_status
                    ON extraction_jobs(status)
                    """
                )
                conn.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_jobs_invoice_key
                    ON extraction_jobs(invoice_key)
                    """
                )
                conn.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_invoices_number
                    ON invoices(invoice_number)
                    """
                )
        except sqlite3.Error as exc:
            raise PersistenceError("Failed to initialize storage schema") from exc

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self._sqlite_path, timeout=30)
