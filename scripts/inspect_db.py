from __future__ import annotations

import argparse
from pathlib import Path

from dotenv import load_dotenv

_REPO_ROOT = Path(__file__).resolve().parents[1]
load_dotenv(_REPO_ROOT / ".env", override=False)

from invoice_extractor.adapters.sqlite_storage import SQLiteStorage
from invoice_extractor.domain.models import JobStatus
from invoice_extractor.settings import SQLITE_PATH


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--sqlite", default=SQLITE_PATH, help="SQLite DB path.")
    parser.add_argument(
        "--status",
        choices=[status.value for status in JobStatus],
        help="Only list jobs with this status.",
    )
    args = parser.parse_args()

    storage = SQLiteStorage(args.sqlite)
    statuses = [JobStatus(args.status)] if args.status else list(JobStatus)
    print("DB:", args.sqlite)
    for status in statuses:
        jobs = storage.list_jobs_by_status(status)
        print(f"\n{status.value} ({len(jobs)}):")
        for job in jobs[:20]:
            detail = job.error_message or job.invoice_key or ""
            print(
                f"- {job.key} {job.source_file_name} "
                f"confidence={job.confidence_score} engine={job.engine_used} {detail}"
            )

    invoices = storage.list_invoices()
    print(f"\nInvoices ({len(invoices)}):")
    for invoice in invoices[:20]:
        print(
            f"- {invoice.key} {invoice.invoice_number} {invoice.amount} {invoice.currency} "
            f"{invoice.client_name}"
        )


if __name__ == "__main__":
    main()
