from __future__ import annotations

import argparse
import json
import mimetypes
from dataclasses import asdict
from pathlib import Path

from dotenv import load_dotenv

_REPO_ROOT = Path(__file__).resolve().parents[1]
load_dotenv(_REPO_ROOT / ".env", override=False)

from invoice_extractor.container import build_services
from invoice_extractor.logging_config import setup_logging
from invoice_extractor.settings import LOG_FILE, LOG_LEVEL, SQLITE_PATH


def _to_json(value: object) -> str:
    data = asdict(value) if value is not None else None
    return json.dumps(data, indent=2, default=str)


def main() -> None:
    parser = argparse.ArgumentParser(description="Extract invoice fields from a PDF or image.")
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--file", help="Path to the PDF/PNG/JPG invoice.")
    group.add_argument("--retry", help="Extraction key to run again.")
    parser.add_argument("--mime", help="MIME type override (guessed from the file name).")
    parser.add_argument("--sqlite", default=SQLITE_PATH, help="SQLite DB path.")
    parser.add_argument("--no-text", action="store_true", help="Omit OCR text from the output.")
    args = parser.parse_args()

    setup_logging(LOG_LEVEL, LOG_FILE or None)
    services = build_services(args.sqlite)
    extraction_service = services["extraction_service"]
    invoice_service = services["invoice_service"]
    try:
        if args.retry:
            job = extraction_service.retry_extraction(args.retry)
        else:
            path = Path(args.file)
            mime_type = args.mime or mimetypes.guess_type(path.name)[0] or ""
            job = extraction_service.extract_and_save_invoice(
                path.read_bytes(), path.name, mime_type
            )
        if args.no_text and job.payload:
            job.payload.pop("text", None)
        print("Extraction:")
        print(_to_json(job))
        if job.invoice_key:
            print("\nInvoice:")
            print(_to_json(invoice_service.get_invoice(job.invoice_key)))
    finally:
        extraction_service.close()
        services["events"].close()
    print("\n" + services["metrics"].summary())


if __name__ == "__main__":
    main()
