from __future__ import annotations

from typing import Any

from invoice_extractor.adapters.llm_mock import MockLLMAdapter
from invoice_extractor.adapters.llm_openai import OpenAILLMAdapter
from invoice_extractor.adapters.ocr_tesseract_adapter import TesseractOCRAdapter
from invoice_extractor.adapters.sqlite_storage import SQLiteStorage
from invoice_extractor.ports.llm_port import LLMPort
from invoice_extractor.services.event_bus import EventBus
from invoice_extractor.services.extraction_service import ExtractionService
from invoice_extractor.services.invoice_service import InvoiceService
from invoice_extractor.services.metrics_listener import MetricsListener
from invoice_extractor.settings import (
    EXTRACTION_WORKERS,
    LLM_API_KEY,
    LLM_BASE_URL,
    LLM_COOLDOWN_SECONDS,
    LLM_MAX_TOKENS,
    LLM_MODEL,
    LLM_PROVIDER,
    LLM_TEMPERATURE,
    LLM_TIMEOUT_SECONDS,
    OCR_TIMEOUT_SECONDS,
    PIPELINE_TIMEOUT_SECONDS,
    SQLITE_PATH,
)

OPENAI_BASE_URL = "https://api.openai.com/v1"


def build_llm() -> LLMPort:
    provider = LLM_PROVIDER.lower()
    if provider in {"groq", "openai"} and LLM_API_KEY:
        base_url = LLM_BASE_URL
        if provider == "openai" and "groq.com" in base_url:
            base_url = OPENAI_BASE_URL
        return OpenAILLMAdapter(
            api_key=LLM_API_KEY,
            model=LLM_MODEL,
            base_url=base_url,
            temperature=LLM_TEMPERATURE,
            max_tokens=LLM_MAX_TOKENS,
            timeout=LLM_TIMEOUT_SECONDS,
            cooldown_seconds=LLM_COOLDOWN_SECONDS,
        )
    return MockLLMAdapter()


def build_services(sqlite_path: str | None = None) -> dict[str, Any]:
    storage = SQLiteStorage(sqlite_path or SQLITE_PATH)
    ocr = TesseractOCRAdapter()
    llm = build_llm()
    events = EventBus()
    metrics = MetricsListener()
    events.subscribe(metrics)
    return {
        "extraction_service": ExtractionService(
            ocr=ocr,
            llm=llm,
            store=storage,
            events=events,
            ocr_timeout=OCR_TIMEOUT_SECONDS,
            llm_timeout=LLM_TIMEOUT_SECONDS,
            pipeline_timeout=PIPELINE_TIMEOUT_SECONDS,
            workers=EXTRACTION_WORKERS,
        ),
        "invoice_service": InvoiceService(storage),
        "events": events,
        "metrics": metrics,
        "llm": llm,
        "ocr": ocr,
        "storage": storage,
    }
