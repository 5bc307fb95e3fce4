from decimal import Decimal

from invoice_extractor.adapters.llm_openai import OpenAILLMAdapter
from invoice_extractor.adapters.ocr_tesseract_adapter import TesseractOCRAdapter
from invoice_extractor.domain.models import ExtractedFields, OcrOutcome
from invoice_extractor.ports import EventSinkPort, LLMPort, OCRPort


class DummyOCR:
    @property
    def engine_name(self) -> str:
        return "dummy"

    def extract_text(self, file_bytes: bytes, file_name: str, mime_type: str) -> OcrOutcome:
        return OcrOutcome(text="x", confidence=1.0)


class DummyLLM:
    def is_available(self) -> bool:
        return True

    def extract_invoice_data(self, ocr_text: str) -> ExtractedFields:
        return ExtractedFields(amount=Decimal("1.00"))


class DummySink:
    def publish(self, event) -> None:
        return None


def test_ports_are_runtime_checkable() -> None:
    assert isinstance(DummyOCR(), OCRPort)
    assert isinstance(DummyLLM(), LLMPort)
    assert isinstance(DummySink(), EventSinkPort)
    assert not isinstance(DummySink(), LLMPort)


def test_adapters_satisfy_ports() -> None:
    assert isinstance(TesseractOCRAdapter(), OCRPort)
    assert isinstance(
        OpenAILLMAdapter(api_key="k", model="m", base_url="https://example.com"), LLMPort
    )
