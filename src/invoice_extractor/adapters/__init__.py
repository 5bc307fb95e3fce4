from .llm_mock import MockLLMAdapter
from .llm_openai import OpenAILLMAdapter
from .ocr_tesseract_adapter import TesseractOCRAdapter
from .sqlite_storage import SQLiteStorage

__all__ = ["MockLLMAdapter", "OpenAILLMAdapter", "SQLiteStorage", "TesseractOCRAdapter"]
