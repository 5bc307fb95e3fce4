from .event_sink_port import EventSinkPort
from .llm_port import LLMPort
from .metadata_store_port import MetadataStorePort
from .ocr_port import OCRPort

__all__ = ["EventSinkPort", "LLMPort", "MetadataStorePort", "OCRPort"]
