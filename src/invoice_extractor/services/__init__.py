from .event_bus import EventBus
from .extraction_service import ExtractionService
from .invoice_service import InvoiceService
from .metrics_listener import MetricsListener

__all__ = ["EventBus", "ExtractionService", "InvoiceService", "MetricsListener"]
