from __future__ import annotations

import json
import logging
import math
import re
import threading
import time
from decimal import Decimal

import requests

from invoice_extractor.domain.confidence import clamp_confidence
from invoice_extractor.domain.errors import LlmInvalidResult, LlmUnavailable
from invoice_extractor.domain.models import ExtractedFields, FieldSource
from invoice_extractor.ports.llm_port import LLMPort

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.85
_CODE_FENCE_RE = re.compile(r"```(?:json)?\s*", re.IGNORECASE)
_NULL_STRINGS = {"", "null", "none", "unknown", "n/a"}
# Optional currency code or symbol, a plain or comma-grouped number, optional decimals.
_AMOUNT_TEXT_RE = re.compile(
    r"^(?:[A-Z]{3})?\s*[$€£¥]?\s*(\d{1,3}(?:,\d{3})+|\d+)(?:\.(\d+))?\s*(?:[A-Z]{3})?$",
    re.IGNORECASE,
)

EXTRACTION_PROMPT = """You extract structured data from invoices.

Extract these fields from the invoice text below:
- invoice_number: the invoice or document number
- amount: the final payable total, copied exactly as it appears
- client_name: the name of the billed client (bill to / sold to / customer)
- client_address: the address of the billed client
- currency: ISO 4217 code if it can be determined
- confidence: a number between 0.0 and 1.0 for the overall extraction quality

Return ONLY a JSON object with exactly these keys. Use null for any field the
text does not clearly support. Never guess or invent a value.
If multiple totals exist, choose the final payable amount.

Invoice text:
{ocr_text}
"""


class OpenAILLMAdapter(LLMPort):
    """Invoice field extraction against an OpenAI-compatible chat completions API."""

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str,
        temperature: float = 0.0,
        max_tokens: int = 800,
        timeout: float = 30.0,
        cooldown_seconds: float = 60.0,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._base_url = base_url.rstrip("/")
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._timeout = timeout
        self._cooldown_seconds = cooldown_seconds
        self._down_until = 0.0
        self._lock = threading.Lock()

    @property
    def provider_name(self) -> str:
        return f"{self._base_url} ({self._model})"

    def is_available(self) -> bool:
        if not self._api_key or not self._model:
            return False
        with self._lock:
            return time.monotonic() >= self._down_until

    def extract_invoice_data(self, ocr_text: str) -> ExtractedFields:
        if not self._api_key or not self._model:
            raise LlmUnavailable("LLM provider is not configured")
        payload = self._post_chat(
            [{"role": "user", "content": EXTRACTION_PROMPT.format(ocr_text=ocr_text)}]
        )
        content = self._extract_content(payload)
        return self._parse_fields(content)

    def _post_chat(self, messages: list[dict[str, str]]) -> dict:
        try:
            response = requests.post(
                f"{self._base_url}/chat/completions",
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "Content-Type": "application/json",
                },
                json={
                    "model": self._model,
                    "messages": messages,
                    "temperature": self._temperature,
                    "max_tokens": self._max_tokens,
                    "response_format": {"type": "json_object"},
                },
                timeout=self._timeout,
            )
        except (requests.Timeout, requests.ConnectionError) as exc:
            self._mark_down(f"transport error: {exc}")
            raise LlmUnavailable(f"LLM request failed: {exc}") from exc
        except requests.RequestException as exc:
            raise LlmUnavailable(f"LLM request failed: {exc}") from exc

        status = response.status_code
        if status == 429 or status >= 500:
            self._mark_down(f"HTTP {status}")
            raise LlmUnavailable(f"LLM API returned HTTP {status}", status_code=status)
        if status >= 400:
            raise LlmUnavailable(
                f"LLM API rejected the request with HTTP {status}",
                status_code=status,
                response_body=response.text[:500],
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise LlmInvalidResult("LLM API returned a non-JSON body") from exc
        if not isinstance(data, dict):
            raise LlmInvalidResult("LLM API returned an unexpected body")
        return data

    def _mark_down(self, reason: str) -> None:
        with self._lock:
            self._down_until = time.monotonic() + self._cooldown_seconds
        logger.warning(
            "LLM provider marked unavailable for %.0fs: %s", self._cooldown_seconds, reason
        )

    @staticmethod
    def _extract_content(payload: dict) -> str:
        choices = payload.get("choices")
        if not isinstance(choices, list) or not choices:
            raise LlmInvalidResult("No choices in LLM response")
        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str) or not content.strip():
            raise LlmInvalidResult("Empty content in LLM response")
        return content

    @classmethod
    def _parse_fields(cls, content: str) -> ExtractedFields:
        data = cls._parse_json_from_text(_CODE_FENCE_RE.sub("", content).strip())
        if data is None:
            raise LlmInvalidResult("Failed to parse invoice data from LLM JSON")
        fields = data.get("fields")
        if isinstance(fields, dict):
            data = {**fields, "confidence": data.get("confidence", fields.get("confidence"))}
        return ExtractedFields(
            invoice_number=cls._string_field(data, "invoice_number"),
            amount=cls._amount_field(data, "amount"),
            client_name=cls._string_field(data, "client_name"),
            client_address=cls._string_field(data, "client_address"),
            currency=cls._string_field(data, "currency"),
            confidence=cls._confidence_field(data, "confidence"),
            source=FieldSource.LLM,
        )

    @staticmethod
    def _parse_json_from_text(text: str) -> dict | None:
        if not text:
            return None
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            start = text.find("{")
            end = text.rfind("}")
            if start == -1 or end == -1 or end <= start:
                return None
            try:
                data = json.loads(text[start : end + 1])
            except json.JSONDecodeError:
                return None
        return data if isinstance(data, dict) else None

    @staticmethod
    def _string_field(data: dict, name: str) -> str | None:
        value = data.get(name)
        if value is None or isinstance(value, (dict, list, bool)):
            return None
        text = str(value).strip()
        if text.lower() in _NULL_STRINGS:
            return None
        return text

    @staticmethod
    def _amount_field(data: dict, name: str) -> Decimal | None:
        value = data.get(name)
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, int):
            amount = Decimal(value)
        elif isinstance(value, float):
            text = str(value)
            if not math.isfinite(value) or "e" in text.lower():
                logger.warning("Rejecting LLM amount %r", value)
                return None
            amount = Decimal(text)
        elif isinstance(value, str):
            match = _AMOUNT_TEXT_RE.match(value.strip())
            if not match:
                logger.warning("Rejecting LLM amount %r", value)
                return None
            whole, fraction = match.groups()
            amount = Decimal(whole.replace(",", "") + (f".{fraction}" if fraction else ""))
        else:
            return None
        return amount if amount > 0 else None

    @staticmethod
    def _confidence_field(data: dict, name: str) -> float:
        value = data.get(name)
        if value is None:
            return DEFAULT_CONFIDENCE
        try:
            confidence = float(value)
        except (TypeError, ValueError):
            logger.warning("Failed to parse LLM confidence %r, using %s", value, DEFAULT_CONFIDENCE)
            return DEFAULT_CONFIDENCE
        if confidence < 0.0 or confidence > 1.0:
            logger.warning(
                "LLM confidence %s outside [0, 1], using %s", confidence, DEFAULT_CONFIDENCE
            )
            return DEFAULT_CONFIDENCE
        return clamp_confidence(confidence)
