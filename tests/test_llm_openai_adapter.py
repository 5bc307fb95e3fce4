import json
from decimal import Decimal

import pytest
import requests

from invoice_extractor.adapters import llm_openai
from invoice_extractor.adapters.llm_openai import DEFAULT_CONFIDENCE, OpenAILLMAdapter
from invoice_extractor.domain.errors import LlmInvalidResult, LlmUnavailable
from invoice_extractor.domain.models import FieldSource


class FakeResponse:
    def __init__(self, status_code: int = 200, body: object = None, text: str = "") -> None:
        self.status_code = status_code
        self._body = body
        self.text = text

    def json(self) -> object:
        if self._body is None:
            raise ValueError("no json")
        return self._body


def _adapter(cooldown_seconds: float = 60.0) -> OpenAILLMAdapter:
    return OpenAILLMAdapter(
        api_key="test",
        model="mock",
        base_url="https://example.com/v1/",
        cooldown_seconds=cooldown_seconds,
    )


def _chat_body(content: str) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def test_extract_invoice_data_posts_chat_completion(monkeypatch) -> None:
    captured: dict[str, object] = {}

    def _fake_post(url, headers, json, timeout):
        captured["url"] = url
        captured["json"] = json
        captured["timeout"] = timeout
        content = (
            '{"invoice_number": "INV-7", "amount": "$1,020.40", "client_name": "ACME",'
            ' "client_address": null, "currency": "usd", "confidence": 0.93}'
        )
        return FakeResponse(body=_chat_body(content))

    monkeypatch.setattr(llm_openai.requests, "post", _fake_post)
    fields = _adapter().extract_invoice_data("INVOICE INV-7")

    assert captured["url"] == "https://example.com/v1/chat/completions"
    assert captured["json"]["response_format"] == {"type": "json_object"}
    assert "INVOICE INV-7" in captured["json"]["messages"][0]["content"]
    assert fields.invoice_number == "INV-7"
    assert fields.amount == Decimal("1020.40")
    assert fields.client_address is None
    assert fields.confidence == 0.93
    assert fields.source is FieldSource.LLM


def test_timeout_marks_provider_unavailable(monkeypatch) -> None:
    def _fake_post(*args, **kwargs):
        raise requests.Timeout("slow")

    monkeypatch.setattr(llm_openai.requests, "post", _fake_post)
    adapter = _adapter()
    assert adapter.is_available()
    with pytest.raises(LlmUnavailable):
        adapter.extract_invoice_data("text")
    assert not adapter.is_available()


def test_cooldown_expires(monkeypatch) -> None:
    monkeypatch.setattr(
        llm_openai.requests, "post", lambda *args, **kwargs: FakeResponse(status_code=503)
    )
    adapter = _adapter(cooldown_seconds=0.0)
    with pytest.raises(LlmUnavailable):
        adapter.extract_invoice_data("text")
    assert adapter.is_available()


def test_client_error_does_not_mark_down(monkeypatch) -> None:
    monkeypatch.setattr(
        llm_openai.requests,
        "post",
        lambda *args, **kwargs: FakeResponse(status_code=400, text="bad request"),
    )
    adapter = _adapter()
    with pytest.raises(LlmUnavailable) as excinfo:
        adapter.extract_invoice_data("text")
    assert excinfo.value.details["status_code"] == 400
    assert adapter.is_available()


def test_non_json_body_is_invalid_result(monkeypatch) -> None:
    monkeypatch.setattr(llm_openai.requests, "post", lambda *args, **kwargs: FakeResponse())
    with pytest.raises(LlmInvalidResult):
        _adapter().extract_invoice_data("text")


def test_missing_key_is_unavailable() -> None:
    adapter = OpenAILLMAdapter(api_key="", model="mock", base_url="https://example.com")
    assert not adapter.is_available()
    with pytest.raises(LlmUnavailable):
        adapter.extract_invoice_data("text")


def test_parse_fields_strips_code_fences_and_reads_fields_object() -> None:
    content = "```json\n" + json.dumps(
        {"fields": {"invoice_number": "A-1", "amount": 12}, "confidence": 0.7}
    ) + "\n```"
    fields = OpenAILLMAdapter._parse_fields(content)
    assert fields.invoice_number == "A-1"
    assert fields.amount == Decimal("12")
    assert fields.confidence == 0.7


def test_parse_fields_null_like_values_are_absent() -> None:
    content = json.dumps(
        {"invoice_number": "null", "amount": "0.00", "client_name": "N/A", "confidence": 3}
    )
    fields = OpenAILLMAdapter._parse_fields(content)
    assert fields.invoice_number is None
    assert fields.amount is None
    assert fields.client_name is None
    assert not fields.is_valid()
    assert fields.confidence == DEFAULT_CONFIDENCE


def test_parse_fields_rejects_garbage() -> None:
    with pytest.raises(LlmInvalidResult):
        OpenAILLMAdapter._parse_fields("I could not find an invoice.")


def test_extract_content_requires_choices() -> None:
    with pytest.raises(LlmInvalidResult):
        OpenAILLMAdapter._extract_content({"choices": []})
    with pytest.raises(LlmInvalidResult):
        OpenAILLMAdapter._extract_content(_chat_body("   "))


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("$1,020.40", Decimal("1020.40")),
        ("EUR 75.5", Decimal("75.5")),
        ("300.00 USD", Decimal("300.00")),
        (1250, Decimal("1250")),
        (99.95, Decimal("99.95")),
    ],
)
def test_amount_field_accepts_plain_amounts(raw, expected) -> None:
    assert OpenAILLMAdapter._amount_field({"amount": raw}, "amount") == expected


@pytest.mark.parametrize(
    "raw",
    ["-150.00", -150.0, 1e21, "1e21", "1.250,00", "12,50", "about 40", "null", float("nan")],
)
def test_amount_field_rejects_unsupported_amounts(raw) -> None:
    assert OpenAILLMAdapter._amount_field({"amount": raw}, "amount") is None
