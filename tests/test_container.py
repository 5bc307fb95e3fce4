from invoice_extractor import container
from invoice_extractor.adapters.llm_mock import MockLLMAdapter
from invoice_extractor.adapters.llm_openai import OpenAILLMAdapter
from invoice_extractor.domain.events import ExtractionStarted


def test_build_llm_without_key_uses_mock(monkeypatch) -> None:
    monkeypatch.setattr(container, "LLM_API_KEY", "")
    assert isinstance(container.build_llm(), MockLLMAdapter)


def test_build_llm_openai_switches_default_groq_url(monkeypatch) -> None:
    monkeypatch.setattr(container, "LLM_API_KEY", "secret")
    monkeypatch.setattr(container, "LLM_PROVIDER", "OpenAI")
    monkeypatch.setattr(container, "LLM_BASE_URL", "https://api.groq.com/openai/v1")
    llm = container.build_llm()
    assert isinstance(llm, OpenAILLMAdapter)
    assert llm.provider_name.startswith("https://api.openai.com/v1")


def test_build_llm_unknown_provider_uses_mock(monkeypatch) -> None:
    monkeypatch.setattr(container, "LLM_API_KEY", "secret")
    monkeypatch.setattr(container, "LLM_PROVIDER", "local")
    assert isinstance(container.build_llm(), MockLLMAdapter)


def test_build_services_wires_metrics_to_events(tmp_path) -> None:
    services = container.build_services(str(tmp_path / "test.db"))
    try:
        services["events"].publish(ExtractionStarted("k1", "a.pdf"))
    finally:
        services["extraction_service"].close()
        services["events"].close()
    assert services["metrics"].snapshot().total == 1
    assert services["invoice_service"].list_invoices() == []
