from __future__ import annotations

import json
import logging

import httpx
import pytest

from conftest import ChunkSource, FakeEngine, streaming_response
from vibe_capsule.summaries import (
    AuthError,
    Availability,
    ModelCatalog,
    ProviderId,
    Settings,
    SummaryService,
    TransportError,
    UnknownProviderError,
)


def _service(registry, store, **settings) -> SummaryService:
    return SummaryService(
        store,
        registry=registry,
        catalog=ModelCatalog(registry, store, settle_delay=0.01),
        settings=Settings(**settings),
    )


def test_build_request_fills_in_selection_language_and_credential(make_registry, store) -> None:
    service = _service(
        make_registry(),
        store,
        provider=ProviderId.GEMINI,
        model="gemini-1.5-pro",
        language="pt-BR",
        custom_prompt="Be brief in {{LANGUAGE}}.",
        credentials={ProviderId.GEMINI: "AIza-long-key"},
    )

    request = service.build_request("Article body")

    assert request.model == "gemini-1.5-pro"
    assert request.language == "pt-BR"
    assert request.custom_prompt == "Be brief in {{LANGUAGE}}."
    assert request.credential == "AIza-long-key"
    assert service.build_request("x", provider="openai").credential is None


@pytest.mark.asyncio
async def test_default_path_asks_for_a_translated_heading(make_registry, store) -> None:
    sent = {}

    def handler(request: httpx.Request) -> httpx.Response:
        sent["prompt"] = json.loads(request.content)["messages"][0]["content"]
        return streaming_response(ChunkSource([b'data: {"choices":[{"delta":{"content":"# Titre\\n\\nCorps"}}]}\n']))

    registry = make_registry(handler)
    service = _service(registry, store, language="fr", credentials={ProviderId.OPENAI: "sk-test"})

    record = await service.summarize(service.build_request("Article"))

    assert sent["prompt"].startswith(
        "Analyze the following fr text. Generate a clear, translated title in fr starting with '# '"
    )
    assert "{{LANGUAGE}}" not in sent["prompt"]
    assert service.save("https://example.com/fr", "Fallback", record.body).title == "Titre"
    await service.aclose()


def test_effective_model_falls_back_when_selection_is_not_offered(make_registry, store) -> None:
    service = _service(make_registry(), store, provider=ProviderId.OPENAI, model="gpt-3.5-turbo")

    assert service.effective_model() == "gpt-4o-mini"
    assert service.effective_model("anthropic") == "claude-3-5-sonnet-20240620"
    with pytest.raises(UnknownProviderError):
        service.effective_model("cohere")


@pytest.mark.asyncio
async def test_summarize_forwards_fragments_in_order(make_registry, store) -> None:
    source = ChunkSource([b'data: {"choices":[{"delta":{"content":"A"}}]}\n', b'data: {"choices":[{"delta":{"content":"B"}}]}\n'])
    registry = make_registry(lambda request: streaming_response(source))
    service = _service(registry, store, credentials={ProviderId.OPENAI: "sk-test"})
    seen = []

    record = await service.summarize(service.build_request("Article"), on_fragment=seen.append)

    assert seen == ["A", "B"]
    assert record.body == "AB"
    assert record.fragments == 2
    assert record.provider is ProviderId.OPENAI
    assert record.model == "gpt-4o-mini"
    await service.aclose()


@pytest.mark.asyncio
async def test_summarize_surfaces_transport_errors(make_registry, store) -> None:
    registry = make_registry(lambda request: httpx.Response(502, text="bad gateway"))
    service = _service(registry, store, credentials={ProviderId.OPENAI: "sk-test"})
    seen = []

    with pytest.raises(TransportError):
        await service.summarize(service.build_request("Article"), on_fragment=seen.append)
    assert seen == []
    await service.aclose()


@pytest.mark.asyncio
async def test_stream_can_be_abandoned_early(make_registry, store) -> None:
    engine = FakeEngine("readily", tokens=["one", "two", "three"])
    service = _service(make_registry(engine=engine), store, provider=ProviderId.ON_DEVICE, model="gemini-nano")

    stream = service.stream(service.build_request("Article"))
    assert await stream.__anext__() == "one"
    await stream.aclose()

    assert engine.sessions[0].destroyed
    await service.aclose()


@pytest.mark.asyncio
async def test_stream_logs_structured_debug_events(make_registry, store, caplog) -> None:
    service = _service(make_registry(engine=FakeEngine()), store, provider=ProviderId.ON_DEVICE)
    caplog.set_level(logging.DEBUG, logger="vibe_capsule.summaries.service")

    fragments = [fragment async for fragment in service.stream(service.build_request("Article"))]

    assert "".join(fragments) == "Hello world"
    events = [record.summary["event"] for record in caplog.records if hasattr(record, "summary")]
    assert events == ["stream-start", "stream-end"]
    await service.aclose()


@pytest.mark.asyncio
async def test_set_credential_persists_and_schedules_refresh(make_registry, store) -> None:
    registry = make_registry(lambda request: httpx.Response(200, json={"data": [{"id": "claude-3-5-haiku-latest"}]}))
    service = _service(registry, store)

    pending = service.set_credential("anthropic", "sk-ant-key")

    assert store.get("anthropic_key") == "sk-ant-key"
    assert service.settings.credential_for(ProviderId.ANTHROPIC) == "sk-ant-key"
    assert await pending is True
    assert service.models("anthropic") == ["claude-3-5-haiku-latest"]
    await service.aclose()


def test_on_device_has_no_credential_slot(make_registry, store) -> None:
    service = _service(make_registry(), store)

    with pytest.raises(ValueError):
        service.set_credential("on_device", "anything")


@pytest.mark.asyncio
async def test_verify_key_selects_provider_and_best_model(make_registry, store) -> None:
    names = ["models/gemini-1.5-pro", "models/gemini-1.5-flash-001", "models/gemini-1.5-flash"]
    registry = make_registry(lambda request: httpx.Response(200, json={"models": [{"name": n} for n in names]}))
    service = _service(registry, store)

    result = await service.verify_key("gemini", "AIza-long-key")

    assert result.selected_model == "gemini-1.5-flash"
    assert result.models == ["gemini-1.5-pro", "gemini-1.5-flash-001", "gemini-1.5-flash"]
    assert service.settings.provider is ProviderId.GEMINI
    assert store.get("selected_provider") == "gemini"
    assert store.get("selected_model") == "gemini-1.5-flash"
    assert service.models("gemini") == result.models
    await service.aclose()


@pytest.mark.asyncio
async def test_verify_key_rejects_empty_model_list(make_registry, store) -> None:
    registry = make_registry(lambda request: httpx.Response(200, json={"data": []}))
    service = _service(registry, store)

    with pytest.raises(AuthError, match="No models returned"):
        await service.verify_key("openai", "sk-test")
    assert store.get("selected_provider") is None
    await service.aclose()


@pytest.mark.asyncio
async def test_probe_on_device_switches_when_nothing_else_is_configured(make_registry, store) -> None:
    service = _service(make_registry(engine=FakeEngine("readily")), store)

    assert await service.probe_on_device() is Availability.AVAILABLE
    assert service.settings.provider is ProviderId.ON_DEVICE
    assert service.settings.model == "gemini-nano"
    await service.aclose()


@pytest.mark.asyncio
async def test_probe_on_device_keeps_configured_network_provider(make_registry, store) -> None:
    service = _service(
        make_registry(engine=FakeEngine("readily")), store, credentials={ProviderId.OPENAI: "sk-test"}
    )

    assert await service.probe_on_device() is Availability.AVAILABLE
    assert service.settings.provider is ProviderId.OPENAI
    await service.aclose()


def test_settings_prefer_environment_over_store(store) -> None:
    store.set("openai_key", "sk-stored")
    store.set("gemini_key", "AIza-stored-key")
    store.set("selected_provider", "bogus")

    settings = Settings.from_store(store, environ={"OPENAI_API_KEY": "sk-env"})

    assert settings.credential_for(ProviderId.OPENAI) == "sk-env"
    assert settings.credential_for(ProviderId.GEMINI) == "AIza-stored-key"
    assert settings.provider is ProviderId.OPENAI
    assert settings.language == "en"
