"""Provider gateways: one capability-uniform facade per backend."""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, Iterable, List, Mapping, Optional, Union

from .decoders import (
    AnthropicStreamDecoder,
    JsonArrayStreamDecoder,
    LocalSessionDecoder,
    OpenAIStreamDecoder,
    StreamDecoder,
)
from .errors import AuthError, AvailabilityError, UnknownProviderError
from .prompts import PromptBuilder
from .transport import HttpTransport, LocalEngine, local_session
from .types import Availability, ProviderDescriptor, ProviderId, SummaryRequest

logger = logging.getLogger(__name__)

OPENAI = ProviderDescriptor(
    id=ProviderId.OPENAI,
    display_name="OpenAI",
    requires_credential=True,
    default_models=("gpt-4o-mini", "gpt-4o"),
)
ANTHROPIC = ProviderDescriptor(
    id=ProviderId.ANTHROPIC,
    display_name="Anthropic",
    requires_credential=True,
    default_models=("claude-3-5-sonnet-20240620",),
)
GEMINI = ProviderDescriptor(
    id=ProviderId.GEMINI,
    display_name="Gemini",
    requires_credential=True,
    default_models=("gemini-1.5-pro",),
)
ON_DEVICE = ProviderDescriptor(
    id=ProviderId.ON_DEVICE,
    display_name="On-device AI",
    requires_credential=False,
    default_models=("gemini-nano",),
)

DESCRIPTORS: Dict[ProviderId, ProviderDescriptor] = {
    descriptor.id: descriptor for descriptor in (OPENAI, ANTHROPIC, GEMINI, ON_DEVICE)
}

# Identifiers that are never useful for text summaries.
_EXCLUDED_MODEL_MARKERS = ("embed", "vision", "audio", "tts", "realtime", "image")


def resolve_provider_id(provider_id: Union[str, ProviderId]) -> ProviderId:
    try:
        return ProviderId(provider_id)
    except ValueError:
        raise UnknownProviderError(f"No gateway is registered for provider '{provider_id}'") from None


def _relevant_sorted(model_ids: Iterable[str]) -> List[str]:
    kept = {
        model_id
        for model_id in model_ids
        if model_id and not any(marker in model_id for marker in _EXCLUDED_MODEL_MARKERS)
    }
    return sorted(kept, reverse=True)


class Provider(ABC):
    """Capability surface every backend exposes."""

    descriptor: ProviderDescriptor

    def __init__(self, prompt_builder: Optional[PromptBuilder] = None) -> None:
        self.prompts = prompt_builder or PromptBuilder()

    @property
    def id(self) -> ProviderId:
        return self.descriptor.id

    def looks_valid(self, credential: Optional[str]) -> bool:
        """Format-only check used to fast-fail before any network call."""
        return bool(credential)

    @abstractmethod
    async def validate_key(self, credential: str) -> bool:
        ...

    @abstractmethod
    async def list_models(self, credential: Optional[str]) -> List[str]:
        ...

    @abstractmethod
    def summarize(self, request: SummaryRequest) -> AsyncIterator[str]:
        """Yield text fragments in production order."""

    async def availability(self) -> Availability:
        return Availability.AVAILABLE

    @abstractmethod
    def new_decoder(self) -> StreamDecoder:
        ...


class HttpProvider(Provider):
    """Shared plumbing for providers reached over HTTP."""

    models_url: str

    def __init__(
        self,
        transport: Optional[HttpTransport] = None,
        prompt_builder: Optional[PromptBuilder] = None,
    ) -> None:
        super().__init__(prompt_builder)
        self.transport = transport or HttpTransport()

    async def validate_key(self, credential: str) -> bool:
        if not self.looks_valid(credential):
            return False
        return await self.transport.probe(
            self.models_url, headers=self.auth_headers(credential), params=self.auth_params(credential)
        )

    async def list_models(self, credential: Optional[str]) -> List[str]:
        credential = self._require_credential(credential)
        data = await self.transport.get_json(
            self.models_url, headers=self.auth_headers(credential), params=self.auth_params(credential)
        )
        return _relevant_sorted(self.model_ids(data))

    async def summarize(self, request: SummaryRequest) -> AsyncIterator[str]:
        credential = self._require_credential(request.credential)
        model = request.model or self.descriptor.default_models[0]
        decoder = self.new_decoder()
        chunks = self.transport.stream(
            self.stream_url(model),
            self.stream_payload(model, self.prompts.build(request)),
            headers=self.auth_headers(credential),
            params=self.auth_params(credential),
        )
        try:
            async for chunk in chunks:
                for fragment in decoder.feed(chunk):
                    yield fragment
                if decoder.done:
                    break
            for fragment in decoder.finish():
                yield fragment
        finally:
            await chunks.aclose()
            if decoder.skipped:
                logger.warning(
                    "%s stream finished with %d malformed unit(s) skipped", self.descriptor.display_name, decoder.skipped
                )

    def _require_credential(self, credential: Optional[str]) -> str:
        if not credential:
            raise AuthError(f"{self.descriptor.display_name} API key is required")
        return credential

    def auth_headers(self, credential: str) -> Dict[str, str]:
        return {}

    def auth_params(self, credential: str) -> Optional[Dict[str, str]]:
        return None

    @abstractmethod
    def model_ids(self, data: Mapping[str, Any]) -> Iterable[str]:
        ...

    @abstractmethod
    def stream_url(self, model: str) -> str:
        ...

    @abstractmethod
    def stream_payload(self, model: str, prompt: str) -> Dict[str, Any]:
        ...


class OpenAIProvider(HttpProvider):
    descriptor = OPENAI
    base_url = "https://api.openai.com/v1"
    models_url = f"{base_url}/models"

    def looks_valid(self, credential: Optional[str]) -> bool:
        return bool(credential) and credential.startswith("sk-")

    def auth_headers(self, credential: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {credential}"}

    def model_ids(self, data: Mapping[str, Any]) -> Iterable[str]:
        for entry in data.get("data") or []:
            model_id = entry.get("id") if isinstance(entry, Mapping) else None
            if isinstance(model_id, str) and ("gpt" in model_id or model_id.startswith(("o1", "o3"))):
                yield model_id

    def stream_url(self, model: str) -> str:
        return f"{self.base_url}/chat/completions"

    def stream_payload(self, model: str, prompt: str) -> Dict[str, Any]:
        return {"model": model, "messages": [{"role": "user", "content": prompt}], "stream": True}

    def new_decoder(self) -> StreamDecoder:
        return OpenAIStreamDecoder()


class AnthropicProvider(HttpProvider):
    descriptor = ANTHROPIC
    base_url = "https://api.anthropic.com/v1"
    models_url = f"{base_url}/models"
    api_version = "2023-06-01"
    max_tokens = 1024

    def looks_valid(self, credential: Optional[str]) -> bool:
        return bool(credential) and credential.startswith("sk-ant-")

    def auth_headers(self, credential: str) -> Dict[str, str]:
        return {"x-api-key": credential, "anthropic-version": self.api_version}

    def model_ids(self, data: Mapping[str, Any]) -> Iterable[str]:
        for entry in data.get("data") or []:
            model_id = entry.get("id") if isinstance(entry, Mapping) else None
            if isinstance(model_id, str):
                yield model_id

    def stream_url(self, model: str) -> str:
        return f"{self.base_url}/messages"

    def stream_payload(self, model: str, prompt: str) -> Dict[str, Any]:
        return {
            "model": model,
            "max_tokens": self.max_tokens,
            "messages": [{"role": "user", "content": prompt}],
            "stream": True,
        }

    def new_decoder(self) -> StreamDecoder:
        return AnthropicStreamDecoder()


class GeminiProvider(HttpProvider):
    descriptor = GEMINI
    base_url = "https://generativelanguage.googleapis.com/v1beta"
    models_url = f"{base_url}/models"

    def looks_valid(self, credential: Optional[str]) -> bool:
        return bool(credential) and len(credential) > 10

    def auth_params(self, credential: str) -> Optional[Dict[str, str]]:
        return {"key": credential}

    def model_ids(self, data: Mapping[str, Any]) -> Iterable[str]:
        for entry in data.get("models") or []:
            name = entry.get("name") if isinstance(entry, Mapping) else None
            if not isinstance(name, str):
                continue
            model_id = name[len("models/"):] if name.startswith("models/") else name
            if "gemini" in model_id:
                yield model_id

    def stream_url(self, model: str) -> str:
        return f"{self.models_url}/{model}:streamGenerateContent"

    def stream_payload(self, model: str, prompt: str) -> Dict[str, Any]:
        return {"contents": [{"parts": [{"text": prompt}]}]}

    def new_decoder(self) -> StreamDecoder:
        return JsonArrayStreamDecoder()


class OnDeviceProvider(Provider):
    """Runs the summary inside a local engine; no credential, no network."""

    descriptor = ON_DEVICE
    model_id = "gemini-nano"
    user_prompt = "Please summarize the following content:\n\n{content}"

    _CAPABILITY_STATES = {
        "readily": Availability.AVAILABLE,
        "after-download": Availability.MODEL_NOT_READY,
        "no": Availability.API_MISSING,
    }

    def __init__(self, engine: Optional[LocalEngine] = None, prompt_builder: Optional[PromptBuilder] = None) -> None:
        super().__init__(prompt_builder)
        self.engine = engine

    def looks_valid(self, credential: Optional[str]) -> bool:
        return True

    async def availability(self) -> Availability:
        if self.engine is None:
            return Availability.API_MISSING
        try:
            capability = await self.engine.capabilities()
        except Exception:
            logger.exception("On-device capability check failed")
            return Availability.API_MISSING
        return self._CAPABILITY_STATES.get(capability, Availability.API_MISSING)

    async def validate_key(self, credential: str) -> bool:
        return True

    async def list_models(self, credential: Optional[str] = None) -> List[str]:
        if await self.availability() is Availability.API_MISSING:
            return []
        return [self.model_id]

    async def summarize(self, request: SummaryRequest) -> AsyncIterator[str]:
        state = await self.availability()
        if state is Availability.API_MISSING:
            raise AvailabilityError("On-device AI is not available on this system.", state)
        if state is Availability.MODEL_NOT_READY:
            raise AvailabilityError("On-device AI is available but the model is not ready yet.", state)

        decoder = self.new_decoder()
        async with local_session(self.engine, self.prompts.instruction(request)) as session:
            tokens = session.prompt_streaming(self.user_prompt.format(content=request.content))
            try:
                async for token in tokens:
                    for fragment in decoder.feed(token):
                        yield fragment
            finally:
                aclose = getattr(tokens, "aclose", None)
                if aclose is not None:
                    await aclose()
        for fragment in decoder.finish():
            yield fragment

    def new_decoder(self) -> StreamDecoder:
        return LocalSessionDecoder()


class ProviderRegistry:
    """Maps the closed set of provider ids to their gateways."""

    def __init__(
        self,
        *,
        transport: Optional[HttpTransport] = None,
        engine: Optional[LocalEngine] = None,
        prompt_builder: Optional[PromptBuilder] = None,
    ) -> None:
        transport = transport or HttpTransport()
        self._providers: Dict[ProviderId, Provider] = {
            ProviderId.OPENAI: OpenAIProvider(transport, prompt_builder),
            ProviderId.ANTHROPIC: AnthropicProvider(transport, prompt_builder),
            ProviderId.GEMINI: GeminiProvider(transport, prompt_builder),
            ProviderId.ON_DEVICE: OnDeviceProvider(engine, prompt_builder),
        }
        self.transport = transport

    def get(self, provider_id: Union[str, ProviderId]) -> Provider:
        return self._providers[resolve_provider_id(provider_id)]

    def __iter__(self):
        return iter(self._providers.values())

    async def aclose(self) -> None:
        await self.transport.aclose()
