"""Shared orchestration layer for streaming summaries and managing providers."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import AsyncIterator, Callable, List, Mapping, Optional, Union

from .catalog import ModelCatalog
from .errors import AuthError
from .prompts import TITLED_SUMMARY_TEMPLATE
from .providers import ProviderRegistry
from .selector import pick_model
from .settings import CREDENTIAL_KEYS, Settings
from .storage import KeyValueStore, Library, SavedArticle
from .types import Availability, ProviderId, SummaryRecord, SummaryRequest


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of a successful key verification."""

    provider: ProviderId
    models: List[str]
    selected_model: str


class SummaryService:
    """Public facade used by the CLI and any other front end."""

    def __init__(
        self,
        store: KeyValueStore,
        *,
        registry: Optional[ProviderRegistry] = None,
        catalog: Optional[ModelCatalog] = None,
        settings: Optional[Settings] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._store = store
        self.registry = registry or ProviderRegistry()
        self.catalog = catalog or ModelCatalog(self.registry, store)
        self.settings = settings or Settings.from_store(store)
        self.library = Library(store)
        self._logger = logger or logging.getLogger(__name__)

    # ------------------------------
    # Summaries
    # ------------------------------
    def build_request(
        self,
        content: str,
        *,
        provider: Union[str, ProviderId, None] = None,
        model: Optional[str] = None,
        language: Optional[str] = None,
        custom_prompt: Optional[str] = None,
    ) -> SummaryRequest:
        provider_id = self.registry.get(provider or self.settings.provider).id
        return SummaryRequest(
            content=content,
            language=language or self.settings.language,
            model=model or self.effective_model(provider_id),
            custom_prompt=custom_prompt or self.settings.custom_prompt or TITLED_SUMMARY_TEMPLATE,
            credential=self.settings.credential_for(provider_id),
        )

    async def stream(
        self, request: SummaryRequest, provider: Union[str, ProviderId, None] = None
    ) -> AsyncIterator[str]:
        """Yield fragments from the selected provider as they are decoded."""
        gateway = self.registry.get(provider or self.settings.provider)
        self._log_debug("stream-start", gateway.id, request)
        fragments = gateway.summarize(request)
        try:
            async for fragment in fragments:
                yield fragment
        finally:
            await fragments.aclose()
        self._log_debug("stream-end", gateway.id, request)

    async def summarize(
        self,
        request: SummaryRequest,
        provider: Union[str, ProviderId, None] = None,
        *,
        on_fragment: Optional[Callable[[str], None]] = None,
    ) -> SummaryRecord:
        """Consume a whole stream, forwarding each fragment to ``on_fragment``."""
        gateway = self.registry.get(provider or self.settings.provider)
        parts: List[str] = []
        stream = gateway.summarize(request)
        try:
            async for fragment in stream:
                parts.append(fragment)
                if on_fragment is not None:
                    on_fragment(fragment)
        finally:
            await stream.aclose()
        record = SummaryRecord(
            body="".join(parts),
            provider=gateway.id,
            model=request.model or gateway.descriptor.default_models[0],
            fragments=len(parts),
        )
        self._log_debug("summary-complete", gateway.id, request, {"fragments": record.fragments})
        return record

    def save(self, url: str, title: str, summary: Optional[str] = None) -> SavedArticle:
        return self.library.save(url, title, summary)

    # ------------------------------
    # Models and credentials
    # ------------------------------
    def models(self, provider: Union[str, ProviderId, None] = None) -> List[str]:
        return self.catalog.get(provider or self.settings.provider)

    def effective_model(self, provider: Union[str, ProviderId, None] = None) -> str:
        """Return the selected model if the provider offers it, else its first model."""
        provider_id = self.registry.get(provider or self.settings.provider).id
        models = self.catalog.get(provider_id)
        if provider_id is self.settings.provider and self.settings.model in models:
            return self.settings.model
        return models[0] if models else ""

    def set_credential(self, provider: Union[str, ProviderId], credential: str):
        """Store a key and schedule a debounced model refresh for it."""
        provider_id = self.registry.get(provider).id
        key = CREDENTIAL_KEYS.get(provider_id)
        if key is None:
            raise ValueError(f"{provider_id} does not use a credential")
        self._store.set(key, credential)
        self.settings = self.settings.with_credential(provider_id, credential)
        return self.catalog.schedule_refresh(provider_id, credential)

    def select(self, provider: Union[str, ProviderId], model: str) -> None:
        provider_id = self.registry.get(provider).id
        self.settings = self.settings.with_selection(provider_id, model)
        self.settings.persist_selection(self._store)

    async def verify_key(
        self, provider: Union[str, ProviderId], credential: Optional[str] = None
    ) -> VerificationResult:
        """Prove a key works by listing models, then select the provider and its best model."""
        gateway = self.registry.get(provider)
        credential = credential if credential is not None else self.settings.credential_for(gateway.id)
        models = await gateway.list_models(credential)
        if not models:
            raise AuthError("No models returned. Key might be invalid.")
        self.catalog.replace(gateway.id, models)
        best = pick_model(models, gateway.id)
        self.select(gateway.id, best)
        return VerificationResult(provider=gateway.id, models=models, selected_model=best)

    async def probe_on_device(self) -> Availability:
        """Report on-device availability, switching to it when nothing else is configured."""
        state = await self.registry.get(ProviderId.ON_DEVICE).availability()
        if (
            state is Availability.AVAILABLE
            and not self.settings.has_network_credential()
            and self.settings.provider is ProviderId.OPENAI
        ):
            self.select(ProviderId.ON_DEVICE, pick_model(self.models(ProviderId.ON_DEVICE), ProviderId.ON_DEVICE))
        return state

    async def aclose(self) -> None:
        self.catalog.close()
        await self.registry.aclose()

    def _log_debug(
        self,
        event: str,
        provider: ProviderId,
        request: SummaryRequest,
        extra: Optional[Mapping[str, object]] = None,
    ) -> None:
        if not self._logger:
            return
        payload = {
            "event": event,
            "provider": provider.value,
            "model": request.model,
            "language": request.language,
            "content_chars": len(request.content),
        }
        payload.update(dict(extra or {}))
        self._logger.debug("summary-service", extra={"summary": payload})
