"""Per-provider model cache with debounced refreshes."""
from __future__ import annotations

import asyncio
import logging
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from .errors import GatewayError
from .providers import Provider, ProviderRegistry
from .storage import KeyValueStore
from .types import ProviderId

logger = logging.getLogger(__name__)

CACHED_MODELS_KEY = "cached_models"
DEFAULT_SETTLE_DELAY = 1.0


class ModelCatalog:
    """Cache-with-fallback over each provider's discovered model list.

    The cache mapping is never mutated in place: a successful refresh builds
    a new mapping and swaps it in, so readers always see a whole list.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        store: KeyValueStore,
        *,
        settle_delay: float = DEFAULT_SETTLE_DELAY,
    ) -> None:
        self._registry = registry
        self._store = store
        self.settle_delay = settle_delay
        self._cache: Mapping[str, Tuple[str, ...]] = self._parse(store.get(CACHED_MODELS_KEY))
        self._pending: Dict[ProviderId, asyncio.Task] = {}
        self._unsubscribe = store.subscribe(CACHED_MODELS_KEY, self._on_store_change)

    def get(self, provider_id: Union[str, ProviderId]) -> List[str]:
        """Return the cached list, or the provider's defaults when none is cached."""
        provider = self._registry.get(provider_id)
        cached = self._cache.get(provider.id.value)
        if cached:
            return list(cached)
        return list(provider.descriptor.default_models)

    async def refresh(self, provider_id: Union[str, ProviderId], credential: Optional[str]) -> bool:
        """Replace the cached list with a fresh discovery; keep stale data on failure."""
        provider = self._registry.get(provider_id)
        try:
            models = await provider.list_models(credential)
        except GatewayError as exc:
            logger.warning("Failed to refresh models for %s: %s", provider.id, exc)
            logger.debug("refresh failure detail", exc_info=True)
            return False
        if not models:
            logger.info("Model discovery for %s returned nothing; keeping cached list", provider.id)
            return False
        self.replace(provider.id, models)
        return True

    def replace(self, provider_id: Union[str, ProviderId], models: List[str]) -> None:
        provider = self._registry.get(provider_id)
        updated = dict(self._cache)
        updated[provider.id.value] = tuple(models)
        self._cache = MappingProxyType(updated)
        self._store.set(CACHED_MODELS_KEY, {key: list(value) for key, value in updated.items()})
        logger.debug("Cached %d model(s) for %s", len(models), provider.id)

    def schedule_refresh(
        self, provider_id: Union[str, ProviderId], credential: Optional[str]
    ) -> Optional[asyncio.Task]:
        """Debounce a refresh: the last call wins, even over one already in flight.

        Must be called from a running event loop. Returns the pending task, or
        None when the credential does not look valid.
        """
        provider = self._registry.get(provider_id)
        self.cancel_pending(provider.id)
        if not credential or not provider.looks_valid(credential):
            return None
        task = asyncio.get_running_loop().create_task(self._refresh_later(provider, credential))
        self._pending[provider.id] = task
        return task

    def cancel_pending(self, provider_id: Union[str, ProviderId, None] = None) -> None:
        if provider_id is None:
            targets = list(self._pending)
        else:
            targets = [self._registry.get(provider_id).id]
        for target in targets:
            task = self._pending.pop(target, None)
            if task is not None and not task.done():
                task.cancel()

    def has_pending(self, provider_id: Union[str, ProviderId]) -> bool:
        task = self._pending.get(self._registry.get(provider_id).id)
        return task is not None and not task.done()

    def close(self) -> None:
        self.cancel_pending()
        self._unsubscribe()

    async def _refresh_later(self, provider: Provider, credential: str) -> bool:
        # Stays pending through discovery so a newer key cancels an in-flight request.
        try:
            await asyncio.sleep(self.settle_delay)
            return await self.refresh(provider.id, credential)
        finally:
            if self._pending.get(provider.id) is asyncio.current_task():
                del self._pending[provider.id]

    def _on_store_change(self, key: str, value: Any) -> None:
        self._cache = self._parse(value)

    @staticmethod
    def _parse(raw: Any) -> Mapping[str, Tuple[str, ...]]:
        parsed: Dict[str, Tuple[str, ...]] = {}
        if isinstance(raw, Mapping):
            for key, value in raw.items():
                if isinstance(value, (list, tuple)):
                    parsed[str(key)] = tuple(str(item) for item in value)
        return MappingProxyType(parsed)
