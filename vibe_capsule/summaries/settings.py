"""User settings kept in the key-value store, with environment overrides."""
from __future__ import annotations

import locale
import os
from dataclasses import dataclass, field, replace
from typing import Dict, Mapping, Optional

from .storage import KeyValueStore
from .types import ProviderId

CREDENTIAL_KEYS: Dict[ProviderId, str] = {
    ProviderId.OPENAI: "openai_key",
    ProviderId.ANTHROPIC: "anthropic_key",
    ProviderId.GEMINI: "gemini_key",
}

CREDENTIAL_ENV_VARS: Dict[ProviderId, str] = {
    ProviderId.OPENAI: "OPENAI_API_KEY",
    ProviderId.ANTHROPIC: "ANTHROPIC_API_KEY",
    ProviderId.GEMINI: "GEMINI_API_KEY",
}

SELECTED_PROVIDER_KEY = "selected_provider"
SELECTED_MODEL_KEY = "selected_model"
CUSTOM_PROMPT_KEY = "custom_prompt"

DEFAULT_PROVIDER = ProviderId.OPENAI
DEFAULT_MODEL = "gpt-4o-mini"


def detect_language() -> str:
    """Return the UI locale as a BCP 47 style tag, falling back to ``en``."""
    tag = os.getenv("VIBE_CAPSULE_LANGUAGE")
    if tag and tag.strip():
        return tag.strip()
    try:
        code = locale.getlocale()[0]
    except ValueError:
        code = None
    if not code or code in ("C", "POSIX"):
        return "en"
    return code.replace("_", "-")


@dataclass(frozen=True)
class Settings:
    provider: ProviderId = DEFAULT_PROVIDER
    model: str = DEFAULT_MODEL
    custom_prompt: Optional[str] = None
    language: str = "en"
    credentials: Mapping[ProviderId, str] = field(default_factory=dict)

    @classmethod
    def from_store(cls, store: KeyValueStore, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        environ = os.environ if environ is None else environ
        credentials: Dict[ProviderId, str] = {}
        for provider_id, store_key in CREDENTIAL_KEYS.items():
            env_value = environ.get(CREDENTIAL_ENV_VARS[provider_id], "").strip()
            value = env_value or (store.get(store_key) or "").strip()
            if value:
                credentials[provider_id] = value

        try:
            provider = ProviderId(store.get(SELECTED_PROVIDER_KEY) or DEFAULT_PROVIDER)
        except ValueError:
            provider = DEFAULT_PROVIDER

        return cls(
            provider=provider,
            model=store.get(SELECTED_MODEL_KEY) or DEFAULT_MODEL,
            custom_prompt=store.get(CUSTOM_PROMPT_KEY) or None,
            language=detect_language(),
            credentials=credentials,
        )

    def credential_for(self, provider_id: ProviderId) -> Optional[str]:
        return self.credentials.get(provider_id)

    def has_network_credential(self) -> bool:
        return any(self.credentials.get(provider_id) for provider_id in CREDENTIAL_KEYS)

    def with_credential(self, provider_id: ProviderId, credential: str) -> "Settings":
        credentials = dict(self.credentials)
        credentials[provider_id] = credential
        return replace(self, credentials=credentials)

    def with_selection(self, provider_id: ProviderId, model: str) -> "Settings":
        return replace(self, provider=provider_id, model=model)

    def persist_selection(self, store: KeyValueStore) -> None:
        store.set(SELECTED_PROVIDER_KEY, self.provider.value)
        store.set(SELECTED_MODEL_KEY, self.model)
