"""Deterministic default-model heuristic."""
from __future__ import annotations

from typing import Dict, Sequence, Tuple, Union

from .types import ProviderId

ON_DEVICE_MODEL = "gemini-nano"

# Low cost, text-first models in order of preference.
PREFERENCES: Dict[ProviderId, Tuple[str, ...]] = {
    ProviderId.OPENAI: ("gpt-4o-mini", "gpt-3.5-turbo"),
    ProviderId.ANTHROPIC: ("claude-3-haiku-20240307", "claude-3-5-haiku-20241022"),
    ProviderId.GEMINI: ("gemini-1.5-flash", "gemini-1.5-flash-latest", "gemini-1.5-flash-001"),
}

LOW_COST_KEYWORDS: Tuple[str, ...] = ("flash", "mini", "haiku", "turbo")


def pick_model(models: Sequence[str], provider_id: Union[str, ProviderId]) -> str:
    """Return the default model for ``provider_id`` out of ``models``.

    Never fails: an empty list yields ``""`` and any other list yields one of
    its entries (or the fixed on-device model).
    """
    if not models:
        return ""
    try:
        provider = ProviderId(provider_id)
    except ValueError:
        provider = None
    if provider is ProviderId.ON_DEVICE:
        return ON_DEVICE_MODEL

    for preferred in PREFERENCES.get(provider, ()):
        if preferred in models:
            return preferred

    for model in models:
        if any(keyword in model for keyword in LOW_COST_KEYWORDS):
            return model

    return models[0]
