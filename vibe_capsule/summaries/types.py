"""Dataclasses and enums shared across the summaries feature."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple


class ProviderId(str, Enum):
    """Closed set of backends the gateway can dispatch to."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"
    ON_DEVICE = "on_device"

    def __str__(self) -> str:
        return self.value


class Availability(str, Enum):
    """State of the local inference engine, recomputed on every probe."""

    API_MISSING = "API_MISSING"
    MODEL_NOT_READY = "MODEL_NOT_READY"
    AVAILABLE = "AVAILABLE"


@dataclass(frozen=True)
class ProviderDescriptor:
    """Static facts about one provider, defined once at import time."""

    id: ProviderId
    display_name: str
    requires_credential: bool
    default_models: Tuple[str, ...]


@dataclass(frozen=True)
class SummaryRequest:
    """Immutable request payload for a single summarize call."""

    content: str
    language: str = "en"
    model: str = ""
    custom_prompt: Optional[str] = None
    credential: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.content or not self.content.strip():
            raise ValueError("SummaryRequest.content must not be empty")


@dataclass
class SummaryRecord:
    """Collected output of a finished stream."""

    body: str
    provider: ProviderId
    model: str
    fragments: int = 0
    metadata: dict = field(default_factory=dict)
