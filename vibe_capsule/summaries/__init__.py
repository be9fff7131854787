"""Shared exports for the provider-agnostic summaries gateway."""
from __future__ import annotations

from .catalog import ModelCatalog
from .decoders import (
    AnthropicStreamDecoder,
    EventStreamDecoder,
    JsonArrayStreamDecoder,
    LocalSessionDecoder,
    OpenAIStreamDecoder,
    StreamDecoder,
)
from .errors import (
    AuthError,
    AvailabilityError,
    GatewayError,
    ProtocolParseError,
    TransportError,
    UnknownProviderError,
)
from .prompts import PromptBuilder, PromptDocument, PromptLoader, PromptValidationError
from .providers import (
    AnthropicProvider,
    GeminiProvider,
    OnDeviceProvider,
    OpenAIProvider,
    Provider,
    ProviderRegistry,
)
from .selector import pick_model
from .service import SummaryService, VerificationResult
from .settings import Settings
from .storage import KeyValueStore, Library, MemoryStore, SavedArticle, YamlFileStore, load_article, write_article
from .transport import HttpTransport, LocalEngine, LocalSession
from .types import Availability, ProviderDescriptor, ProviderId, SummaryRecord, SummaryRequest


__all__ = [
    "SummaryRequest",
    "SummaryRecord",
    "ProviderId",
    "ProviderDescriptor",
    "Availability",
    "PromptBuilder",
    "PromptLoader",
    "PromptDocument",
    "PromptValidationError",
    "StreamDecoder",
    "EventStreamDecoder",
    "OpenAIStreamDecoder",
    "AnthropicStreamDecoder",
    "JsonArrayStreamDecoder",
    "LocalSessionDecoder",
    "HttpTransport",
    "LocalEngine",
    "LocalSession",
    "Provider",
    "OpenAIProvider",
    "AnthropicProvider",
    "GeminiProvider",
    "OnDeviceProvider",
    "ProviderRegistry",
    "ModelCatalog",
    "pick_model",
    "Settings",
    "KeyValueStore",
    "MemoryStore",
    "YamlFileStore",
    "Library",
    "SavedArticle",
    "load_article",
    "write_article",
    "SummaryService",
    "VerificationResult",
    "GatewayError",
    "TransportError",
    "AuthError",
    "ProtocolParseError",
    "AvailabilityError",
    "UnknownProviderError",
]
