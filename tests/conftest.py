"""Shared fixtures: isolated environment, mock HTTP transports and a fake local engine."""
from __future__ import annotations

from typing import AsyncIterator, Callable, List, Optional, Sequence

import httpx
import pytest

from vibe_capsule.summaries import HttpTransport, MemoryStore, ProviderRegistry


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    for var in ("OPENAI_API_KEY", "ANTHROPIC_API_KEY", "GEMINI_API_KEY", "VIBE_CAPSULE_LOG_LEVEL"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("VIBE_CAPSULE_LANGUAGE", "en")
    monkeypatch.setenv("VIBE_CAPSULE_HOME", str(tmp_path / "home"))


class ChunkSource:
    """Async byte source that records how many chunks the client pulled."""

    def __init__(self, parts: Sequence[bytes]) -> None:
        self.parts = list(parts)
        self.pulled = 0

    async def __aiter__(self) -> AsyncIterator[bytes]:
        for part in self.parts:
            self.pulled += 1
            yield part


def streaming_response(source: ChunkSource, status: int = 200) -> httpx.Response:
    return httpx.Response(status, content=source.__aiter__())


@pytest.fixture
def make_registry() -> Callable[..., ProviderRegistry]:
    """Build a registry whose HTTP traffic goes to ``handler``."""

    def factory(handler: Optional[Callable[[httpx.Request], httpx.Response]] = None, engine=None) -> ProviderRegistry:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise AssertionError(f"unexpected request to {request.url}")

        transport = HttpTransport(transport=httpx.MockTransport(handler or refuse))
        return ProviderRegistry(transport=transport, engine=engine)

    return factory


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


class FakeSession:
    def __init__(self, system_prompt: str, tokens: Sequence[str]) -> None:
        self.system_prompt = system_prompt
        self.tokens = list(tokens)
        self.prompts: List[str] = []
        self.destroyed = False

    async def prompt_streaming(self, prompt: str) -> AsyncIterator[str]:
        self.prompts.append(prompt)
        for token in self.tokens:
            yield token

    def destroy(self) -> None:
        self.destroyed = True


class FakeEngine:
    def __init__(self, capability: str = "readily", tokens: Sequence[str] = ("Hello", " ", "world")) -> None:
        self.capability = capability
        self.tokens = list(tokens)
        self.sessions: List[FakeSession] = []

    async def capabilities(self) -> str:
        return self.capability

    async def create_session(self, system_prompt: str) -> FakeSession:
        session = FakeSession(system_prompt, self.tokens)
        self.sessions.append(session)
        return session
