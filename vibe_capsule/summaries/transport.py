"""Thin transports feeding raw chunks to the stream decoders."""
from __future__ import annotations

import inspect
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Mapping, Optional, Protocol, runtime_checkable

import httpx

from .errors import AuthError, TransportError

logger = logging.getLogger(__name__)


class HttpTransport:
    """Co-ordinates outbound requests to provider HTTP endpoints.

    Requests are never retried; every failure is raised once to the caller.
    """

    _DEFAULT_TIMEOUT = 60.0
    _AUTH_STATUS_CODES = {401, 403}

    def __init__(
        self,
        *,
        timeout: float = _DEFAULT_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.timeout = timeout
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=self.timeout, transport=transport)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------
    # Probes
    # ------------------------------
    async def probe(
        self,
        url: str,
        *,
        headers: Optional[Mapping[str, str]] = None,
        params: Optional[Mapping[str, str]] = None,
    ) -> bool:
        """Return True when an authenticated GET answers with a success status."""

        try:
            response = await self._client.get(url, headers=_headers(headers), params=params)
        except httpx.HTTPError as exc:
            logger.debug("probe of %s failed: %s", url, exc)
            return False
        return response.is_success

    async def get_json(
        self,
        url: str,
        *,
        headers: Optional[Mapping[str, str]] = None,
        params: Optional[Mapping[str, str]] = None,
    ) -> Mapping[str, Any]:
        try:
            response = await self._client.get(url, headers=_headers(headers), params=params)
        except httpx.HTTPError as exc:
            raise TransportError(f"Request to {url} failed: {exc}") from exc

        if not response.is_success:
            raise _status_error(response.status_code, response.text)
        try:
            data = response.json()
        except ValueError as exc:
            raise TransportError(
                f"{url} returned a non-JSON response", status=response.status_code, body=response.text
            ) from exc
        if not isinstance(data, Mapping):
            raise TransportError(
                f"{url} response was not a JSON object", status=response.status_code, body=response.text
            )
        return data

    # ------------------------------
    # Streaming
    # ------------------------------
    async def stream(
        self,
        url: str,
        payload: Mapping[str, Any],
        *,
        headers: Optional[Mapping[str, str]] = None,
        params: Optional[Mapping[str, str]] = None,
    ) -> AsyncIterator[bytes]:
        """POST ``payload`` and yield raw body chunks as they arrive.

        Closing the generator early releases the underlying connection.
        """

        try:
            async with self._client.stream(
                "POST", url, json=dict(payload), headers=_headers(headers), params=params
            ) as response:
                if not response.is_success:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise _status_error(response.status_code, body)
                async for chunk in response.aiter_bytes():
                    if chunk:
                        yield chunk
        except httpx.HTTPError as exc:
            raise TransportError(f"Streaming request to {url} failed: {exc}") from exc


def _headers(extra: Optional[Mapping[str, str]]) -> Dict[str, str]:
    headers = {"Content-Type": "application/json"}
    if extra:
        headers.update(extra)
    return headers


def _status_error(status: int, body: str) -> TransportError:
    if status in HttpTransport._AUTH_STATUS_CODES:
        return AuthError(f"Provider rejected the credential ({status})", status=status, body=body)
    return TransportError(f"Provider request failed ({status}): {body}", status=status, body=body)


# ------------------------------
# On-device engine
# ------------------------------
@runtime_checkable
class LocalSession(Protocol):
    """A prompt session held open inside the local inference engine."""

    def prompt_streaming(self, prompt: str) -> AsyncIterator[str]:
        ...

    def destroy(self) -> Any:
        ...


@runtime_checkable
class LocalEngine(Protocol):
    """Locally resident model runtime.

    ``capabilities`` reports ``"readily"``, ``"after-download"`` or ``"no"``.
    """

    async def capabilities(self) -> str:
        ...

    async def create_session(self, system_prompt: str) -> LocalSession:
        ...


@asynccontextmanager
async def local_session(engine: LocalEngine, system_prompt: str) -> AsyncIterator[LocalSession]:
    """Open a session and destroy it on every exit path."""

    session = await engine.create_session(system_prompt)
    try:
        yield session
    finally:
        result = session.destroy()
        if inspect.isawaitable(result):
            await result
