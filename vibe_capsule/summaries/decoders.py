"""Incremental decoders turning raw provider streams into text fragments.

Decoders are push-based and perform no I/O: the gateway calls ``feed`` with
each chunk as it arrives and ``finish`` once the transport reports end of
stream. Chunk boundaries never need to line up with protocol boundaries; any
undecodable remainder is buffered until the next call.
"""
from __future__ import annotations

import codecs
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, List, Mapping, Optional, Union

from .errors import ProtocolParseError

logger = logging.getLogger(__name__)

DATA_MARKER = "data:"
EVENT_MARKER = "event:"
DONE_SENTINEL = "[DONE]"


class StreamDecoder(ABC):
    """Common surface shared by every wire format."""

    def __init__(self) -> None:
        self.done = False
        self.skipped = 0

    @abstractmethod
    def feed(self, chunk: Union[bytes, str]) -> List[str]:
        """Consume one chunk and return the fragments it completed."""

    @abstractmethod
    def finish(self) -> List[str]:
        """Flush whatever complete unit is still buffered."""

    def _skip(self, exc: ProtocolParseError) -> None:
        self.skipped += 1
        logger.warning("%s skipped a malformed unit: %s", type(self).__name__, exc)


class _TextBufferDecoder(StreamDecoder):
    """Base for byte-oriented decoders that buffer decoded text."""

    def __init__(self) -> None:
        super().__init__()
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def _decode(self, chunk: Union[bytes, str], final: bool = False) -> str:
        if isinstance(chunk, str):
            return chunk
        return self._utf8.decode(chunk, final=final)


def _dig(obj: Any, *path: Union[str, int]) -> Any:
    current = obj
    for key in path:
        if isinstance(key, int):
            if not isinstance(current, list) or len(current) <= key:
                return None
        elif not isinstance(current, Mapping):
            return None
        else:
            if key not in current:
                return None
        current = current[key]
    return current


def _load_object(text: str) -> Mapping[str, Any]:
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ProtocolParseError(f"invalid JSON ({exc.msg} at char {exc.pos})") from exc
    if not isinstance(payload, Mapping):
        raise ProtocolParseError(f"expected a JSON object, got {type(payload).__name__}")
    return payload


class EventStreamDecoder(_TextBufferDecoder):
    """Line-delimited ``data: <json>`` event streams."""

    def feed(self, chunk: Union[bytes, str]) -> List[str]:
        if self.done:
            return []
        self._buffer += self._decode(chunk)
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        return self._consume(lines)

    def finish(self) -> List[str]:
        if self.done:
            return []
        self._buffer += self._decode(b"", final=True)
        residual, self._buffer = self._buffer, ""
        fragments = self._consume([residual])
        self.done = True
        return fragments

    def _consume(self, lines: List[str]) -> List[str]:
        fragments: List[str] = []
        for raw_line in lines:
            line = raw_line.rstrip("\r")
            if not line.strip() or line.startswith(EVENT_MARKER):
                continue
            if not line.startswith(DATA_MARKER):
                continue
            payload = line[len(DATA_MARKER):]
            if payload.startswith(" "):
                payload = payload[1:]
            if payload.strip() == DONE_SENTINEL:
                self.done = True
                self._buffer = ""
                break
            try:
                text = self.extract_text(_load_object(payload))
            except ProtocolParseError as exc:
                self._skip(exc)
                continue
            if text:
                fragments.append(text)
        return fragments

    @abstractmethod
    def extract_text(self, event: Mapping[str, Any]) -> Optional[str]:
        """Return the text delta carried by one parsed event, if any."""


class OpenAIStreamDecoder(EventStreamDecoder):
    """Chat-completions deltas at ``choices[0].delta.content``."""

    def extract_text(self, event: Mapping[str, Any]) -> Optional[str]:
        content = _dig(event, "choices", 0, "delta", "content")
        return content if isinstance(content, str) else None


class AnthropicStreamDecoder(EventStreamDecoder):
    """Messages API events; only text deltas produce fragments."""

    CONTENT_DELTA = "content_block_delta"
    TEXT_DELTA = "text_delta"

    def extract_text(self, event: Mapping[str, Any]) -> Optional[str]:
        if event.get("type") != self.CONTENT_DELTA:
            return None
        delta = event.get("delta")
        if not isinstance(delta, Mapping) or delta.get("type") != self.TEXT_DELTA:
            return None
        text = delta.get("text")
        return text if isinstance(text, str) else None


class JsonArrayStreamDecoder(_TextBufferDecoder):
    """Unterminated top-level JSON arrays of objects, as Gemini streams them.

    The scan keeps its position, brace depth and string state between calls,
    so a feed only walks the characters it has not seen yet.
    """

    def __init__(self) -> None:
        super().__init__()
        self._scan = 0
        self._start = -1
        self._depth = 0
        self._in_string = False
        self._escaped = False

    def feed(self, chunk: Union[bytes, str]) -> List[str]:
        self._buffer += self._decode(chunk)
        return self._drain()

    def finish(self) -> List[str]:
        self._buffer += self._decode(b"", final=True)
        fragments = self._drain()
        if self._depth:
            self._skip(ProtocolParseError(f"stream ended inside an object ({len(self._buffer)} chars buffered)"))
        self._buffer = ""
        self._reset_scan()
        self.done = True
        return fragments

    def _reset_scan(self) -> None:
        self._scan = 0
        self._start = -1
        self._depth = 0
        self._in_string = False
        self._escaped = False

    def _drain(self) -> List[str]:
        fragments: List[str] = []
        buffer = self._buffer
        index = self._scan
        while index < len(buffer):
            char = buffer[index]
            if self._depth == 0:
                if char == "{":
                    self._start = index
                    self._depth = 1
            elif self._in_string:
                if self._escaped:
                    self._escaped = False
                elif char == "\\":
                    self._escaped = True
                elif char == '"':
                    self._in_string = False
            elif char == '"':
                self._in_string = True
            elif char == "{":
                self._depth += 1
            elif char == "}":
                self._depth -= 1
                if self._depth == 0:
                    text = self._parse_unit(buffer[self._start:index + 1])
                    if text:
                        fragments.append(text)
                    self._start = -1
            index += 1

        # Drop the consumed prefix; keep an unfinished object verbatim.
        cut = self._start if self._depth else index
        self._buffer = buffer[cut:]
        self._scan = index - cut
        if self._depth:
            self._start = 0
        return fragments

    def _parse_unit(self, unit: str) -> Optional[str]:
        try:
            payload = _load_object(unit)
        except ProtocolParseError as exc:
            self._skip(exc)
            return None
        text = _dig(payload, "candidates", 0, "content", "parts", 0, "text")
        return text if isinstance(text, str) and text else None


class LocalSessionDecoder(StreamDecoder):
    """Pass-through for engines that already yield discrete tokens."""

    def feed(self, chunk: Union[bytes, str]) -> List[str]:
        if isinstance(chunk, bytes):
            chunk = chunk.decode("utf-8")
        return [chunk] if chunk else []

    def finish(self) -> List[str]:
        self.done = True
        return []
