from __future__ import annotations

import json
from typing import List, Type

import pytest

from vibe_capsule.summaries.decoders import (
    AnthropicStreamDecoder,
    JsonArrayStreamDecoder,
    LocalSessionDecoder,
    OpenAIStreamDecoder,
    StreamDecoder,
)


def _openai_event(text: str) -> str:
    return "data: " + json.dumps({"choices": [{"delta": {"content": text}}]}, ensure_ascii=False) + "\n\n"


def _gemini_object(text: str) -> str:
    return json.dumps({"candidates": [{"content": {"parts": [{"text": text}], "role": "model"}}]}, ensure_ascii=False)


OPENAI_PAYLOAD = (
    _openai_event("Héllo")
    + 'data: {"choices":[{"delta":{"role":"assistant"}}]}\n\n'
    + _openai_event(" 世界")
    + _openai_event(" {ok}")
    + "data: [DONE]\n\n"
).encode("utf-8")

ANTHROPIC_PAYLOAD = (
    "event: message_start\n"
    'data: {"type":"message_start","message":{"id":"msg_1"}}\n\n'
    "event: ping\n"
    'data: {"type":"ping"}\n\n'
    "event: content_block_delta\n"
    'data: {"type":"content_block_delta","index":0,"delta":{"type":"text_delta","text":"Résumé"}}\n\n'
    "event: content_block_delta\n"
    'data: {"type":"content_block_delta","index":0,"delta":{"type":"text_delta","text":" → done"}}\n\n'
    "event: content_block_stop\n"
    'data: {"type":"content_block_stop","index":0}\n\n'
    "event: message_stop\n"
    'data: {"type":"message_stop"}\n\n'
).encode("utf-8")

GEMINI_PAYLOAD = (
    "["
    + _gemini_object("a { b } c")
    + ",\r\n"
    + _gemini_object('say "{" then \\ and }')
    + ",\r\n"
    + _gemini_object("日本語")
    + "]"
).encode("utf-8")


def _decode(decoder: StreamDecoder, payload: bytes, size: int) -> List[str]:
    fragments: List[str] = []
    for offset in range(0, len(payload), size):
        fragments.extend(decoder.feed(payload[offset:offset + size]))
    fragments.extend(decoder.finish())
    return fragments


@pytest.mark.parametrize(
    "decoder_cls, payload, expected",
    [
        (OpenAIStreamDecoder, OPENAI_PAYLOAD, ["Héllo", " 世界", " {ok}"]),
        (AnthropicStreamDecoder, ANTHROPIC_PAYLOAD, ["Résumé", " → done"]),
        (JsonArrayStreamDecoder, GEMINI_PAYLOAD, ["a { b } c", 'say "{" then \\ and }', "日本語"]),
    ],
)
@pytest.mark.parametrize("size", [1, 2, 3, 5, 17, 4096])
def test_split_points_do_not_change_output(
    decoder_cls: Type[StreamDecoder], payload: bytes, expected: List[str], size: int
) -> None:
    assert _decode(decoder_cls(), payload, len(payload)) == expected
    assert _decode(decoder_cls(), payload, size) == expected


def test_openai_stops_at_done_even_with_trailing_bytes() -> None:
    decoder = OpenAIStreamDecoder()
    payload = b'data: {"choices":[{"delta":{"content":"Hello"}}]}\n\ndata: [DONE]\n\n'
    trailing = _openai_event("late").encode("utf-8")

    assert decoder.feed(payload + trailing) == ["Hello"]
    assert decoder.done
    assert decoder.feed(trailing) == []
    assert decoder.finish() == []


def test_event_stream_skips_malformed_lines_and_continues() -> None:
    decoder = OpenAIStreamDecoder()
    payload = b'data: {"choices": [\n' + b"data: [1, 2]\n" + _openai_event("ok").encode("utf-8")

    assert decoder.feed(payload) == ["ok"]
    assert decoder.skipped == 2
    assert not decoder.done


def test_event_stream_handles_crlf_and_flushes_residual_line() -> None:
    decoder = OpenAIStreamDecoder()
    first = 'data: {"choices":[{"delta":{"content":"one"}}]}\r\n\r\n'
    last = 'data: {"choices":[{"delta":{"content":"two"}}]}'

    assert decoder.feed(first.encode("utf-8")) == ["one"]
    assert decoder.feed(last.encode("utf-8")) == []
    assert decoder.finish() == ["two"]


def test_anthropic_ignores_non_text_deltas() -> None:
    decoder = AnthropicStreamDecoder()
    payload = (
        'data: {"type":"content_block_delta","delta":{"type":"input_json_delta","partial_json":"{}"}}\n'
        'data: {"type":"content_block_start","content_block":{"type":"text","text":""}}\n'
        'data: {"type":"message_delta","delta":{"stop_reason":"end_turn"}}\n'
    )
    assert decoder.feed(payload.encode("utf-8")) == []
    assert decoder.skipped == 0


def test_json_array_keeps_partial_object_between_feeds() -> None:
    decoder = JsonArrayStreamDecoder()
    obj = _gemini_object("partial")
    head, tail = obj[: len(obj) // 2], obj[len(obj) // 2:]

    assert decoder.feed(("[" + head).encode("utf-8")) == []
    assert decoder.feed(tail.encode("utf-8")) == ["partial"]
    assert decoder.feed(b"]") == []
    assert decoder.finish() == []


def test_json_array_skips_objects_without_text() -> None:
    decoder = JsonArrayStreamDecoder()
    payload = (
        '[{"candidates":[{"finishReason":"STOP"}]},'
        '{"candidates":[{"content":{"parts":[{"text":""}]}}]},'
        '{"usageMetadata":{"totalTokenCount":3}}]'
    )
    assert decoder.feed(payload.encode("utf-8")) == []
    assert decoder.skipped == 0


def test_json_array_counts_unterminated_trailing_object() -> None:
    decoder = JsonArrayStreamDecoder()

    assert decoder.feed(('[' + _gemini_object("kept") + ',{"candidates":[').encode("utf-8")) == ["kept"]
    assert decoder.finish() == []
    assert decoder.skipped == 1


def test_local_session_decoder_passes_tokens_through() -> None:
    decoder = LocalSessionDecoder()

    assert decoder.feed("Hello") == ["Hello"]
    assert decoder.feed("") == []
    assert decoder.feed(" world") == [" world"]
    assert decoder.finish() == []
    assert decoder.done
