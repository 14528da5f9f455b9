import asyncio
import json

import httpx
import pytest

from assistant.core.state import ChatMessage
from assistant.llm.client import ChatCompletionsClient, GenerationError, parse_stream_line
from assistant.llm.provider_config import LLMConfig
from assistant.llm.service import GenerationService, build_payload


URL = "http://llm.test/v1/chat/completions"


def _client(handler, api_key="sk-test"):
    return ChatCompletionsClient(
        provider="openai",
        url=URL,
        api_key=api_key,
        transport=httpx.MockTransport(handler),
    )


def _sse(*deltas):
    lines = [
        "data: " + json.dumps({"choices": [{"delta": {"content": d}}]})
        for d in deltas
    ]
    lines.append("data: [DONE]")
    return "\n\n".join(lines) + "\n\n"


# =========================================================
# SSE line parsing
# =========================================================

@pytest.mark.parametrize(
    "line, expected",
    [
        ('data: {"choices": [{"delta": {"content": "Hi"}}]}', "Hi"),
        ('{"choices": [{"message": {"content": "Hi"}}]}', "Hi"),
        ('data: {"choices": [{"text": "Hi"}]}', "Hi"),
        ('data: {"message": {"content": "Hi"}}', "Hi"),
        ('data: {"choices": [{"delta": {"role": "assistant"}}]}', None),
        ('data: {"choices": [{"delta": {"content": ""}}]}', None),
        ("data: [DONE]", ""),
        (": keep-alive", None),
        ("", None),
        ("data: not-json", None),
    ],
)
def test_parse_stream_line(line, expected):
    assert parse_stream_line(line) == expected


# =========================================================
# Non-streaming
# =========================================================

def test_complete_returns_message_text():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers.get("authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"choices": [{"message": {"content": "  Answer  "}}]})

    text = asyncio.run(_client(handler).complete({"model": "m", "messages": []}, 5))

    assert text == "Answer"
    assert seen["auth"] == "Bearer sk-test"
    assert seen["body"]["stream"] is False


def test_complete_without_key_sends_no_auth_header():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers.get("authorization")
        return httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]})

    asyncio.run(_client(handler, api_key="").complete({}, 5))

    assert seen["auth"] is None


def test_complete_wraps_http_errors():
    def handler(request):
        return httpx.Response(503, text="overloaded: internal trace")

    with pytest.raises(GenerationError) as exc_info:
        asyncio.run(_client(handler).complete({}, 5))

    err = exc_info.value
    assert err.status_code == 503
    assert str(err) == "OPENAI HTTP ERROR (503): provider rejected request"
    assert "internal trace" not in str(err)


def test_complete_wraps_transport_errors():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(GenerationError, match="REQUEST FAILED: transport error"):
        asyncio.run(_client(handler).complete({}, 5))


def test_complete_wraps_timeouts():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(GenerationError, match="request timed out"):
        asyncio.run(_client(handler).complete({}, 5))


def test_complete_wraps_malformed_bodies():
    def handler(request):
        return httpx.Response(200, json={"unexpected": True})

    with pytest.raises(GenerationError, match="malformed response"):
        asyncio.run(_client(handler).complete({}, 5))


# =========================================================
# Streaming
# =========================================================

def test_stream_yields_deltas_until_done():
    def handler(request):
        assert json.loads(request.content)["stream"] is True
        body = _sse("Hel", "lo") + 'data: {"choices": [{"delta": {"content": "ignored"}}]}\n\n'
        return httpx.Response(200, text=body, headers={"content-type": "text/event-stream"})

    async def drain():
        return [d async for d in _client(handler).stream({}, 5)]

    assert asyncio.run(drain()) == ["Hel", "lo"]


def test_stream_wraps_status_errors():
    def handler(request):
        return httpx.Response(429, text="slow down")

    async def drain():
        return [d async for d in _client(handler).stream({}, 5)]

    with pytest.raises(GenerationError) as exc_info:
        asyncio.run(drain())
    assert exc_info.value.status_code == 429


# =========================================================
# Service
# =========================================================

def test_build_payload_omits_unset_sampling_fields():
    config = LLMConfig(model_name="m", temperature=0.2, max_tokens=None, top_p=None)

    payload = build_payload([ChatMessage("user", "hi")], config)

    assert payload == {
        "model": "m",
        "messages": [{"role": "user", "content": "hi"}],
        "temperature": 0.2,
        "frequency_penalty": 0.0,
        "presence_penalty": 0.0,
    }


def test_service_invoke_and_stream():
    def handler(request):
        if json.loads(request.content)["stream"]:
            return httpx.Response(200, text=_sse("a", "b"))
        return httpx.Response(200, json={"choices": [{"message": {"content": "whole"}}]})

    service = GenerationService(_client(handler))
    config = LLMConfig()

    async def exercise():
        reply = await service.invoke([ChatMessage("user", "q")], config)
        chunks = [c async for c in service.stream([ChatMessage("user", "q")], config)]
        return reply, chunks

    reply, chunks = asyncio.run(exercise())

    assert reply == ChatMessage("assistant", "whole")
    assert chunks == [ChatMessage("assistant", "a"), ChatMessage("assistant", "b")]
