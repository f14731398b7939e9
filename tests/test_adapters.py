"""Tests for provider adapters: Anthropic streaming and OpenAI-compatible SSE."""

from __future__ import annotations

import asyncio
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock

import anthropic
import httpx
import pytest
from anthropic._exceptions import OverloadedError

from claim_fusion.dispatch.anthropic_adapter import AnthropicAdapter
from claim_fusion.dispatch.errors import ProviderAuthError, ProviderError
from claim_fusion.dispatch.openai_compat import (
    OpenAICompatAdapter,
    _parse_retry_after,
    _parse_sse_line,
)

_ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"


def _status_error(cls, status: int):
    response = httpx.Response(status, request=httpx.Request("POST", _ANTHROPIC_URL))
    return cls("upstream said no", response=response, body=None)


class _FakeStream:
    def __init__(self, deltas: list[str], exc: BaseException | None = None) -> None:
        self._deltas = deltas
        self._exc = exc

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    @property
    def text_stream(self):
        return self._iterate()

    async def _iterate(self):
        for d in self._deltas:
            yield d
        if self._exc is not None:
            raise self._exc

    async def get_final_message(self):
        return SimpleNamespace(usage=SimpleNamespace(input_tokens=12, output_tokens=7))


def _anthropic(*streams: _FakeStream, **kwargs) -> tuple[AnthropicAdapter, list[dict]]:
    adapter = AnthropicAdapter(api_key="sk-test", model="claude-test", **kwargs)
    calls: list[dict] = []
    queue = list(streams)

    def _stream(**call_kwargs):
        calls.append(call_kwargs)
        return queue.pop(0)

    adapter._client = SimpleNamespace(messages=SimpleNamespace(stream=_stream))
    return adapter, calls


class TestAnthropicAdapter:
    @pytest.mark.asyncio
    async def test_streams_chunks_and_returns_text(self):
        adapter, calls = _anthropic(_FakeStream(["Hello", " world"]))
        chunks: list[str] = []
        reply = await adapter.ask("Hi?", None, "s1", chunks.append)
        assert reply["ok"] is True
        assert reply["text"] == "Hello world"
        assert chunks == ["Hello", " world"]
        assert reply["meta"]["usage"]["input_tokens"] == 12
        assert adapter.total_tokens == 19
        assert calls[0]["messages"] == [{"role": "user", "content": "Hi?"}]

    @pytest.mark.asyncio
    async def test_context_history_prepended_and_returned(self):
        history = {"messages": [{"role": "user", "content": "a"}, {"role": "assistant", "content": "b"}]}
        adapter, calls = _anthropic(_FakeStream(["c"]))
        reply = await adapter.ask("next", history, "s1")
        assert len(calls[0]["messages"]) == 3
        transcript = reply["meta"]["context"]["messages"]
        assert transcript[-1] == {"role": "assistant", "content": "c"}

    @pytest.mark.asyncio
    async def test_system_prompt_passed(self):
        adapter, calls = _anthropic(_FakeStream(["ok"]), system="Be terse.")
        await adapter.ask("q", None, "s1")
        assert calls[0]["system"] == "Be terse."

    @pytest.mark.asyncio
    async def test_empty_response_not_ok(self):
        adapter, _ = _anthropic(_FakeStream(["   "]))
        reply = await adapter.ask("q", None, "s1")
        assert reply["ok"] is False
        assert reply["error"]["code"] == "empty_response"

    @pytest.mark.asyncio
    async def test_auth_error_raised(self):
        adapter, _ = _anthropic(_FakeStream([], exc=_status_error(anthropic.AuthenticationError, 401)))
        with pytest.raises(ProviderAuthError) as exc_info:
            await adapter.ask("q", None, "s1")
        assert exc_info.value.status == 401

    @pytest.mark.asyncio
    async def test_no_retry_after_partial_stream(self):
        adapter, calls = _anthropic(
            _FakeStream(["partial"], exc=_status_error(anthropic.RateLimitError, 429)),
            _FakeStream(["never"]),
        )
        with pytest.raises(ProviderError) as exc_info:
            await adapter.ask("q", None, "s1")
        assert exc_info.value.code == "rate_limited"
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_rate_limit_retried_before_streaming(self, monkeypatch):
        sleep = AsyncMock()
        monkeypatch.setattr(asyncio, "sleep", sleep)
        adapter, calls = _anthropic(
            _FakeStream([], exc=_status_error(anthropic.RateLimitError, 429)),
            _FakeStream(["second try"]),
        )
        reply = await adapter.ask("q", None, "s1")
        assert reply["text"] == "second try"
        assert len(calls) == 2
        sleep.assert_awaited_once_with(2)

    @pytest.mark.asyncio
    async def test_overloaded_falls_back_to_secondary_model(self, monkeypatch):
        monkeypatch.setattr(asyncio, "sleep", AsyncMock())
        adapter, calls = _anthropic(
            _FakeStream([], exc=_status_error(OverloadedError, 529)),
            _FakeStream(["from fallback"]),
            max_retries=1,
            fallback_model="claude-fallback",
        )
        reply = await adapter.ask("q", None, "s1")
        assert reply["text"] == "from fallback"
        assert reply["meta"]["model"] == "claude-fallback"
        assert calls[1]["model"] == "claude-fallback"

    @pytest.mark.asyncio
    async def test_api_error_exhausts_retries(self):
        adapter, _ = _anthropic(
            _FakeStream([], exc=_status_error(anthropic.InternalServerError, 500)),
            max_retries=1,
        )
        with pytest.raises(ProviderError) as exc_info:
            await adapter.ask("q", None, "s1")
        assert exc_info.value.code == "upstream"
        assert exc_info.value.status == 500


def _sse(*events: dict, done: bool = True) -> bytes:
    lines = [f"data: {json.dumps(e)}" for e in events]
    if done:
        lines.append("data: [DONE]")
    return ("\n\n".join(lines) + "\n\n").encode()


def _delta(text: str, finish: str | None = None) -> dict:
    return {"choices": [{"delta": {"content": text}, "finish_reason": finish}]}


def _openai(handler) -> OpenAICompatAdapter:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OpenAICompatAdapter(
        name="chatgpt", api_key="sk-test", model="gpt-test", base_url="https://example.test/v1/", client=client
    )


class TestOpenAICompatAdapter:
    @pytest.mark.asyncio
    async def test_streams_sse_deltas(self):
        seen: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, content=_sse(_delta("Hel"), _delta("lo", "stop")))

        chunks: list[str] = []
        reply = await _openai(handler).ask("q", None, "s1", chunks.append)
        assert reply["ok"] is True
        assert reply["text"] == "Hello"
        assert chunks == ["Hel", "lo"]
        assert reply["meta"]["finish_reason"] == "stop"
        assert seen["url"] == "https://example.test/v1/chat/completions"
        assert seen["auth"] == "Bearer sk-test"
        assert seen["body"]["stream"] is True

    @pytest.mark.asyncio
    async def test_auth_rejected(self):
        adapter = _openai(lambda request: httpx.Response(401, text="nope"))
        with pytest.raises(ProviderAuthError):
            await adapter.ask("q", None, "s1")

    @pytest.mark.asyncio
    async def test_rate_limited_with_retry_after(self):
        adapter = _openai(
            lambda request: httpx.Response(429, headers={"retry-after": "1.5"}, text="slow down")
        )
        with pytest.raises(ProviderError) as exc_info:
            await adapter.ask("q", None, "s1")
        assert exc_info.value.code == "rate_limited"
        assert exc_info.value.retry_after_ms == 1500

    @pytest.mark.asyncio
    async def test_empty_stream_not_ok(self):
        adapter = _openai(lambda request: httpx.Response(200, content=_sse()))
        reply = await adapter.ask("q", None, "s1")
        assert reply["ok"] is False
        assert reply["error"]["code"] == "empty_response"

    @pytest.mark.asyncio
    async def test_health_check(self):
        adapter = _openai(lambda request: httpx.Response(200, json={"data": []}))
        assert await adapter.health_check() is True


class TestSSEParsing:
    def test_non_data_line(self):
        assert _parse_sse_line(": keep-alive") == ("", False, None)

    def test_done(self):
        assert _parse_sse_line("data: [DONE]") == ("", True, None)

    def test_bad_json(self):
        assert _parse_sse_line("data: {oops") == ("", False, None)

    def test_no_choices(self):
        assert _parse_sse_line('data: {"choices": []}') == ("", False, None)

    def test_retry_after(self):
        assert _parse_retry_after("2") == 2000
        assert _parse_retry_after("soon") is None
        assert _parse_retry_after(None) is None
