"""Anthropic provider adapter: streaming Messages API with retry and usage tracking."""

from __future__ import annotations

import asyncio
import sys
from datetime import datetime, timezone

import anthropic
from anthropic._exceptions import OverloadedError

from claim_fusion.contracts import ChunkCallback, ProviderReply, TokenUsage
from claim_fusion.dispatch import register_adapter
from claim_fusion.dispatch.errors import ProviderAuthError, ProviderError

# Conversation turns carried forward in the provider context
_CONTEXT_MESSAGES = 20


class AnthropicAdapter:
    """Streams one answer from Claude, delivering text deltas through on_chunk.

    Retries overload/rate-limit/API errors with exponential backoff, but only
    while nothing has been streamed yet: once a chunk reached the caller a retry
    would duplicate it, so the error propagates and the dispatcher keeps the
    partial text.
    """

    def __init__(
        self,
        *,
        name: str = "claude",
        api_key: str,
        model: str,
        max_tokens: int = 4096,
        temperature: float = 0.0,
        max_retries: int = 3,
        fallback_model: str | None = None,
        system: str | None = None,
    ) -> None:
        self.name = name
        self.model = model
        self.fallback_model = fallback_model
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._max_retries = max_retries
        self._system = system
        self._client = anthropic.AsyncAnthropic(api_key=api_key)
        self._usage_log: list[TokenUsage] = []

    async def ask(
        self,
        prompt: str,
        context: dict | None,
        session_id: str,
        on_chunk: ChunkCallback | None = None,
    ) -> ProviderReply:
        history = list((context or {}).get("messages", []))
        messages = history + [{"role": "user", "content": prompt}]
        streamed: list[str] = []

        def _emit(delta: str) -> None:
            streamed.append(delta)
            if on_chunk is not None:
                on_chunk(delta)

        last_error = None
        overloaded = False

        for attempt in range(self._max_retries):
            try:
                text, usage = await self._stream_once(self.model, messages, _emit)
                return self._reply(text, usage, messages)
            except anthropic.AuthenticationError as e:
                raise ProviderAuthError(str(e), status=401) from e
            except anthropic.PermissionDeniedError as e:
                raise ProviderAuthError(str(e), status=403) from e
            except OverloadedError as e:
                if streamed:
                    raise ProviderError(str(e), code="overloaded", status=529) from e
                overloaded = True
                wait = 2 ** (attempt + 1)
                print(
                    f"WARNING: {self.model} overloaded (529), "
                    f"retry {attempt + 1}/{self._max_retries} in {wait}s",
                    file=sys.stderr,
                )
                await asyncio.sleep(wait)
                last_error = ProviderError(str(e), code="overloaded", status=529)
            except anthropic.RateLimitError as e:
                if streamed:
                    raise ProviderError(str(e), code="rate_limited", status=429) from e
                await asyncio.sleep(2 ** (attempt + 1))
                last_error = ProviderError(str(e), code="rate_limited", status=429)
            except anthropic.APIError as e:
                status = getattr(e, "status_code", None)
                if streamed:
                    raise ProviderError(str(e), code="upstream", status=status) from e
                last_error = ProviderError(str(e), code="upstream", status=status)
                if attempt < self._max_retries - 1:
                    await asyncio.sleep(1)

        # Fallback: if overloaded and a fallback model is configured, try once
        if overloaded and self.fallback_model:
            print(
                f"WARNING: {self.model} exhausted retries, "
                f"falling back to {self.fallback_model} for {self.name}",
                file=sys.stderr,
            )
            try:
                text, usage = await self._stream_once(self.fallback_model, messages, _emit)
                return self._reply(text, usage, messages)
            except anthropic.APIError as e:
                last_error = ProviderError(
                    f"fallback ({self.fallback_model}) also failed: {e}", code="upstream"
                )

        if last_error is None:
            last_error = ProviderError(f"{self.name}: no attempts made", code="unknown")
        raise last_error

    async def _stream_once(
        self, model: str, messages: list[dict], emit: ChunkCallback
    ) -> tuple[str, TokenUsage]:
        kwargs: dict = {
            "model": model,
            "max_tokens": self._max_tokens,
            "temperature": self._temperature,
            "messages": messages,
        }
        if self._system:
            kwargs["system"] = self._system

        parts: list[str] = []
        async with self._client.messages.stream(**kwargs) as stream:
            async for delta in stream.text_stream:
                if delta:
                    parts.append(delta)
                    emit(delta)
            final = await stream.get_final_message()

        usage = self._track_usage(final, model)
        return "".join(parts), usage

    def _reply(self, text: str, usage: TokenUsage, messages: list[dict]) -> ProviderReply:
        if not text.strip():
            return ProviderReply(
                text="",
                meta={"model": usage["model"], "usage": usage},
                ok=False,
                error={"code": "empty_response", "status": None, "message": "Empty response"},
            )
        transcript = messages + [{"role": "assistant", "content": text}]
        return ProviderReply(
            text=text,
            meta={
                "model": usage["model"],
                "usage": usage,
                "context": {"messages": transcript[-_CONTEXT_MESSAGES:]},
            },
            ok=True,
        )

    def _track_usage(self, response, model: str) -> TokenUsage:
        usage = TokenUsage(
            provider=self.name,
            model=model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )
        self._usage_log.append(usage)
        return usage

    @property
    def total_tokens(self) -> int:
        return sum(u["input_tokens"] + u["output_tokens"] for u in self._usage_log)


register_adapter("anthropic", AnthropicAdapter)
