"""OpenAI-compatible chat-completions adapter over httpx (SSE streaming)."""

from __future__ import annotations

import json

import httpx

from claim_fusion.contracts import ChunkCallback, ProviderReply
from claim_fusion.dispatch import register_adapter
from claim_fusion.dispatch.errors import ProviderAuthError, ProviderError

_CONTEXT_MESSAGES = 20


class OpenAICompatAdapter:
    def __init__(
        self,
        *,
        name: str = "chatgpt",
        api_key: str,
        model: str,
        base_url: str = "https://api.openai.com/v1",
        max_tokens: int = 4096,
        temperature: float = 0.0,
        timeout: float = 120.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.name = name
        self.model = model
        self.base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def ask(
        self,
        prompt: str,
        context: dict | None,
        session_id: str,
        on_chunk: ChunkCallback | None = None,
    ) -> ProviderReply:
        history = list((context or {}).get("messages", []))
        messages = history + [{"role": "user", "content": prompt}]
        payload = {
            "model": self.model,
            "messages": messages,
            "max_tokens": self._max_tokens,
            "temperature": self._temperature,
            "stream": True,
        }
        headers = {"Authorization": f"Bearer {self._api_key}"}

        parts: list[str] = []
        finish_reason = None
        async with self._client.stream(
            "POST", f"{self.base_url}/chat/completions", json=payload, headers=headers
        ) as resp:
            if resp.status_code in (401, 403):
                raise ProviderAuthError(
                    f"{self.name} rejected credentials ({resp.status_code})",
                    status=resp.status_code,
                )
            if resp.status_code >= 400:
                body = (await resp.aread()).decode("utf-8", errors="replace")
                retry_after = resp.headers.get("retry-after")
                raise ProviderError(
                    f"{self.name} HTTP {resp.status_code}: {body[:200]}",
                    code="rate_limited" if resp.status_code == 429 else "upstream",
                    status=resp.status_code,
                    retry_after_ms=_parse_retry_after(retry_after),
                )

            async for line in resp.aiter_lines():
                delta, done, reason = _parse_sse_line(line)
                if reason:
                    finish_reason = reason
                if delta:
                    parts.append(delta)
                    if on_chunk is not None:
                        on_chunk(delta)
                if done:
                    break

        text = "".join(parts)
        meta = {"model": self.model, "finish_reason": finish_reason}
        if not text.strip():
            return ProviderReply(
                text="",
                meta=meta,
                ok=False,
                error={"code": "empty_response", "status": None, "message": "Empty response"},
            )
        transcript = messages + [{"role": "assistant", "content": text}]
        meta["context"] = {"messages": transcript[-_CONTEXT_MESSAGES:]}
        return ProviderReply(text=text, meta=meta, ok=True)

    async def health_check(self) -> bool:
        try:
            resp = await self._client.get(
                f"{self.base_url}/models",
                headers={"Authorization": f"Bearer {self._api_key}"},
            )
            return resp.status_code == 200
        except httpx.HTTPError:
            return False


def _parse_sse_line(line: str) -> tuple[str, bool, str | None]:
    """Return (delta_text, is_done, finish_reason) for one SSE line."""
    line = line.strip()
    if not line.startswith("data:"):
        return "", False, None
    data = line[len("data:") :].strip()
    if data == "[DONE]":
        return "", True, None
    try:
        event = json.loads(data)
    except json.JSONDecodeError:
        return "", False, None
    choices = event.get("choices") or []
    if not choices:
        return "", False, None
    choice = choices[0]
    delta = (choice.get("delta") or {}).get("content") or ""
    return delta, False, choice.get("finish_reason")


def _parse_retry_after(raw: str | None) -> int | None:
    if not raw:
        return None
    try:
        return int(float(raw) * 1000)
    except ValueError:
        return None


register_adapter("openai_compat", OpenAICompatAdapter)
