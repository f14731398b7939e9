"""Test fixtures and fakes."""

from __future__ import annotations

import asyncio
import math
import re
import zlib

import pytest

from claim_fusion.contracts import (
    EmbeddingStatus,
    ProviderReply,
    ProviderText,
    Stance,
    Statement,
    StatementLocation,
    StatementSignals,
)

_WORD = re.compile(r"[a-z]+")


class FakeAdapter:
    """Scripted provider adapter.

    Streams `chunks` through on_chunk, then raises `exc` if given, otherwise
    returns `reply` (or a plain ok reply carrying `text`).
    """

    def __init__(
        self,
        name: str,
        *,
        text: str = "",
        chunks: list[str] | None = None,
        exc: BaseException | None = None,
        reply: ProviderReply | None = None,
        delay: float = 0.0,
        meta: dict | None = None,
    ) -> None:
        self.name = name
        self._text = text
        self._chunks = chunks or []
        self._exc = exc
        self._reply = reply
        self._delay = delay
        self._meta = meta or {}
        self.calls: list[dict] = []

    async def ask(self, prompt, context, session_id, on_chunk=None) -> ProviderReply:
        self.calls.append({"prompt": prompt, "context": context, "session_id": session_id})
        for chunk in self._chunks:
            if on_chunk is not None:
                on_chunk(chunk)
            await asyncio.sleep(0)
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._exc is not None:
            raise self._exc
        if self._reply is not None:
            return self._reply
        return ProviderReply(text=self._text, meta=dict(self._meta), ok=True)


class FakeEmbeddingProvider:
    """Deterministic bag-of-words embedder.

    Each lowercase word is hashed (crc32) into one of `dimensions` buckets;
    texts sharing words get high cosine similarity.
    """

    def __init__(self, dimensions: int = 64) -> None:
        self.dimensions = dimensions
        self.calls: list[list[str]] = []

    def embed(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        return [self._vector(t) for t in texts]

    def _vector(self, text: str) -> list[float]:
        v = [0.0] * self.dimensions
        for word in _WORD.findall(text.lower()):
            v[zlib.crc32(word.encode()) % self.dimensions] += 1.0
        norm = math.sqrt(sum(x * x for x in v))
        if norm == 0.0:
            v[0] = 1.0
            return v
        return [x / norm for x in v]

    def status(self) -> EmbeddingStatus:
        return EmbeddingStatus(
            backend="fake", available=True, model="fake-bow", dimensions=self.dimensions
        )


class FailingEmbeddingProvider:
    def embed(self, texts: list[str]) -> list[list[float]]:
        raise RuntimeError("model not loaded")

    def status(self) -> EmbeddingStatus:
        return EmbeddingStatus(backend="fake", available=False, model="broken", dimensions=0)


def make_statement(
    sid: str,
    model_index: int = 1,
    text: str = "A statement.",
    *,
    stance: Stance = Stance.ASSERTIVE,
    confidence: float = 0.5,
    paragraph_index: int = 0,
    sentence_index: int = 0,
    sequence: bool = False,
    tension: bool = False,
    conditional: bool = False,
) -> Statement:
    return Statement(
        id=sid,
        model_index=model_index,
        text=text,
        stance=stance,
        confidence=confidence,
        signals=StatementSignals(sequence=sequence, tension=tension, conditional=conditional),
        location=StatementLocation(paragraph_index=paragraph_index, sentence_index=sentence_index),
        full_paragraph=text,
    )


def unit(*components: float) -> list[float]:
    norm = math.sqrt(sum(c * c for c in components))
    return [c / norm for c in components]


def angle_vector(degrees: float) -> list[float]:
    """2-D unit vector at an angle; cos(a - b) is the similarity of two of them."""
    rad = math.radians(degrees)
    return [math.cos(rad), math.sin(rad)]


@pytest.fixture
def fake_embedder() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture
def provider_texts() -> list[ProviderText]:
    return [
        ProviderText(
            provider_id="claude",
            model_index=1,
            text=(
                "You should use PostgreSQL for the primary datastore. "
                "It has strong transactional guarantees and mature tooling.\n\n"
                "However, avoid running it without automated backups. "
                "Backups must be tested regularly."
            ),
        ),
        ProviderText(
            provider_id="chatgpt",
            model_index=2,
            text=(
                "PostgreSQL is the best choice for the primary datastore. "
                "Its transactional guarantees are strong.\n\n"
                "If traffic grows beyond a single node, you should add read replicas. "
                "Caching with Redis might reduce read load."
            ),
        ),
    ]
