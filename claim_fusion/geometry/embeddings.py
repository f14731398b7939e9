"""Embedding provider + vector helpers.

FastEmbedProvider wraps fastembed (optional dep: MIT, ONNX-based, no PyTorch).
When fastembed is not installed get_embedding_provider() returns None and the
pipeline continues on a degenerate substrate.
"""

from __future__ import annotations

import math
import sys

from claim_fusion.contracts import EmbeddingProvider, EmbeddingStatus

# --- Vector helpers (standalone, no numpy) ---


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Compute cosine similarity between two vectors without numpy."""
    if len(a) != len(b) or not a:
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(x * x for x in b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (norm_a * norm_b)


def normalize(v: list[float]) -> list[float]:
    norm = math.sqrt(sum(x * x for x in v))
    if norm == 0.0:
        return list(v)
    return [x / norm for x in v]


def mean_vector(vectors: list[list[float]]) -> list[float]:
    """Normalized mean of vectors; empty list when there are none."""
    vectors = [v for v in vectors if v]
    if not vectors:
        return []
    dim = len(vectors[0])
    total = [0.0] * dim
    for v in vectors:
        for i in range(dim):
            total[i] += v[i]
    return normalize([x / len(vectors) for x in total])


def mean_std(values: list[float]) -> tuple[float, float]:
    """Population mean and standard deviation; (0, 0) for no values."""
    if not values:
        return 0.0, 0.0
    mu = sum(values) / len(values)
    var = sum((x - mu) ** 2 for x in values) / len(values)
    return mu, math.sqrt(var)


def percentile(sorted_values: list[float], q: float) -> float:
    """Linear-interpolated percentile of an ascending list, q in [0, 1]."""
    if not sorted_values:
        return 0.0
    if len(sorted_values) == 1:
        return sorted_values[0]
    pos = q * (len(sorted_values) - 1)
    lo = math.floor(pos)
    hi = math.ceil(pos)
    if lo == hi:
        return sorted_values[lo]
    return sorted_values[lo] + (sorted_values[hi] - sorted_values[lo]) * (pos - lo)


# --- FastEmbed provider ---


class FastEmbedProvider:
    """Embedding provider backed by fastembed (ONNX, MIT license).

    Lazy-loads the model on first embed() call to avoid import-time cost.
    """

    def __init__(self, model_name: str = "BAAI/bge-small-en-v1.5") -> None:
        self._model_name = model_name
        self._model = None
        self._dimensions = 0

    def _ensure_model(self) -> None:
        if self._model is None:
            from fastembed import TextEmbedding

            self._model = TextEmbedding(model_name=self._model_name)

    def embed(self, texts: list[str]) -> list[list[float]]:
        """Encode a batch of texts into normalized float vectors."""
        if not texts:
            return []
        self._ensure_model()
        # fastembed returns a generator of numpy arrays
        vectors = [normalize(arr.tolist()) for arr in self._model.embed(texts)]
        if vectors:
            self._dimensions = len(vectors[0])
        return vectors

    def status(self) -> EmbeddingStatus:
        return EmbeddingStatus(
            backend="fastembed",
            available=True,
            model=self._model_name,
            dimensions=self._dimensions,
        )


def unavailable_status(model_name: str) -> EmbeddingStatus:
    return EmbeddingStatus(backend="none", available=False, model=model_name, dimensions=0)


# --- Provider factory ---


def get_embedding_provider(
    model_name: str = "BAAI/bge-small-en-v1.5",
) -> EmbeddingProvider | None:
    """Try to create an embedding provider. Returns None if fastembed unavailable."""
    try:
        import fastembed  # noqa: F401

        return FastEmbedProvider(model_name=model_name)
    except ImportError:
        print(
            "WARNING: fastembed not installed; substrate geometry disabled "
            "(pip install claim-fusion[embeddings])",
            file=sys.stderr,
        )
        return None


def embed_safely(
    provider: EmbeddingProvider | None, texts: list[str]
) -> list[list[float]] | None:
    """Embed texts, returning None when the provider is missing or fails."""
    if provider is None or not texts:
        return None
    try:
        vectors = provider.embed(texts)
    except Exception as e:
        print(f"WARNING: Embedding failed: {e}", file=sys.stderr)
        return None
    if len(vectors) != len(texts):
        print(
            f"WARNING: Embedding returned {len(vectors)} vectors for {len(texts)} texts",
            file=sys.stderr,
        )
        return None
    return vectors
