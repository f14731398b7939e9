"""Embedding geometry: k-NN graphs, basin inversion, substrate, regions.

Modules:
  embeddings     : fastembed provider, cosine helpers
  knn            : pairwise similarity, k-NN / mutual / strong edge sets
  basin          : basin inversion (valley threshold discovery)
  substrate      : paragraph substrate assembly and topology
  regions        : region partition over components and mutual patches
  query_relevance: per-statement similarity to the query

All pure Python, deterministic given the same vectors. Zero LLM calls.
"""
