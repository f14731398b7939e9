"""Shadow layer: mechanical statement extraction and paragraph projection.

Deterministic, synchronous, zero model calls.
"""
