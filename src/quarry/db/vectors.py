"""Embedding vector encoding and similarity."""

from __future__ import annotations

import math
import struct
from collections.abc import Sequence

import sqlite_vec


def serialize_vector(vector: Sequence[float]) -> bytes:
    """Pack *vector* as a float32 blob (sqlite-vec wire format)."""
    return sqlite_vec.serialize_float32(list(vector))


def deserialize_vector(blob: bytes, dimensions: int) -> list[float]:
    """Inverse of :func:`serialize_vector`.

    Raises:
        ValueError: If the blob length does not match *dimensions*.
    """
    if len(blob) != dimensions * 4:
        raise ValueError(
            f"Embedding blob has {len(blob)} bytes, expected {dimensions * 4} "
            f"for {dimensions} dimensions."
        )
    return list(struct.unpack(f"{dimensions}f", blob))


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Normalised dot product of *a* and *b*.

    Returns 0.0 when either vector has zero magnitude. The result is clamped
    to [-1, 1] to absorb floating-point drift.

    Raises:
        ValueError: If the vectors differ in length.
    """
    if len(a) != len(b):
        raise ValueError(f"Vector length mismatch: {len(a)} != {len(b)}")

    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y

    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    score = dot / (math.sqrt(norm_a) * math.sqrt(norm_b))
    return max(-1.0, min(1.0, score))
