"""Pairwise descriptor comparison."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np

MATCH_DISTANCE = 0.4


@dataclass(frozen=True)
class EmbeddingComparison:
    distance: float
    similarity: float
    is_match: bool


def compare_embeddings(
    embedding1: Sequence[float] | np.ndarray,
    embedding2: Sequence[float] | np.ndarray,
) -> EmbeddingComparison:
    """Euclidean comparison of two equal-length descriptors.

    Raises:
        ValueError: If either descriptor is empty or their lengths differ.
    """
    a = np.asarray(embedding1, dtype=np.float64).ravel()
    b = np.asarray(embedding2, dtype=np.float64).ravel()
    if a.size == 0 or b.size == 0:
        raise ValueError("Embeddings must not be empty")
    if a.size != b.size:
        raise ValueError(f"Embedding lengths differ: {a.size} != {b.size}")

    distance = float(np.sqrt(np.sum((a - b) ** 2)))
    return EmbeddingComparison(
        distance=distance,
        similarity=max(0.0, 1.0 - distance),
        is_match=distance < MATCH_DISTANCE,
    )
