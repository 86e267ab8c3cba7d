"""
Vector math for memory retrieval and clustering.

Cosine similarity, centroids and the recency/popularity boost used to rank
memories. Vectors of different lengths or with zero norm compare as 0.0 so a
stray legacy embedding never poisons a ranking with NaN.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Iterable, Optional, Sequence

import numpy as np

from .models import MemoryRecord, utc_now

PLACEHOLDER_VALUE = 0.5
RECENCY_DECAY_PER_HOUR = 0.01
POPULARITY_WEIGHT = 0.1


def as_vector(values: Sequence[float] | np.ndarray) -> np.ndarray:
    return np.asarray(values, dtype=np.float64)


def placeholder_vector(dimensions: int) -> np.ndarray:
    """Stand-in for records that have no persisted embedding."""
    return np.full(dimensions, PLACEHOLDER_VALUE, dtype=np.float64)


def cosine_similarity(a: Sequence[float] | np.ndarray, b: Sequence[float] | np.ndarray) -> float:
    va, vb = as_vector(a), as_vector(b)
    if va.shape != vb.shape or va.size == 0:
        return 0.0
    norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if norm == 0.0:
        return 0.0
    return float(np.dot(va, vb) / norm)


def centroid(vectors: Iterable[Sequence[float] | np.ndarray]) -> np.ndarray:
    stacked = np.vstack([as_vector(v) for v in vectors])
    return stacked.mean(axis=0)


def euclidean_distance(a: Sequence[float] | np.ndarray, b: Sequence[float] | np.ndarray) -> float:
    return float(np.linalg.norm(as_vector(a) - as_vector(b)))


def recency_boost(record: MemoryRecord, now: Optional[datetime] = None) -> float:
    """``exp(-0.01 * hours_since_access) * (1 + 0.1 * ln(1 + access_count))``."""
    now = now or utc_now()
    hours = max(0.0, (now - record.last_accessed).total_seconds() / 3600.0)
    return math.exp(-RECENCY_DECAY_PER_HOUR * hours) * (
        1.0 + POPULARITY_WEIGHT * math.log1p(record.access_count)
    )


__all__ = [
    "as_vector",
    "centroid",
    "cosine_similarity",
    "euclidean_distance",
    "placeholder_vector",
    "recency_boost",
]
