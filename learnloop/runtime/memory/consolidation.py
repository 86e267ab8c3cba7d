"""
Memory Consolidation Engine - Merge similar memories into abstract concepts

WHAT: Vector clustering of live memories and synthesis of one concept per cluster
WHERE: learnloop/runtime/memory/consolidation.py - maintenance layer over MemoryManager
WHO: MemoryManager.consolidate(), the consolidate_memories tool, idle maintenance
TIME: O(n²) pairwise similarity over cached vectors, then one write per member

Clusters are the connected components of the graph whose edges join two
non-superseded memories with cosine similarity above the threshold. Each
cluster of at least ``min_cluster_size`` members becomes a ``concept`` record
whose text is taken from the member closest to the cluster centroid. Every
member is then deprecated with the concept as its replacement, so running
consolidation twice in a row creates nothing new.

Notes:
- Vectors of different dimensionality never share an edge
- Cluster and member order follow record id order
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, List, Mapping, Sequence

import numpy as np

from .models import MemoryRecord, MemoryType, ValidationStatus
from .similarity import as_vector, centroid, euclidean_distance

if TYPE_CHECKING:
    from .memory_manager import MemoryManager

logger = logging.getLogger(__name__)

CONSOLIDATION_REASON = "Consolidated into abstract concept"
CONSOLIDATION_SOURCE = "consolidation"


@dataclass(slots=True)
class ConsolidationConfig:
    """Configuration for similarity clustering."""

    similarity_threshold: float = 0.85  # strict: pairs must exceed this
    min_cluster_size: int = 2
    preview_chars: int = 150


def _similarity_edges(ids: Sequence[str], vectors: Mapping[str, np.ndarray], threshold: float) -> Dict[str, List[str]]:
    """Adjacency lists for pairs with cosine similarity strictly above ``threshold``."""
    adjacency: Dict[str, List[str]] = {record_id: [] for record_id in ids}

    by_dimension: Dict[int, List[str]] = {}
    for record_id in ids:
        by_dimension.setdefault(as_vector(vectors[record_id]).size, []).append(record_id)

    for group in by_dimension.values():
        if len(group) < 2:
            continue
        matrix = np.vstack([as_vector(vectors[record_id]) for record_id in group])
        norms = np.linalg.norm(matrix, axis=1)
        safe = np.where(norms == 0.0, 1.0, norms)
        unit = matrix / safe[:, None]
        unit[norms == 0.0] = 0.0
        sims = unit @ unit.T
        rows, cols = np.nonzero(np.triu(sims > threshold, k=1))
        for i, j in zip(rows.tolist(), cols.tolist()):
            adjacency[group[i]].append(group[j])
            adjacency[group[j]].append(group[i])
    return adjacency


def find_clusters(
    ids: Sequence[str],
    vectors: Mapping[str, np.ndarray],
    *,
    threshold: float = 0.85,
    min_size: int = 2,
) -> List[List[str]]:
    """Connected components of the similarity graph with at least ``min_size`` members."""
    ordered = sorted(ids)
    adjacency = _similarity_edges(ordered, vectors, threshold)
    position = {record_id: i for i, record_id in enumerate(ordered)}

    visited: set[str] = set()
    clusters: List[List[str]] = []
    for start in ordered:
        if start in visited:
            continue
        component: List[str] = []
        stack = [start]
        visited.add(start)
        while stack:
            current = stack.pop()
            component.append(current)
            for neighbour in adjacency[current]:
                if neighbour not in visited:
                    visited.add(neighbour)
                    stack.append(neighbour)
        if len(component) >= min_size:
            clusters.append(sorted(component, key=position.__getitem__))
    return clusters


class ConsolidationEngine:
    """Finds clusters in a MemoryManager's cache and replaces each with a concept."""

    def __init__(self, manager: "MemoryManager", config: ConsolidationConfig | None = None) -> None:
        self.manager = manager
        self.config = config or ConsolidationConfig()

    def find_clusters(self) -> List[List[MemoryRecord]]:
        live = [record for record in self.manager.get_all() if not record.is_superseded]
        vectors = {record.id: self.manager.get_embedding(record.id) for record in live}
        id_clusters = find_clusters(
            list(vectors),
            vectors,
            threshold=self.config.similarity_threshold,
            min_size=self.config.min_cluster_size,
        )
        records = {record.id: record for record in live}
        return [[records[record_id] for record_id in cluster] for cluster in id_clusters]

    def synthesize_content(self, cluster: Sequence[MemoryRecord]) -> str:
        """Concept text built from the member nearest the cluster centroid."""
        vectors = {record.id: self.manager.get_embedding(record.id) for record in cluster}
        center = centroid(vectors.values())
        representative = min(
            cluster, key=lambda record: (euclidean_distance(vectors[record.id], center), record.id)
        )
        preview = representative.content[: self.config.preview_chars]
        return f"Abstract Concept ({len(cluster)} sources): {preview}..."

    async def run(self) -> List[MemoryRecord]:
        """Consolidate every qualifying cluster; returns the created concepts."""
        clusters = self.find_clusters()
        created: List[MemoryRecord] = []

        for cluster in clusters:
            tags = list(dict.fromkeys(tag for record in cluster for tag in record.tags))
            concept = await self.manager.create_memory(
                self.synthesize_content(cluster),
                MemoryType.concept,
                confidence=max(record.confidence for record in cluster),
                tags=tags,
                source=CONSOLIDATION_SOURCE,
                validation_status=ValidationStatus.unverified,
                merged_from=[record.id for record in cluster],
            )
            for record in cluster:
                self.manager.deprecate_memory(record.id, CONSOLIDATION_REASON, concept.id)

            logger.info(f"Consolidated {len(cluster)} memories into {concept.id}")
            created.append(concept)

        if not created:
            logger.debug("Consolidation found no clusters")
        return created


__all__ = [
    "CONSOLIDATION_REASON",
    "ConsolidationConfig",
    "ConsolidationEngine",
    "find_clusters",
]
