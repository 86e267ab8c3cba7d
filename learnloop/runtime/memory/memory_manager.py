"""
Memory Manager - Semantic memory over the record store

WHAT: In-memory record/vector cache with similarity retrieval, deprecation and consolidation
WHERE: learnloop/runtime/memory/memory_manager.py - knowledge layer above RecordStore
WHO: AgentLoop and memory tools reading and mutating the knowledge base
TIME: Retrieval O(n·D) over cached vectors; one record write per mutation

The manager owns a :class:`MemoryCache` (records + vectors) that mirrors the
record store. Every mutation writes through to the store before the cache is
updated, so a crash never leaves the cache ahead of the files.

Ranking:
- retrieve():            cosine(query, memory) × recency boost, superseded excluded
- retrieve_by_vector():  cosine only, no side effects
- Ties break on record id so rankings are deterministic

Lifecycle:
- create_memory → (retrieve bumps access stats) → deprecate_memory moves the
  file into ``deprecated/`` with status ``superseded``
- consolidate() merges clusters of similar memories into ``concept`` records
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

import numpy as np

from .consolidation import ConsolidationConfig, ConsolidationEngine
from .models import MemoryRecord, MemoryType, ValidationStatus, generate_record_id, utc_now
from .record_store import RecordStore
from .similarity import as_vector, cosine_similarity, placeholder_vector, recency_boost

logger = logging.getLogger(__name__)


class MemoryNotFoundError(LookupError):
    """Raised when an operation names a memory id the manager does not hold."""


class Embedder(Protocol):
    """Anything that turns text into a fixed-length vector."""

    @property
    def dimensions(self) -> int: ...

    async def embed(self, text: str) -> List[float]: ...


@dataclass(slots=True)
class MemoryCache:
    """Runtime state shared by the manager: records and their vectors by id."""

    records: Dict[str, MemoryRecord] = field(default_factory=dict)
    vectors: Dict[str, np.ndarray] = field(default_factory=dict)

    def clear(self) -> None:
        self.records.clear()
        self.vectors.clear()

    def __len__(self) -> int:
        return len(self.records)


@dataclass(slots=True)
class MemoryManagerConfig:
    connection_limit: int = 3
    backfill_embeddings: bool = True
    consolidation: ConsolidationConfig = field(default_factory=ConsolidationConfig)


class MemoryManager:
    """Cache-backed semantic memory over a :class:`RecordStore`."""

    def __init__(
        self,
        store: RecordStore,
        embedder: Embedder,
        cache: MemoryCache | None = None,
        config: MemoryManagerConfig | None = None,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self.cache = cache if cache is not None else MemoryCache()
        self.config = config or MemoryManagerConfig()
        self.consolidation = ConsolidationEngine(self, self.config.consolidation)
        self._initialized = False

    @property
    def store(self) -> RecordStore:
        return self._store

    @property
    def embedder(self) -> Embedder:
        return self._embedder

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """Load every stored record into the cache, embedding any that lack a vector."""
        if self._initialized:
            return

        self._store.initialize()
        self.cache.clear()

        missing: List[MemoryRecord] = []
        for stored in self._store.export_all():
            record = MemoryRecord.from_stored(stored)
            self.cache.records[record.id] = record
            if stored.metadata.embedding:
                self.cache.vectors[record.id] = as_vector(stored.metadata.embedding)
            else:
                missing.append(record)

        if self.config.backfill_embeddings and missing:
            logger.info(f"Backfilling embeddings for {len(missing)} memories")
            for record in missing:
                vector = as_vector(await self._embedder.embed(record.content))
                self._persist(record, embedding=vector)
                self.cache.vectors[record.id] = vector

        self._initialized = True
        logger.info(
            f"Memory manager initialized: {len(self.cache.records)} memories, "
            f"{len(self.cache.vectors)} vectors"
        )

    async def _ensure_initialized(self) -> None:
        if not self._initialized:
            await self.initialize()

    # ------------------ persistence helpers ------------------
    def _persist(self, record: MemoryRecord, *, embedding: Optional[np.ndarray] = None) -> None:
        """Write ``record`` through to the store; the stored embedding is kept unless replaced."""
        metadata = record.to_metadata(
            embedding=[float(v) for v in embedding] if embedding is not None else None
        )
        if embedding is not None:
            metadata.embedding_updated_at = utc_now()
        self._store.write(record.id, record.content, metadata.model_dump())

    def _commit(self, record: MemoryRecord) -> MemoryRecord:
        """Persist ``record`` and only then replace the cached copy."""
        self._persist(record)
        self.cache.records[record.id] = record
        return record

    def _vector_for(self, record_id: str) -> np.ndarray:
        vector = self.cache.vectors.get(record_id)
        if vector is None:
            return placeholder_vector(self._embedder.dimensions)
        return vector

    def _live_records(self) -> Iterable[MemoryRecord]:
        return (record for record in self.cache.records.values() if not record.is_superseded)

    def _require(self, record_id: str) -> MemoryRecord:
        record = self.cache.records.get(record_id)
        if record is None:
            raise MemoryNotFoundError(f"Memory {record_id} not found")
        return record

    @staticmethod
    def _ranked(scored: Iterable[Tuple[MemoryRecord, float]], limit: int) -> List[MemoryRecord]:
        ordered = sorted(scored, key=lambda pair: (-pair[1], pair[0].id))
        return [record for record, _ in ordered[: max(0, limit)]]

    def _new_id(self) -> str:
        record_id = generate_record_id()
        while record_id in self.cache.records or self._store.exists(record_id):
            record_id = generate_record_id()
        return record_id

    # ------------------ operations ------------------
    async def create_memory(
        self,
        content: str,
        type: MemoryType | str = MemoryType.fact,
        *,
        confidence: float = 0.5,
        tags: Sequence[str] | None = None,
        source: str | None = None,
        validation_status: ValidationStatus | str = ValidationStatus.unverified,
        superseded_by: str | None = None,
        merged_from: Sequence[str] | None = None,
        key_terms: Sequence[str] | None = None,
        reasoning: str | None = None,
        extracted_at: datetime | None = None,
    ) -> MemoryRecord:
        """Embed, link to nearest neighbours and persist a new memory.

        Raises:
            ValueError: If ``type`` is ``deprecated``; use deprecate_memory()
        """
        memory_type = MemoryType(type)
        if memory_type is MemoryType.deprecated:
            raise ValueError("New memories cannot be created as deprecated; use deprecate_memory()")
        await self._ensure_initialized()

        vector = as_vector(await self._embedder.embed(content))
        neighbours = self.retrieve_by_vector(vector, self.config.connection_limit)

        now = utc_now()
        record = MemoryRecord(
            id=self._new_id(),
            content=content,
            type=memory_type,
            confidence=confidence,
            created_at=now,
            last_accessed=now,
            access_count=0,
            connections=[neighbour.id for neighbour in neighbours],
            source=source,
            validation_status=ValidationStatus(validation_status),
            superseded_by=superseded_by,
            tags=list(tags or []),
            merged_from=list(merged_from) if merged_from is not None else None,
            key_terms=list(key_terms) if key_terms is not None else None,
            reasoning=reasoning,
            extracted_at=extracted_at,
        )

        self._persist(record, embedding=vector)
        self.cache.records[record.id] = record
        self.cache.vectors[record.id] = vector
        logger.info(f"Created {record.type.value} memory {record.id}: {record.preview(60)}")
        return record

    async def retrieve(self, query: str, limit: int = 5) -> List[MemoryRecord]:
        """Top ``limit`` live memories for ``query``; returned memories have their access stats bumped."""
        await self._ensure_initialized()
        if limit <= 0:
            return []

        query_vector = as_vector(await self._embedder.embed(query))
        now = utc_now()
        results = self._ranked(
            (
                (record, cosine_similarity(query_vector, self._vector_for(record.id)) * recency_boost(record, now))
                for record in self._live_records()
            ),
            limit,
        )

        return [
            self._commit(record.model_copy(update={"access_count": record.access_count + 1, "last_accessed": now}))
            for record in results
        ]

    def retrieve_by_vector(self, embedding: Sequence[float] | np.ndarray, limit: int = 5) -> List[MemoryRecord]:
        """Top ``limit`` live memories by plain cosine similarity. No side effects."""
        query_vector = as_vector(embedding)
        return self._ranked(
            (
                (record, cosine_similarity(query_vector, self._vector_for(record.id)))
                for record in self._live_records()
            ),
            limit,
        )

    def deprecate_memory(
        self,
        record_id: str,
        reason: str,
        replacement_id: str | None = None,
    ) -> MemoryRecord:
        """Mark a memory superseded and move its file into ``deprecated/``.

        Raises:
            MemoryNotFoundError: If ``record_id`` is not cached
            ValueError: If ``reason`` is empty
        """
        record = self._require(record_id)
        if not reason or not reason.strip():
            raise ValueError("Deprecation reason must not be empty")

        deprecated = self._commit(
            record.model_copy(
                update={
                    "validation_status": ValidationStatus.superseded,
                    "superseded_by": replacement_id,
                    "deprecation_reason": reason,
                    "deprecated_at": utc_now(),
                    "type": MemoryType.deprecated,
                }
            )
        )
        logger.info(f"Deprecated memory {record_id}: {reason}")
        return deprecated

    def adjust_confidence(
        self,
        record_id: str,
        confidence: float,
        status: ValidationStatus | str | None = None,
    ) -> MemoryRecord:
        """Set a memory's confidence (and optionally its validation status) and persist it.

        Raises:
            MemoryNotFoundError: If ``record_id`` is not cached
            ValueError: If ``confidence`` is outside [0, 1], or ``status`` would
                move a superseded memory out of ``superseded``
        """
        record = self._require(record_id)
        if not 0.0 <= confidence <= 1.0:
            raise ValueError(f"Confidence must be within [0, 1], got {confidence}")

        update: Dict[str, object] = {"confidence": confidence}
        if status is not None:
            new_status = ValidationStatus(status)
            if record.is_superseded and new_status is not ValidationStatus.superseded:
                raise ValueError(f"Memory {record_id} is superseded; its status cannot change to {new_status.value}")
            update["validation_status"] = new_status
        return self._commit(record.model_copy(update=update))

    async def consolidate(self) -> List[MemoryRecord]:
        await self._ensure_initialized()
        return await self.consolidation.run()

    # ------------------ accessors ------------------
    def get(self, record_id: str) -> Optional[MemoryRecord]:
        return self.cache.records.get(record_id)

    def get_all(self) -> List[MemoryRecord]:
        return list(self.cache.records.values())

    def get_embedding(self, record_id: str) -> np.ndarray:
        """Cached vector for ``record_id``; placeholder if the memory has none."""
        self._require(record_id)
        return self._vector_for(record_id)

    def stats(self) -> Dict[str, object]:
        records = self.get_all()
        by_type: Dict[str, int] = {}
        for record in records:
            by_type[record.type.value] = by_type.get(record.type.value, 0) + 1
        total = len(records)
        return {
            "total": total,
            "by_type": by_type,
            "average_confidence": (sum(r.confidence for r in records) / total) if total else 0.0,
            "superseded_count": sum(1 for r in records if r.is_superseded),
        }


__all__ = [
    "Embedder",
    "MemoryCache",
    "MemoryManager",
    "MemoryManagerConfig",
    "MemoryNotFoundError",
]
