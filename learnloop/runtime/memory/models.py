"""
Memory Models - Type-safe data structures for the file-backed knowledge base

WHAT: Pydantic models for memory records, front-matter headers and the JSON index
WHERE: learnloop/runtime/memory/models.py - data layer
WHO: Record store, memory manager and agent loop creating/validating records
TIME: Model validation <1ms

Provides the schema shared by every layer of the memory runtime:
- MemoryRecord: runtime node held in the memory cache
- RecordMetadata: the front-matter header persisted at the top of each record file
- DatabaseIndex: the sidecar ``database.json`` (id→file, type counts, tags, recent access)

On-disk keys are camelCase (``createdAt``, ``accessCount``...) so files stay
readable by the other tools that consume the ``memories/`` tree. Python code
uses snake_case attribute names; ``populate_by_name`` accepts either.

Storage Notes:
- MemoryType maps exhaustively onto a storage folder; unknown types raise
- Naive timestamps read back from disk are interpreted as UTC
- Embeddings live on RecordMetadata only; the runtime keeps vectors in a separate cache
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class MemoryType(str, Enum):
    """Kind of knowledge a record holds; selects its storage folder."""

    fact = "fact"
    concept = "concept"
    procedure = "procedure"
    context = "context"
    deprecated = "deprecated"


class ValidationStatus(str, Enum):
    """Trust level of a record. ``superseded`` is terminal."""

    unverified = "unverified"
    verified = "verified"
    disputed = "disputed"
    superseded = "superseded"


_FOLDERS: Dict[MemoryType, str] = {
    MemoryType.fact: "facts",
    MemoryType.concept: "concepts",
    MemoryType.procedure: "procedures",
    MemoryType.context: "contexts",
    MemoryType.deprecated: "deprecated",
}

_TYPES_BY_FOLDER: Dict[str, MemoryType] = {folder: kind for kind, folder in _FOLDERS.items()}


def storage_folder(memory_type: MemoryType | str) -> str:
    """Return the subfolder under ``memories/`` for a record type.

    Raises:
        ValueError: If ``memory_type`` is not a known MemoryType
    """
    return _FOLDERS[MemoryType(memory_type)]


def memory_type_for_folder(folder: str) -> MemoryType:
    """Inverse of :func:`storage_folder`."""
    try:
        return _TYPES_BY_FOLDER[folder]
    except KeyError:
        raise ValueError(f"Unknown memory folder: {folder!r}") from None


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def generate_record_id(prefix: str = "mem") -> str:
    """Generate a never-reused id: ``<prefix>_<epoch ms>_<9 hex chars>``."""
    millis = int(utc_now().timestamp() * 1000)
    return f"{prefix}_{millis}_{uuid.uuid4().hex[:9]}"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class RecordMetadata(_CamelModel):
    """Front-matter header persisted at the top of every record file."""

    id: str = Field(min_length=1)
    type: MemoryType = MemoryType.fact
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    created_at: datetime = Field(default_factory=utc_now)
    last_accessed: datetime = Field(default_factory=utc_now)
    access_count: int = Field(default=0, ge=0)
    connections: List[str] = Field(default_factory=list)
    source: Optional[str] = None
    validation_status: ValidationStatus = ValidationStatus.unverified
    superseded_by: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    version: int = Field(default=1, ge=1)
    deprecation_reason: Optional[str] = None
    deprecated_at: Optional[datetime] = None
    merged_from: Optional[List[str]] = None
    key_terms: Optional[List[str]] = None
    reasoning: Optional[str] = None
    extracted_at: Optional[datetime] = None
    embedding_updated_at: Optional[datetime] = None
    embedding: Optional[List[float]] = None

    @field_validator(
        "created_at", "last_accessed", "deprecated_at", "extracted_at", "embedding_updated_at"
    )
    @classmethod
    def _ensure_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value)

    def to_header(self) -> Dict[str, Any]:
        """Dump to the camelCase, JSON-compatible mapping used in front matter."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @classmethod
    def from_header(cls, header: Dict[str, Any]) -> RecordMetadata:
        return cls.model_validate(header)


class StoredRecord(BaseModel):
    """A record as read back from disk: validated header plus body text."""

    metadata: RecordMetadata
    content: str

    @property
    def id(self) -> str:
        return self.metadata.id


class MemoryRecord(_CamelModel):
    """
    Unit of knowledge held in the runtime cache.

    Examples:
    - type=fact: "The speed of light in vacuum is 299,792,458 m/s"
    - type=procedure: "PRUNE mode: mark incorrect memories as deprecated"
    - type=concept: "Abstract Concept (3 sources): ..."
    """

    id: str
    content: str
    type: MemoryType
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    created_at: datetime = Field(default_factory=utc_now)
    last_accessed: datetime = Field(default_factory=utc_now)
    access_count: int = Field(default=0, ge=0)
    connections: List[str] = Field(default_factory=list)
    source: Optional[str] = None
    validation_status: ValidationStatus = ValidationStatus.unverified
    superseded_by: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    version: int = 1
    deprecation_reason: Optional[str] = None
    deprecated_at: Optional[datetime] = None
    merged_from: Optional[List[str]] = None
    key_terms: Optional[List[str]] = None
    reasoning: Optional[str] = None
    extracted_at: Optional[datetime] = None

    @field_validator("created_at", "last_accessed", "deprecated_at", "extracted_at")
    @classmethod
    def _ensure_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value)

    @property
    def is_superseded(self) -> bool:
        return self.validation_status is ValidationStatus.superseded

    def preview(self, length: int = 80) -> str:
        return self.content[:length]

    def to_metadata(self, embedding: Optional[List[float]] = None) -> RecordMetadata:
        """Convert to the persisted header, attaching ``embedding`` if given."""
        fields = self.model_dump(exclude={"content"})
        return RecordMetadata(**fields, embedding=embedding)

    @classmethod
    def from_stored(cls, stored: StoredRecord) -> MemoryRecord:
        fields = stored.metadata.model_dump(exclude={"embedding", "embedding_updated_at"})
        return cls(**fields, content=stored.content)


# ----------------------------------------------------------------------------
# Sidecar index (database.json)
# ----------------------------------------------------------------------------


class FileTypeCount(_CamelModel):
    type: str
    count: int = 0


class IdToFilename(_CamelModel):
    id: str
    filename: str


class TagIndexEntry(_CamelModel):
    tag: str
    memory_ids: List[str] = Field(default_factory=list)


class RecentAccessEntry(_CamelModel):
    id: str
    timestamp: str


class DatabaseIndex(_CamelModel):
    """Array-shaped index kept consistent with the files under ``memories/``."""

    version: str = "1.0.0"
    last_updated: str = Field(default_factory=lambda: utc_now().isoformat())
    total_files: int = 0
    files_by_type: List[FileTypeCount] = Field(default_factory=list)
    id_to_filename: List[IdToFilename] = Field(default_factory=list)
    tag_index: List[TagIndexEntry] = Field(default_factory=list)
    recent_access: List[RecentAccessEntry] = Field(default_factory=list)

    def to_json_doc(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_json_doc(cls, doc: Dict[str, Any]) -> DatabaseIndex:
        """Load an index, migrating the older object-shaped layout if needed.

        The older layout stored ``filesByType``, ``idToFilename`` and
        ``tagIndex`` as plain ``{key: value}`` objects instead of arrays.
        """
        if isinstance(doc.get("idToFilename"), list):
            return cls.model_validate(doc)

        return cls(
            version=doc.get("version") or "1.0.0",
            last_updated=doc.get("lastUpdated") or utc_now().isoformat(),
            total_files=doc.get("totalFiles") or 0,
            files_by_type=[
                FileTypeCount(type=kind, count=int(count))
                for kind, count in (doc.get("filesByType") or {}).items()
            ],
            id_to_filename=[
                IdToFilename(id=record_id, filename=filename)
                for record_id, filename in (doc.get("idToFilename") or {}).items()
            ],
            tag_index=[
                TagIndexEntry(tag=tag, memory_ids=list(ids))
                for tag, ids in (doc.get("tagIndex") or {}).items()
            ],
            recent_access=[
                RecentAccessEntry(id=entry["id"], timestamp=entry["timestamp"])
                for entry in doc.get("recentAccess") or []
            ],
        )


__all__ = [
    "DatabaseIndex",
    "FileTypeCount",
    "IdToFilename",
    "MemoryRecord",
    "MemoryType",
    "RecentAccessEntry",
    "RecordMetadata",
    "StoredRecord",
    "TagIndexEntry",
    "ValidationStatus",
    "generate_record_id",
    "memory_type_for_folder",
    "storage_folder",
    "utc_now",
]
