"""
Record Store - File-per-record persistence for agent memory

WHAT: Durable storage of memory records as front-matter text files plus a JSON index
WHERE: learnloop/runtime/memory/record_store.py - persistence layer under MemoryManager
WHO: MemoryManager and tools creating, reading and moving records
TIME: One file write + one index write per mutation

Layout::

    <base_path>/
      database.json              sidecar index (id→file, type counts, tags, recent access)
      memories/
        facts/ concepts/ procedures/ contexts/ deprecated/
          <id>.md                front-matter header + body

The index is a cache over the files. It is kept consistent on every mutation
and self-heals lazily: an index entry whose file has disappeared is pruned the
first time it is touched, and a missing or unreadable index is rebuilt by
scanning the record folders.

Storage Notes:
- Files and index are replaced atomically (temp file + rename)
- I/O errors propagate to the caller; unknown ids report False/None
- Single-process only: two processes sharing a base_path can corrupt the index
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

from pydantic import ValidationError

from .frontmatter import parse, render_document
from .models import (
    DatabaseIndex,
    FileTypeCount,
    IdToFilename,
    MemoryType,
    RecentAccessEntry,
    RecordMetadata,
    StoredRecord,
    TagIndexEntry,
    ValidationStatus,
    memory_type_for_folder,
    storage_folder,
    utc_now,
)
from .templates.seed_memories import DEFAULT_SEED_MEMORIES

logger = logging.getLogger(__name__)

DEFAULT_BASE_PATH = "./agent_database"

_FIELD_BY_ALIAS: Dict[str, str] = {
    (field.alias or name): name for name, field in RecordMetadata.model_fields.items()
}


class RecordStoreError(RuntimeError):
    """Base class for record store failures that are not plain I/O errors."""


class CorruptRecordError(RecordStoreError):
    """Raised when a record file's header cannot be validated."""


def _normalize_fields(fields: Mapping[str, Any]) -> Dict[str, Any]:
    """Map camelCase or snake_case metadata keys onto RecordMetadata field names."""
    normalized: Dict[str, Any] = {}
    for key, value in fields.items():
        name = key if key in RecordMetadata.model_fields else _FIELD_BY_ALIAS.get(key)
        if name is None:
            raise ValueError(f"Unknown record metadata field: {key!r}")
        normalized[name] = value
    return normalized


@dataclass(slots=True)
class RecordStoreConfig:
    base_path: str | Path = DEFAULT_BASE_PATH
    seed_defaults: bool = True
    recent_access_limit: int = 100

    @staticmethod
    def from_env(*, base_path: str | Path | None = None) -> "RecordStoreConfig":
        return RecordStoreConfig(
            base_path=base_path or os.environ.get("LEARNLOOP_STORAGE_PATH", DEFAULT_BASE_PATH)
        )


class RecordStore:
    """Front-matter files under typed folders with a self-healing JSON index."""

    INDEX_FILENAME = "database.json"
    MEMORIES_DIR = "memories"
    RECORD_SUFFIX = ".md"

    def __init__(self, config: RecordStoreConfig | None = None) -> None:
        self.config = config or RecordStoreConfig()
        self._base = Path(self.config.base_path)
        self._index = DatabaseIndex()
        self._initialized = False

    @staticmethod
    def from_env(*, base_path: str | Path | None = None) -> "RecordStore":
        return RecordStore(RecordStoreConfig.from_env(base_path=base_path))

    @property
    def base_path(self) -> Path:
        return self._base

    @property
    def memories_path(self) -> Path:
        return self._base / self.MEMORIES_DIR

    @property
    def index_path(self) -> Path:
        return self._base / self.INDEX_FILENAME

    # ------------------ lifecycle ------------------
    def initialize(self) -> None:
        """Create folders, load or rebuild the index, seed defaults when empty (idempotent)."""
        if self._initialized:
            return

        logger.info(f"Initializing record store at {self._base}")
        for memory_type in MemoryType:
            (self.memories_path / storage_folder(memory_type)).mkdir(parents=True, exist_ok=True)

        self._initialize_index()

        if (
            self.config.seed_defaults
            and not self._index.id_to_filename
            and not any(True for _ in self._record_files())
        ):
            self._seed_default_data()

        self._initialized = True
        logger.info(f"Record store initialized with {self._index.total_files} records")

    def reinitialize(self) -> None:
        """Drop the in-memory index and initialize again from disk."""
        self._initialized = False
        self._index = DatabaseIndex()
        self.initialize()

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            self.initialize()

    def _initialize_index(self) -> None:
        if not self.index_path.exists():
            if any(True for _ in self._record_files()):
                logger.warning("Index file missing; rebuilding from record files")
                self._rebuild_index()
            else:
                logger.info(f"Creating index file {self.index_path}")
                self._save_index()
            return

        try:
            doc = json.loads(self.index_path.read_text(encoding="utf-8"))
            if not isinstance(doc, dict):
                raise ValueError("index root is not an object")
            migrated = not isinstance(doc.get("idToFilename"), list)
            self._index = DatabaseIndex.from_json_doc(doc)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Failed to load index ({e}); rebuilding from record files")
            self._rebuild_index()
            return

        if migrated:
            logger.info("Migrated object-shaped index to array layout")
            self._save_index()
        logger.info(f"Loaded index: {self._index.total_files} records tracked")

    def _seed_default_data(self) -> None:
        logger.info("Record store empty, seeding default memories")
        for seed in DEFAULT_SEED_MEMORIES:
            metadata = RecordMetadata(
                id=seed["id"],
                type=seed["type"],
                confidence=seed["confidence"],
                connections=list(seed["connections"]),
                tags=list(seed["tags"]),
                validation_status=ValidationStatus.verified,
                version=1,
            )
            self._persist(metadata, seed["content"], save_index=False)
        self._save_index()
        logger.info(f"Seeded {len(DEFAULT_SEED_MEMORIES)} default memories")

    def _rebuild_index(self) -> None:
        self._index = DatabaseIndex()
        for path in self._record_files():
            try:
                stored = self._load(path)
            except (CorruptRecordError, OSError) as e:
                logger.warning(f"Skipping unreadable record {path}: {e}")
                continue
            self._index_record(stored.metadata.id, memory_type_for_folder(path.parent.name), path)
            self._set_tags(stored.metadata.id, stored.metadata.tags)
        self._save_index()
        logger.info(f"Rebuilt index with {self._index.total_files} records")

    # ------------------ record operations -------------------
    def write(
        self,
        record_id: str,
        content: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> Path:
        """Create or overwrite a record; returns the file path.

        ``metadata`` keys may be snake_case field names or their camelCase
        aliases; ``None`` values count as "not given". Overwriting keeps the
        previous header as the base and bumps ``version`` when content changes.
        """
        self._ensure_initialized()
        given = {k: v for k, v in _normalize_fields(metadata or {}).items() if v is not None}

        previous = self._peek(record_id) if self._mapping(record_id) else None
        if previous is not None:
            fields = previous.metadata.model_dump()
            if previous.content != content and "version" not in given:
                fields["version"] = previous.metadata.version + 1
        else:
            now = utc_now()
            fields = {"created_at": now, "last_accessed": now, "access_count": 0, "version": 1}

        fields.update(given)
        fields["id"] = record_id
        return self._persist(self._validate(fields), content)

    def read(self, record_id: str) -> Optional[StoredRecord]:
        """Read a record, bumping its access stats. Returns None if unknown or missing."""
        self._ensure_initialized()
        path = self._existing_path(record_id)
        if path is None:
            return None

        stored = self._load(path)
        now = utc_now()
        stored.metadata.last_accessed = now
        stored.metadata.access_count += 1
        self._write_document(path, stored.metadata, stored.content)

        self._index.recent_access.insert(0, RecentAccessEntry(id=record_id, timestamp=now.isoformat()))
        del self._index.recent_access[self.config.recent_access_limit :]
        self._save_index()
        return stored

    def update(
        self,
        record_id: str,
        *,
        content: str | None = None,
        metadata_patch: Mapping[str, Any] | None = None,
    ) -> bool:
        """Merge ``metadata_patch`` into an existing record. False if the id is unknown."""
        self._ensure_initialized()
        patch = _normalize_fields(metadata_patch or {})
        existing = self.read(record_id)
        if existing is None:
            return False

        fields = existing.metadata.model_dump()
        fields.update(patch)
        fields["id"] = record_id
        new_content = existing.content if content is None else content
        if new_content != existing.content and "version" not in patch:
            fields["version"] = existing.metadata.version + 1

        self._persist(self._validate(fields), new_content)
        return True

    def delete(self, record_id: str) -> bool:
        """Remove a record file and every index reference. False if the id is unknown."""
        self._ensure_initialized()
        mapping = self._mapping(record_id)
        if mapping is None:
            return False

        (self._base / mapping.filename).unlink(missing_ok=True)
        self._drop_from_index(record_id)
        self._save_index()
        return True

    def exists(self, record_id: str) -> bool:
        self._ensure_initialized()
        return self._mapping(record_id) is not None

    # ------------------ projections ------------------
    def list_all(
        self,
        *,
        type: MemoryType | str | None = None,
        tag: str | None = None,
        limit: int | None = None,
    ) -> List[str]:
        """Ids in index order, optionally filtered by type and/or tag (filters intersect)."""
        self._ensure_initialized()
        self._prune_missing()

        ids = [m.id for m in self._index.id_to_filename]
        if type is not None:
            wanted = MemoryType(type)
            ids = [i for i in ids if self._type_of(self._mapping(i)) is wanted]
        if tag is not None:
            entry = self._tag_entry(tag)
            members = set(entry.memory_ids) if entry else set()
            ids = [i for i in ids if i in members]
        if limit is not None:
            ids = ids[:limit]
        return ids

    def query_by_tag(self, tag: str) -> List[StoredRecord]:
        return self._load_many(self.list_all(tag=tag))

    def export_all(self) -> List[StoredRecord]:
        """Every record with its full header (including embedding); no access bump."""
        return self._load_many(self.list_all())

    def stats(self) -> DatabaseIndex:
        self._ensure_initialized()
        return self._index.model_copy(deep=True)

    # ------------------ internals: files ------------------
    def _record_files(self) -> Iterable[Path]:
        for memory_type in MemoryType:
            folder = self.memories_path / storage_folder(memory_type)
            if folder.is_dir():
                yield from sorted(folder.glob(f"*{self.RECORD_SUFFIX}"))

    def _path_for(self, record_id: str, memory_type: MemoryType) -> Path:
        return self.memories_path / storage_folder(memory_type) / f"{record_id}{self.RECORD_SUFFIX}"

    def _relative(self, path: Path) -> str:
        return path.relative_to(self._base).as_posix()

    def _validate(self, fields: Mapping[str, Any]) -> RecordMetadata:
        try:
            metadata = RecordMetadata.model_validate(fields)
        except ValidationError as e:
            raise ValueError(f"Invalid record metadata for {fields.get('id')}: {e}") from e
        # deprecated/ only holds superseded records that say why
        if metadata.type is MemoryType.deprecated and (
            metadata.validation_status is not ValidationStatus.superseded or not metadata.deprecation_reason
        ):
            raise ValueError(
                f"Deprecated record {metadata.id} needs validationStatus=superseded and a deprecationReason"
            )
        return metadata

    def _load(self, path: Path) -> StoredRecord:
        header, body = parse(path.read_text(encoding="utf-8"))
        try:
            metadata = RecordMetadata.from_header(header)
        except ValidationError as e:
            raise CorruptRecordError(f"Invalid header in {path}: {e}") from e
        return StoredRecord(metadata=metadata, content=body)

    def _load_many(self, ids: Iterable[str]) -> List[StoredRecord]:
        records: List[StoredRecord] = []
        for record_id in ids:
            try:
                stored = self._peek(record_id)
            except CorruptRecordError as e:
                logger.warning(f"Skipping corrupt record {record_id}: {e}")
                continue
            if stored is not None:
                records.append(stored)
        return records

    def _peek(self, record_id: str) -> Optional[StoredRecord]:
        path = self._existing_path(record_id)
        return self._load(path) if path is not None else None

    def _existing_path(self, record_id: str) -> Optional[Path]:
        """Resolve an id to its file, pruning the index entry if the file is gone."""
        mapping = self._mapping(record_id)
        if mapping is None:
            return None
        path = self._base / mapping.filename
        if not path.exists():
            logger.warning(f"File missing for {record_id}, removing from index")
            self._drop_from_index(record_id)
            self._save_index()
            return None
        return path

    def _prune_missing(self) -> None:
        missing = [
            m.id for m in self._index.id_to_filename if not (self._base / m.filename).exists()
        ]
        for record_id in missing:
            logger.warning(f"File missing for {record_id}, removing from index")
            self._drop_from_index(record_id)
        if missing:
            self._save_index()

    def _write_document(self, path: Path, metadata: RecordMetadata, content: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        self._atomic_write(path, render_document(metadata.to_header(), content))

    @staticmethod
    def _atomic_write(path: Path, text: str) -> None:
        tmp = path.with_name(path.name + ".tmp")
        tmp.write_text(text, encoding="utf-8")
        os.replace(tmp, path)

    def _persist(self, metadata: RecordMetadata, content: str, *, save_index: bool = True) -> Path:
        """Write the file for ``metadata`` and bring the index in line with it."""
        target = self._path_for(metadata.id, metadata.type)
        previous = self._mapping(metadata.id)
        if previous is not None and previous.filename != self._relative(target):
            (self._base / previous.filename).unlink(missing_ok=True)

        self._write_document(target, metadata, content)
        self._index_record(metadata.id, metadata.type, target)
        self._set_tags(metadata.id, metadata.tags)
        if save_index:
            self._save_index()
        return target

    # ------------------ internals: index ------------------
    def _save_index(self) -> None:
        self._index.last_updated = utc_now().isoformat()
        self._base.mkdir(parents=True, exist_ok=True)
        self._atomic_write(self.index_path, json.dumps(self._index.to_json_doc(), indent=2))

    def _mapping(self, record_id: str) -> Optional[IdToFilename]:
        return next((m for m in self._index.id_to_filename if m.id == record_id), None)

    def _type_of(self, mapping: Optional[IdToFilename]) -> Optional[MemoryType]:
        if mapping is None:
            return None
        try:
            return memory_type_for_folder(Path(mapping.filename).parent.name)
        except ValueError:
            return None

    def _tag_entry(self, tag: str) -> Optional[TagIndexEntry]:
        return next((t for t in self._index.tag_index if t.tag == tag), None)

    def _adjust_type_count(self, memory_type: Optional[MemoryType], delta: int) -> None:
        if memory_type is None:
            return
        entry = next((t for t in self._index.files_by_type if t.type == memory_type.value), None)
        if entry is None:
            if delta <= 0:
                return
            entry = FileTypeCount(type=memory_type.value, count=0)
            self._index.files_by_type.append(entry)
        entry.count = max(0, entry.count + delta)

    def _index_record(self, record_id: str, memory_type: MemoryType, path: Path) -> None:
        filename = self._relative(path)
        mapping = self._mapping(record_id)
        if mapping is None:
            self._index.id_to_filename.append(IdToFilename(id=record_id, filename=filename))
            self._index.total_files += 1
            self._adjust_type_count(memory_type, +1)
            return

        old_type = self._type_of(mapping)
        if old_type is not memory_type:
            self._adjust_type_count(old_type, -1)
            self._adjust_type_count(memory_type, +1)
        mapping.filename = filename

    def _set_tags(self, record_id: str, tags: Iterable[str]) -> None:
        wanted = list(dict.fromkeys(tags))
        for entry in self._index.tag_index:
            if entry.tag not in wanted and record_id in entry.memory_ids:
                entry.memory_ids.remove(record_id)
        for tag in wanted:
            entry = self._tag_entry(tag)
            if entry is None:
                self._index.tag_index.append(TagIndexEntry(tag=tag, memory_ids=[record_id]))
            elif record_id not in entry.memory_ids:
                entry.memory_ids.append(record_id)
        self._index.tag_index = [t for t in self._index.tag_index if t.memory_ids]

    def _drop_from_index(self, record_id: str) -> None:
        mapping = self._mapping(record_id)
        if mapping is None:
            return
        self._index.id_to_filename.remove(mapping)
        self._index.total_files = max(0, self._index.total_files - 1)
        self._adjust_type_count(self._type_of(mapping), -1)
        self._set_tags(record_id, [])


__all__ = [
    "CorruptRecordError",
    "RecordStore",
    "RecordStoreConfig",
    "RecordStoreError",
]
