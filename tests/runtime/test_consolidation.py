import asyncio

import numpy as np

from learnloop.runtime.memory.consolidation import ConsolidationConfig, find_clusters
from learnloop.runtime.memory.memory_manager import MemoryManager, MemoryManagerConfig
from learnloop.runtime.memory.models import MemoryType, ValidationStatus
from learnloop.runtime.memory.record_store import RecordStore, RecordStoreConfig

VECTORS = {
    "Light travels at 299,792 km/s in vacuum": [1.0, 0.0, 0.0],
    "The speed of light is about 300,000 km/s": [0.97, 0.05, 0.0],
    "Nothing with mass reaches light speed": [0.95, 0.1, 0.02],
    "Bread needs yeast to rise": [0.0, 0.0, 1.0],
}


def _manager(tmp_path, embedder, config=None):
    store = RecordStore(RecordStoreConfig(base_path=tmp_path / "db", seed_defaults=False))
    manager = MemoryManager(store, embedder, config=config)
    asyncio.run(manager.initialize())
    return manager


def test_find_clusters_connected_components():
    vectors = {
        "a": np.array([1.0, 0.0]),
        "b": np.array([0.99, 0.16]),
        "c": np.array([0.95, 0.3]),
        "d": np.array([0.0, 1.0]),
        "e": np.array([0.0, 0.0]),
    }
    # a-b and b-c are above threshold, a-c is not: still one component
    clusters = find_clusters(list(vectors), vectors, threshold=0.98, min_size=2)
    assert clusters == [["a", "b", "c"]]


def test_find_clusters_ignores_mismatched_dimensions_and_small_groups():
    vectors = {"a": np.array([1.0, 0.0]), "b": np.array([1.0, 0.0, 0.0]), "c": np.array([1.0, 0.0])}
    assert find_clusters(list(vectors), vectors, threshold=0.85, min_size=2) == [["a", "c"]]
    assert find_clusters(list(vectors), vectors, threshold=0.85, min_size=3) == []


def test_consolidate_merges_similar_memories_into_concept(tmp_path, mapping_embedder):
    manager = _manager(tmp_path, mapping_embedder(VECTORS, dimensions=3))
    texts = list(VECTORS)
    members = [
        asyncio.run(manager.create_memory(texts[0], "fact", confidence=0.6, tags=["physics"])),
        asyncio.run(manager.create_memory(texts[1], "fact", confidence=0.9, tags=["physics", "light"])),
        asyncio.run(manager.create_memory(texts[2], "concept", confidence=0.7, tags=["relativity"])),
    ]
    unrelated = asyncio.run(manager.create_memory(texts[3], "procedure"))

    created = asyncio.run(manager.consolidate())

    assert len(created) == 1
    concept = created[0]
    assert concept.type is MemoryType.concept
    assert concept.content.startswith("Abstract Concept (3 sources): ")
    assert concept.content.endswith("...")
    assert concept.confidence == 0.9
    assert set(concept.tags) == {"physics", "light", "relativity"}
    assert sorted(concept.merged_from) == sorted(m.id for m in members)

    for member in members:
        cached = manager.get(member.id)
        assert cached.validation_status is ValidationStatus.superseded
        assert cached.superseded_by == concept.id
        assert cached.type is MemoryType.deprecated
    assert not manager.get(unrelated.id).is_superseded

    assert sorted(manager.store.list_all(type="deprecated")) == sorted(m.id for m in members)
    assert manager.store.list_all(type="concept") == [concept.id]


def test_consolidate_picks_member_closest_to_centroid(tmp_path, mapping_embedder):
    manager = _manager(tmp_path, mapping_embedder(VECTORS, dimensions=3))
    texts = list(VECTORS)[:3]
    for text in texts:
        asyncio.run(manager.create_memory(text))

    created = asyncio.run(manager.consolidate())

    # [0.97, 0.05, 0] sits nearest the centroid of the three light vectors
    assert created[0].content == f"Abstract Concept (3 sources): {texts[1]}..."


def test_consolidate_twice_creates_nothing_new(tmp_path, mapping_embedder):
    manager = _manager(tmp_path, mapping_embedder(VECTORS, dimensions=3))
    for text in list(VECTORS)[:3]:
        asyncio.run(manager.create_memory(text))

    assert len(asyncio.run(manager.consolidate())) == 1
    assert asyncio.run(manager.consolidate()) == []


def test_threshold_is_configurable(tmp_path, mapping_embedder):
    config = MemoryManagerConfig(consolidation=ConsolidationConfig(similarity_threshold=0.999))
    manager = _manager(tmp_path, mapping_embedder(VECTORS, dimensions=3), config=config)
    for text in list(VECTORS)[:3]:
        asyncio.run(manager.create_memory(text))

    assert asyncio.run(manager.consolidate()) == []
    assert manager.stats()["superseded_count"] == 0


def test_preview_is_truncated(tmp_path, mapping_embedder):
    long_text = "x" * 400
    store = RecordStore(RecordStoreConfig(base_path=tmp_path / "db", seed_defaults=False))
    embedder = mapping_embedder({}, dimensions=2, default=[1.0, 0.0])
    manager = MemoryManager(store, embedder)
    asyncio.run(manager.create_memory(long_text))
    asyncio.run(manager.create_memory(long_text + "y"))

    created = asyncio.run(manager.consolidate())

    assert created[0].content == f"Abstract Concept (2 sources): {'x' * 150}..."
