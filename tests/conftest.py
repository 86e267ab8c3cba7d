import re
from collections import defaultdict, deque
from typing import Any, Dict, List, Optional, Sequence

import pytest

from learnloop.runtime.memory.schemas import (
    AgentResponse,
    ConflictResolution,
    LearningMode,
    MemoryExtraction,
    ReflectionResult,
)

VOCABULARY = (
    "three",
    "learning",
    "mode",
    "assimilate",
    "accommodate",
    "prune",
    "storage",
    "embedding",
    "critical",
    "exam",
    "reflection",
)


def _normalize(token: str) -> str:
    if len(token) > 3 and token.endswith("s"):
        return token[:-1]
    return token


class VocabularyEmbedder:
    """Bag-of-words embedder over a fixed vocabulary; deterministic and offline."""

    def __init__(self, vocabulary: Sequence[str] = VOCABULARY) -> None:
        self.vocabulary = list(vocabulary)
        self.calls: List[str] = []

    @property
    def dimensions(self) -> int:
        return len(self.vocabulary)

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        counts = defaultdict(float)
        for token in re.split(r"[^a-z]+", text.lower()):
            if token:
                counts[_normalize(token)] += 1.0
        return [counts.get(word, 0.0) for word in self.vocabulary]


class MappingEmbedder:
    """Returns preset vectors per exact text; anything else maps to ``default``."""

    def __init__(self, vectors: Dict[str, Sequence[float]], dimensions: int, default: Optional[Sequence[float]] = None):
        self.vectors = {text: list(vector) for text, vector in vectors.items()}
        self._dimensions = dimensions
        self.default = list(default) if default is not None else [0.0] * dimensions

    @property
    def dimensions(self) -> int:
        return self._dimensions

    async def embed(self, text: str) -> List[float]:
        return list(self.vectors.get(text, self.default))


DEFAULT_REPLIES = {
    LearningMode: lambda: LearningMode(mode="assimilate", confidence=0.6, reasoning="fits existing knowledge"),
    AgentResponse: lambda: AgentResponse(content="ok", confidence=0.5),
    MemoryExtraction: lambda: MemoryExtraction(),
    ConflictResolution: lambda: ConflictResolution(),
    ReflectionResult: lambda: ReflectionResult(),
}


class ScriptedReasoner:
    """Replays queued replies per schema; falls back to a neutral default reply.

    A queued reply may be a model instance, a dict (validated against the
    schema) or an exception instance (raised).
    """

    def __init__(self, script: Optional[Dict[type, List[Any]]] = None) -> None:
        self.script = {schema: deque(replies) for schema, replies in (script or {}).items()}
        self.calls: List[tuple] = []

    def queue(self, schema: type, *replies: Any) -> None:
        self.script.setdefault(schema, deque()).extend(replies)

    def calls_for(self, schema: type) -> List[tuple]:
        return [call for call in self.calls if call[1] is schema]

    async def generate_structured(self, prompt: str, schema, *, system: Optional[str] = None):
        self.calls.append((prompt, schema, system))
        replies = self.script.get(schema)
        if replies:
            reply = replies.popleft()
            if isinstance(reply, BaseException):
                raise reply
            if isinstance(reply, dict):
                return schema.model_validate(reply)
            return reply
        return DEFAULT_REPLIES[schema]()


@pytest.fixture
def vocabulary_embedder():
    return VocabularyEmbedder()


@pytest.fixture
def mapping_embedder():
    """Factory: ``mapping_embedder(vectors, dimensions, default=None)``."""
    return MappingEmbedder


@pytest.fixture
def scripted_reasoner():
    return ScriptedReasoner()
