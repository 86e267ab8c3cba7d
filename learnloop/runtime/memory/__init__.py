"""
Agent Memory System - File-backed records, retrieval and the learning loop

WHAT: Local library for persistent agent memory and a memory-augmented reasoning loop
WHERE: learnloop/runtime/memory/ - runtime subsystem
WHO: Agents that learn from every interaction and keep knowledge on disk
TIME: Retrieval O(n·D) over cached vectors; 3-4 reasoning calls per request

Layers (bottom-up):
- frontmatter / models: record file format and index schema
- RecordStore: one file per record plus a self-healing JSON index
- EmbeddingProvider: OpenAI-compatible embeddings with deterministic fallback
- MemoryManager: cached vectors, similarity retrieval, deprecation, consolidation
- RequestQueue: priority intake with observers
- AgentLoop: classify → respond (tools) → extract → resolve → reflect

Operations:
- AgentLoop.submit(prompt): queue a prompt and await its response
- MemoryManager.create_memory / retrieve / deprecate_memory / consolidate
- RecordStore.write / read / update / delete / list_all / export_all
"""

from .agent_loop import (  # noqa: F401
    AgentLoop,
    AgentLoopConfig,
    AgentState,
    RequestFailedError,
    RequestTimeoutError,
)
from .consolidation import ConsolidationConfig, ConsolidationEngine  # noqa: F401
from .embeddings import EmbeddingConfig, EmbeddingProvider, fallback_embedding  # noqa: F401
from .memory_manager import (  # noqa: F401
    MemoryCache,
    MemoryManager,
    MemoryManagerConfig,
    MemoryNotFoundError,
)
from .models import (  # noqa: F401
    DatabaseIndex,
    MemoryRecord,
    MemoryType,
    RecordMetadata,
    StoredRecord,
    ValidationStatus,
)
from .reasoning import (  # noqa: F401
    OpenAICompatibleReasoner,
    Reasoner,
    ReasoningConfig,
    ReasoningError,
    StructuredOutputError,
)
from .record_store import CorruptRecordError, RecordStore, RecordStoreConfig, RecordStoreError  # noqa: F401
from .request_queue import PromptRequest, QueueEvent, RequestQueue, RequestStatus  # noqa: F401
from .telemetry import (  # noqa: F401
    LoggingTelemetryClient,
    NoOpTelemetryClient,
    TelemetryClient,
    TelemetrySpan,
)
from .tools import ToolContext, ToolDefinition, ToolRegistry, default_tools  # noqa: F401

__all__ = [
    "AgentLoop",
    "AgentLoopConfig",
    "AgentState",
    "RequestFailedError",
    "RequestTimeoutError",
    "ConsolidationConfig",
    "ConsolidationEngine",
    "EmbeddingConfig",
    "EmbeddingProvider",
    "fallback_embedding",
    "MemoryCache",
    "MemoryManager",
    "MemoryManagerConfig",
    "MemoryNotFoundError",
    "DatabaseIndex",
    "MemoryRecord",
    "MemoryType",
    "RecordMetadata",
    "StoredRecord",
    "ValidationStatus",
    "OpenAICompatibleReasoner",
    "Reasoner",
    "ReasoningConfig",
    "ReasoningError",
    "StructuredOutputError",
    "CorruptRecordError",
    "RecordStore",
    "RecordStoreConfig",
    "RecordStoreError",
    "PromptRequest",
    "QueueEvent",
    "RequestQueue",
    "RequestStatus",
    "LoggingTelemetryClient",
    "NoOpTelemetryClient",
    "TelemetryClient",
    "TelemetrySpan",
    "ToolContext",
    "ToolDefinition",
    "ToolRegistry",
    "default_tools",
]
