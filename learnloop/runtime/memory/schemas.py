"""
Structured Output Schemas - Typed replies from the reasoning endpoint

WHAT: Pydantic models for every structured reasoning call and every tool's parameters
WHERE: learnloop/runtime/memory/schemas.py - contract between agent loop and model
WHO: AgentLoop (classify/respond/extract/resolve/reflect) and the tool registry
TIME: Validation <1ms per reply

Each reasoning call names one of these models; its JSON schema is sent as the
``response_format`` and the reply is validated against it. Field names travel
in camelCase (``relevantMemoryIds``, ``suggestedTools``...) to match what the
prompts ask the model to produce.
"""

from __future__ import annotations

from typing import Any, Annotated, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _Schema(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


Confidence = Annotated[float, Field(ge=0.0, le=1.0)]


# ----------------------------------------------------------------------------
# Reasoning outputs
# ----------------------------------------------------------------------------


class LearningMode(_Schema):
    mode: Literal["assimilate", "accommodate", "prune"]
    confidence: Confidence
    reasoning: str
    relevant_memory_ids: List[str] = Field(default_factory=list)


class ToolCall(_Schema):
    tool: str
    parameters: Dict[str, Any] = Field(default_factory=dict)
    reasoning: str = ""


class AgentResponse(_Schema):
    content: str
    thoughts: str = ""
    used_memories: List[str] = Field(default_factory=list)
    confidence: Confidence
    suggested_tools: List[ToolCall] = Field(default_factory=list)
    follow_up_questions: List[str] = Field(default_factory=list)


class LearningEntry(_Schema):
    type: Literal["fact", "concept", "procedure"]
    content: str
    confidence: Confidence
    key_terms: List[str] = Field(default_factory=list)
    reasoning: str = ""


class ContradictionEntry(_Schema):
    existing_memory_id: str
    conflicting_content: str
    resolution_strategy: Literal["supersede", "merge", "hold", "reject"]


class MemoryExtraction(_Schema):
    learnings: List[LearningEntry] = Field(default_factory=list)
    contradictions: List[ContradictionEntry] = Field(default_factory=list)
    questions: List[str] = Field(default_factory=list)


class ResolutionEntry(_Schema):
    memory_id: str
    action: Literal["keep", "deprecate", "merge", "flag"]
    new_confidence: Confidence
    explanation: str = ""


class ConflictResolution(_Schema):
    resolutions: List[ResolutionEntry] = Field(default_factory=list)


class InsightEntry(_Schema):
    type: Literal["consolidation", "deprecation", "verification", "gap"]
    description: str
    affected_memory_ids: List[str] = Field(default_factory=list)
    proposed_action: str = ""


class KnowledgeGap(_Schema):
    topic: str
    severity: Literal["low", "medium", "high"]
    suggested_investigation: str = ""


class ConfidenceAdjustment(_Schema):
    memory_id: str
    new_confidence: Confidence
    reason: str = ""


class ReflectionResult(_Schema):
    insights: List[InsightEntry] = Field(default_factory=list)
    knowledge_gaps: List[KnowledgeGap] = Field(default_factory=list)
    confidence_adjustments: List[ConfidenceAdjustment] = Field(default_factory=list)


# ----------------------------------------------------------------------------
# Tool parameters
# ----------------------------------------------------------------------------


class SearchMemoryParams(_Schema):
    query: str = Field(min_length=1)
    limit: int = Field(default=5, ge=1)


class StoreMemoryParams(_Schema):
    content: str = Field(min_length=1)
    type: Literal["fact", "concept", "procedure"]
    confidence: Confidence
    tags: List[str] = Field(default_factory=list)


class SelfQuestionParams(_Schema):
    topic: str = Field(min_length=1)


class ConsolidateMemoriesParams(_Schema):
    pass


class DeprecateMemoryParams(_Schema):
    memory_id: str = Field(min_length=1)
    reason: str = Field(min_length=1)


class ListAllMemoriesParams(_Schema):
    type: Optional[Literal["fact", "concept", "procedure", "context", "deprecated"]] = None


__all__ = [
    "AgentResponse",
    "ConfidenceAdjustment",
    "ConflictResolution",
    "ConsolidateMemoriesParams",
    "ContradictionEntry",
    "DeprecateMemoryParams",
    "InsightEntry",
    "KnowledgeGap",
    "LearningEntry",
    "LearningMode",
    "ListAllMemoriesParams",
    "MemoryExtraction",
    "ReflectionResult",
    "ResolutionEntry",
    "SearchMemoryParams",
    "SelfQuestionParams",
    "StoreMemoryParams",
    "ToolCall",
]
