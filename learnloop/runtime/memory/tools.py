"""
Memory Tools - Tool table the agent loop executes on the model's behalf

WHAT: Named, parameter-validated async tools over the MemoryManager
WHERE: learnloop/runtime/memory/tools.py - action layer for suggestedTools
WHO: AgentLoop executing AgentResponse.suggested_tools sequentially
TIME: Bounded by the underlying memory operation (embedding call for search/store)

Parameters arrive as the raw ``parameters`` object of a ToolCall and are
validated with the tool's pydantic model before execution, so a malformed
call raises ``ValidationError`` and is reported inline by the loop. Results
are plain JSON-compatible structures.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Iterator, List, Mapping, Optional, Type

from pydantic import BaseModel

from .memory_manager import MemoryManager
from .models import MemoryType, storage_folder
from .request_queue import PromptRequest
from .schemas import (
    ConsolidateMemoriesParams,
    DeprecateMemoryParams,
    ListAllMemoriesParams,
    SearchMemoryParams,
    SelfQuestionParams,
    StoreMemoryParams,
)
from .templates.memory_tool_descriptions import TOOL_DESCRIPTIONS_COMPACT

if TYPE_CHECKING:
    from .agent_loop import AgentState

logger = logging.getLogger(__name__)

SEARCH_PREVIEW_CHARS = 200
LIST_PREVIEW_CHARS = 80


@dataclass(slots=True)
class ToolContext:
    memory: MemoryManager
    state: Optional["AgentState"] = None
    request: Optional[PromptRequest] = None


ToolExecutor = Callable[[Any, ToolContext], Awaitable[Any]]


@dataclass(slots=True)
class ToolDefinition:
    name: str
    description: str
    parameters: Type[BaseModel]
    execute: ToolExecutor

    async def run(self, raw_parameters: Mapping[str, Any], context: ToolContext) -> Any:
        """Validate ``raw_parameters`` and execute the tool."""
        params = self.parameters.model_validate(dict(raw_parameters))
        return await self.execute(params, context)


class ToolRegistry:
    """Ordered name → ToolDefinition table."""

    def __init__(self, tools: Optional[List[ToolDefinition]] = None) -> None:
        self._tools: Dict[str, ToolDefinition] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: ToolDefinition) -> None:
        if tool.name in self._tools:
            logger.info(f"Replacing tool '{tool.name}'")
        self._tools[tool.name] = tool

    def get(self, name: str) -> Optional[ToolDefinition]:
        return self._tools.get(name)

    def names(self) -> List[str]:
        return list(self._tools)

    def describe(self) -> Dict[str, str]:
        return {name: tool.description for name, tool in self._tools.items()}

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[ToolDefinition]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)


# ----------------------------------------------------------------------------
# Default tools
# ----------------------------------------------------------------------------


async def _search_memory(params: SearchMemoryParams, context: ToolContext) -> List[Dict[str, Any]]:
    records = await context.memory.retrieve(params.query, params.limit)
    return [
        {
            "id": record.id,
            "type": record.type.value,
            "confidence": record.confidence,
            "content": record.preview(SEARCH_PREVIEW_CHARS),
        }
        for record in records
    ]


async def _store_memory(params: StoreMemoryParams, context: ToolContext) -> Dict[str, Any]:
    record = await context.memory.create_memory(
        params.content,
        params.type,
        confidence=params.confidence,
        tags=params.tags,
        source=f"tool:store_memory:{context.request.id}" if context.request else "tool:store_memory",
    )
    return {
        "id": record.id,
        "status": "stored",
        "location": f"memories/{storage_folder(record.type)}/{record.id}.md",
    }


async def _self_question(params: SelfQuestionParams, context: ToolContext) -> Dict[str, Any]:
    records = await context.memory.retrieve(params.topic, 3)
    if len(records) < 2:
        questions = [f"What is {params.topic}?", f"How does {params.topic} work?"]
    else:
        questions = [f'Why is "{records[0].content}" significant?']
    return {
        "topic": params.topic,
        "knownFacts": [record.content for record in records],
        "suggestedQuestions": questions,
    }


async def _consolidate_memories(params: ConsolidateMemoriesParams, context: ToolContext) -> Dict[str, Any]:
    created = await context.memory.consolidate()
    return {
        "status": "consolidated",
        "created": [record.id for record in created],
        "stats": context.memory.stats(),
    }


async def _deprecate_memory(params: DeprecateMemoryParams, context: ToolContext) -> Dict[str, Any]:
    context.memory.deprecate_memory(params.memory_id, params.reason)
    return {
        "status": "deprecated",
        "memoryId": params.memory_id,
        "newLocation": f"memories/{storage_folder(MemoryType.deprecated)}/{params.memory_id}.md",
    }


async def _list_all_memories(params: ListAllMemoriesParams, context: ToolContext) -> Dict[str, Any]:
    records = context.memory.get_all()
    if params.type is not None:
        records = [record for record in records if record.type.value == params.type]
    return {
        "count": len(records),
        "memories": [
            {
                "id": record.id,
                "type": record.type.value,
                "confidence": record.confidence,
                "preview": record.preview(LIST_PREVIEW_CHARS),
            }
            for record in records
        ],
    }


def default_tools() -> List[ToolDefinition]:
    """The six built-in memory tools, in listing order."""
    table = [
        ("search_memory", SearchMemoryParams, _search_memory),
        ("store_memory", StoreMemoryParams, _store_memory),
        ("self_question", SelfQuestionParams, _self_question),
        ("consolidate_memories", ConsolidateMemoriesParams, _consolidate_memories),
        ("deprecate_memory", DeprecateMemoryParams, _deprecate_memory),
        ("list_all_memories", ListAllMemoriesParams, _list_all_memories),
    ]
    return [
        ToolDefinition(name=name, description=TOOL_DESCRIPTIONS_COMPACT[name], parameters=params, execute=execute)
        for name, params, execute in table
    ]


__all__ = [
    "ToolContext",
    "ToolDefinition",
    "ToolRegistry",
    "default_tools",
]
