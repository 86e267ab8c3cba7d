"""
Agent Loop - Single-threaded learning loop over the request queue

WHAT: Pops prompts, answers them with memory context and learns from each exchange
WHERE: learnloop/runtime/memory/agent_loop.py - top-level runtime component
WHO: Applications calling submit() or driving run_once() directly
TIME: 3-4 reasoning calls + 1-N embedding calls per request

Per request (all steps awaited sequentially):
1. retrieve      - top ``context_limit`` memories for the prompt
2. classify      - LearningMode (assimilate / accommodate / prune)
3. respond       - AgentResponse; suggested tools run one after another and
                   their results (or failures) are appended to the reply
4. extract       - MemoryExtraction; learnings become new memories
5. resolve       - ConflictResolution for reported contradictions
6. complete      - queue.complete(), or queue.fail() if any step raised

Every ``reflection_interval``-th processed request triggers a reflection pass
(sampled memories → ReflectionResult → consolidate / deprecate / adjust
confidence). When the queue is empty the loop runs idle maintenance and
sleeps ``idle_interval_s``.

Concurrency Notes:
- One request at a time; memory writes never interleave
- submit() timeouts abandon the wait only, the request still runs
- Memories written before a pipeline failure are kept
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Type

from .embeddings import EmbeddingConfig, EmbeddingProvider
from .memory_manager import MemoryManager
from .models import MemoryRecord, ValidationStatus, utc_now
from .prompting import (
    SYSTEM_PROMPTS,
    compose_conflict_prompt,
    compose_extraction_prompt,
    compose_mode_prompt,
    compose_reflection_prompt,
    compose_response_prompt,
    compose_response_system_prompt,
)
from .reasoning import OpenAICompatibleReasoner, Reasoner, ReasoningConfig, SchemaT
from .record_store import RecordStore
from .request_queue import PromptRequest, QueueEvent, RequestQueue, RequestStatus
from .schemas import (
    AgentResponse,
    ConflictResolution,
    ContradictionEntry,
    LearningMode,
    MemoryExtraction,
    ReflectionResult,
)
from .telemetry import (
    SPAN_CLASSIFY,
    SPAN_EXTRACT,
    SPAN_PROCESS_REQUEST,
    SPAN_REFLECT,
    SPAN_RESOLVE_CONFLICTS,
    SPAN_RESPOND,
    NoOpTelemetryClient,
    TelemetryClient,
)
from .tools import ToolContext, ToolDefinition, ToolRegistry, default_tools

logger = logging.getLogger(__name__)

TOOL_RESULT_CHARS = 200


class RequestFailedError(RuntimeError):
    """Raised by submit() when the request's pipeline failed."""


class RequestTimeoutError(TimeoutError):
    """Raised by submit() when no outcome arrived before the deadline."""


@dataclass(slots=True)
class AgentLoopConfig:
    context_limit: int = 5
    reflection_interval: int = 5
    reflection_sample_size: int = 10
    idle_interval_s: float = 0.1
    consolidation_high_water: int = 900
    submit_timeout_s: float = 60.0


@dataclass(slots=True)
class AgentState:
    current_context: List[MemoryRecord] = field(default_factory=list)
    learning_mode: str = "assimilate"
    last_reflection: Optional[datetime] = None
    interaction_count: int = 0

    def copy(self) -> "AgentState":
        return replace(self, current_context=list(self.current_context))


class AgentLoop:
    """Drives the request queue through the memory-augmented reasoning pipeline."""

    def __init__(
        self,
        memory: MemoryManager,
        reasoner: Reasoner,
        *,
        queue: RequestQueue | None = None,
        tools: Iterable[ToolDefinition] | None = None,
        config: AgentLoopConfig | None = None,
        telemetry: TelemetryClient | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._memory = memory
        self._reasoner = reasoner
        self._queue = queue or RequestQueue()
        self._tools = ToolRegistry(list(default_tools() if tools is None else tools))
        self.config = config or AgentLoopConfig()
        self._telemetry = telemetry or NoOpTelemetryClient()
        self._rng = rng or random.Random()
        self._state = AgentState()
        self._running = False
        self._closers: List[Callable[[], Awaitable[None]]] = []

    @classmethod
    def from_env(cls, storage_path: str | None = None, **kwargs: Any) -> "AgentLoop":
        """Wire store, embedder and reasoner from ``LEARNLOOP_*`` environment variables."""
        embedder = EmbeddingProvider(EmbeddingConfig.from_env())
        reasoner = OpenAICompatibleReasoner(ReasoningConfig.from_env())
        memory = MemoryManager(RecordStore.from_env(base_path=storage_path), embedder)
        loop = cls(memory, reasoner, **kwargs)
        loop._closers = [embedder.aclose, reasoner.aclose]
        return loop

    # ------------------ accessors ------------------
    @property
    def memory(self) -> MemoryManager:
        return self._memory

    @property
    def queue(self) -> RequestQueue:
        return self._queue

    @property
    def tools(self) -> ToolRegistry:
        return self._tools

    @property
    def state(self) -> AgentState:
        return self._state.copy()

    @property
    def is_running(self) -> bool:
        return self._running

    def register_tool(self, tool: ToolDefinition) -> None:
        self._tools.register(tool)

    # ------------------ lifecycle ------------------
    async def initialize(self) -> None:
        await self._memory.initialize()

    async def start(self) -> None:
        """Run until stop() is called."""
        await self.initialize()
        self._running = True
        logger.info("Agent loop started")
        try:
            while self._running:
                await self.run_once()
        finally:
            self._running = False
            logger.info("Agent loop stopped")

    def stop(self) -> None:
        self._running = False

    async def aclose(self) -> None:
        self.stop()
        for closer in self._closers:
            await closer()
        self._closers = []

    async def run_once(self) -> bool:
        """One iteration: process the next request, or idle. Returns True if a request was handled."""
        request = self._queue.pop()
        if request is None:
            await self._idle_maintenance()
            await asyncio.sleep(self.config.idle_interval_s)
            return False

        await self._process_request(request)
        self._state.interaction_count += 1

        if self._should_reflect():
            try:
                await self._reflect()
            except Exception:
                logger.exception("Reflection pass failed")
        return True

    async def submit(
        self,
        prompt: str,
        *,
        priority: int = 1,
        metadata: Optional[Dict[str, Any]] = None,
        timeout: float | None = None,
    ) -> str:
        """Queue ``prompt`` and wait for its response.

        Raises:
            RequestFailedError: If the request's pipeline failed
            RequestTimeoutError: If no outcome arrived within ``timeout`` seconds
                (the request itself keeps running)
        """
        future: asyncio.Future[str] = asyncio.get_running_loop().create_future()
        request_id = self._queue.push(prompt, priority=priority, metadata=metadata)

        def on_finished(request: PromptRequest) -> None:
            if request.id != request_id or future.done():
                return
            if request.status is RequestStatus.completed:
                future.set_result(request.response or "")
            else:
                future.set_exception(RequestFailedError(request.error or "Request failed"))

        unsubscribe_completed = self._queue.on(QueueEvent.completed, on_finished)
        unsubscribe_failed = self._queue.on(QueueEvent.failed, on_finished)
        deadline = self.config.submit_timeout_s if timeout is None else timeout
        try:
            return await asyncio.wait_for(future, deadline)
        except asyncio.TimeoutError:
            raise RequestTimeoutError(f"Request {request_id} timed out after {deadline}s") from None
        finally:
            unsubscribe_completed()
            unsubscribe_failed()

    # ------------------ pipeline ------------------
    async def _structured(
        self,
        span_name: str,
        prompt: str,
        schema: Type[SchemaT],
        *,
        system: str,
        request: PromptRequest | None = None,
    ) -> SchemaT:
        attributes: Dict[str, Any] = {"schema": schema.__name__}
        if request is not None:
            attributes["request_id"] = request.id
        with self._telemetry.span(span_name, attributes=attributes):
            return await self._reasoner.generate_structured(prompt, schema, system=system)

    async def _process_request(self, request: PromptRequest) -> bool:
        logger.info(f"Processing {request.id}: {request.prompt[:60]}")
        with self._telemetry.span(
            SPAN_PROCESS_REQUEST,
            attributes={"request_id": request.id, "priority": request.priority},
        ) as span:
            try:
                memories = await self._memory.retrieve(request.prompt, self.config.context_limit)
                self._state.current_context = list(memories)
                span.set_attribute("memories_retrieved", len(memories))

                mode = await self._classify(request, memories)
                self._state.learning_mode = mode.mode
                span.set_attribute("learning_mode", mode.mode)

                response = await self._respond(request, memories, mode)
                extraction = await self._extract(request, response, memories)
                span.update(learnings_stored=len(extraction.learnings), contradictions=len(extraction.contradictions))
            except Exception as e:
                logger.exception(f"Request {request.id} failed")
                span.mark_failed(e)
                self._queue.fail(request.id, str(e) or type(e).__name__)
                return False

            self._queue.complete(request.id, response.content)
        logger.info(f"Completed {request.id} in {mode.mode} mode")
        return True

    async def _classify(self, request: PromptRequest, memories: List[MemoryRecord]) -> LearningMode:
        return await self._structured(
            SPAN_CLASSIFY,
            compose_mode_prompt(request.prompt, memories),
            LearningMode,
            system=SYSTEM_PROMPTS["learning_mode_detection"],
            request=request,
        )

    async def _respond(
        self,
        request: PromptRequest,
        memories: List[MemoryRecord],
        mode: LearningMode,
    ) -> AgentResponse:
        response = await self._structured(
            SPAN_RESPOND,
            compose_response_prompt(request.prompt, mode, memories, self._tools.describe()),
            AgentResponse,
            system=compose_response_system_prompt(),
            request=request,
        )

        content = response.content
        for call in response.suggested_tools:
            tool = self._tools.get(call.tool)
            if tool is None:
                logger.warning(f"Model suggested unknown tool '{call.tool}', skipping")
                continue
            try:
                result = await tool.run(call.parameters, ToolContext(self._memory, self._state, request))
            except Exception as e:
                logger.warning(f"Tool {call.tool} failed for {request.id}: {e}")
                content += f"\n\n[Tool {call.tool} failed: {e}]"
                continue
            content += f"\n\n[Tool {call.tool} result: {json.dumps(result, default=str)[:TOOL_RESULT_CHARS]}]"

        return response.model_copy(update={"content": content})

    async def _extract(
        self,
        request: PromptRequest,
        response: AgentResponse,
        memories: List[MemoryRecord],
    ) -> MemoryExtraction:
        extraction = await self._structured(
            SPAN_EXTRACT,
            compose_extraction_prompt(request.prompt, response, memories),
            MemoryExtraction,
            system=SYSTEM_PROMPTS["memory_extraction"],
            request=request,
        )

        topic = request.tags[0] if request.tags else "general"
        extracted_at = utc_now()
        for learning in extraction.learnings:
            record = await self._memory.create_memory(
                learning.content,
                learning.type,
                confidence=learning.confidence,
                tags=["learned", topic],
                source=f"interaction:{request.id}",
                key_terms=learning.key_terms,
                reasoning=learning.reasoning,
                extracted_at=extracted_at,
            )
            logger.info(f"Learned {record.type.value} {record.id} (conf {record.confidence})")

        if extraction.contradictions:
            logger.info(f"Detected {len(extraction.contradictions)} contradictions in {request.id}")
            await self._resolve_conflicts(request, extraction.contradictions)
        return extraction

    async def _resolve_conflicts(
        self,
        request: PromptRequest,
        contradictions: List[ContradictionEntry],
    ) -> None:
        resolution = await self._structured(
            SPAN_RESOLVE_CONFLICTS,
            compose_conflict_prompt(contradictions, self._memory.get),
            ConflictResolution,
            system=SYSTEM_PROMPTS["conflict_resolution"],
            request=request,
        )

        for entry in resolution.resolutions:
            record = self._memory.get(entry.memory_id)
            if record is None:
                logger.warning(f"Resolution names unknown memory {entry.memory_id}, skipping")
                continue
            if record.is_superseded:
                logger.info(f"Memory {entry.memory_id} already superseded, ignoring {entry.action}")
                continue
            if entry.action == "deprecate":
                self._memory.deprecate_memory(
                    entry.memory_id, entry.explanation or "Deprecated during conflict resolution"
                )
            elif entry.action == "flag":
                self._memory.adjust_confidence(entry.memory_id, entry.new_confidence, ValidationStatus.disputed)
            else:
                self._memory.adjust_confidence(entry.memory_id, entry.new_confidence)
            logger.info(f"Resolved {entry.memory_id}: {entry.action} (conf {entry.new_confidence})")

    # ------------------ maintenance ------------------
    def _should_reflect(self) -> bool:
        interval = self.config.reflection_interval
        return interval > 0 and self._state.interaction_count > 0 and self._state.interaction_count % interval == 0

    async def _reflect(self) -> ReflectionResult:
        records = sorted(self._memory.get_all(), key=lambda record: record.id)
        sample = self._rng.sample(records, min(len(records), self.config.reflection_sample_size))

        with self._telemetry.span(SPAN_REFLECT, attributes={"sample_size": len(sample)}) as span:
            result = await self._reasoner.generate_structured(
                compose_reflection_prompt(self._memory.stats(), sample),
                ReflectionResult,
                system=SYSTEM_PROMPTS["reflection"],
            )

            consolidated = False
            deprecated = 0
            for insight in result.insights:
                logger.info(f"Reflection insight ({insight.type}): {insight.description}")
                if insight.type == "consolidation" and not consolidated:
                    await self._memory.consolidate()
                    consolidated = True
                elif insight.type == "deprecation":
                    reason = insight.proposed_action or insight.description
                    for memory_id in insight.affected_memory_ids:
                        record = self._memory.get(memory_id)
                        if record is None or record.is_superseded:
                            continue
                        self._memory.deprecate_memory(memory_id, reason)
                        deprecated += 1

            adjusted = 0
            for adjustment in result.confidence_adjustments:
                if self._memory.get(adjustment.memory_id) is None:
                    continue
                self._memory.adjust_confidence(adjustment.memory_id, adjustment.new_confidence)
                adjusted += 1

            span.update(consolidated=consolidated, deprecated=deprecated, adjusted=adjusted)

        self._state.last_reflection = utc_now()
        logger.info(
            f"Reflection complete: consolidated={consolidated} deprecated={deprecated} adjusted={adjusted}"
        )
        return result

    async def _idle_maintenance(self) -> None:
        if len(self._memory.cache) > self.config.consolidation_high_water:
            logger.info("Memory count above high-water mark, consolidating")
            try:
                await self._memory.consolidate()
            except Exception:
                logger.exception("Idle consolidation failed")


__all__ = [
    "AgentLoop",
    "AgentLoopConfig",
    "AgentState",
    "RequestFailedError",
    "RequestTimeoutError",
]
