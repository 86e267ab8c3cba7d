import asyncio
import logging
import random

import pytest
from pydantic import BaseModel

from learnloop.runtime.memory.agent_loop import AgentLoop, AgentLoopConfig, RequestFailedError, RequestTimeoutError
from learnloop.runtime.memory.memory_manager import MemoryManager
from learnloop.runtime.memory.models import MemoryType, ValidationStatus
from learnloop.runtime.memory.record_store import RecordStore, RecordStoreConfig
from learnloop.runtime.memory.schemas import (
    AgentResponse,
    ConflictResolution,
    LearningMode,
    MemoryExtraction,
    ReflectionResult,
)
from learnloop.runtime.memory.telemetry import (
    SPAN_CLASSIFY,
    SPAN_EXTRACT,
    SPAN_PROCESS_REQUEST,
    SPAN_REFLECT,
    SPAN_RESPOND,
    LoggingTelemetryClient,
    TelemetryClient,
)
from learnloop.runtime.memory.tools import ToolDefinition


class CaptureTelemetryClient(TelemetryClient):
    def __init__(self):
        self.spans = []

    def emit_span(self, name, attributes):
        self.spans.append((name, dict(attributes)))


@pytest.fixture
def build_loop(tmp_path, vocabulary_embedder):
    def build(reasoner, *, seed=False, telemetry=None, **config):
        store = RecordStore(RecordStoreConfig(base_path=tmp_path / "db", seed_defaults=seed))
        memory = MemoryManager(store, vocabulary_embedder)
        loop = AgentLoop(
            memory,
            reasoner,
            config=AgentLoopConfig(idle_interval_s=0.0, **config),
            telemetry=telemetry,
            rng=random.Random(7),
        )
        asyncio.run(loop.initialize())
        return loop

    return build


async def _serve(loop, prompt, **kwargs):
    task = asyncio.create_task(loop.submit(prompt, **kwargs))
    await asyncio.sleep(0)
    await loop.run_once()
    return await task


def test_learning_mode_question_retrieves_mode_memories(build_loop, scripted_reasoner):
    reasoner = scripted_reasoner
    loop = build_loop(reasoner, seed=True)

    answer = asyncio.run(_serve(loop, "What are the three learning modes?"))

    assert answer == "ok"
    context_ids = [record.id for record in loop.state.current_context]
    assert len(context_ids) == 5
    assert context_ids[0] == "mem_default_001"
    assert {"mem_default_002", "mem_default_003", "mem_default_004"} <= set(context_ids)
    assert loop.state.learning_mode == "assimilate"
    assert loop.state.interaction_count == 1

    mode_prompt = reasoner.calls_for(LearningMode)[0][0]
    assert "mem_default_002" in mode_prompt
    assert len(reasoner.calls_for(AgentResponse)) == 1
    assert len(reasoner.calls_for(MemoryExtraction)) == 1
    assert reasoner.calls_for(ConflictResolution) == []


def test_start_serves_submitted_requests_until_stopped(build_loop, scripted_reasoner):
    loop = build_loop(scripted_reasoner)

    async def scenario():
        runner = asyncio.create_task(loop.start())
        first = await loop.submit("first", timeout=5)
        second = await loop.submit("second", priority=3, timeout=5)
        loop.stop()
        await runner
        return first, second

    assert asyncio.run(scenario()) == ("ok", "ok")
    assert not loop.is_running
    assert loop.queue.get_status()["completed"] == 2


def test_pipeline_failure_fails_request_and_loop_continues(build_loop, scripted_reasoner):
    reasoner = scripted_reasoner
    reasoner.queue(AgentResponse, RuntimeError("model offline"))
    loop = build_loop(reasoner)

    with pytest.raises(RequestFailedError, match="model offline"):
        asyncio.run(_serve(loop, "first"))
    assert asyncio.run(_serve(loop, "second")) == "ok"

    status = loop.queue.get_status()
    assert status["failed"] == 1
    assert status["completed"] == 1
    assert loop.state.interaction_count == 2


def test_submit_timeout_leaves_request_queued(build_loop, scripted_reasoner):
    loop = build_loop(scripted_reasoner)

    with pytest.raises(RequestTimeoutError):
        asyncio.run(loop.submit("nobody is listening", timeout=0.01))

    assert loop.queue.get_status()["pending"] == 1
    assert asyncio.run(loop.run_once()) is True
    assert loop.queue.get_status()["completed"] == 1


def test_suggested_tools_run_in_order_and_report_inline(build_loop, scripted_reasoner):
    reasoner = scripted_reasoner
    reasoner.queue(
        AgentResponse,
        {
            "content": "Noted.",
            "confidence": 0.7,
            "suggestedTools": [
                {"tool": "store_memory", "parameters": {"content": "Paris is in France", "type": "fact", "confidence": 0.9}},
                {"tool": "teleport", "parameters": {}},
                {"tool": "search_memory", "parameters": {}},
            ],
        },
    )
    loop = build_loop(reasoner)

    answer = asyncio.run(_serve(loop, "Remember that Paris is in France"))

    assert answer.startswith("Noted.\n\n[Tool store_memory result: ")
    assert "teleport" not in answer
    assert "\n\n[Tool search_memory failed: " in answer

    stored = [r for r in loop.memory.get_all() if r.content == "Paris is in France"]
    assert len(stored) == 1
    assert stored[0].confidence == 0.9
    assert stored[0].source.startswith("tool:store_memory:req_")


def test_learnings_are_stored_with_topic_tag_and_source(build_loop, scripted_reasoner):
    reasoner = scripted_reasoner
    reasoner.queue(
        MemoryExtraction,
        {
            "learnings": [
                {"type": "fact", "content": "Exams reward spaced review", "confidence": 0.8, "keyTerms": ["exam"]},
                {"type": "procedure", "content": "Review notes every evening", "confidence": 0.6},
            ]
        },
    )
    loop = build_loop(reasoner)

    asyncio.run(_serve(loop, "How do I prepare for exams?", metadata={"tags": ["study"]}))

    learned = {r.content: r for r in loop.memory.get_all()}
    fact = learned["Exams reward spaced review"]
    assert fact.type is MemoryType.fact
    assert fact.tags == ["learned", "study"]
    assert fact.source.startswith("interaction:req_")
    assert fact.key_terms == ["exam"]
    assert fact.extracted_at is not None
    assert learned["Review notes every evening"].type is MemoryType.procedure
    assert loop.memory.store.list_all(type="procedure") == [learned["Review notes every evening"].id]


def test_learnings_without_request_tags_use_general_topic(build_loop, scripted_reasoner):
    reasoner = scripted_reasoner
    reasoner.queue(MemoryExtraction, {"learnings": [{"type": "concept", "content": "Storage", "confidence": 0.5}]})
    loop = build_loop(reasoner)

    asyncio.run(_serve(loop, "anything"))

    assert loop.memory.get_all()[0].tags == ["learned", "general"]


def test_contradictions_are_resolved(build_loop, scripted_reasoner):
    reasoner = scripted_reasoner
    loop = build_loop(reasoner)
    wrong = asyncio.run(loop.memory.create_memory("The exam is on Monday"))
    shaky = asyncio.run(loop.memory.create_memory("The exam is critical"))
    solid = asyncio.run(loop.memory.create_memory("Storage is cheap"))
    already = asyncio.run(loop.memory.create_memory("Old embedding notes"))
    loop.memory.deprecate_memory(already.id, "outdated")

    reasoner.queue(
        MemoryExtraction,
        {
            "contradictions": [
                {"existingMemoryId": wrong.id, "conflictingContent": "It moved to Friday", "resolutionStrategy": "supersede"}
            ]
        },
    )
    reasoner.queue(
        ConflictResolution,
        {
            "resolutions": [
                {"memoryId": wrong.id, "action": "deprecate", "newConfidence": 0.1, "explanation": "Exam moved"},
                {"memoryId": shaky.id, "action": "flag", "newConfidence": 0.3},
                {"memoryId": solid.id, "action": "keep", "newConfidence": 0.9},
                {"memoryId": already.id, "action": "deprecate", "newConfidence": 0.0, "explanation": "again"},
                {"memoryId": "mem_unknown", "action": "keep", "newConfidence": 0.5},
            ]
        },
    )

    assert asyncio.run(_serve(loop, "The exam moved to Friday")) == "ok"

    conflict_prompt = reasoner.calls_for(ConflictResolution)[0][0]
    assert wrong.id in conflict_prompt
    assert loop.memory.get(wrong.id).is_superseded
    assert loop.memory.get(wrong.id).deprecation_reason == "Exam moved"
    assert loop.memory.get(shaky.id).validation_status is ValidationStatus.disputed
    assert loop.memory.get(shaky.id).confidence == 0.3
    assert loop.memory.get(solid.id).confidence == 0.9
    assert loop.memory.get(solid.id).validation_status is ValidationStatus.unverified
    assert loop.memory.get(already.id).deprecation_reason == "outdated"


def test_reflection_consolidates_deprecates_and_adjusts(build_loop, scripted_reasoner):
    reasoner = scripted_reasoner
    loop = build_loop(reasoner, reflection_interval=1)
    first = asyncio.run(loop.memory.create_memory("prune mode"))
    second = asyncio.run(loop.memory.create_memory("prune modes"))
    stale = asyncio.run(loop.memory.create_memory("critical exam"))
    kept = asyncio.run(loop.memory.create_memory("storage embedding"))

    reasoner.queue(
        ReflectionResult,
        {
            "insights": [
                {"type": "consolidation", "description": "Two prune notes overlap"},
                {"type": "consolidation", "description": "Still overlapping"},
                {
                    "type": "deprecation",
                    "description": "Exam note is stale",
                    "affectedMemoryIds": [stale.id, "mem_unknown"],
                    "proposedAction": "Outdated",
                },
                {"type": "gap", "description": "Nothing about reflection"},
            ],
            "confidenceAdjustments": [
                {"memoryId": kept.id, "newConfidence": 0.95, "reason": "verified"},
                {"memoryId": "mem_unknown", "newConfidence": 0.1},
            ],
        },
    )

    asyncio.run(_serve(loop, "hello"))

    assert len(reasoner.calls_for(ReflectionResult)) == 1
    concepts = [r for r in loop.memory.get_all() if r.type is MemoryType.concept]
    assert len(concepts) == 1
    assert sorted(concepts[0].merged_from) == sorted([first.id, second.id])
    assert loop.memory.get(first.id).superseded_by == concepts[0].id
    assert loop.memory.get(stale.id).deprecation_reason == "Outdated"
    assert loop.memory.get(kept.id).confidence == 0.95
    assert loop.state.last_reflection is not None


def test_reflection_runs_on_interval_only(build_loop, scripted_reasoner):
    reasoner = scripted_reasoner
    loop = build_loop(reasoner, reflection_interval=2)

    asyncio.run(_serve(loop, "one"))
    assert reasoner.calls_for(ReflectionResult) == []
    assert loop.state.last_reflection is None

    asyncio.run(_serve(loop, "two"))
    assert len(reasoner.calls_for(ReflectionResult)) == 1


def test_reflection_failure_is_logged_not_raised(build_loop, scripted_reasoner, caplog):
    reasoner = scripted_reasoner
    reasoner.queue(ReflectionResult, RuntimeError("reflection exploded"))
    loop = build_loop(reasoner, reflection_interval=1)

    with caplog.at_level(logging.ERROR):
        assert asyncio.run(_serve(loop, "hello")) == "ok"

    assert "Reflection pass failed" in caplog.text
    assert loop.state.last_reflection is None


def test_idle_maintenance_consolidates_above_high_water(build_loop, scripted_reasoner):
    loop = build_loop(scripted_reasoner, consolidation_high_water=1)
    asyncio.run(loop.memory.create_memory("prune mode"))
    asyncio.run(loop.memory.create_memory("prune modes"))

    assert asyncio.run(loop.run_once()) is False

    assert loop.memory.stats()["superseded_count"] == 2
    assert loop.memory.stats()["by_type"]["concept"] == 1


def test_idle_maintenance_below_high_water_does_nothing(build_loop, scripted_reasoner):
    loop = build_loop(scripted_reasoner)
    asyncio.run(loop.memory.create_memory("prune mode"))
    asyncio.run(loop.memory.create_memory("prune modes"))

    asyncio.run(loop.run_once())

    assert loop.memory.stats()["superseded_count"] == 0


class EchoParams(BaseModel):
    text: str


async def _echo(params, context):
    return {"echo": params.text}


def test_registered_tool_is_listed_and_executed(build_loop, scripted_reasoner):
    reasoner = scripted_reasoner
    reasoner.queue(
        AgentResponse,
        {"content": "Echoing.", "confidence": 0.5, "suggestedTools": [{"tool": "echo", "parameters": {"text": "hi"}}]},
    )
    loop = build_loop(reasoner)
    loop.register_tool(ToolDefinition("echo", "Repeat the given text", EchoParams, _echo))

    answer = asyncio.run(_serve(loop, "say hi"))

    assert "echo" in loop.tools
    assert "- echo: Repeat the given text" in reasoner.calls_for(AgentResponse)[0][0]
    assert answer == 'Echoing.\n\n[Tool echo result: {"echo": "hi"}]'


def test_state_is_a_copy(build_loop, scripted_reasoner):
    loop = build_loop(scripted_reasoner)
    snapshot = loop.state
    snapshot.interaction_count = 99
    snapshot.current_context.append(None)

    assert loop.state.interaction_count == 0
    assert loop.state.current_context == []


def test_spans_cover_each_pipeline_step(build_loop, scripted_reasoner):
    telemetry = CaptureTelemetryClient()
    loop = build_loop(scripted_reasoner, telemetry=telemetry)

    asyncio.run(_serve(loop, "hello"))

    names = [name for name, _ in telemetry.spans]
    assert names == [SPAN_CLASSIFY, SPAN_RESPOND, SPAN_EXTRACT, SPAN_PROCESS_REQUEST]
    request_span = telemetry.spans[-1][1]
    assert request_span["success"] is True
    assert request_span["learning_mode"] == "assimilate"
    assert request_span["learnings_stored"] == 0
    assert request_span["request_id"].startswith("req_")
    assert "duration_ms" in request_span
    assert telemetry.spans[0][1]["schema"] == "LearningMode"


def test_failed_request_span_records_error(build_loop, scripted_reasoner):
    telemetry = CaptureTelemetryClient()
    reasoner = scripted_reasoner
    reasoner.queue(LearningMode, ValueError("bad mode"))
    loop = build_loop(reasoner, telemetry=telemetry)

    with pytest.raises(RequestFailedError):
        asyncio.run(_serve(loop, "hello"))

    spans = dict(telemetry.spans)
    assert spans[SPAN_CLASSIFY]["success"] is False
    assert spans[SPAN_CLASSIFY]["error"] == "ValueError"
    assert spans[SPAN_PROCESS_REQUEST]["success"] is False
    assert spans[SPAN_PROCESS_REQUEST]["error"] == "ValueError"


def test_logging_telemetry_client_writes_span(caplog):
    client = LoggingTelemetryClient()
    with caplog.at_level(logging.DEBUG, logger="learnloop.telemetry"):
        with client.span("learnloop.test", attributes={"request_id": "req_1"}):
            pass

    assert "[telemetry] learnloop.test:" in caplog.text
    assert "'request_id': 'req_1'" in caplog.text
    assert "'success': True" in caplog.text


def test_resolution_cannot_revive_a_memory_it_just_deprecated(build_loop, scripted_reasoner):
    reasoner = scripted_reasoner
    loop = build_loop(reasoner)
    target = asyncio.run(loop.memory.create_memory("The exam is on Monday"))

    reasoner.queue(
        MemoryExtraction,
        {
            "contradictions": [
                {"existingMemoryId": target.id, "conflictingContent": "Friday", "resolutionStrategy": "supersede"}
            ]
        },
    )
    reasoner.queue(
        ConflictResolution,
        {
            "resolutions": [
                {"memoryId": target.id, "action": "deprecate", "newConfidence": 0.1, "explanation": "Exam moved"},
                {"memoryId": target.id, "action": "flag", "newConfidence": 0.4},
                {"memoryId": target.id, "action": "keep", "newConfidence": 0.9},
            ]
        },
    )

    assert asyncio.run(_serve(loop, "The exam moved to Friday")) == "ok"

    record = loop.memory.get(target.id)
    assert record.type is MemoryType.deprecated
    assert record.validation_status is ValidationStatus.superseded
    assert record.confidence == target.confidence
    assert asyncio.run(loop.memory.retrieve("The exam is on Monday")) == []


def test_reflect_span_reports_counts(build_loop, scripted_reasoner):
    telemetry = CaptureTelemetryClient()
    loop = build_loop(scripted_reasoner, telemetry=telemetry, reflection_interval=1)

    asyncio.run(_serve(loop, "hello"))

    name, attributes = telemetry.spans[-1]
    assert name == SPAN_REFLECT
    assert attributes["success"] is True
    assert attributes["consolidated"] is False
    assert attributes["deprecated"] == 0
    assert attributes["adjusted"] == 0


def test_mark_failed_is_kept_when_block_exits_cleanly():
    telemetry = CaptureTelemetryClient()

    with telemetry.span("learnloop.test", attributes={"request_id": "req_1"}) as span:
        span.update(stage="respond")
        span.mark_failed(KeyError("missing"))

    name, attributes = telemetry.spans[0]
    assert name == "learnloop.test"
    assert attributes["success"] is False
    assert attributes["error"] == "KeyError"
    assert attributes["stage"] == "respond"
    assert attributes["request_id"] == "req_1"
