"""
Prompt Engineering - Learning loop prompt composition

WHAT: System prompts and composers for the five structured reasoning calls
WHERE: learnloop/runtime/memory/prompting.py - prompt generation layer
WHO: AgentLoop building classify/respond/extract/resolve/reflect requests
TIME: Prompt assembly <1ms

Each reasoning call is sent as a system prompt (the task description) plus a
user message composed here from the request, retrieved memories and
knowledge-base statistics. Memory previews are truncated (100 chars for mode
detection and extraction, 150 for response context, 80 for conflict and
reflection listings) to keep prompts within small local-model context windows.
"""

from __future__ import annotations

import json
from typing import Callable, Iterable, Mapping, Optional, Sequence

from .models import MemoryRecord
from .schemas import AgentResponse, ContradictionEntry, LearningMode
from .templates.memory_tool_descriptions import TOOL_DESCRIPTIONS_COMPACT, USAGE_GUIDELINES

AGENT_PERSONA = (
    "You are a self-improving agent with explicit, file-backed memory. Every interaction is "
    "handled in one of three learning modes:\n\n"
    "ASSIMILATE: New information fits what you already know. Strengthen connections and integrate it.\n"
    "ACCOMMODATE: New information conflicts with what you know. Hold both hypotheses and look for resolution.\n"
    "PRUNE: Something you know is wrong or obsolete. Mark it for deprecation.\n\n"
    "Principles:\n"
    "1. Cite relevant memories by id when you use them\n"
    "2. State uncertainty explicitly with confidence scores\n"
    "3. Request tools when your memory is insufficient\n"
    "4. Consider what should be learned from each interaction\n"
    "5. Surface contradictions instead of silently picking a side\n\n"
    "Memory tools: {tools}"
)

SYSTEM_PROMPTS = {
    "default": AGENT_PERSONA.format(tools=", ".join(TOOL_DESCRIPTIONS_COMPACT)),
    "learning_mode_detection": (
        "Classify the current request into a learning mode given the retrieved memories.\n\n"
        "ASSIMILATE: the request extends or refines existing knowledge without conflict.\n"
        "ACCOMMODATE: the request contradicts or challenges existing knowledge.\n"
        "PRUNE: the user corrects you, says something is wrong, or asks you to forget.\n\n"
        "Weigh semantic overlap with the memories, contradiction markers (not, never, wrong, "
        "incorrect, actually), the user's intent (teaching, correcting, querying) and the "
        "confidence of the relevant memories.\n\n"
        "Answer with JSON: mode, confidence (0-1), reasoning, relevantMemoryIds."
    ),
    "memory_extraction": (
        "Extract durable learnings from this interaction:\n\n"
        "1. FACTS: specific data points, names, dates, values\n"
        "2. CONCEPTS: abstract patterns, principles, relationships\n"
        "3. PROCEDURES: step-by-step methods\n\n"
        "Give each learning a confidence that reflects how reliable its source is, list key terms "
        "for later retrieval, and report any contradiction with the prior memories shown.\n"
        "Add 2-3 follow-up questions that would verify real understanding.\n\n"
        "Answer with JSON: learnings[{type, content, confidence, keyTerms, reasoning}], "
        "contradictions[{existingMemoryId, conflictingContent, resolutionStrategy}], questions[]."
    ),
    "reflection": (
        "You are reflecting on your own knowledge base. Look for:\n\n"
        "1. CONSOLIDATION: similar memories that should become one abstract concept\n"
        "2. DEPRECATION: outdated, wrong or harmful memories to retire\n"
        "3. VERIFICATION: unverified claims that need validation\n"
        "4. GAPS: missing knowledge that limits your reasoning\n\n"
        "Name the affected memory ids and a concrete action for each insight.\n\n"
        "Answer with JSON: insights[{type, description, affectedMemoryIds, proposedAction}], "
        "knowledgeGaps[{topic, severity, suggestedInvestigation}], "
        "confidenceAdjustments[{memoryId, newConfidence, reason}]."
    ),
    "conflict_resolution": (
        "Resolve conflicts between stored memories and new information. For each conflict weigh "
        "the evidence, the authority of each source, recency and breadth of applicability.\n\n"
        "Choose one action per memory: keep (retain it), deprecate (retire it), merge (combine), "
        "or flag (needs human review), and set its new confidence.\n\n"
        "Answer with JSON: resolutions[{memoryId, action, newConfidence, explanation}]."
    ),
    "response_generation": (
        "Answer the user's request. Work through the request and the context, decide which "
        "memories apply, assess how certain you are, then write a clear answer that cites memory "
        "ids where possible and proposes follow-up questions.\n\n"
        "If the memories are insufficient, say so and say what you would need to learn.\n\n"
        "Answer with JSON: content, thoughts, usedMemories[], confidence, "
        "suggestedTools[{tool, parameters, reasoning}], followUpQuestions[]."
    ),
}

MODE_PREVIEW_CHARS = 100
CONTEXT_PREVIEW_CHARS = 150
LISTING_PREVIEW_CHARS = 80


def format_memory_line(record: MemoryRecord, preview_chars: int = MODE_PREVIEW_CHARS) -> str:
    return (
        f"- [{record.type.value}] {record.preview(preview_chars)} "
        f"(ID: {record.id}, Confidence: {record.confidence})"
    )


def format_tool_listing(tools: Mapping[str, str]) -> str:
    return "\n".join(f"- {name}: {description}" for name, description in tools.items())


def compose_mode_prompt(request_prompt: str, memories: Sequence[MemoryRecord]) -> str:
    lines = [format_memory_line(m, MODE_PREVIEW_CHARS) for m in memories] or ["- (none)"]
    return (
        f'User Request: "{request_prompt}"\n\n'
        "Relevant Existing Memories:\n"
        + "\n".join(lines)
        + "\n\nDetermine the learning mode."
    )


def compose_response_prompt(
    request_prompt: str,
    mode: LearningMode,
    memories: Sequence[MemoryRecord],
    tools: Mapping[str, str],
) -> str:
    if memories:
        context = "Relevant Context from Knowledge Base:\n" + "\n".join(
            f"- [{m.type.value}] {m.preview(CONTEXT_PREVIEW_CHARS)}... (ID: {m.id}, conf: {m.confidence})"
            for m in memories
        )
    else:
        context = "No relevant memories found in storage."

    return (
        f"Current Learning Mode: {mode.mode} - {mode.reasoning}\n\n"
        f"{context}\n\n"
        f"Available Tools:\n{format_tool_listing(tools)}\n"
        f"{USAGE_GUIDELINES}\n"
        f'User Request: "{request_prompt}"\n\n'
        "Generate your response following the schema."
    )


def compose_response_system_prompt() -> str:
    return f"{SYSTEM_PROMPTS['default']}\n\n{SYSTEM_PROMPTS['response_generation']}"


def compose_extraction_prompt(
    request_prompt: str,
    response: AgentResponse,
    prior_memories: Sequence[MemoryRecord],
) -> str:
    prior = [f"- {m.id}: {m.preview(MODE_PREVIEW_CHARS)}" for m in prior_memories] or ["- (none)"]
    return (
        "Interaction:\n"
        f'- User: "{request_prompt}"\n'
        f'- Agent: "{response.content}"\n'
        f'- Thoughts: "{response.thoughts}"\n\n'
        "Prior Memories:\n"
        + "\n".join(prior)
        + "\n\nExtract structured learnings and identify any contradictions."
    )


def compose_conflict_prompt(
    contradictions: Iterable[ContradictionEntry],
    lookup: Callable[[str], Optional[MemoryRecord]],
) -> str:
    contradictions = list(contradictions)
    conflicts = "\n".join(
        f'- Memory {c.existing_memory_id}: "{c.conflicting_content}"\n'
        f"  Proposed strategy: {c.resolution_strategy}"
        for c in contradictions
    )

    states = []
    for c in contradictions:
        record = lookup(c.existing_memory_id)
        if record is None:
            states.append(f"- {c.existing_memory_id}: (not found)")
        else:
            states.append(
                f'- {record.id}: "{record.preview(LISTING_PREVIEW_CHARS)}..." '
                f"(conf: {record.confidence}, status: {record.validation_status.value})"
            )

    return (
        f"Contradictions to resolve:\n{conflicts}\n\n"
        "Current Memory States:\n"
        + "\n".join(states)
        + "\n\nResolve each conflict with explicit reasoning."
    )


def compose_reflection_prompt(stats: Mapping[str, object], sample: Sequence[MemoryRecord]) -> str:
    lines = [
        f"- [{m.type.value}] {m.preview(LISTING_PREVIEW_CHARS)}... "
        f"(ID: {m.id}, conf: {m.confidence}, accesses: {m.access_count})"
        for m in sample
    ] or ["- (empty)"]
    return (
        f"Knowledge Base Statistics:\n{json.dumps(stats, indent=2, default=str)}\n\n"
        "Sample Memories from Storage:\n"
        + "\n".join(lines)
        + "\n\nAnalyze and propose improvements."
    )


__all__ = [
    "SYSTEM_PROMPTS",
    "compose_conflict_prompt",
    "compose_extraction_prompt",
    "compose_mode_prompt",
    "compose_reflection_prompt",
    "compose_response_prompt",
    "compose_response_system_prompt",
    "format_memory_line",
    "format_tool_listing",
]
