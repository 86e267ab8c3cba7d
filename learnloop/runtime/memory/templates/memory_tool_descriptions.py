"""
Tool descriptions for the learning loop's memory tools.

These descriptions are rendered into the response-generation prompt so the
reasoning model knows which tools it may request through ``suggestedTools``.
All tools run in-process against the file-backed memory manager.
"""

# Concise single-line descriptions for the tool listing in prompts
TOOL_DESCRIPTIONS_COMPACT = {
    "search_memory": "Search the agent memory for relevant information by semantic similarity",
    "store_memory": "Store new information as a structured memory record with front-matter metadata",
    "self_question": "Generate questions to test your own understanding of a topic",
    "consolidate_memories": "Merge similar memories into abstract concepts",
    "deprecate_memory": "Mark a memory as incorrect or obsolete and move it to the deprecated folder",
    "list_all_memories": "List all memories in the knowledge base with their metadata",
}


# Guidelines for when to use memory tools (for the response prompt)
USAGE_GUIDELINES = """
Memory Tool Guidelines:

WHEN TO STORE:
- The user states a fact, definition, or procedure worth keeping
- You derive a principle that will help answer future questions

WHEN TO DEPRECATE:
- The user explicitly corrects a memory you cited
- A memory contradicts better-supported knowledge

WHEN TO SEARCH OR SELF-QUESTION:
- The retrieved context looks thin for the request
- You are unsure whether a topic is already known

TOOL CALL FORMAT:
- suggestedTools entries carry a tool name, a parameters object, and reasoning
- Parameter names: search_memory{query, limit}, store_memory{content, type, confidence, tags},
  self_question{topic}, consolidate_memories{}, deprecate_memory{memoryId, reason},
  list_all_memories{type}
"""
