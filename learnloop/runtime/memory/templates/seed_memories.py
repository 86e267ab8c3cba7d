"""
Default seed catalog written on first run so the knowledge base is never empty.

Seeded records are written with ``validationStatus: verified`` and version 1.
They carry no embedding; the memory manager backfills vectors on startup.
"""

DEFAULT_SEED_MEMORIES = [
    {
        "id": "mem_default_001",
        "content": (
            "The agent operates on three learning modes: assimilate, accommodate, and prune. "
            "These correspond to Piaget's theory of cognitive development adapted for AI systems."
        ),
        "type": "concept",
        "confidence": 0.95,
        "tags": ["meta", "learning-theory", "core-concept"],
        "connections": ["mem_default_002", "mem_default_003", "mem_default_004"],
    },
    {
        "id": "mem_default_002",
        "content": (
            "ASSIMILATE mode: New information fits existing knowledge schemas. The agent strengthens "
            "connections between related memories and increases confidence scores when evidence is "
            "consistent."
        ),
        "type": "procedure",
        "confidence": 0.9,
        "tags": ["meta", "learning-modes", "assimilate"],
        "connections": ["mem_default_001"],
    },
    {
        "id": "mem_default_003",
        "content": (
            "ACCOMMODATE mode: New information conflicts with existing knowledge. The agent holds "
            "multiple hypotheses in tension and seeks evidence to resolve conflicts, potentially "
            "restructuring knowledge graphs."
        ),
        "type": "procedure",
        "confidence": 0.9,
        "tags": ["meta", "learning-modes", "accommodate"],
        "connections": ["mem_default_001"],
    },
    {
        "id": "mem_default_004",
        "content": (
            "PRUNE mode: Existing knowledge is identified as incorrect, obsolete, or harmful. The agent "
            "marks memories as deprecated but retains provenance for audit trails and moves them to "
            "the deprecated folder."
        ),
        "type": "procedure",
        "confidence": 0.9,
        "tags": ["meta", "learning-modes", "prune"],
        "connections": ["mem_default_001"],
    },
    {
        "id": "mem_default_005",
        "content": (
            "Memory storage uses Markdown files with a front-matter header for metadata and a JSON "
            "index for lookups. This enables human-readable persistent storage with versioning."
        ),
        "type": "fact",
        "confidence": 1.0,
        "tags": ["meta", "storage", "architecture", "filesystem"],
        "connections": ["mem_default_006"],
    },
    {
        "id": "mem_default_006",
        "content": (
            "Vector embeddings are generated by a local OpenAI-compatible embedding model, enabling "
            "semantic search without external API dependencies. Embeddings are stored in the record "
            "header as arrays."
        ),
        "type": "fact",
        "confidence": 0.95,
        "tags": ["meta", "embeddings", "local-ai"],
        "connections": ["mem_default_005"],
    },
    {
        "id": "mem_default_007",
        "content": (
            "Critical thinking involves examining assumptions, evaluating evidence, considering "
            "alternatives, and reflecting on the reasoning process itself. It requires metacognitive "
            "awareness."
        ),
        "type": "concept",
        "confidence": 0.85,
        "tags": ["cognition", "critical-thinking", "reasoning", "metacognition"],
        "connections": ["mem_default_008"],
    },
    {
        "id": "mem_default_008",
        "content": (
            "When evaluating exam quality: 1) Distractors should reveal specific misconceptions, "
            "2) Questions should test transfer not just recall, 3) Confidence calibration identifies "
            "overconfidence, 4) Spacing and interleaving improve retention."
        ),
        "type": "procedure",
        "confidence": 0.8,
        "tags": ["education", "exams", "evaluation", "pedagogy"],
        "connections": ["mem_default_007"],
    },
    {
        "id": "mem_default_009",
        "content": (
            "The record store automatically creates all necessary directories (facts, concepts, "
            "procedures, contexts, deprecated) and initializes the database.json index file with "
            "version tracking."
        ),
        "type": "fact",
        "confidence": 1.0,
        "tags": ["meta", "storage", "initialization"],
        "connections": ["mem_default_005"],
    },
    {
        "id": "mem_default_010",
        "content": (
            "Self-reflection in AI agents should occur periodically (every N interactions) and analyze: "
            "knowledge consolidation opportunities, deprecated memories needing cleanup, verification of "
            "unverified claims, and identification of knowledge gaps."
        ),
        "type": "procedure",
        "confidence": 0.85,
        "tags": ["meta", "reflection", "maintenance", "self-improvement"],
        "connections": ["mem_default_001", "mem_default_007"],
    },
]
