"""
Runtime Module

WHAT: Runtime subsystem for the learning loop: memory, request intake and reasoning
WHERE: learnloop/runtime/ - everything that runs inside the agent process
WHO: Applications embedding a self-improving agent with file-backed memory
TIME: Per-request latency dominated by local model inference (1-30s)

Memory Architecture:
- records: front-matter text files under memories/<type>/
- index: database.json sidecar (id→file, type counts, tags, recent access)
- vectors: cached embeddings, persisted in each record header

Learning Modes:
- assimilate: new information fits existing knowledge
- accommodate: new information conflicts with existing knowledge
- prune: existing knowledge is wrong or obsolete
"""

__all__ = ["memory"]
