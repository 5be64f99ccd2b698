"""Core AI pipeline: LangGraph flow graph, retry, normalization, provider clients."""

__all__ = [
    "context",
    "engine",
    "flows",
    "graph",
    "llm_client",
    "normalizer",
    "retry",
    "schemas",
]
