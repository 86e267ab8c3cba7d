"""learnloop - self-improving agent memory runtime."""

__all__ = [
    "runtime",
]
