"""Shared cross-cutting concerns: config, interfaces, models, prompts, provider errors."""

__all__ = [
    "config",
    "constants",
    "errors",
    "interfaces",
    "models",
    "prompts",
    "call_limiter",
]
