"""
Core components for agentloop.

This package provides the conversation model, model providers, streaming
primitives and the function-calling orchestration loop.
"""

__all__ = [
    "errors",
    "turn",
    "history",
    "providers",
    "openai_provider",
    "retry",
    "streaming",
    "function_calling",
]
