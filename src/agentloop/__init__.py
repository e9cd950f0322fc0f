"""
agentloop - a function-calling orchestration engine.

This package lets a conversational model request execution of registered
functions, feeds the results back as conversation turns, and keeps going
until the model produces a final answer.
"""

__version__ = "0.1.0"
__author__ = "agentloop Team"
__license__ = "Apache-2.0"

from typing import Final

# Package metadata
VERSION: Final[str] = __version__
PACKAGE_NAME: Final[str] = "agentloop"
USER_AGENT: Final[str] = f"{PACKAGE_NAME}/{VERSION}"

__all__ = [
    "__version__",
    "VERSION",
    "PACKAGE_NAME",
    "USER_AGENT",
]
