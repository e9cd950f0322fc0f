"""
CLI interface package for agentloop.

This package contains the command-line application.
"""

__all__ = ["app"]
