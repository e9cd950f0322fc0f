"""
Tools package for agentloop.

This package contains the function catalog, argument resolution,
tool-call scheduling and the built-in helper functions.
"""

__all__ = ["types", "functions", "registry", "resolver", "scheduler", "builtin"]
