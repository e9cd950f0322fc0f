"""
Configuration management for agentloop.
"""

from .settings import AgentLoopSettings, get_settings

__all__ = ["AgentLoopSettings", "get_settings"]
