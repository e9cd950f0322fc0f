"""
Configuration settings for agentloop.

This module provides configuration management using Pydantic settings
with support for environment variables and .env files.
"""

from typing import Optional, Dict, Any
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AgentLoopSettings(BaseSettings):
    """
    Main configuration settings for agentloop.

    Settings are loaded from multiple sources in order of preference:
    1. Environment variables (prefixed with AGENTLOOP_)
    2. A .env file in the working directory
    3. Default values
    """

    model_config = SettingsConfigDict(
        env_prefix="AGENTLOOP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Provider Configuration
    api_key: Optional[str] = Field(
        default=None,
        description="API key for the model provider"
    )

    base_url: str = Field(
        default="https://api.openai.com/v1",
        description="Base URL of an OpenAI-compatible chat completions API"
    )

    model: str = Field(
        default="gpt-4o-mini",
        description="Default model to use"
    )

    max_tokens: int = Field(
        default=4096,
        description="Maximum tokens for responses",
        gt=0
    )

    temperature: float = Field(
        default=0.7,
        description="Temperature for response generation",
        ge=0.0,
        le=2.0
    )

    request_timeout: float = Field(
        default=60.0,
        description="Model request timeout in seconds",
        gt=0
    )

    # Orchestration Configuration
    max_iterations: int = Field(
        default=8,
        description="Maximum tool-call cycles per user message",
        gt=0
    )

    invocation_mode: str = Field(
        default="auto",
        description="Tool invocation mode: 'auto' or 'manual'"
    )

    streaming: bool = Field(
        default=False,
        description="Request streamed model output"
    )

    tool_timeout: Optional[float] = Field(
        default=None,
        description="Per-call wall-clock budget for function invocations in seconds",
        gt=0
    )

    concurrent_tool_calls: bool = Field(
        default=True,
        description="Execute independent tool calls of one turn concurrently"
    )

    default_namespace: Optional[str] = Field(
        default=None,
        description="Namespace used for tool calls that carry no namespace"
    )

    # Logging Configuration
    log_level: str = Field(
        default="WARNING",
        description="Logging level"
    )

    debug: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    @field_validator("invocation_mode")
    @classmethod
    def validate_invocation_mode(cls, v: str) -> str:
        """Validate invocation mode."""
        v_lower = v.lower()
        if v_lower not in {"auto", "manual"}:
            raise ValueError(f"Invalid invocation mode '{v}'. Valid modes: auto, manual")
        return v_lower

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level '{v}'. Valid levels: {', '.join(sorted(valid_levels))}")
        return v_upper

    @property
    def effective_log_level(self) -> str:
        """Log level after applying debug mode."""
        return "DEBUG" if self.debug else self.log_level

    @property
    def is_configured(self) -> bool:
        """Check if a remote provider can be used."""
        return self.api_key is not None

    def to_dict(self) -> Dict[str, Any]:
        """Convert settings to dictionary, excluding sensitive data."""
        data = self.model_dump()
        if data.get("api_key"):
            data["api_key"] = "***masked***"
        return data


def get_settings() -> AgentLoopSettings:
    """Get the current agentloop settings."""
    return AgentLoopSettings()
