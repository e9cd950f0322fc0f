"""
Exponential backoff retry for model providers.

The orchestration loop never retries on its own; wrap a provider in
RetryingProvider to retry transient failures such as rate limits, server
errors and network problems before they reach the loop.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, Sequence

from .errors import ProviderUnavailableError, classify_provider_error
from .providers import ChatProvider, GenerationSettings
from .streaming import StreamDelta
from .turn import Turn

logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_attempts: int = 3
    initial_delay_ms: int = 1000
    max_delay_ms: int = 30000
    backoff_multiplier: float = 2.0
    jitter: bool = True
    jitter_range: float = 0.1  # ±10% jitter

    # Custom retry condition
    should_retry_func: Optional[Callable[[ProviderUnavailableError], bool]] = None


class RetryStats:
    """Statistics about retry attempts."""

    def __init__(self):
        self.total_attempts = 0
        self.failed_attempts = 0
        self.total_delay_ms = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_attempts": self.total_attempts,
            "failed_attempts": self.failed_attempts,
            "total_delay_ms": self.total_delay_ms,
        }


class RetryingProvider(ChatProvider):
    """Provider wrapper that retries retryable provider failures."""

    def __init__(
        self,
        provider: ChatProvider,
        config: Optional[RetryConfig] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        self.provider = provider
        self.config = config or RetryConfig()
        self._sleep = sleep
        self.stats = RetryStats()

    def _should_retry(self, error: ProviderUnavailableError, attempt: int) -> bool:
        if attempt + 1 >= self.config.max_attempts:
            return False
        if self.config.should_retry_func:
            return self.config.should_retry_func(error)
        return error.retryable

    def _calculate_delay(self, attempt: int) -> int:
        """Calculate delay in milliseconds for the given attempt (0-based)."""
        delay = self.config.initial_delay_ms * (self.config.backoff_multiplier ** attempt)
        delay = min(delay, self.config.max_delay_ms)
        if self.config.jitter:
            jitter_amount = delay * self.config.jitter_range
            delay += random.uniform(-jitter_amount, jitter_amount)
        return max(0, int(delay))

    async def _on_failure(self, error: BaseException, attempt: int) -> None:
        """Raise the classified error, or wait before the next attempt."""
        self.stats.failed_attempts += 1
        provider_error = classify_provider_error(error)

        logger.warning(
            f"Attempt {attempt + 1}/{self.config.max_attempts} failed: {provider_error}"
        )
        if not self._should_retry(provider_error, attempt):
            logger.error(f"Not retrying after {attempt + 1} attempts: {provider_error}")
            raise provider_error

        delay_ms = self._calculate_delay(attempt)
        self.stats.total_delay_ms += delay_ms
        logger.info(f"Retrying in {delay_ms}ms")
        await self._sleep(delay_ms / 1000)

    async def complete(self, turns: Sequence[Turn], settings: GenerationSettings) -> Turn:
        attempt = 0
        while True:
            self.stats.total_attempts += 1
            try:
                result = await self.provider.complete(turns, settings)
                if attempt > 0:
                    logger.info(f"Succeeded after {attempt + 1} attempts. Stats: {self.stats.to_dict()}")
                return result
            except ProviderUnavailableError as e:
                await self._on_failure(e, attempt)
            attempt += 1

    async def complete_streaming(
        self,
        turns: Sequence[Turn],
        settings: GenerationSettings
    ) -> AsyncIterator[StreamDelta]:
        attempt = 0
        while True:
            self.stats.total_attempts += 1
            started = False
            try:
                async for delta in self.provider.complete_streaming(turns, settings):
                    started = True
                    yield delta
                return
            except ProviderUnavailableError as e:
                # Deltas already forwarded cannot be taken back
                if started:
                    raise
                await self._on_failure(e, attempt)
            attempt += 1

    async def aclose(self) -> None:
        await self.provider.aclose()
