"""Bounded retry with exponential backoff and jitter."""

import asyncio
import random
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from ..config import SSOSettings
from .errors import is_retryable
from .logging import get_logger

R = TypeVar("R")


class RetryExecutor:
    """
    Run a coroutine function with bounded retries.

    Delay before attempt ``n + 1`` is ``base_delay_ms * 2 ** (n - 1)`` (or a
    flat ``base_delay_ms`` without exponential backoff), scaled by a uniform
    jitter factor in ``[1 - jitter, 1 + jitter]``. Only exceptions accepted by
    ``should_retry`` are retried; after the last attempt the last exception is
    re-raised unchanged.

    Example usage:
        executor = RetryExecutor.from_settings(settings, logger=logger)
        tokens = await executor.run(transport.refresh, refresh_token, client_id, secret)
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay_ms: int = 1000,
        exponential_backoff: bool = True,
        jitter: float = 0.2,
        should_retry: Callable[[BaseException], bool] = is_retryable,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        logger=None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if not 0 <= jitter < 1:
            raise ValueError("jitter must be in [0, 1)")

        self.max_attempts = max_attempts
        self.base_delay_ms = base_delay_ms
        self.exponential_backoff = exponential_backoff
        self.jitter = jitter
        self.should_retry = should_retry
        self._sleep = sleep
        self.logger = logger or get_logger(__name__)

    @classmethod
    def from_settings(cls, settings: SSOSettings, **kwargs) -> "RetryExecutor":
        """
        Build an executor from the error_handling and retry settings groups.

        ``error_handling`` sets the policy. ``retry.times`` caps the attempt
        count and ``retry.sleep`` is the minimum base delay. A disabled retry
        group collapses to a single attempt.
        """
        policy = settings.error_handling
        bounds = settings.retry
        max_attempts = min(policy.max_retries, bounds.times) if bounds.enabled else 1
        return cls(
            max_attempts=max_attempts,
            base_delay_ms=max(policy.retry_delay, bounds.sleep),
            exponential_backoff=policy.exponential_backoff,
            **kwargs,
        )

    def compute_delay(self, attempt: int) -> float:
        """
        Delay in milliseconds after a failed attempt (1-based).

        Args:
            attempt: Number of the attempt that just failed

        Returns:
            Jittered delay in milliseconds
        """
        delay = self.base_delay_ms
        if self.exponential_backoff:
            delay = self.base_delay_ms * (2 ** (attempt - 1))
        factor = random.uniform(1 - self.jitter, 1 + self.jitter)
        return delay * factor

    async def run(self, func: Callable[..., Awaitable[R]], *args: Any, **kwargs: Any) -> R:
        """
        Await ``func(*args, **kwargs)`` with retries.

        Raises:
            Exception: The last exception raised by func, unchanged
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                if attempt >= self.max_attempts or not self.should_retry(e):
                    raise

                delay_ms = self.compute_delay(attempt)
                self.logger.info(
                    f"Retry attempt {attempt}/{self.max_attempts} after {delay_ms:.0f}ms",
                    exception=e.__class__.__name__,
                    message=str(e),
                )
                await self._sleep(delay_ms / 1000)
