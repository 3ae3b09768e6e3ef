"""
Retry with exponential backoff and jitter.

The default predicate retries transport failures (resets, refusals, timeouts),
HTTP 5xx/408/429, and 403 responses that report a rate limit.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import httpx

from repo_coordinator.core.config import Settings
from repo_coordinator.core.errors import (
    CircuitOpenError,
    ConfigurationError,
    OperationTimeoutError,
)

logger = logging.getLogger(__name__)

RetryCondition = Callable[[BaseException], bool]

_RETRYABLE_MARKERS = (
    "econnreset",
    "enotfound",
    "econnrefused",
    "connection reset",
    "connection refused",
    "timeout",
    "timed out",
)


@dataclass
class RetryConfig:
    """Configuration for automatic retry behavior"""

    max_attempts: int = 3
    initial_delay: float = 1.0  # seconds
    max_delay: float = 30.0  # seconds
    backoff_factor: float = 2.0
    jitter: bool = True

    def calculate_delay(self, attempt: int) -> float:
        """Calculate delay after the given (zero-based) failed attempt"""
        delay = self.initial_delay * (self.backoff_factor**attempt)
        delay = min(delay, self.max_delay)

        if self.jitter:
            # ±25% to avoid thundering herd
            jitter_amount = delay * 0.25
            delay += random.uniform(-jitter_amount, jitter_amount)

        return max(0.0, delay)

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryConfig":
        return cls(
            max_attempts=settings.retry_max_attempts,
            initial_delay=settings.retry_initial_delay_sec,
            max_delay=settings.retry_max_delay_sec,
            backoff_factor=settings.retry_backoff_factor,
            jitter=settings.retry_jitter,
        )


def status_code_of(error: BaseException) -> Optional[int]:
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    for attr in ("status_code", "status"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    return None


def _is_rate_limited(error: BaseException, message: str) -> bool:
    if "rate limit" in message:
        return True
    if not isinstance(error, httpx.HTTPStatusError):
        return False
    response = error.response
    if response.headers.get("x-ratelimit-remaining") == "0":
        return True
    try:
        return "rate limit" in response.text.lower()
    except httpx.ResponseNotRead:
        return False


def is_retryable_error(error: BaseException) -> bool:
    """Default retry predicate"""
    if error is None:
        return False
    if isinstance(error, (CircuitOpenError, ConfigurationError)):
        return False
    if isinstance(
        error,
        (
            httpx.TimeoutException,
            httpx.NetworkError,
            ConnectionError,
            asyncio.TimeoutError,
            OperationTimeoutError,
        ),
    ):
        return True

    message = str(error).lower()
    status = status_code_of(error)
    if status is not None:
        if status >= 500 or status in (408, 429):
            return True
        if status == 403 and _is_rate_limited(error, message):
            return True
        return False

    return any(marker in message for marker in _RETRYABLE_MARKERS)


class RetryPolicy:
    """Runs an async operation with up to `max_attempts` attempts"""

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        retry_condition: Optional[RetryCondition] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.config = config or RetryConfig()
        self.retry_condition: RetryCondition = retry_condition or is_retryable_error
        self._sleep = sleep

    async def execute(
        self,
        operation: Callable[[], Awaitable[Any]],
        context: Optional[str] = None,
    ) -> Any:
        label = f" ({context})" if context else ""
        attempts = max(1, self.config.max_attempts)

        for attempt in range(attempts):
            try:
                if attempt > 0:
                    logger.info(f"Retry attempt {attempt}/{attempts - 1}{label}")
                return await operation()
            except Exception as e:
                if attempt == attempts - 1 or not self.retry_condition(e):
                    if attempt > 0:
                        logger.error(
                            f"Operation{label} failed after {attempt + 1} attempts: {e}"
                        )
                    raise

                delay = self.config.calculate_delay(attempt)
                logger.warning(
                    f"Operation{label} failed on attempt {attempt + 1}, "
                    f"retrying in {delay:.2f}s: {e}"
                )
                await self._sleep(delay)

    async def execute_with_condition(
        self,
        operation: Callable[[], Awaitable[Any]],
        retry_condition: RetryCondition,
        context: Optional[str] = None,
    ) -> Any:
        original = self.retry_condition
        self.retry_condition = retry_condition
        try:
            return await self.execute(operation, context)
        finally:
            self.retry_condition = original
