"""
Client-side rate limit tracking for the remote API.

Each category keeps a window that is decremented pessimistically on every
dispatched call and corrected from `x-ratelimit-*` response headers when the
remote reports them.
"""

import asyncio
import copy
import logging
import time
from dataclasses import asdict, dataclass
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Union

from repo_coordinator.core.rate_limit.config import (
    CRITICAL_REMAINING,
    DEFAULT_LIMITS,
    WINDOW_PERIODS,
    ApiCategory,
)
from repo_coordinator.telemetry.metrics import RATE_LIMIT_REMAINING

logger = logging.getLogger(__name__)

CategoryLike = Union[ApiCategory, str]


@dataclass
class RateLimitWindow:
    """Remaining budget for one API category."""

    limit: int
    remaining: int
    reset_at: float = 0.0  # epoch seconds, 0 when unknown
    used: int = 0


class RateLimitTracker:
    """Tracks per-category windows and decides when requests must wait."""

    def __init__(
        self,
        buffer: float = 0.1,
        max_wait: float = 60.0,
        limits: Optional[Mapping[ApiCategory, int]] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.buffer = buffer
        self.max_wait = max_wait
        self._clock = clock
        self._sleep = sleep
        self._windows: Dict[ApiCategory, RateLimitWindow] = {
            category: RateLimitWindow(limit=limit, remaining=limit)
            for category, limit in (limits or DEFAULT_LIMITS).items()
        }
        for category in self._windows:
            self._publish(category)

    def window(self, category: CategoryLike) -> RateLimitWindow:
        return self._windows[ApiCategory(category)]

    def should_queue(self, category: CategoryLike) -> bool:
        """True when remaining capacity is within the buffer of zero"""
        window = self.window(category)
        return window.remaining <= int(window.limit * self.buffer)

    def consume(self, category: CategoryLike) -> None:
        window = self.window(category)
        window.remaining = max(0, window.remaining - 1)
        window.used += 1
        self._publish(ApiCategory(category))

    def pressure(self, category: CategoryLike) -> float:
        """Percentage of the window already used"""
        window = self.window(category)
        if window.limit <= 0:
            return 100.0
        return (window.limit - window.remaining) / window.limit * 100

    def is_critically_low(self) -> bool:
        return any(
            self._windows[category].remaining < floor
            for category, floor in CRITICAL_REMAINING.items()
            if category in self._windows
        )

    def update_from_headers(
        self, category: CategoryLike, headers: Mapping[str, Any]
    ) -> bool:
        """Apply `x-ratelimit-*` headers; returns whether anything changed"""
        normalized = {str(k).lower(): v for k, v in headers.items()}
        window = self.window(category)
        changed = False
        try:
            if "x-ratelimit-limit" in normalized:
                window.limit = int(normalized["x-ratelimit-limit"])
                changed = True
            if "x-ratelimit-remaining" in normalized:
                window.remaining = int(normalized["x-ratelimit-remaining"])
                changed = True
            if "x-ratelimit-reset" in normalized:
                window.reset_at = float(normalized["x-ratelimit-reset"])
                changed = True
        except (TypeError, ValueError) as e:
            logger.warning(f"Ignoring malformed rate limit headers for {category}: {e}")
            return False

        if changed:
            window.used = max(0, window.limit - window.remaining)
            self._publish(ApiCategory(category))
        return changed

    async def wait_for_capacity(self, category: CategoryLike) -> None:
        """Sleep toward the window reset (capped), then replenish if it passed"""
        category = ApiCategory(category)
        window = self._windows[category]
        wait = window.reset_at - self._clock()
        if wait > 0:
            wait = min(wait, self.max_wait)
            logger.info(
                f"Rate limit for {category.value} nearly exhausted, waiting {wait:.1f}s"
            )
            await self._sleep(wait)

        now = self._clock()
        if now >= window.reset_at:
            window.remaining = window.limit
            window.used = 0
            window.reset_at = now + WINDOW_PERIODS.get(category, 3600.0)
            self._publish(category)

    def get_rate_limit_status(self) -> Dict[str, Dict[str, Any]]:
        return copy.deepcopy(
            {category.value: asdict(window) for category, window in self._windows.items()}
        )

    def _publish(self, category: ApiCategory) -> None:
        try:
            RATE_LIMIT_REMAINING.labels(category=category.value).set(
                self._windows[category].remaining
            )
        except Exception as e:
            logger.debug(f"Failed to publish rate limit metric: {e}")
