from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, Optional

from .circuit import BreakerConfig, CircuitBreaker, CircuitBreakerMetrics, Listener
from .retry import RetryConfig, RetryCondition, RetryPolicy


class ResilientExecutor:
    """
    Circuit breaker with retry composed inside it.

    Retries happen within a single breaker-guarded call, so transient
    failures that recover on retry never count against the breaker; only
    the final outcome does.
    """

    def __init__(
        self,
        name: str,
        breaker_config: Optional[BreakerConfig] = None,
        retry_config: Optional[RetryConfig] = None,
        retry_condition: Optional[RetryCondition] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.name = name
        self.circuit_breaker = CircuitBreaker(name, breaker_config, clock=clock)
        self.retry_policy = RetryPolicy(retry_config, retry_condition, sleep=sleep)

    async def execute(
        self,
        operation: Callable[[], Awaitable[Any]],
        fallback: Optional[Callable[[Exception], Awaitable[Any]]] = None,
        context: Optional[str] = None,
    ) -> Any:
        return await self.circuit_breaker.call(
            lambda: self.retry_policy.execute(operation, context), fallback
        )

    def get_health(self) -> Dict[str, Any]:
        return self.circuit_breaker.get_health()

    def get_metrics(self) -> CircuitBreakerMetrics:
        return self.circuit_breaker.get_metrics()

    def on_circuit_breaker_event(self, event: str, listener: Listener) -> None:
        self.circuit_breaker.on(event, listener)

    def reset(self) -> None:
        self.circuit_breaker.reset()
