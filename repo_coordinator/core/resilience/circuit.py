from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Tuple

from repo_coordinator.core.config import Settings
from repo_coordinator.core.errors import CircuitOpenError, OperationTimeoutError
from repo_coordinator.telemetry.metrics import (
    CIRCUIT_BREAKER_STATE,
    CIRCUIT_BREAKER_TRANSITIONS,
)

logger = logging.getLogger(__name__)

_RESPONSE_TIME_WINDOW = 100
_EVENTS = ("state_change", "failure", "success")


class CircuitState(Enum):
    """Circuit breaker states"""

    CLOSED = 0  # Normal operation
    OPEN = 1  # Short-circuiting calls
    HALF_OPEN = 2  # Trial call to detect recovery


@dataclass
class BreakerConfig:
    """Circuit breaker thresholds; all durations in seconds"""

    failure_threshold: int = 5
    recovery_timeout: float = 60.0
    monitoring_period: float = 300.0
    success_threshold: int = 3
    response_time_threshold: float = 10.0
    minimum_throughput: int = 10

    @classmethod
    def from_settings(cls, settings: Settings) -> "BreakerConfig":
        return cls(
            failure_threshold=settings.breaker_failure_threshold,
            recovery_timeout=settings.breaker_recovery_timeout_sec,
            monitoring_period=settings.breaker_monitoring_period_sec,
            success_threshold=settings.breaker_success_threshold,
            response_time_threshold=settings.breaker_response_time_threshold_sec,
            minimum_throughput=settings.breaker_minimum_throughput,
        )


@dataclass
class CircuitBreakerState:
    """Mutable record owned by exactly one CircuitBreaker"""

    state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    success_count: int = 0
    request_count: int = 0
    last_failure_time: float = 0.0
    last_success_time: float = 0.0
    state_changed_at: float = 0.0
    response_times: Deque[float] = field(
        default_factory=lambda: deque(maxlen=_RESPONSE_TIME_WINDOW)
    )
    half_open_successes: int = 0


@dataclass(frozen=True)
class CircuitBreakerMetrics:
    state: CircuitState
    failure_count: int
    success_count: int
    request_count: int
    last_failure_time: float
    last_success_time: float
    state_changed_at: float
    error_rate: float  # percent, over the monitoring period
    avg_response_time: float  # seconds

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.name,
            "failure_count": self.failure_count,
            "success_count": self.success_count,
            "request_count": self.request_count,
            "last_failure_time": self.last_failure_time,
            "last_success_time": self.last_success_time,
            "state_changed_at": self.state_changed_at,
            "error_rate": self.error_rate,
            "avg_response_time": self.avg_response_time,
        }


Listener = Callable[[CircuitBreakerMetrics], None]


class CircuitBreaker:
    """
    Async circuit breaker (closed -> open -> half-open -> closed).

    - CLOSED: calls pass. Opens once the monitoring window holds at least
      `minimum_throughput` calls and `failure_threshold` failures.
    - OPEN: calls are short-circuited to the fallback (or CircuitOpenError)
      until `recovery_timeout` has elapsed since the last transition.
    - HALF_OPEN: one trial call at a time. Any failure reopens; after
      `success_threshold` consecutive successes the circuit closes.

    Every call races `response_time_threshold`; a timeout is a failure.
    """

    def __init__(
        self,
        name: str,
        config: Optional[BreakerConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.name = name
        self.config = config or BreakerConfig()
        self._clock = clock
        self.state = CircuitBreakerState(state_changed_at=clock())
        # (timestamp, succeeded) for calls inside the monitoring period
        self._window: Deque[Tuple[float, bool]] = deque()
        self._trial_in_flight = False
        self._listeners: Dict[str, List[Listener]] = {event: [] for event in _EVENTS}
        self._publish_state()

    @property
    def current_state(self) -> CircuitState:
        return self.state.state

    def is_open(self) -> bool:
        return self.state.state == CircuitState.OPEN

    async def call(
        self,
        fn: Callable[[], Awaitable[Any]],
        fallback: Optional[Callable[[Exception], Awaitable[Any]]] = None,
    ) -> Any:
        if not self._admit():
            return await self._short_circuit(fallback)

        trial = self.state.state == CircuitState.HALF_OPEN
        start = self._clock()
        self.state.request_count += 1
        try:
            try:
                out = await asyncio.wait_for(
                    fn(), timeout=self.config.response_time_threshold
                )
            except asyncio.TimeoutError:
                raise OperationTimeoutError(
                    self.config.response_time_threshold
                ) from None
        except Exception as e:
            self._on_failure(self._clock() - start, e)
            if fallback and self.state.state == CircuitState.OPEN:
                return await fallback(e)
            raise
        finally:
            if trial:
                self._trial_in_flight = False

        self._on_success(self._clock() - start)
        return out

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_metrics(self) -> CircuitBreakerMetrics:
        recent_requests, recent_failures = self._recent_counts()
        times = self.state.response_times
        return CircuitBreakerMetrics(
            state=self.state.state,
            failure_count=self.state.failure_count,
            success_count=self.state.success_count,
            request_count=self.state.request_count,
            last_failure_time=self.state.last_failure_time,
            last_success_time=self.state.last_success_time,
            state_changed_at=self.state.state_changed_at,
            error_rate=(recent_failures / recent_requests) * 100
            if recent_requests
            else 0.0,
            avg_response_time=sum(times) / len(times) if times else 0.0,
        )

    def get_health(self) -> Dict[str, Any]:
        metrics = self.get_metrics()
        issues: List[str] = []
        recommendations: List[str] = []

        if metrics.state == CircuitState.OPEN:
            issues.append("Circuit breaker is open due to high failure rate")
            recommendations.append(
                "Check downstream service health and fix underlying issues"
            )
        elif metrics.state == CircuitState.HALF_OPEN:
            issues.append("Circuit breaker is probing for recovery")

        if metrics.error_rate > 5:
            issues.append(f"High error rate: {metrics.error_rate:.1f}%")
            recommendations.append(
                "Investigate and resolve the root cause of failures"
            )

        if metrics.avg_response_time > self.config.response_time_threshold:
            issues.append(
                f"Slow response times: {metrics.avg_response_time * 1000:.0f}ms average"
            )
            recommendations.append(
                "Optimize service performance or increase timeout thresholds"
            )

        healthy = (
            metrics.state == CircuitState.CLOSED
            and metrics.error_rate <= 5
            and metrics.avg_response_time <= self.config.response_time_threshold
        )
        return {
            "healthy": healthy,
            "status": "healthy" if healthy else "degraded",
            "issues": issues,
            "recommendations": recommendations,
        }

    # ------------------------------------------------------------------
    # Manual control
    # ------------------------------------------------------------------

    def force_open(self) -> None:
        self._transition(CircuitState.OPEN)

    def force_close(self) -> None:
        self.reset()

    def reset(self) -> None:
        """Clear all counters and close the circuit"""
        self.state.failure_count = 0
        self.state.success_count = 0
        self.state.request_count = 0
        self.state.half_open_successes = 0
        self.state.response_times.clear()
        self.state.last_failure_time = 0.0
        self.state.last_success_time = 0.0
        self._window.clear()
        self._trial_in_flight = False
        self._transition(CircuitState.CLOSED)

    def on(self, event: str, listener: Listener) -> None:
        if event not in self._listeners:
            raise ValueError(f"Unknown circuit breaker event: {event}")
        self._listeners[event].append(listener)

    def off(self, event: str, listener: Listener) -> None:
        listeners = self._listeners.get(event, [])
        if listener in listeners:
            listeners.remove(listener)

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _admit(self) -> bool:
        if self.state.state == CircuitState.OPEN:
            if self._clock() - self.state.state_changed_at < self.config.recovery_timeout:
                return False
            self._transition(CircuitState.HALF_OPEN)

        if self.state.state == CircuitState.HALF_OPEN:
            if self._trial_in_flight:
                return False
            self._trial_in_flight = True
            return True

        # A window that crossed the thresholds on an earlier call trips here
        if self._should_open():
            self._transition(CircuitState.OPEN)
            return False
        return True

    async def _short_circuit(
        self, fallback: Optional[Callable[[Exception], Awaitable[Any]]]
    ) -> Any:
        error = CircuitOpenError(self.name, self._retry_after())
        if fallback is None:
            raise error
        try:
            return await fallback(error)
        except Exception:
            logger.error(f"Fallback for circuit '{self.name}' failed", exc_info=True)
            raise

    def _retry_after(self) -> float:
        if self.state.state != CircuitState.OPEN:
            return 0.0
        elapsed = self._clock() - self.state.state_changed_at
        return max(0.0, self.config.recovery_timeout - elapsed)

    def _on_success(self, response_time: float) -> None:
        now = self._clock()
        self.state.success_count += 1
        self.state.last_success_time = now
        self.state.response_times.append(response_time)
        self._record(now, True)

        if self.state.state == CircuitState.HALF_OPEN:
            self.state.half_open_successes += 1
            if self.state.half_open_successes >= self.config.success_threshold:
                self._transition(CircuitState.CLOSED)

        self._emit("success")

    def _on_failure(self, response_time: float, error: Exception) -> None:
        now = self._clock()
        self.state.failure_count += 1
        self.state.last_failure_time = now
        self.state.response_times.append(response_time)
        self._record(now, False)

        logger.debug(
            f"Circuit '{self.name}' failure recorded: {error!r} "
            f"(state={self.state.state.name}, failures={self.state.failure_count}, "
            f"response_time={response_time:.3f}s)"
        )

        if self.state.state == CircuitState.HALF_OPEN:
            self._transition(CircuitState.OPEN)
        elif self.state.state == CircuitState.CLOSED and self._should_open():
            self._transition(CircuitState.OPEN)

        self._emit("failure")

    def _should_open(self) -> bool:
        recent_requests, recent_failures = self._recent_counts()
        return (
            recent_requests >= self.config.minimum_throughput
            and recent_failures >= self.config.failure_threshold
        )

    def _record(self, now: float, succeeded: bool) -> None:
        self._window.append((now, succeeded))
        self._prune(now)

    def _prune(self, now: Optional[float] = None) -> None:
        now = self._clock() if now is None else now
        cutoff = now - self.config.monitoring_period
        while self._window and self._window[0][0] < cutoff:
            self._window.popleft()

    def _recent_counts(self) -> Tuple[int, int]:
        self._prune()
        failures = sum(1 for _, ok in self._window if not ok)
        return len(self._window), failures

    def _transition(self, new_state: CircuitState) -> None:
        old_state = self.state.state
        if old_state == new_state:
            return

        self.state.state = new_state
        self.state.state_changed_at = self._clock()
        self.state.half_open_successes = 0
        if new_state == CircuitState.CLOSED:
            self.state.failure_count = 0
            self._window.clear()

        message = f"Circuit '{self.name}' state changed: {old_state.name} -> {new_state.name}"
        if new_state == CircuitState.OPEN:
            logger.warning(message)
        else:
            logger.info(message)

        try:
            CIRCUIT_BREAKER_TRANSITIONS.labels(
                name=self.name,
                from_state=old_state.name.lower(),
                to_state=new_state.name.lower(),
            ).inc()
        except Exception as e:
            logger.debug(f"Failed to record breaker transition metric: {e}")
        self._publish_state()
        self._emit("state_change")

    def _publish_state(self) -> None:
        try:
            CIRCUIT_BREAKER_STATE.labels(name=self.name).set(self.state.state.value)
        except Exception as e:
            logger.debug(f"Failed to publish breaker state metric: {e}")

    def _emit(self, event: str) -> None:
        listeners = self._listeners.get(event)
        if not listeners:
            return
        metrics = self.get_metrics()
        for listener in list(listeners):
            try:
                listener(metrics)
            except Exception:
                logger.error(
                    f"Circuit '{self.name}' {event} listener failed", exc_info=True
                )
