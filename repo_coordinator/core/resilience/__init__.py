from .circuit import (
    BreakerConfig,
    CircuitBreaker,
    CircuitBreakerMetrics,
    CircuitBreakerState,
    CircuitState,
)
from .executor import ResilientExecutor
from .retry import RetryConfig, RetryPolicy, is_retryable_error

__all__ = [
    "BreakerConfig",
    "CircuitBreaker",
    "CircuitBreakerMetrics",
    "CircuitBreakerState",
    "CircuitState",
    "ResilientExecutor",
    "RetryConfig",
    "RetryPolicy",
    "is_retryable_error",
]
