"""
Error taxonomy for the cross-repository coordinator.

Configuration errors are fatal and surface immediately. Remote errors are
retried inside the resilient executor. Breaker rejections are a distinct kind
so callers can fall back instead of surfacing a raw failure.
"""

from __future__ import annotations

from typing import Optional, Sequence


class CoordinatorError(Exception):
    """Base class for all coordinator errors"""

    pass


class ConfigurationError(CoordinatorError):
    """Fatal configuration problem; never retried"""

    pass


class CycleDetected(ConfigurationError):
    """Raised when the repository dependency edges contain a cycle"""

    def __init__(self, node: str, path: Optional[Sequence[str]] = None):
        self.node = node
        self.path = list(path or [])
        detail = f" ({' -> '.join(self.path)})" if self.path else ""
        super().__init__(f"Circular dependency detected involving {node}{detail}")


class UnknownRepositoryError(ConfigurationError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown repository: {name}")


class QualityGateConfigError(ConfigurationError):
    pass


class CircuitOpenError(CoordinatorError):
    """Raised when a circuit breaker short-circuits a call"""

    def __init__(self, name: str, retry_after: float = 0.0):
        self.name = name
        self.retry_after = retry_after
        super().__init__(
            f"Circuit breaker '{name}' is open (retry in {retry_after:.1f}s)"
        )


class OperationTimeoutError(CoordinatorError):
    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"Operation timed out after {timeout:.3f}s")


class RemoteCallError(CoordinatorError):
    """Failure reported by the remote executor callback"""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        category: Optional[str] = None,
    ):
        self.status_code = status_code
        self.category = category
        super().__init__(message)


class RateLimitExceededError(RemoteCallError):
    def __init__(self, message: str = "rate limit exceeded", category: Optional[str] = None):
        super().__init__(message, status_code=429, category=category)


class GitCommandError(CoordinatorError):
    def __init__(self, args: Sequence[str], returncode: int, stderr: str = ""):
        self.git_args = list(args)
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(
            f"git {' '.join(self.git_args)} failed with exit code {returncode}: "
            f"{stderr.strip()}"
        )


class SchedulerClosedError(CoordinatorError):
    pass


class ProviderUnavailableError(CoordinatorError):
    pass


__all__ = [
    "CoordinatorError",
    "ConfigurationError",
    "CycleDetected",
    "UnknownRepositoryError",
    "QualityGateConfigError",
    "CircuitOpenError",
    "OperationTimeoutError",
    "RemoteCallError",
    "RateLimitExceededError",
    "GitCommandError",
    "SchedulerClosedError",
    "ProviderUnavailableError",
]
