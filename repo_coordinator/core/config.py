"""
Configuration management for the cross-repository coordinator
"""

from typing import Dict, Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Unknown REPO_COORD_* variables are ignored
    model_config = SettingsConfigDict(
        env_prefix="REPO_COORD_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = "repo-coordinator"
    log_level: str = "INFO"
    log_json: bool = False

    # Workspace holding all repositories; detected from CWD when unset
    workspace_root: Optional[str] = None
    # Quality gate JSON; the packaged default is used when unset
    quality_gates_path: Optional[str] = None

    # Circuit breaker
    breaker_failure_threshold: int = 5
    breaker_recovery_timeout_sec: float = 60.0
    breaker_monitoring_period_sec: float = 300.0
    breaker_success_threshold: int = 3
    breaker_response_time_threshold_sec: float = 10.0
    breaker_minimum_throughput: int = 10

    # Retry with exponential backoff
    retry_max_attempts: int = 3
    retry_initial_delay_sec: float = 1.0
    retry_backoff_factor: float = 2.0
    retry_max_delay_sec: float = 30.0
    retry_jitter: bool = True

    # Cache & rate limiting
    cache_default_ttl_sec: float = 300.0
    cache_max_entries: int = 1000
    rate_limit_buffer: float = 0.1  # fraction of the limit held back
    rate_limit_max_wait_sec: float = 60.0
    concurrency_limits: Dict[str, int] = Field(
        default_factory=lambda: {"core": 10, "search": 2, "graphql": 5}
    )

    # Local subprocess guards (git commands, one full quality gate run)
    git_timeout_sec: float = 120.0
    quality_gate_run_timeout_sec: float = 1800.0

    @model_validator(mode="after")
    def validate_ranges(self):
        if not 0.0 <= self.rate_limit_buffer < 1.0:
            raise ValueError(
                f"rate_limit_buffer must be in [0, 1), got {self.rate_limit_buffer}"
            )
        if self.retry_initial_delay_sec > self.retry_max_delay_sec:
            raise ValueError(
                "retry_initial_delay_sec must not exceed retry_max_delay_sec "
                f"({self.retry_initial_delay_sec} > {self.retry_max_delay_sec})"
            )
        if self.retry_max_attempts < 1:
            raise ValueError("retry_max_attempts must be at least 1")
        if self.breaker_success_threshold < 1 or self.breaker_failure_threshold < 1:
            raise ValueError("breaker thresholds must be at least 1")
        for category, limit in self.concurrency_limits.items():
            if limit < 1:
                raise ValueError(
                    f"concurrency limit for '{category}' must be at least 1"
                )
        return self


# Global settings instance
settings = Settings()
