"""Tests for settings validation."""

import pytest
from pydantic import ValidationError

from repo_coordinator.core.config import Settings
from repo_coordinator.core.resilience import BreakerConfig


def test_defaults_match_breaker_reference_values():
    config = BreakerConfig.from_settings(Settings())
    assert config.failure_threshold == 5
    assert config.recovery_timeout == 60.0
    assert config.monitoring_period == 300.0
    assert config.success_threshold == 3
    assert config.response_time_threshold == 10.0
    assert config.minimum_throughput == 10


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("REPO_COORD_BREAKER_FAILURE_THRESHOLD", "2")
    monkeypatch.setenv("REPO_COORD_LOG_JSON", "true")
    monkeypatch.setenv("REPO_COORD_SOMETHING_ELSE", "ignored")

    settings = Settings()
    assert settings.breaker_failure_threshold == 2
    assert settings.log_json is True


@pytest.mark.parametrize(
    "overrides",
    [
        {"rate_limit_buffer": 1.0},
        {"rate_limit_buffer": -0.1},
        {"retry_initial_delay_sec": 60.0, "retry_max_delay_sec": 30.0},
        {"retry_max_attempts": 0},
        {"breaker_success_threshold": 0},
        {"concurrency_limits": {"core": 0}},
    ],
)
def test_incoherent_values_are_rejected(overrides):
    with pytest.raises(ValidationError):
        Settings(**overrides)
