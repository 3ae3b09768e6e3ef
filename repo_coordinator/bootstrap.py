"""
Process-wide wiring.

Every stateful component (breakers, cache, rate-limit windows) is built here
exactly once and handed to the components that use it.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from repo_coordinator.core.cache import CacheStore
from repo_coordinator.core.config import Settings
from repo_coordinator.core.config import settings as default_settings
from repo_coordinator.core.rate_limit import RateLimitTracker
from repo_coordinator.core.resilience import BreakerConfig, ResilientExecutor, RetryConfig
from repo_coordinator.multirepo import (
    ChangeImpactAnalyzer,
    CrossRepoCoordinator,
    DependencyGraph,
    QualityGateValidator,
    RepoRegistry,
)
from repo_coordinator.services.api_optimizer import ApiOptimizer
from repo_coordinator.services.issue_provider_manager import IssueProviderManager
from repo_coordinator.services.request_scheduler import RequestScheduler

logger = logging.getLogger(__name__)


@dataclass
class CoordinatorContainer:
    settings: Settings
    registry: RepoRegistry
    graph: DependencyGraph
    analyzer: ChangeImpactAnalyzer
    remote_executor: ResilientExecutor
    git_executor: ResilientExecutor
    quality_executor: ResilientExecutor
    rate_limiter: RateLimitTracker
    cache: CacheStore
    scheduler: RequestScheduler
    optimizer: ApiOptimizer
    quality_gates: QualityGateValidator
    provider_manager: IssueProviderManager
    coordinator: CrossRepoCoordinator

    async def close(self) -> None:
        await self.optimizer.close()
        await self.scheduler.close()


def build_coordinator(
    settings: Optional[Settings] = None,
    workspace_root: Optional[Union[str, Path]] = None,
) -> CoordinatorContainer:
    """Construct and wire all coordinator components"""
    settings = settings or default_settings
    root = workspace_root or settings.workspace_root

    registry = RepoRegistry(workspace_root=root)
    # Raises CycleDetected / UnknownRepositoryError on a bad table
    graph = DependencyGraph.from_registry(registry)
    analyzer = ChangeImpactAnalyzer(graph)

    breaker_config = BreakerConfig.from_settings(settings)
    retry_config = RetryConfig.from_settings(settings)
    remote_executor = ResilientExecutor("remote", breaker_config, retry_config)
    git_executor = ResilientExecutor(
        "git",
        dataclasses.replace(
            breaker_config, response_time_threshold=settings.git_timeout_sec
        ),
        retry_config,
    )
    quality_executor = ResilientExecutor(
        "quality-gates",
        dataclasses.replace(
            breaker_config,
            response_time_threshold=settings.quality_gate_run_timeout_sec,
        ),
        # One attempt per gate run
        dataclasses.replace(retry_config, max_attempts=1),
    )

    rate_limiter = RateLimitTracker(
        buffer=settings.rate_limit_buffer, max_wait=settings.rate_limit_max_wait_sec
    )
    cache = CacheStore(
        max_entries=settings.cache_max_entries,
        default_ttl=settings.cache_default_ttl_sec,
    )
    scheduler = RequestScheduler(
        cache,
        rate_limiter,
        executor=remote_executor,
        concurrency_limits=settings.concurrency_limits,
    )
    optimizer = ApiOptimizer(scheduler)
    quality_gates = QualityGateValidator(settings.quality_gates_path)
    quality_gates.config
    provider_manager = IssueProviderManager(scheduler)
    coordinator = CrossRepoCoordinator(
        registry,
        graph,
        analyzer,
        quality_gates,
        git_executor,
        quality_executor=quality_executor,
        git_timeout=settings.git_timeout_sec,
    )

    logger.info(
        "Coordinator ready: %d repositories, workspace %s",
        len(registry),
        registry.workspace_root,
    )
    return CoordinatorContainer(
        settings=settings,
        registry=registry,
        graph=graph,
        analyzer=analyzer,
        remote_executor=remote_executor,
        git_executor=git_executor,
        quality_executor=quality_executor,
        rate_limiter=rate_limiter,
        cache=cache,
        scheduler=scheduler,
        optimizer=optimizer,
        quality_gates=quality_gates,
        provider_manager=provider_manager,
        coordinator=coordinator,
    )
