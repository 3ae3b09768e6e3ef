"""
Issue provider manager.

Registers issue tracker providers, picks one by capability and routes every
issue operation through the request scheduler: reads are cached, writes go
out uncached and drop the cached issue reads they make stale.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Dict, List, Optional, Tuple

import structlog

from repo_coordinator.core.errors import ProviderUnavailableError
from repo_coordinator.providers.base import (
    IssueProvider,
    IssueProviderBase,
    ProviderCapability,
    ProviderHealthStatus,
)
from repo_coordinator.services.request_scheduler import RequestPriority, RequestScheduler

logger = structlog.get_logger(__name__)

# Cached reads invalidated by any successful write
ISSUE_READS_PATTERN = r"^(list_issues|get_issue|search_issues):"


class IssueProviderManager:
    def __init__(
        self,
        scheduler: RequestScheduler,
        health_ttl: float = 60.0,
        clock: Callable[[], float] = time.time,
    ):
        self.scheduler = scheduler
        self.health_ttl = health_ttl
        self._clock = clock
        self._providers: Dict[IssueProvider, IssueProviderBase] = {}
        # provider -> (checked_at, status)
        self._health: Dict[IssueProvider, Tuple[float, ProviderHealthStatus]] = {}

    def register(self, provider: IssueProviderBase) -> None:
        self._providers[provider.provider_type] = provider
        self._health.pop(provider.provider_type, None)
        logger.info("issue_provider.registered", provider=provider.provider_type.value)

    def unregister(self, provider_type: IssueProvider) -> None:
        self._providers.pop(IssueProvider(provider_type), None)
        self._health.pop(IssueProvider(provider_type), None)

    def providers(self) -> List[IssueProviderBase]:
        return list(self._providers.values())

    async def select_provider(self, capability: ProviderCapability) -> IssueProviderBase:
        """
        First registered provider that declares `capability` and is not known
        to be unavailable. Raises ProviderUnavailableError otherwise.
        """
        capability = ProviderCapability(capability)
        candidates = [
            p for p in self._providers.values() if p.get_capabilities().supports(capability)
        ]
        if not candidates:
            raise ProviderUnavailableError(
                f"No registered issue provider supports '{capability.value}'"
            )

        for provider in candidates:
            if (await self._cached_health(provider)).available:
                return provider

        raise ProviderUnavailableError(
            f"No available issue provider supports '{capability.value}'"
        )

    # ------------------------------------------------------------------
    # Issue operations
    # ------------------------------------------------------------------

    async def create_issue(
        self, params: Dict[str, Any], priority: RequestPriority = RequestPriority.HIGH
    ) -> Any:
        provider = await self.select_provider(ProviderCapability.CREATE)
        return await self.scheduler.dispatch(
            "create_issue", params, provider.execute, priority, invalidate=ISSUE_READS_PATTERN
        )

    async def update_issue(
        self,
        issue_id: Any,
        updates: Dict[str, Any],
        priority: RequestPriority = RequestPriority.HIGH,
    ) -> Any:
        provider = await self.select_provider(ProviderCapability.UPDATE)
        return await self.scheduler.dispatch(
            "update_issue",
            {"id": issue_id, **updates},
            provider.execute,
            priority,
            invalidate=ISSUE_READS_PATTERN,
        )

    async def delete_issue(
        self, issue_id: Any, priority: RequestPriority = RequestPriority.HIGH
    ) -> Any:
        provider = await self.select_provider(ProviderCapability.DELETE)
        return await self.scheduler.dispatch(
            "delete_issue",
            {"id": issue_id},
            provider.execute,
            priority,
            invalidate=ISSUE_READS_PATTERN,
        )

    async def get_issue(self, issue_id: Any, force_refresh: bool = False) -> Any:
        provider = await self.select_provider(ProviderCapability.GET)
        return await self.scheduler.get(
            "get_issue", {"id": issue_id}, provider.execute, force_refresh=force_refresh
        )

    async def list_issues(
        self, filters: Optional[Dict[str, Any]] = None, ttl: Optional[float] = None
    ) -> Any:
        provider = await self.select_provider(ProviderCapability.LIST)
        return await self.scheduler.get("list_issues", filters or {}, provider.execute, ttl=ttl)

    async def search_issues(
        self, query: str, filters: Optional[Dict[str, Any]] = None
    ) -> Any:
        provider = await self.select_provider(ProviderCapability.SEARCH)
        return await self.scheduler.get(
            "search_issues",
            {"query": query, **(filters or {})},
            provider.execute,
            priority=RequestPriority.LOW,
        )

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    async def get_all_provider_health(self) -> Dict[str, Any]:
        providers: Dict[str, Dict[str, Any]] = {}
        for provider in self._providers.values():
            status = await self._check(provider)
            providers[provider.provider_type.value] = status.to_dict()

        executor = self.scheduler.executor
        circuit = executor.get_health() if executor is not None else None
        available = any(p["available"] for p in providers.values())
        return {
            "healthy": available and (circuit is None or circuit["healthy"]),
            "providers": providers,
            "circuit": circuit,
        }

    async def _cached_health(self, provider: IssueProviderBase) -> ProviderHealthStatus:
        cached = self._health.get(provider.provider_type)
        if cached is not None and self._clock() - cached[0] < self.health_ttl:
            return cached[1]
        return await self._check(provider)

    async def _check(self, provider: IssueProviderBase) -> ProviderHealthStatus:
        started = self._clock()
        try:
            status = await provider.check_health()
        except Exception as e:
            logger.warning(
                "issue_provider.health_check_failed",
                provider=provider.provider_type.value,
                error=str(e),
            )
            status = ProviderHealthStatus(
                available=False,
                capabilities=provider.get_capabilities(),
                last_checked=self._clock(),
                response_time=self._clock() - started,
                error=str(e),
            )
        self._health[provider.provider_type] = (self._clock(), status)
        return status
