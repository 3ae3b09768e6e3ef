import pytest

from repo_coordinator.core.cache import CacheStore
from repo_coordinator.core.errors import ProviderUnavailableError
from repo_coordinator.core.rate_limit import RateLimitTracker
from repo_coordinator.core.resilience import ResilientExecutor
from repo_coordinator.providers import (
    IssueProvider,
    IssueProviderBase,
    ProviderCapabilities,
    ProviderCapability,
    ProviderHealthStatus,
)
from repo_coordinator.services import IssueProviderManager, RequestScheduler


class FakeGitHubProvider(IssueProviderBase):
    provider_type = IssueProvider.GITHUB
    name = "GitHub Issues"

    def __init__(self, available=True, health_error=None, capabilities=None):
        self.available = available
        self.health_error = health_error
        self.capabilities = capabilities or ProviderCapabilities(can_delete=False)
        self.calls = []
        self.health_checks = 0

    async def execute(self, operation, params):
        self.calls.append((operation, params))
        if operation == "list_issues":
            return [{"id": 1, "title": "existing"}]
        if operation == "create_issue":
            return {"id": 2, **params}
        return {"operation": operation, **params}

    async def check_health(self):
        self.health_checks += 1
        if self.health_error:
            raise self.health_error
        return ProviderHealthStatus(available=self.available, capabilities=self.capabilities)

    def get_capabilities(self):
        return self.capabilities


@pytest.fixture
def scheduler(clock, fake_sleep):
    return RequestScheduler(
        CacheStore(clock=clock),
        RateLimitTracker(clock=clock, sleep=fake_sleep),
        executor=ResilientExecutor("remote", clock=clock, sleep=fake_sleep),
    )


@pytest.fixture
def manager(scheduler, clock):
    return IssueProviderManager(scheduler, clock=clock)


def test_capability_flags():
    caps = ProviderCapabilities(can_delete=True)
    assert caps.supports(ProviderCapability.DELETE)
    assert caps.supports("create")
    assert not ProviderCapabilities().supports("search")


@pytest.mark.asyncio
async def test_list_is_cached_and_create_invalidates(manager):
    provider = FakeGitHubProvider()
    manager.register(provider)

    first = await manager.list_issues({"state": "open"})
    await manager.list_issues({"state": "open"})
    assert first == [{"id": 1, "title": "existing"}]
    assert [op for op, _ in provider.calls] == ["list_issues"]

    created = await manager.create_issue({"title": "Coordinate proto change"})
    assert created == {"id": 2, "title": "Coordinate proto change"}

    await manager.list_issues({"state": "open"})
    assert [op for op, _ in provider.calls] == ["list_issues", "create_issue", "list_issues"]


@pytest.mark.asyncio
async def test_update_and_get_issue(manager):
    provider = FakeGitHubProvider()
    manager.register(provider)

    await manager.get_issue(5)
    await manager.update_issue(5, {"state": "closed"})
    issue = await manager.get_issue(5)

    assert issue == {"operation": "get_issue", "id": 5}
    assert provider.calls == [
        ("get_issue", {"id": 5}),
        ("update_issue", {"id": 5, "state": "closed"}),
        ("get_issue", {"id": 5}),
    ]


@pytest.mark.asyncio
async def test_missing_capability_is_rejected(manager):
    manager.register(FakeGitHubProvider())
    with pytest.raises(ProviderUnavailableError):
        await manager.delete_issue(3)


@pytest.mark.asyncio
async def test_no_providers_registered(manager):
    with pytest.raises(ProviderUnavailableError):
        await manager.list_issues()


@pytest.mark.asyncio
async def test_unavailable_provider_is_not_selected(manager):
    manager.register(FakeGitHubProvider(available=False))
    with pytest.raises(ProviderUnavailableError):
        await manager.select_provider(ProviderCapability.LIST)


@pytest.mark.asyncio
async def test_health_is_cached_between_selections(manager, clock):
    provider = FakeGitHubProvider()
    manager.register(provider)

    await manager.select_provider("list")
    await manager.select_provider("list")
    assert provider.health_checks == 1

    clock.advance(61)
    await manager.select_provider("list")
    assert provider.health_checks == 2


@pytest.mark.asyncio
async def test_all_provider_health_includes_circuit(manager):
    manager.register(FakeGitHubProvider(health_error=ConnectionError("api down")))

    health = await manager.get_all_provider_health()

    github = health["providers"]["github"]
    assert github["available"] is False
    assert github["error"] == "api down"
    assert health["circuit"]["healthy"] is True
    assert health["healthy"] is False
