"""Shared fixtures for coordinator tests

Provides:
- abc_graph: three-repository graph A <- B <- C (C also depends on A)
- clock: controllable time source for breaker, cache and rate-limit tests
- fake_sleep: async sleep that advances the clock instead of waiting
- counting_executor: remote executor callback that records every call
- git_workspace: factory creating real git repositories under tmp_path
"""

import shutil
import subprocess
from pathlib import Path
from typing import Any, Dict, List, Tuple

import pytest

from repo_coordinator.multirepo import DependencyGraph, RepoCategory, RepositoryNode


def make_nodes(*specs: Tuple[str, Tuple[str, ...]]) -> List[RepositoryNode]:
    return [
        RepositoryNode(name=name, category=RepoCategory.CORE_SERVICE, dependencies=deps)
        for name, deps in specs
    ]


@pytest.fixture
def abc_nodes():
    return make_nodes(("A", ()), ("B", ("A",)), ("C", ("A", "B")))


@pytest.fixture
def abc_graph(abc_nodes):
    return DependencyGraph(abc_nodes)


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_sleep(clock):
    sleeps: List[float] = []

    async def sleep(seconds: float) -> None:
        sleeps.append(seconds)
        clock.advance(seconds)

    sleep.calls = sleeps
    return sleep


class CountingExecutor:
    """Remote executor callback; fails the first `failures` calls"""

    def __init__(self, failures: int = 0, error: Exception = None):
        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self.failures = failures
        self.error = error or ConnectionError("connection reset")

    async def __call__(self, operation: str, params: Dict[str, Any]) -> Any:
        self.calls.append((operation, dict(params)))
        if len(self.calls) <= self.failures:
            raise self.error
        return {"operation": operation, "params": dict(params), "call": len(self.calls)}

    @property
    def count(self) -> int:
        return len(self.calls)


@pytest.fixture
def counting_executor():
    return CountingExecutor()


requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


def _git(cwd: Path, *args: str) -> None:
    subprocess.run(
        [
            "git",
            "-c",
            "user.email=coordinator@example.test",
            "-c",
            "user.name=Coordinator Tests",
            "-c",
            "commit.gpgsign=false",
            *args,
        ],
        cwd=str(cwd),
        check=True,
        capture_output=True,
    )


def init_git_repo(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    _git(path, "init", "-q")
    _git(path, "symbolic-ref", "HEAD", "refs/heads/main")
    (path / "README.md").write_text(f"# {path.name}\n")
    _git(path, "add", "README.md")
    _git(path, "commit", "-q", "-m", "initial commit")
    return path


@pytest.fixture
def git_workspace(tmp_path):
    """Workspace root; call it with repository names to create git repos"""
    root = tmp_path / "workspace"
    root.mkdir()
    # Stops git discovery from walking above the workspace
    (root / ".workspace").write_text("")

    def create(*names: str) -> Path:
        for name in names:
            init_git_repo(root / name)
        return root

    create.root = root
    return create
