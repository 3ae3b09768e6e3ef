"""
CrossRepoCoordinator: Dependency-Ordered Multi-Repo Operations

Facade over the repository graph, impact analyzer, quality gates and git
primitives. Multi-repository operations always walk repositories in
dependency order and report an outcome for every repository, even when some
of them fail.

Key Capabilities:
- Change impact analysis and coordination plans
- Coordinated feature branches across repositories
- Coordinated quality gate runs
- Repository introspection and changed-file detection
"""

import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import structlog

from repo_coordinator.core.errors import ConfigurationError
from repo_coordinator.core.resilience import ResilientExecutor
from repo_coordinator.multirepo import git_ops
from repo_coordinator.multirepo.dependency_resolver import DependencyGraph
from repo_coordinator.multirepo.impact_analyzer import ChangeImpact, ChangeImpactAnalyzer
from repo_coordinator.multirepo.quality_gates import QualityGateValidator
from repo_coordinator.multirepo.repo_registry import RepoRegistry
from repo_coordinator.telemetry.metrics import COORDINATED_REPO_RESULTS

logger = structlog.get_logger(__name__)

SKIPPED_MESSAGE = "Skipped after an earlier repository failed"


@dataclass
class BranchResult:
    repository: str
    success: bool
    branch_created: bool = False
    duration: float = 0.0
    error: Optional[str] = None
    skipped: bool = False


@dataclass
class QualityGateResult:
    repository: str
    success: bool
    duration: float = 0.0
    failed_checks: List[str] = field(default_factory=list)
    passed_checks: List[str] = field(default_factory=list)
    error: Optional[str] = None
    skipped: bool = False


@dataclass
class CoordinatedResult:
    """Aggregate of a dependency-ordered walk; success is False if any repo failed"""

    success: bool
    results: List[Any] = field(default_factory=list)
    execution_order: List[str] = field(default_factory=list)

    def failed(self) -> List[str]:
        return [r.repository for r in self.results if not r.success and not r.skipped]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "results": [asdict(r) for r in self.results],
            "execution_order": list(self.execution_order),
        }


class CrossRepoCoordinator:
    """
    Walks repositories in dependency order and runs git and quality operations
    through resilient executors.
    """

    def __init__(
        self,
        registry: RepoRegistry,
        graph: DependencyGraph,
        analyzer: ChangeImpactAnalyzer,
        quality_gates: QualityGateValidator,
        git_executor: ResilientExecutor,
        quality_executor: Optional[ResilientExecutor] = None,
        git_timeout: float = 120.0,
    ):
        self.registry = registry
        self.graph = graph
        self.analyzer = analyzer
        self.quality_gates = quality_gates
        self.git_executor = git_executor
        self.quality_executor = quality_executor or git_executor
        self.git_timeout = git_timeout

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def analyze_change_impact(
        self,
        repository: str,
        changed_files: Sequence[str],
        commit_message: Optional[str] = None,
    ) -> ChangeImpact:
        return self.analyzer.analyze(repository, changed_files, commit_message)

    def get_dependency_order(self, repositories: Optional[Sequence[str]] = None) -> List[str]:
        return self.graph.dependency_order(repositories)

    def generate_coordination_plan(self, impact: ChangeImpact) -> List[Dict[str, Any]]:
        return self.analyzer.generate_coordination_plan(impact)

    async def detect_changed_files(
        self, repository: str, base_branch: Optional[str] = "main"
    ) -> List[str]:
        path = self.registry.path_for(repository)
        return await self.git_executor.execute(
            lambda: git_ops.changed_files(path, base_branch, timeout=self.git_timeout),
            context=f"{repository} changed files",
        )

    def get_repository_info(self, name: str) -> Dict[str, Any]:
        info = self.registry.describe(name)
        info["dependents"] = self.graph.dependents(name)
        return info

    def get_all_repositories(self) -> List[Dict[str, Any]]:
        return [self.get_repository_info(name) for name in self.registry.names()]

    # ------------------------------------------------------------------
    # Coordinated operations
    # ------------------------------------------------------------------

    async def create_coordinated_branches(
        self,
        branch_name: str,
        repositories: Sequence[str],
        base_branch: str = "main",
        stop_on_first_failure: bool = False,
    ) -> CoordinatedResult:
        """
        Create `branch_name` from `base_branch` in every repository, in
        dependency order. Unknown repository names fail the call up front.
        """
        order = self.graph.dependency_order(repositories)
        logger.info(
            "coordinator.branches.start",
            branch=branch_name,
            base=base_branch,
            order=order,
        )

        async def create(name: str) -> BranchResult:
            return await self._create_branch(name, branch_name, base_branch)

        results = await self._walk(
            "branches",
            order,
            create,
            stop_on_first_failure,
            skipped=lambda name: BranchResult(name, False, error=SKIPPED_MESSAGE, skipped=True),
        )
        return CoordinatedResult(
            success=all(r.success for r in results), results=results, execution_order=order
        )

    async def run_coordinated_quality_gates(
        self,
        repositories: Sequence[str],
        stop_on_first_failure: bool = False,
    ) -> CoordinatedResult:
        """
        Run quality gates in every repository, in dependency order. A broken
        gate configuration fails the call before any repository runs.
        """
        order = self.graph.dependency_order(repositories)
        # Raises QualityGateConfigError before any repository runs
        self.quality_gates.config
        logger.info("coordinator.quality_gates.start", order=order)

        results = await self._walk(
            "quality_gates",
            order,
            self._run_quality_gates,
            stop_on_first_failure,
            skipped=lambda name: QualityGateResult(
                name, False, error=SKIPPED_MESSAGE, skipped=True
            ),
        )
        return CoordinatedResult(
            success=all(r.success for r in results), results=results, execution_order=order
        )

    # ------------------------------------------------------------------
    # Per-repository steps
    # ------------------------------------------------------------------

    async def _walk(
        self,
        operation: str,
        order: List[str],
        step: Callable[[str], Awaitable[Any]],
        stop_on_first_failure: bool,
        skipped: Callable[[str], Any],
    ) -> List[Any]:
        results: List[Any] = []
        halted = False
        for name in order:
            if halted:
                results.append(skipped(name))
                _count(operation, "skipped")
                continue

            result = await step(name)
            results.append(result)
            if result.success:
                logger.info(
                    f"coordinator.{operation}.repo_succeeded",
                    repository=name,
                    duration=round(result.duration, 3),
                )
                _count(operation, "success")
            else:
                logger.warning(
                    f"coordinator.{operation}.repo_failed",
                    repository=name,
                    error=result.error,
                )
                _count(operation, "failure")
                halted = stop_on_first_failure
        return results

    async def _create_branch(self, name: str, branch_name: str, base_branch: str) -> BranchResult:
        start = time.monotonic()
        path = self.registry.path_for(name)

        problem = self._check_git_checkout(path)
        if problem:
            return BranchResult(name, False, duration=time.monotonic() - start, error=problem)

        try:
            remotes = await self._git(name, ["remote"], path)
            if "origin" in remotes.stdout.split():
                await self._git(name, ["fetch", "origin", base_branch], path)
                await self._git(name, ["checkout", base_branch], path)
                await self._git(name, ["pull", "origin", base_branch], path)
            else:
                logger.info("coordinator.branches.no_origin", repository=name)
                await self._git(name, ["checkout", base_branch], path)
            await self._git(name, ["checkout", "-b", branch_name], path)
        except Exception as e:
            return BranchResult(name, False, duration=time.monotonic() - start, error=str(e))

        return BranchResult(name, True, branch_created=True, duration=time.monotonic() - start)

    async def _run_quality_gates(self, name: str) -> QualityGateResult:
        start = time.monotonic()
        path = self.registry.path_for(name)
        if not path.is_dir():
            return QualityGateResult(
                name,
                False,
                failed_checks=["execution-error"],
                error=f"Repository not found: {path}",
            )

        try:
            run = await self.quality_executor.execute(
                lambda: self.quality_gates.run_quality_checks(path, name),
                context=f"{name} quality gates",
            )
        except ConfigurationError:
            raise
        except Exception as e:
            return QualityGateResult(
                name,
                False,
                duration=time.monotonic() - start,
                failed_checks=["execution-error"],
                error=str(e),
            )

        return QualityGateResult(
            name,
            run.success,
            duration=time.monotonic() - start,
            failed_checks=run.failed_checks,
            passed_checks=run.passed_checks,
            error=None if run.success else "Failed checks: " + ", ".join(run.failed_checks),
        )

    async def _git(self, name: str, args: List[str], path: Path) -> git_ops.GitResult:
        return await self.git_executor.execute(
            lambda: git_ops.run_git(args, path, timeout=self.git_timeout),
            context=f"{name} git {args[0]}",
        )

    @staticmethod
    def _check_git_checkout(path: Path) -> Optional[str]:
        if not path.is_dir():
            return f"Repository not found: {path}"
        info = git_ops.detect_git_repo(path)
        if not info.is_git_repo or Path(info.repo_root) != path.resolve():
            return "Not a git repository"
        return None


def _count(operation: str, status: str) -> None:
    try:
        COORDINATED_REPO_RESULTS.labels(operation=operation, status=status).inc()
    except Exception as e:
        logger.debug("coordinator.metrics.failed", error=str(e))
