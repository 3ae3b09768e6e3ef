"""
Multi-Repo Coordination

Knows the repositories of the workspace and how they depend on each other,
and coordinates operations that must touch several of them in order.

Key Capabilities:
- Repository table and workspace detection
- Dependency ordering with cycle detection
- Change impact analysis and coordination planning
- Quality gate configuration and execution
- Coordinated branch creation and quality gate runs
"""

from .repo_registry import (
    DEFAULT_REPOSITORIES,
    RepoCategory,
    RepoRegistry,
    RepositoryContext,
    RepositoryNode,
    contextual_default_repository,
    detect_repository_context,
    detect_workspace_root,
)
from .dependency_resolver import DependencyGraph
from .impact_analyzer import (
    ActionKind,
    ActionPriority,
    ChangeImpact,
    ChangeImpactAnalyzer,
    CoordinationComplexity,
    ImpactType,
    RepositoryAction,
)
from .quality_gates import (
    CheckResult,
    QualityCheck,
    QualityGateConfig,
    QualityGateValidator,
    QualityRunResult,
)
from .git_ops import GitRepoInfo, GitResult, detect_git_repo, run_git
from .change_coordinator import (
    BranchResult,
    CoordinatedResult,
    CrossRepoCoordinator,
    QualityGateResult,
)

__all__ = [
    # Repository table
    "DEFAULT_REPOSITORIES",
    "RepoCategory",
    "RepoRegistry",
    "RepositoryContext",
    "RepositoryNode",
    "contextual_default_repository",
    "detect_repository_context",
    "detect_workspace_root",
    # Dependency ordering
    "DependencyGraph",
    # Impact analysis
    "ActionKind",
    "ActionPriority",
    "ChangeImpact",
    "ChangeImpactAnalyzer",
    "CoordinationComplexity",
    "ImpactType",
    "RepositoryAction",
    # Quality gates
    "CheckResult",
    "QualityCheck",
    "QualityGateConfig",
    "QualityGateValidator",
    "QualityRunResult",
    # Git
    "GitRepoInfo",
    "GitResult",
    "detect_git_repo",
    "run_git",
    # Coordination
    "BranchResult",
    "CoordinatedResult",
    "CrossRepoCoordinator",
    "QualityGateResult",
]
