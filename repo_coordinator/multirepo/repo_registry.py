"""
RepoRegistry: Workspace Repository Table

Static table of the repositories that make up the workspace, their categories,
languages, declared upstream dependencies and the commands used to build,
test and quality-check them.

Key Capabilities:
- Default table for the Loqa ecosystem (8 repositories)
- Lookup by name and by category
- Workspace root detection (walks up until several known repos are found)
- Context-aware default repository selection from an operation description
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from repo_coordinator.core.errors import UnknownRepositoryError

logger = logging.getLogger(__name__)


class RepoCategory(str, Enum):
    """Role a repository plays in the workspace"""

    CORE_SERVICE = "core-service"
    FRONTEND = "frontend"
    PROTOCOL = "protocol"
    PLUGINS = "plugins"
    ORCHESTRATION = "orchestration"
    CONFIG = "config"
    WEBSITE = "website"


@dataclass(frozen=True)
class RepositoryNode:
    """One repository; dependents are derived by the dependency graph"""

    name: str
    category: RepoCategory
    description: str = ""
    dependencies: Tuple[str, ...] = ()
    primary_language: str = ""
    build_command: str = "make build"
    test_command: str = "make test"
    quality_command: str = "make quality-check"
    # Repos calling this one's API without a build-time edge
    api_consumers: Tuple[str, ...] = field(default=())

    def __post_init__(self):
        object.__setattr__(self, "category", RepoCategory(self.category))
        object.__setattr__(self, "dependencies", tuple(self.dependencies))
        object.__setattr__(self, "api_consumers", tuple(self.api_consumers))


DEFAULT_REPOSITORIES: Tuple[RepositoryNode, ...] = (
    RepositoryNode(
        name="loqa-proto",
        category=RepoCategory.PROTOCOL,
        description="gRPC protocol definitions - foundation for all services",
        primary_language="protobuf",
        build_command="./generate.sh",
    ),
    RepositoryNode(
        name="loqa-skills",
        category=RepoCategory.PLUGINS,
        description="Skill plugin system - consumed by hub",
        dependencies=("loqa-proto",),
        primary_language="go",
        test_command="go test ./...",
    ),
    RepositoryNode(
        name="loqa-hub",
        category=RepoCategory.CORE_SERVICE,
        description="Central service - depends on proto and skills",
        dependencies=("loqa-proto", "loqa-skills"),
        primary_language="go",
        build_command="go build ./cmd",
        test_command="go test ./...",
        api_consumers=("loqa-commander",),
    ),
    RepositoryNode(
        name="loqa-relay",
        category=RepoCategory.CORE_SERVICE,
        description="Audio client - depends on proto and communicates with hub",
        dependencies=("loqa-proto",),
        primary_language="go",
        build_command="go build ./cmd",
        test_command="go test ./...",
    ),
    RepositoryNode(
        name="loqa-commander",
        category=RepoCategory.FRONTEND,
        description="Vue.js dashboard - consumes hub API",
        primary_language="typescript",
        build_command="npm run build",
        test_command="npm test",
        quality_command="npm run quality-check",
    ),
    RepositoryNode(
        name="www-loqalabs-com",
        category=RepoCategory.WEBSITE,
        description="Marketing website - independent",
        primary_language="typescript",
        build_command="npm run build",
        test_command="npm test",
        quality_command="npm run quality-check",
    ),
    RepositoryNode(
        name="loqalabs-github-config",
        category=RepoCategory.CONFIG,
        description="Shared GitHub configurations",
        primary_language="yaml",
        build_command="make validate",
    ),
    RepositoryNode(
        name="loqa",
        category=RepoCategory.ORCHESTRATION,
        description="Docker Compose orchestration and documentation",
        dependencies=("loqa-hub", "loqa-commander", "loqa-relay"),
        primary_language="docker",
        build_command="docker-compose build",
    ),
)

# Directory names that mark a workspace root when enough of them are present
WORKSPACE_MARKERS: Tuple[str, ...] = (
    "loqa-hub",
    "loqa-commander",
    "loqa-proto",
    "loqa-relay",
    "loqa-skills",
)


class RepositoryContext(str, Enum):
    """Kind of work an operation is about"""

    DEVELOPMENT = "development"
    DOCUMENTATION = "documentation"
    CONFIGURATION = "configuration"
    ARCHITECTURE = "architecture"
    UI = "ui"
    DEPLOYMENT = "deployment"
    TESTING = "testing"
    GENERAL = "general"


CONTEXT_DEFAULTS: Dict[RepositoryContext, str] = {
    RepositoryContext.DEVELOPMENT: "loqa-hub",
    RepositoryContext.DOCUMENTATION: "loqa",
    RepositoryContext.CONFIGURATION: "loqa",
    RepositoryContext.ARCHITECTURE: "loqa-proto",
    RepositoryContext.UI: "loqa-commander",
    RepositoryContext.DEPLOYMENT: "loqa",
    RepositoryContext.TESTING: "loqa-hub",
    RepositoryContext.GENERAL: "loqa-hub",
}

# Checked in order; first match wins
_CONTEXT_KEYWORDS: Tuple[Tuple[RepositoryContext, Tuple[str, ...]], ...] = (
    (
        RepositoryContext.DOCUMENTATION,
        ("document", "readme", "guide", "explain", "overview"),
    ),
    (
        RepositoryContext.CONFIGURATION,
        ("docker", "compose", "deploy", "config", "orchestrat"),
    ),
    (
        RepositoryContext.ARCHITECTURE,
        ("protocol", "api", "grpc", "architect", "design"),
    ),
    (RepositoryContext.UI, ("ui", "dashboard", "frontend", "vue", "component")),
    (RepositoryContext.TESTING, ("test", "e2e", "integration")),
    (
        RepositoryContext.DEPLOYMENT,
        ("deploy", "infra", "devops", "ci/cd", "pipeline"),
    ),
)


def detect_repository_context(operation: Optional[str] = None) -> RepositoryContext:
    if not operation:
        return RepositoryContext.GENERAL

    op = operation.lower()
    for context, keywords in _CONTEXT_KEYWORDS:
        if any(keyword in op for keyword in keywords):
            return context
    return RepositoryContext.DEVELOPMENT


def contextual_default_repository(operation: Optional[str] = None) -> str:
    """Best default repository for an operation description"""
    return CONTEXT_DEFAULTS[detect_repository_context(operation)]


def detect_workspace_root(
    start: Optional[Union[str, Path]] = None,
    markers: Sequence[str] = WORKSPACE_MARKERS,
    minimum: int = 3,
) -> Path:
    """
    Walk up from `start` (default: CWD) until a directory holds at least
    `minimum` of the marker repositories. Falls back to `start`.
    """
    origin = Path(start or Path.cwd()).resolve()
    current = origin
    while True:
        try:
            found = sum(1 for marker in markers if (current / marker).is_dir())
        except OSError:
            found = 0
        if found >= minimum:
            return current
        if current.parent == current:
            break
        current = current.parent

    logger.debug(f"No workspace root found above {origin}, using it as the root")
    return origin


class RepoRegistry:
    """
    Name-indexed table of repository nodes rooted at a workspace directory.
    Declaration order is preserved and used wherever an order is needed.
    """

    def __init__(
        self,
        repositories: Optional[Iterable[RepositoryNode]] = None,
        workspace_root: Optional[Union[str, Path]] = None,
    ):
        nodes = DEFAULT_REPOSITORIES if repositories is None else repositories
        self._nodes: Dict[str, RepositoryNode] = {}
        for node in nodes:
            if node.name in self._nodes:
                logger.warning(f"Duplicate repository '{node.name}' replaces earlier entry")
            self._nodes[node.name] = node
        self.workspace_root = (
            Path(workspace_root) if workspace_root is not None else detect_workspace_root()
        )

    def __contains__(self, name: str) -> bool:
        return name in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def is_known(self, name: str) -> bool:
        return name in self._nodes

    def names(self) -> List[str]:
        return list(self._nodes)

    def get_repository(self, name: str) -> RepositoryNode:
        try:
            return self._nodes[name]
        except KeyError:
            raise UnknownRepositoryError(name) from None

    def list_repositories(self) -> List[RepositoryNode]:
        return list(self._nodes.values())

    def repositories_by_category(self, category: Union[RepoCategory, str]) -> List[RepositoryNode]:
        category = RepoCategory(category)
        return [node for node in self._nodes.values() if node.category == category]

    def path_for(self, name: str) -> Path:
        return self.workspace_root / self.get_repository(name).name

    def describe(self, name: str) -> Dict[str, object]:
        node = self.get_repository(name)
        return {
            "name": node.name,
            "path": str(self.path_for(name)),
            "category": node.category.value,
            "description": node.description,
            "dependencies": list(node.dependencies),
            "primary_language": node.primary_language,
            "build_command": node.build_command,
            "test_command": node.test_command,
            "quality_command": node.quality_command,
            "api_consumers": list(node.api_consumers),
        }
