"""
DependencyGraph: Topological Resolution

Directed acyclic graph of repositories built from their declared upstream
dependencies. Dependents are derived from the same edges, so the two views
can never disagree.

Key Capabilities:
- Reject cycles and dangling edges when the graph is constructed
- Dependency order for the whole graph or any subset
- Direct and transitive dependents/dependencies for impact analysis
"""

import logging
from collections import deque
from typing import Dict, Iterable, List, Optional, Set

from repo_coordinator.core.errors import CycleDetected, UnknownRepositoryError
from repo_coordinator.multirepo.repo_registry import RepoRegistry, RepositoryNode

logger = logging.getLogger(__name__)


class DependencyGraph:
    """Dependency edges between repository nodes"""

    def __init__(self, nodes: Iterable[RepositoryNode]):
        self._nodes: Dict[str, RepositoryNode] = {node.name: node for node in nodes}
        self._dependents: Dict[str, List[str]] = {name: [] for name in self._nodes}

        for node in self._nodes.values():
            for dep in node.dependencies:
                if dep not in self._nodes:
                    raise UnknownRepositoryError(dep)
                if node.name not in self._dependents[dep]:
                    self._dependents[dep].append(node.name)

        # Fails fast on a cycle anywhere in the graph
        self.dependency_order()
        logger.debug(f"Dependency graph built with {len(self._nodes)} repositories")

    @classmethod
    def from_registry(cls, registry: RepoRegistry) -> "DependencyGraph":
        return cls(registry.list_repositories())

    def __contains__(self, name: str) -> bool:
        return name in self._nodes

    def names(self) -> List[str]:
        return list(self._nodes)

    def node(self, name: str) -> RepositoryNode:
        self._require(name)
        return self._nodes[name]

    def dependencies(self, name: str) -> List[str]:
        return list(self.node(name).dependencies)

    def dependents(self, name: str) -> List[str]:
        """Direct dependents in declaration order"""
        self._require(name)
        return list(self._dependents[name])

    def dependency_order(self, subset: Optional[Iterable[str]] = None) -> List[str]:
        """
        Order `subset` (default: every repository) so that each repository
        comes after all of its dependencies that are also in the subset.

        Raises:
            CycleDetected: a repository is reached again while still being visited
            UnknownRepositoryError: the subset names an unknown repository
        """
        requested = list(self._nodes) if subset is None else list(subset)
        for name in requested:
            self._require(name)
        wanted = set(requested)

        visited: Set[str] = set()
        visiting: List[str] = []
        order: List[str] = []

        def visit(name: str) -> None:
            if name in visited:
                return
            if name in visiting:
                cycle = visiting[visiting.index(name):] + [name]
                raise CycleDetected(name, cycle)

            visiting.append(name)
            for dep in self._nodes[name].dependencies:
                if dep in wanted:
                    visit(dep)
            visiting.pop()
            visited.add(name)
            order.append(name)

        for name in requested:
            visit(name)
        return order

    def transitive_dependents(self, name: str) -> List[str]:
        """Everything downstream of `name`, nearest first"""
        return self._walk(name, lambda n: self._dependents[n])

    def transitive_dependencies(self, name: str) -> List[str]:
        """Everything upstream of `name`, nearest first"""
        return self._walk(name, lambda n: self._nodes[n].dependencies)

    def _walk(self, start: str, neighbours) -> List[str]:
        self._require(start)
        seen = {start}
        out: List[str] = []
        queue = deque([start])
        while queue:
            current = queue.popleft()
            for nxt in neighbours(current):
                if nxt not in seen:
                    seen.add(nxt)
                    out.append(nxt)
                    queue.append(nxt)
        return out

    def _require(self, name: str) -> None:
        if name not in self._nodes:
            raise UnknownRepositoryError(name)
