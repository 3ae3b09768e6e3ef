"""
ChangeImpactAnalyzer: Cross-Repo Blast Radius

Classifies a change in one repository and derives which other repositories
must follow up, what they must do, and how much coordination that takes.

Key Capabilities:
- Impact classification (breaking / feature / bugfix / internal)
- Affected repository derivation from the dependency graph
- Deterministic follow-up actions per affected repository
- Coordination complexity tiers and effort buckets
- Automation recommendations and a phased coordination plan
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from repo_coordinator.multirepo.dependency_resolver import DependencyGraph
from repo_coordinator.multirepo.repo_registry import RepoCategory, RepositoryNode

logger = logging.getLogger(__name__)


class ImpactType(str, Enum):
    """How far a change reaches"""

    BREAKING = "breaking"  # Consumers must change
    FEATURE = "feature"  # Additive, consumers may adopt
    BUGFIX = "bugfix"  # Nearest consumer should re-verify
    INTERNAL = "internal"  # No cross-repo effect


class ActionKind(str, Enum):
    UPDATE_TYPES = "update-types"
    UPDATE_API_CALLS = "update-api-calls"
    REGENERATE_BINDINGS = "regenerate-bindings"
    UPDATE_TESTS = "update-tests"
    UPDATE_DOCS = "update-docs"


class ActionPriority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class CoordinationComplexity(str, Enum):
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"


@dataclass(frozen=True)
class RepositoryAction:
    """Follow-up work required in one repository"""

    repository: str
    action_type: ActionKind
    description: str
    priority: ActionPriority
    automatable: bool
    estimated_effort: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "repository": self.repository,
            "action_type": self.action_type.value,
            "description": self.description,
            "priority": self.priority.value,
            "automatable": self.automatable,
            "estimated_effort": self.estimated_effort,
        }


@dataclass(frozen=True)
class ChangeImpact:
    """Result of one analysis; never mutated after it is returned"""

    changed_repository: str
    impact_type: ImpactType
    affected_repositories: Tuple[str, ...]
    required_actions: Tuple[RepositoryAction, ...]
    coordination_complexity: CoordinationComplexity
    estimated_effort: str
    automation_recommendations: Tuple[str, ...] = ()

    @property
    def manual_actions(self) -> List[RepositoryAction]:
        return [a for a in self.required_actions if not a.automatable]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "changed_repository": self.changed_repository,
            "impact_type": self.impact_type.value,
            "affected_repositories": list(self.affected_repositories),
            "required_actions": [a.to_dict() for a in self.required_actions],
            "coordination_complexity": self.coordination_complexity.value,
            "estimated_effort": self.estimated_effort,
            "automation_recommendations": list(self.automation_recommendations),
        }


# Commit message markers, matched against the lowercased message
_BREAKING_MARKERS = ("breaking", "major:")
_FEATURE_MARKERS = ("feat", "add", "new")
_API_ADDITION_MARKERS = ("feat", "add")
_BUGFIX_MARKERS = ("fix", "bug", "patch")

# Changed-file markers, matched against the lowercased file list
_PROTOCOL_FILE_MARKERS = (".proto",)
_API_SURFACE_MARKERS = ("api/", "internal/api")


class ChangeImpactAnalyzer:
    """
    Derives a ChangeImpact from a repository, its changed files and the
    commit message. Pure computation over the dependency graph.
    """

    def __init__(self, graph: DependencyGraph):
        self.graph = graph

    def analyze(
        self,
        repository: str,
        changed_files: Sequence[str],
        commit_message: Optional[str] = None,
    ) -> ChangeImpact:
        node = self.graph.node(repository)

        impact_type = self.classify(node, changed_files, commit_message)
        affected = self.affected_repositories(node, impact_type)
        actions = self.required_actions(node, affected, impact_type)
        complexity = self.coordination_complexity(affected, actions)

        impact = ChangeImpact(
            changed_repository=repository,
            impact_type=impact_type,
            affected_repositories=tuple(affected),
            required_actions=tuple(actions),
            coordination_complexity=complexity,
            estimated_effort=self.estimate_effort(affected, actions),
            automation_recommendations=tuple(
                self.automation_recommendations(actions, impact_type)
            ),
        )
        logger.info(
            f"Change in {repository} classified as {impact_type.value}: "
            f"{len(affected)} affected, complexity {complexity.value}"
        )
        return impact

    def classify(
        self,
        node: RepositoryNode,
        changed_files: Sequence[str],
        commit_message: Optional[str] = None,
    ) -> ImpactType:
        message = (commit_message or "").lower()
        files = " ".join(changed_files).lower()

        if _contains_any(message, _BREAKING_MARKERS):
            return ImpactType.BREAKING

        if node.category == RepoCategory.PROTOCOL and _contains_any(
            files, _PROTOCOL_FILE_MARKERS
        ):
            return ImpactType.BREAKING

        if node.api_consumers and _contains_any(files, _API_SURFACE_MARKERS):
            if _contains_any(message, _API_ADDITION_MARKERS):
                return ImpactType.FEATURE
            return ImpactType.BREAKING

        if _contains_any(message, _FEATURE_MARKERS):
            return ImpactType.FEATURE

        if _contains_any(message, _BUGFIX_MARKERS):
            return ImpactType.BUGFIX

        return ImpactType.INTERNAL

    def affected_repositories(
        self, node: RepositoryNode, impact_type: ImpactType
    ) -> List[str]:
        if impact_type in (ImpactType.BREAKING, ImpactType.FEATURE):
            affected = self.graph.dependents(node.name)
            if node.category == RepoCategory.PROTOCOL:
                affected.extend(self.protocol_consumers())
            affected.extend(c for c in node.api_consumers if c in self.graph)
            return _unique(affected)

        if impact_type == ImpactType.BUGFIX:
            return self.graph.dependents(node.name)[:1]

        return []

    def protocol_consumers(self) -> List[str]:
        """Direct dependents of every protocol repository"""
        consumers: List[str] = []
        for name in self.graph.names():
            if self.graph.node(name).category == RepoCategory.PROTOCOL:
                consumers.extend(self.graph.dependents(name))
        return _unique(consumers)

    def required_actions(
        self,
        origin: RepositoryNode,
        affected: Iterable[str],
        impact_type: ImpactType,
    ) -> List[RepositoryAction]:
        breaking = impact_type == ImpactType.BREAKING
        interface_change = (
            origin.category == RepoCategory.PROTOCOL or bool(origin.api_consumers)
        )
        actions: List[RepositoryAction] = []

        for name in affected:
            target = self.graph.node(name)
            language = target.primary_language.lower()

            if origin.category == RepoCategory.PROTOCOL and language == "go":
                actions.append(
                    RepositoryAction(
                        repository=name,
                        action_type=ActionKind.REGENERATE_BINDINGS,
                        description="Regenerate Go bindings from updated protocol definitions",
                        priority=ActionPriority.HIGH,
                        automatable=True,
                        estimated_effort="15 minutes",
                    )
                )

            if name in origin.api_consumers:
                actions.append(
                    RepositoryAction(
                        repository=name,
                        action_type=ActionKind.UPDATE_API_CALLS,
                        description=f"Update API client calls to match {origin.name} changes",
                        priority=ActionPriority.HIGH if breaking else ActionPriority.MEDIUM,
                        automatable=False,
                        estimated_effort="2-4 hours" if breaking else "30 minutes",
                    )
                )

            if breaking and interface_change and language == "typescript":
                actions.append(
                    RepositoryAction(
                        repository=name,
                        action_type=ActionKind.UPDATE_TYPES,
                        description=f"Regenerate TypeScript types for {origin.name} interfaces",
                        priority=ActionPriority.HIGH,
                        automatable=True,
                        estimated_effort="30 minutes",
                    )
                )

            if breaking and target.category == RepoCategory.ORCHESTRATION:
                actions.append(
                    RepositoryAction(
                        repository=name,
                        action_type=ActionKind.UPDATE_DOCS,
                        description=f"Document the breaking change in {origin.name}",
                        priority=ActionPriority.LOW,
                        automatable=False,
                        estimated_effort="30 minutes",
                    )
                )

            actions.append(
                RepositoryAction(
                    repository=name,
                    action_type=ActionKind.UPDATE_TESTS,
                    description="Update tests to reflect changes in dependencies",
                    priority=ActionPriority.MEDIUM,
                    automatable=False,
                    estimated_effort="1-2 hours",
                )
            )

        return actions

    @staticmethod
    def coordination_complexity(
        affected: Sequence[str], actions: Sequence[RepositoryAction]
    ) -> CoordinationComplexity:
        manual = sum(1 for a in actions if not a.automatable)
        if not affected:
            return CoordinationComplexity.SIMPLE
        if len(affected) <= 2 and manual <= 2:
            return CoordinationComplexity.MODERATE
        return CoordinationComplexity.COMPLEX

    @staticmethod
    def estimate_effort(
        affected: Sequence[str], actions: Sequence[RepositoryAction]
    ) -> str:
        manual = sum(1 for a in actions if not a.automatable)
        if not affected:
            return "0 minutes"
        if len(affected) <= 2 and manual <= 2:
            return "1-2 hours"
        if len(affected) <= 4 and manual <= 4:
            return "0.5-1 day"
        return "1-3 days"

    @staticmethod
    def automation_recommendations(
        actions: Sequence[RepositoryAction], impact_type: ImpactType
    ) -> List[str]:
        recommendations: List[str] = []

        automatable = [a for a in actions if a.automatable]
        if automatable:
            kinds = ", ".join(a.action_type.value for a in automatable)
            recommendations.append(f"Automate {len(automatable)} actions: {kinds}")

        if impact_type == ImpactType.BREAKING:
            recommendations.append("Create coordinated feature branches for breaking changes")
            recommendations.append("Run quality gates in dependency order before merging")

        if any(a.action_type == ActionKind.REGENERATE_BINDINGS for a in actions):
            recommendations.append("Set up automated protocol binding generation in CI/CD")

        return recommendations

    def generate_coordination_plan(self, impact: ChangeImpact) -> List[Dict[str, Any]]:
        """Ordered phases for rolling the change out across repositories"""
        involved = [impact.changed_repository, *impact.affected_repositories]
        order = self.graph.dependency_order(_unique(involved))

        preparation = [f"Review {impact.impact_type.value} change in {impact.changed_repository}"]
        if impact.affected_repositories:
            preparation.append(
                "Create coordinated branches in: " + ", ".join(order)
            )

        implementation = []
        for name in order:
            repo_actions = [a for a in impact.required_actions if a.repository == name]
            if name == impact.changed_repository:
                implementation.append({"repository": name, "actions": ["Land origin change"]})
            elif repo_actions:
                implementation.append(
                    {
                        "repository": name,
                        "actions": [a.action_type.value for a in repo_actions],
                    }
                )

        return [
            {"phase": "Preparation", "steps": preparation},
            {"phase": "Implementation", "steps": implementation},
            {
                "phase": "Quality Assurance",
                "steps": [f"Run quality gates in order: {', '.join(order)}"],
            },
            {
                "phase": "Integration",
                "steps": [
                    f"Merge in dependency order: {', '.join(order)}",
                    f"Estimated effort: {impact.estimated_effort}",
                ],
            },
        ]


def _contains_any(text: str, markers: Iterable[str]) -> bool:
    return any(marker in text for marker in markers)


def _unique(items: Iterable[str]) -> List[str]:
    seen = set()
    out: List[str] = []
    for item in items:
        if item not in seen:
            seen.add(item)
            out.append(item)
    return out
