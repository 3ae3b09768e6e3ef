import pytest

from repo_coordinator.multirepo import (
    ActionKind,
    ChangeImpactAnalyzer,
    CoordinationComplexity,
    DependencyGraph,
    ImpactType,
    RepoRegistry,
)


@pytest.fixture
def analyzer(tmp_path):
    graph = DependencyGraph.from_registry(RepoRegistry(workspace_root=tmp_path))
    return ChangeImpactAnalyzer(graph)


def _actions(impact, repository):
    return {a.action_type for a in impact.required_actions if a.repository == repository}


def test_proto_file_change_is_breaking_for_every_protocol_consumer(analyzer):
    impact = analyzer.analyze("loqa-proto", ["audio/audio.proto"], "update audio messages")

    assert impact.impact_type == ImpactType.BREAKING
    assert set(impact.affected_repositories) == {"loqa-skills", "loqa-hub", "loqa-relay"}
    for repo in impact.affected_repositories:
        assert ActionKind.REGENERATE_BINDINGS in _actions(impact, repo)
        assert ActionKind.UPDATE_TESTS in _actions(impact, repo)
    assert impact.coordination_complexity == CoordinationComplexity.COMPLEX
    assert impact.estimated_effort == "0.5-1 day"


def test_breaking_marker_in_message_wins(analyzer):
    impact = analyzer.analyze("loqa-skills", ["plugin.go"], "BREAKING: rename skill manifest")
    assert impact.impact_type == ImpactType.BREAKING
    assert impact.affected_repositories == ("loqa-hub",)


def test_api_addition_in_core_service_is_feature_and_reaches_frontend(analyzer):
    impact = analyzer.analyze(
        "loqa-hub", ["internal/api/intents.go"], "feat: add intents endpoint"
    )

    assert impact.impact_type == ImpactType.FEATURE
    assert impact.affected_repositories == ("loqa", "loqa-commander")
    assert _actions(impact, "loqa-commander") == {
        ActionKind.UPDATE_API_CALLS,
        ActionKind.UPDATE_TESTS,
    }


def test_api_change_without_addition_is_breaking(analyzer):
    impact = analyzer.analyze("loqa-hub", ["internal/api/intents.go"], "rework handlers")

    assert impact.impact_type == ImpactType.BREAKING
    assert ActionKind.UPDATE_TYPES in _actions(impact, "loqa-commander")
    assert ActionKind.UPDATE_DOCS in _actions(impact, "loqa")
    api_call = next(
        a for a in impact.required_actions if a.action_type == ActionKind.UPDATE_API_CALLS
    )
    assert api_call.estimated_effort == "2-4 hours"


def test_bugfix_only_reaches_first_dependent(analyzer):
    impact = analyzer.analyze("loqa-proto", ["README.md"], "fix typo in comments")
    assert impact.impact_type == ImpactType.BUGFIX
    assert impact.affected_repositories == ("loqa-skills",)
    assert impact.coordination_complexity == CoordinationComplexity.MODERATE


def test_internal_change_affects_nothing(analyzer):
    impact = analyzer.analyze("loqa-relay", ["cmd/main.go"], "tidy imports")
    assert impact.impact_type == ImpactType.INTERNAL
    assert impact.affected_repositories == ()
    assert impact.required_actions == ()
    assert impact.coordination_complexity == CoordinationComplexity.SIMPLE
    assert impact.estimated_effort == "0 minutes"


def test_automation_recommendations_for_protocol_break(analyzer):
    impact = analyzer.analyze("loqa-proto", ["x.proto"])
    recommendations = " | ".join(impact.automation_recommendations)
    assert "Automate 3 actions" in recommendations
    assert "coordinated feature branches" in recommendations
    assert "binding generation" in recommendations


def test_coordination_plan_phases_follow_dependency_order(analyzer):
    impact = analyzer.analyze("loqa-proto", ["x.proto"])
    plan = analyzer.generate_coordination_plan(impact)

    assert [p["phase"] for p in plan] == [
        "Preparation",
        "Implementation",
        "Quality Assurance",
        "Integration",
    ]
    implementation = [step["repository"] for step in plan[1]["steps"]]
    assert implementation[0] == "loqa-proto"
    assert implementation.index("loqa-skills") < implementation.index("loqa-hub")


def test_impact_serializes(analyzer):
    data = analyzer.analyze("loqa-proto", ["x.proto"]).to_dict()
    assert data["impact_type"] == "breaking"
    assert data["required_actions"][0]["action_type"] == "regenerate-bindings"
