import pytest

from repo_coordinator.core.errors import UnknownRepositoryError
from repo_coordinator.multirepo import (
    RepoCategory,
    RepoRegistry,
    RepositoryContext,
    contextual_default_repository,
    detect_repository_context,
    detect_workspace_root,
)


def test_default_table(tmp_path):
    registry = RepoRegistry(workspace_root=tmp_path)
    assert len(registry) == 8
    assert registry.is_known("loqa-hub")
    assert not registry.is_known("loqa-mobile")
    assert registry.get_repository("loqa-proto").category == RepoCategory.PROTOCOL
    assert registry.path_for("loqa-relay") == tmp_path / "loqa-relay"


def test_unknown_repository_lookup(tmp_path):
    with pytest.raises(UnknownRepositoryError):
        RepoRegistry(workspace_root=tmp_path).get_repository("loqa-mobile")


def test_repositories_by_category(tmp_path):
    registry = RepoRegistry(workspace_root=tmp_path)
    core = [node.name for node in registry.repositories_by_category("core-service")]
    assert core == ["loqa-hub", "loqa-relay"]


def test_describe_includes_commands(tmp_path):
    info = RepoRegistry(workspace_root=tmp_path).describe("loqa-commander")
    assert info["category"] == "frontend"
    assert info["build_command"] == "npm run build"
    assert info["dependencies"] == []


@pytest.mark.parametrize(
    "operation, context",
    [
        ("Update README for setup", RepositoryContext.DOCUMENTATION),
        ("Tweak docker compose healthchecks", RepositoryContext.CONFIGURATION),
        ("New grpc message for intents", RepositoryContext.ARCHITECTURE),
        ("Polish the dashboard layout", RepositoryContext.UI),
        ("Add e2e coverage", RepositoryContext.TESTING),
        ("Speed up the pipeline", RepositoryContext.DEPLOYMENT),
        ("Refactor skill loader", RepositoryContext.DEVELOPMENT),
        (None, RepositoryContext.GENERAL),
    ],
)
def test_detect_repository_context(operation, context):
    assert detect_repository_context(operation) == context


def test_contextual_default_repository():
    assert contextual_default_repository("Polish the dashboard layout") == "loqa-commander"
    assert contextual_default_repository("New grpc message for intents") == "loqa-proto"
    assert contextual_default_repository() == "loqa-hub"


def test_detect_workspace_root_walks_up(tmp_path):
    for name in ("loqa-hub", "loqa-proto", "loqa-relay"):
        (tmp_path / name).mkdir()
    nested = tmp_path / "loqa-hub" / "internal" / "api"
    nested.mkdir(parents=True)

    assert detect_workspace_root(nested) == tmp_path.resolve()


def test_detect_workspace_root_falls_back_to_start(tmp_path):
    start = tmp_path / "solo"
    start.mkdir()
    assert detect_workspace_root(start) == start.resolve()
