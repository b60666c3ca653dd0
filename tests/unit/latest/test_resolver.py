"""Tests for repository discovery, trunk resolution and ordering."""

from pathlib import Path

import pytest

from kira.core.config import GitConfig, KiraConfig, ProjectConfig, WorkspaceConfig
from kira.core.context import KiraContext
from kira.core.errors import WorkItemError
from kira.core.latest.errors import RepositoryValidationError, TrunkDetectionError
from kira.core.latest.resolver import (
    autodetect_trunk_branch,
    detect_workspace_behavior,
    discover_repositories,
    group_indices_by_root,
    order_repositories_by_dependencies,
    resolve_remote,
    resolve_repositories,
    resolve_trunk_branch,
    validate_repositories,
)
from kira.core.latest.types import RepositoryInfo, WorkspaceBehavior
from tests.fakes.git import FakeGit
from tests.test_utils.workspace import build_workspace, init_fake_repo


def _config(
    root: Path,
    *projects: ProjectConfig,
    trunk_branch: str | None = None,
    remote: str | None = None,
) -> KiraConfig:
    workspace = WorkspaceConfig(projects=projects) if projects else None
    return KiraConfig(
        config_dir=root,
        git=GitConfig(trunk_branch=trunk_branch, remote=remote),
        workspace=workspace,
    )


def _repo(name: str, repo_root: str | None = None) -> RepositoryInfo:
    return RepositoryInfo(
        name=name,
        path=Path(f"/repos/{name}"),
        trunk_branch="main",
        remote="origin",
        repo_root=repo_root,
    )


def test_detect_behavior_without_workspace_is_standalone(tmp_path: Path) -> None:
    assert detect_workspace_behavior(_config(tmp_path), tmp_path) == WorkspaceBehavior.STANDALONE


def test_detect_behavior_with_projects_inside_repo_is_monorepo(tmp_path: Path) -> None:
    (tmp_path / "services" / "api").mkdir(parents=True)
    config = _config(tmp_path, ProjectConfig(name="api", path="services/api"))

    assert detect_workspace_behavior(config, tmp_path) == WorkspaceBehavior.MONOREPO


def test_detect_behavior_with_repo_root_is_polyrepo(tmp_path: Path) -> None:
    config = _config(tmp_path, ProjectConfig(name="api", path="api", repo_root="shared"))

    assert detect_workspace_behavior(config, tmp_path) == WorkspaceBehavior.POLYREPO


def test_detect_behavior_with_separate_git_repo_is_polyrepo(tmp_path: Path) -> None:
    init_fake_repo(tmp_path / "api")
    config = _config(tmp_path, ProjectConfig(name="api", path="api"))

    assert detect_workspace_behavior(config, tmp_path) == WorkspaceBehavior.POLYREPO


def test_detect_behavior_with_absolute_path_is_polyrepo(tmp_path: Path) -> None:
    config = _config(tmp_path, ProjectConfig(name="api", path=str(tmp_path / "elsewhere")))

    assert detect_workspace_behavior(config, tmp_path) == WorkspaceBehavior.POLYREPO


def test_autodetect_uses_single_existing_candidate() -> None:
    repo = Path("/repos/app")
    git = FakeGit(local_branches={repo: ["master", "feature"]})

    assert autodetect_trunk_branch(git, repo, "origin") == "master"


def test_autodetect_with_both_candidates_follows_remote_head() -> None:
    repo = Path("/repos/app")
    git = FakeGit(
        local_branches={repo: ["main", "master"]},
        remote_default_branches={repo: "master"},
    )

    assert autodetect_trunk_branch(git, repo, "origin") == "master"


def test_autodetect_with_both_candidates_and_no_remote_head_fails() -> None:
    repo = Path("/repos/app")
    git = FakeGit(local_branches={repo: ["main", "master"]})

    with pytest.raises(TrunkDetectionError, match="both 'main' and 'master' branches exist"):
        autodetect_trunk_branch(git, repo, "origin")


def test_autodetect_without_candidates_uses_remote_head() -> None:
    repo = Path("/repos/app")
    git = FakeGit(remote_default_branches={repo: "develop"})

    assert autodetect_trunk_branch(git, repo, "origin") == "develop"


def test_autodetect_without_any_signal_fails() -> None:
    repo = Path("/repos/app")

    with pytest.raises(TrunkDetectionError, match="trunk branch not found"):
        autodetect_trunk_branch(FakeGit(), repo, "origin")


def test_autodetect_honours_custom_candidates() -> None:
    repo = Path("/repos/app")
    git = FakeGit(local_branches={repo: ["main", "trunk"]})

    assert autodetect_trunk_branch(git, repo, "origin", candidates=("trunk",)) == "trunk"


def test_resolve_trunk_prefers_project_override(tmp_path: Path) -> None:
    project = ProjectConfig(name="api", trunk_branch="develop")
    config = _config(tmp_path, project, trunk_branch="main")

    assert resolve_trunk_branch(FakeGit(), config, project, tmp_path) == "develop"


def test_resolve_trunk_falls_back_to_global_then_detection(tmp_path: Path) -> None:
    project = ProjectConfig(name="api")
    git = FakeGit(local_branches={tmp_path: ["master"]})

    with_global = _config(tmp_path, project, trunk_branch="main")
    without_global = _config(tmp_path, project)

    assert resolve_trunk_branch(git, with_global, project, tmp_path) == "main"
    assert resolve_trunk_branch(git, without_global, project, tmp_path) == "master"


def test_resolve_remote_priority(tmp_path: Path) -> None:
    override = ProjectConfig(name="api", remote="upstream")
    plain = ProjectConfig(name="web")

    assert resolve_remote(_config(tmp_path, remote="fork"), override) == "upstream"
    assert resolve_remote(_config(tmp_path, remote="fork"), plain) == "fork"
    assert resolve_remote(_config(tmp_path), None) == "origin"


def test_resolve_repositories_standalone_uses_directory_name(tmp_path: Path) -> None:
    root = init_fake_repo(tmp_path / "my-app")
    config = _config(root, trunk_branch="main")

    repos = resolve_repositories(FakeGit(), config, WorkspaceBehavior.STANDALONE, root)

    assert repos == [RepositoryInfo(name="my-app", path=root, trunk_branch="main", remote="origin")]


def test_resolve_repositories_polyrepo_keeps_declaration_order(tmp_path: Path) -> None:
    root = init_fake_repo(tmp_path / "workspace")
    api = init_fake_repo(tmp_path / "api")
    web = init_fake_repo(tmp_path / "web")
    config = _config(
        root,
        ProjectConfig(name="web", path="../web", remote="upstream"),
        ProjectConfig(name="docs"),
        ProjectConfig(name="api", path=str(api), trunk_branch="develop", repo_root="shared"),
        trunk_branch="main",
    )

    repos = resolve_repositories(FakeGit(), config, WorkspaceBehavior.POLYREPO, root)

    assert [r.name for r in repos] == ["web", "api"]
    assert repos[0] == RepositoryInfo(name="web", path=web, trunk_branch="main", remote="upstream")
    assert repos[1] == RepositoryInfo(
        name="api", path=api, trunk_branch="develop", remote="origin", repo_root="shared"
    )


def test_validate_repositories_reports_every_problem(tmp_path: Path) -> None:
    good = init_fake_repo(tmp_path / "good")
    plain = tmp_path / "plain"
    plain.mkdir()
    repos = [
        RepositoryInfo(name="good", path=good, trunk_branch="main", remote="origin"),
        RepositoryInfo(name="missing", path=tmp_path / "missing", trunk_branch="", remote="origin"),
        RepositoryInfo(name="plain", path=plain, trunk_branch="", remote="origin"),
    ]

    with pytest.raises(RepositoryValidationError) as exc_info:
        validate_repositories(repos)

    assert len(exc_info.value.problems) == 2
    message = str(exc_info.value)
    assert "repository path does not exist" in message
    assert "(for missing)" in message
    assert "path is not a git repository" in message
    assert "(for plain)" in message


def test_validate_repositories_accepts_git_file_worktrees(tmp_path: Path) -> None:
    worktree = tmp_path / "worktree"
    worktree.mkdir()
    (worktree / ".git").write_text("gitdir: /elsewhere/.git/worktrees/wt\n", encoding="utf-8")

    validate_repositories(
        [RepositoryInfo(name="wt", path=worktree, trunk_branch="main", remote="origin")]
    )


def test_order_groups_shared_roots_then_standalone() -> None:
    repos = [
        _repo("solo-a"),
        _repo("api", repo_root="mono"),
        _repo("tools", repo_root="infra"),
        _repo("web", repo_root="mono"),
        _repo("solo-b"),
    ]

    ordered = order_repositories_by_dependencies(repos)

    assert [r.name for r in ordered] == ["api", "web", "tools", "solo-a", "solo-b"]


def test_order_keeps_relative_declaration_order_within_group() -> None:
    repos = [_repo("b", repo_root="r"), _repo("a", repo_root="r"), _repo("c", repo_root="r")]

    assert [r.name for r in order_repositories_by_dependencies(repos)] == ["b", "a", "c"]


def test_group_indices_by_root() -> None:
    repos = [_repo("api", "mono"), _repo("web", "mono"), _repo("solo"), _repo("tools", "infra")]

    assert group_indices_by_root(repos) == [[0, 1], [2], [3]]


def test_group_indices_by_root_joins_repositories_with_the_same_path() -> None:
    shared = _repo("shared")
    again = RepositoryInfo(
        name="shared-again", path=Path("/repos/shared/."), trunk_branch="main", remote="origin"
    )
    rooted = RepositoryInfo(
        name="shared-rooted",
        path=Path("/repos/shared"),
        trunk_branch="main",
        remote="origin",
        repo_root="mono",
    )
    repos = [shared, _repo("solo"), again, rooted, _repo("api", "mono")]

    assert group_indices_by_root(repos) == [[0, 2, 3, 4], [1]]


def test_discover_repositories_returns_work_item_and_repos(tmp_path: Path) -> None:
    workspace = build_workspace(tmp_path / "app", config="git:\n  trunk_branch: main\n")
    config = KiraConfig(config_dir=workspace.root, git=GitConfig(trunk_branch="main"))
    ctx = KiraContext.for_test(cwd=workspace.root, config=config)

    work_item_id, repos = discover_repositories(ctx)

    assert work_item_id == "001"
    assert [r.path for r in repos] == [workspace.root]


def test_discover_repositories_requires_a_work_item(tmp_path: Path) -> None:
    workspace = build_workspace(tmp_path / "app", work_item=None)
    ctx = KiraContext.for_test(cwd=workspace.root, config=KiraConfig(config_dir=workspace.root))

    with pytest.raises(WorkItemError, match="no work item found"):
        discover_repositories(ctx)


def test_discover_repositories_outside_git_fails(tmp_path: Path) -> None:
    workspace = build_workspace(tmp_path / "app", git_repo=False)
    config = KiraConfig(config_dir=workspace.root, git=GitConfig(trunk_branch="main"))
    ctx = KiraContext.for_test(cwd=workspace.root, config=config)

    with pytest.raises(RepositoryValidationError, match="not a git repository"):
        discover_repositories(ctx)
