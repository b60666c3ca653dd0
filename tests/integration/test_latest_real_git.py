"""Integration tests for the update pipeline against real git repositories.

Each test builds a bare "origin", a seed clone that advances trunk, and a
working clone that `kira latest` updates.
"""

import shutil
import subprocess
from pathlib import Path

import pytest

from kira.core.git.real import RealGit
from kira.core.latest.classifier import check_repository_state
from kira.core.latest.orchestrator import process_repository_update
from kira.core.latest.reporting import ProgressReporter
from kira.core.latest.resolver import autodetect_trunk_branch
from kira.core.latest.types import RepositoryInfo, RepositoryOperationResult, RepositoryState

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")


def _git(cwd: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", *args],
        cwd=cwd,
        check=True,
        capture_output=True,
        text=True,
    )
    return result.stdout


def _configure_identity(repo: Path) -> None:
    _git(repo, "config", "user.email", "test@example.com")
    _git(repo, "config", "user.name", "Test User")
    _git(repo, "config", "commit.gpgsign", "false")


def _commit(repo: Path, file_name: str, content: str, message: str) -> None:
    (repo / file_name).write_text(content, encoding="utf-8")
    _git(repo, "add", file_name)
    _git(repo, "commit", "-m", message)


def _setup(tmp_path: Path) -> tuple[Path, Path]:
    """Create origin + seed + work clones. Returns (seed, work)."""
    origin = tmp_path / "origin.git"
    _git(tmp_path, "init", "--bare", "-b", "main", str(origin))

    seed = tmp_path / "seed"
    _git(tmp_path, "clone", str(origin), str(seed))
    _configure_identity(seed)
    _git(seed, "checkout", "-B", "main")
    _commit(seed, "file.txt", "base\n", "initial")
    _git(seed, "push", "origin", "main")

    work = tmp_path / "work"
    _git(tmp_path, "clone", str(origin), str(work))
    _configure_identity(work)
    return seed, work


def _repo(work: Path) -> RepositoryInfo:
    return RepositoryInfo(name="work", path=work.resolve(), trunk_branch="main", remote="origin")


def _update(work: Path, *, abort_on_conflict: bool) -> RepositoryOperationResult:
    return process_repository_update(
        RealGit(),
        _repo(work),
        abort_on_conflict=abort_on_conflict,
        no_pop_stash=False,
        progress=ProgressReporter(lambda _line: None),
    )


def _rebase_dir_exists(work: Path) -> bool:
    git_dir = work / ".git"
    return (git_dir / "rebase-merge").exists() or (git_dir / "rebase-apply").exists()


def test_feature_branch_behind_trunk_is_rebased(tmp_path: Path) -> None:
    seed, work = _setup(tmp_path)
    _git(work, "checkout", "-b", "feature")
    _commit(work, "feature.txt", "feature\n", "feature work")
    _commit(seed, "upstream.txt", "upstream\n", "upstream work")
    _git(seed, "push", "origin", "main")

    result = _update(work, abort_on_conflict=False)

    assert result.succeeded, result.error
    assert result.rebase_attempted
    assert not result.rebase_had_conflicts
    assert not result.had_stash
    assert not result.stash_popped
    assert (work / "upstream.txt").exists()
    assert "feature work" in _git(work, "log", "-1", "--format=%s")


def test_trunk_is_fast_forwarded(tmp_path: Path) -> None:
    seed, work = _setup(tmp_path)
    _commit(seed, "upstream.txt", "upstream\n", "upstream work")
    _git(seed, "push", "origin", "main")

    result = _update(work, abort_on_conflict=False)

    assert result.succeeded, result.error
    assert result.steps == ("fetch", "trunk-update")
    assert (work / "upstream.txt").exists()


def _setup_conflict(tmp_path: Path) -> Path:
    seed, work = _setup(tmp_path)
    _git(work, "checkout", "-b", "feature")
    _commit(work, "file.txt", "feature\n", "feature edit")
    _commit(seed, "file.txt", "upstream\n", "upstream edit")
    _git(seed, "push", "origin", "main")
    (work / "notes.txt").write_text("uncommitted notes\n", encoding="utf-8")
    return work


def test_conflict_with_abort_restores_working_tree(tmp_path: Path) -> None:
    work = _setup_conflict(tmp_path)

    result = _update(work, abort_on_conflict=True)

    assert result.had_stash
    assert result.rebase_had_conflicts
    assert result.rebase_aborted
    assert result.stash_popped
    assert not _rebase_dir_exists(work)
    assert (work / "notes.txt").read_text(encoding="utf-8") == "uncommitted notes\n"
    assert (work / "file.txt").read_text(encoding="utf-8") == "feature\n"
    assert _git(work, "stash", "list").strip() == ""


def test_conflict_without_abort_leaves_rebase_for_user(tmp_path: Path) -> None:
    work = _setup_conflict(tmp_path)

    result = _update(work, abort_on_conflict=False)

    assert result.rebase_had_conflicts
    assert not result.rebase_aborted
    assert not result.stash_popped
    assert _rebase_dir_exists(work)
    assert "kira latest: auto-stash before rebase on work" in _git(work, "stash", "list")
    state = check_repository_state(RealGit(), _repo(work))
    assert state.state == RepositoryState.CONFLICTS_EXIST


def test_real_git_queries(tmp_path: Path) -> None:
    _seed, work = _setup(tmp_path)
    git = RealGit()
    path = work.resolve()

    assert git.get_git_dir(path) == (path / ".git").resolve()
    assert git.get_current_branch(path) == "main"
    assert git.branch_exists(path, "main")
    assert not git.branch_exists(path, "master")
    assert git.remote_exists(path, "origin")
    assert not git.remote_exists(path, "upstream")
    assert git.get_remote_default_branch(path, "origin") == "main"
    assert autodetect_trunk_branch(git, path, "origin") == "main"
    assert not git.has_uncommitted_changes(path)
    assert not git.stash_push(path, "nothing to stash")
