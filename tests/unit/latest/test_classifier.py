"""Tests for repository state classification."""

from pathlib import Path

from kira.core.latest.classifier import (
    check_all_repository_states,
    check_repository_state,
    extract_conflicting_files,
)
from kira.core.latest.errors import ClassifierError
from kira.core.latest.types import RepositoryInfo, RepositoryState
from kira.core.subprocess import GitCommandError
from tests.fakes.git import FakeGit

REPO_PATH = Path("/repos/app")
REPO = RepositoryInfo(name="app", path=REPO_PATH, trunk_branch="main", remote="origin")


def test_extract_conflicting_files_only_returns_unmerged_entries() -> None:
    status = "\n".join(
        [
            "UU src/both_modified.py",
            "AA added_twice.txt",
            "DU deleted_by_us.txt",
            "UD deleted_by_them.txt",
            "M  staged.py",
            " M modified.py",
            "?? untracked.txt",
            'UU "path with spaces.txt"',
        ]
    )

    assert extract_conflicting_files(status) == [
        "src/both_modified.py",
        "added_twice.txt",
        "deleted_by_us.txt",
        "deleted_by_them.txt",
        "path with spaces.txt",
    ]


def test_extract_conflicting_files_handles_empty_output() -> None:
    assert extract_conflicting_files("") == []


def test_clean_repository_is_ready() -> None:
    info = check_repository_state(FakeGit(), REPO)

    assert info.state == RepositoryState.READY_FOR_UPDATE
    assert info.error is None


def test_uncommitted_changes_make_repository_dirty() -> None:
    git = FakeGit(statuses={REPO_PATH: " M README.md\n?? notes.txt\n"})

    assert check_repository_state(git, REPO).state == RepositoryState.DIRTY_WORKING_DIR


def test_unmerged_paths_are_conflicts() -> None:
    git = FakeGit(statuses={REPO_PATH: "UU a.py\nAA b.py\n M c.py\n"})

    info = check_repository_state(git, REPO)

    assert info.state == RepositoryState.CONFLICTS_EXIST
    assert info.details == "conflicts in: a.py, b.py"


def test_rebase_without_unmerged_paths_is_in_rebase() -> None:
    git = FakeGit(rebase_in_progress={REPO_PATH}, statuses={REPO_PATH: "M  staged.py\n"})

    assert check_repository_state(git, REPO).state == RepositoryState.IN_REBASE


def test_rebase_with_unmerged_paths_is_conflicts() -> None:
    git = FakeGit(rebase_in_progress={REPO_PATH}, statuses={REPO_PATH: "UU a.py\n"})

    info = check_repository_state(git, REPO)

    assert info.state == RepositoryState.CONFLICTS_EXIST
    assert "rebase" in info.details


def test_merge_in_progress() -> None:
    git = FakeGit(merge_in_progress={REPO_PATH})

    assert check_repository_state(git, REPO).state == RepositoryState.IN_MERGE


def test_rebase_takes_priority_over_merge() -> None:
    git = FakeGit(rebase_in_progress={REPO_PATH}, merge_in_progress={REPO_PATH})

    assert check_repository_state(git, REPO).state == RepositoryState.IN_REBASE


def test_git_failure_becomes_error_state() -> None:
    failure = GitCommandError("check git status", ["git", "status"], 128, stderr="fatal: bad")
    git = FakeGit(status_raises={REPO_PATH: failure})

    info = check_repository_state(git, REPO)

    assert info.state == RepositoryState.ERROR
    assert isinstance(info.error, ClassifierError)
    assert "failed to check git status" in str(info.error)
    assert info.details.startswith("error checking state:")


def test_classification_is_idempotent() -> None:
    git = FakeGit(statuses={REPO_PATH: " M README.md\n"})

    assert check_repository_state(git, REPO) == check_repository_state(git, REPO)


def test_check_all_isolates_errors_per_repository() -> None:
    broken_path = Path("/repos/broken")
    broken = RepositoryInfo(name="broken", path=broken_path, trunk_branch="main", remote="origin")
    failure = GitCommandError("check git status", ["git", "status"], 128)
    git = FakeGit(status_raises={broken_path: failure})

    infos = check_all_repository_states(git, [broken, REPO])

    assert [i.state for i in infos] == [RepositoryState.ERROR, RepositoryState.READY_FOR_UPDATE]
