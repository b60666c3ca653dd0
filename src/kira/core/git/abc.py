"""High-level git operations interface.

This module provides a clean abstraction over git subprocess calls, making the
synchronization engine testable without real repositories.

Architecture:
- Git: Abstract base class defining the interface
- RealGit: Production implementation using subprocess
- FakeGit (tests/fakes/git.py): In-memory implementation for tests

Every method takes the repository path explicitly. Failures raise
`kira.core.subprocess.GitCommandError` (or its `GitTimeoutError` subclass).
"""

from abc import ABC, abstractmethod
from pathlib import Path


class Git(ABC):
    """Abstract interface for git operations.

    All implementations (real and fake) must implement this interface.
    This interface contains ONLY runtime operations - no test setup methods.
    """

    @abstractmethod
    def get_git_dir(self, repo_path: Path) -> Path:
        """Get the absolute git directory for the repository.

        Resolves `.git` files (worktrees, submodules) to the real directory.
        """
        ...

    @abstractmethod
    def get_status_porcelain(self, repo_path: Path) -> str:
        """Get raw `git status --porcelain` output."""
        ...

    @abstractmethod
    def has_uncommitted_changes(self, repo_path: Path) -> bool:
        """Check if the working tree has staged, modified, or untracked files."""
        ...

    @abstractmethod
    def is_rebase_in_progress(self, repo_path: Path) -> bool:
        """Check for `rebase-merge` or `rebase-apply` in the git directory."""
        ...

    @abstractmethod
    def is_merge_in_progress(self, repo_path: Path) -> bool:
        """Check for `MERGE_HEAD` in the git directory."""
        ...

    @abstractmethod
    def get_current_branch(self, repo_path: Path) -> str | None:
        """Get the currently checked-out branch.

        Returns:
            Branch name, or None when HEAD is detached
        """
        ...

    @abstractmethod
    def branch_exists(self, repo_path: Path, branch: str) -> bool:
        """Check whether a local branch exists."""
        ...

    @abstractmethod
    def get_remote_default_branch(self, repo_path: Path, remote: str) -> str | None:
        """Get the branch the remote's symbolic HEAD points to.

        Args:
            repo_path: Repository path
            remote: Remote name (e.g., "origin")

        Returns:
            Branch name (e.g., "main"), or None if the remote HEAD is unknown
        """
        ...

    @abstractmethod
    def remote_exists(self, repo_path: Path, remote: str) -> bool:
        """Check whether a remote is configured."""
        ...

    @abstractmethod
    def fetch_branch(self, repo_path: Path, remote: str, branch: str) -> None:
        """Fetch a specific branch from a remote.

        Args:
            repo_path: Repository path
            remote: Remote name (e.g., "origin")
            branch: Branch name to fetch
        """
        ...

    @abstractmethod
    def stash_push(self, repo_path: Path, message: str) -> bool:
        """Stash all changes including untracked files.

        Returns:
            True if a stash entry was created, False if there was nothing to stash
        """
        ...

    @abstractmethod
    def stash_pop(self, repo_path: Path) -> None:
        """Pop the most recent stash entry."""
        ...

    @abstractmethod
    def list_stashes(self, repo_path: Path) -> list[str]:
        """List stash entries, most recent first."""
        ...

    @abstractmethod
    def rebase(self, repo_path: Path, upstream: str) -> None:
        """Rebase the current branch onto `upstream` (e.g., "origin/main")."""
        ...

    @abstractmethod
    def rebase_continue(self, repo_path: Path) -> None:
        """Continue an in-progress rebase, keeping original commit messages."""
        ...

    @abstractmethod
    def rebase_abort(self, repo_path: Path) -> None:
        """Abort an in-progress rebase."""
        ...

    @abstractmethod
    def merge_ff_only(self, repo_path: Path, ref: str) -> None:
        """Fast-forward the current branch to `ref`; never creates a merge commit."""
        ...
