"""Production Git implementation using subprocess.

This module provides the real Git implementation that executes actual git
commands via `run_git_command`.
"""

from pathlib import Path

from kira.core.git.abc import Git
from kira.core.subprocess import (
    GIT_COMMAND_TIMEOUT_SECONDS,
    GIT_MUTATING_TIMEOUT_SECONDS,
    GIT_NON_INTERACTIVE_ENV,
    run_git_command,
)

# Fail instead of prompting for credentials on an unreachable remote.
_FETCH_ENV = {"GIT_TERMINAL_PROMPT": "0", **GIT_NON_INTERACTIVE_ENV}


class RealGit(Git):
    """Production implementation using subprocess.

    All git operations execute actual git commands via subprocess. Reads and
    fetches are bounded by `timeout` seconds; stash, rebase and fast-forward
    by `mutating_timeout` seconds.
    """

    def __init__(
        self,
        timeout: float = GIT_COMMAND_TIMEOUT_SECONDS,
        mutating_timeout: float = GIT_MUTATING_TIMEOUT_SECONDS,
    ) -> None:
        self._timeout = timeout
        self._mutating_timeout = mutating_timeout

    def get_git_dir(self, repo_path: Path) -> Path:
        """Get the absolute git directory for the repository."""
        result = run_git_command(
            repo_path,
            ["rev-parse", "--git-dir"],
            operation_context="resolve git directory",
            timeout=self._timeout,
        )
        git_dir = Path(result.stdout.strip())
        if not git_dir.is_absolute():
            git_dir = repo_path / git_dir
        return git_dir.resolve()

    def get_status_porcelain(self, repo_path: Path) -> str:
        """Get raw `git status --porcelain` output."""
        result = run_git_command(
            repo_path,
            ["status", "--porcelain"],
            operation_context="check git status",
            timeout=self._timeout,
        )
        return result.stdout

    def has_uncommitted_changes(self, repo_path: Path) -> bool:
        """Check if the working tree has staged, modified, or untracked files."""
        return self.get_status_porcelain(repo_path).strip() != ""

    def is_rebase_in_progress(self, repo_path: Path) -> bool:
        """Check for `rebase-merge` or `rebase-apply` in the git directory."""
        git_dir = self.get_git_dir(repo_path)
        return (git_dir / "rebase-merge").exists() or (git_dir / "rebase-apply").exists()

    def is_merge_in_progress(self, repo_path: Path) -> bool:
        """Check for `MERGE_HEAD` in the git directory."""
        return (self.get_git_dir(repo_path) / "MERGE_HEAD").exists()

    def get_current_branch(self, repo_path: Path) -> str | None:
        """Get the currently checked-out branch."""
        result = run_git_command(
            repo_path,
            ["rev-parse", "--abbrev-ref", "HEAD"],
            operation_context="determine current branch",
            timeout=self._timeout,
        )
        branch = result.stdout.strip()
        if branch == "HEAD":
            return None
        return branch

    def branch_exists(self, repo_path: Path, branch: str) -> bool:
        """Check whether a local branch exists."""
        result = run_git_command(
            repo_path,
            ["show-ref", "--verify", "--quiet", f"refs/heads/{branch}"],
            operation_context=f"check for branch '{branch}'",
            check=False,
            timeout=self._timeout,
        )
        return result.ok

    def get_remote_default_branch(self, repo_path: Path, remote: str) -> str | None:
        """Get the branch the remote's symbolic HEAD points to."""
        result = run_git_command(
            repo_path,
            ["symbolic-ref", f"refs/remotes/{remote}/HEAD"],
            operation_context=f"read default branch of remote '{remote}'",
            check=False,
            timeout=self._timeout,
        )
        if not result.ok:
            return None

        # Parse "refs/remotes/origin/main" -> "main"
        prefix = f"refs/remotes/{remote}/"
        ref = result.stdout.strip()
        if ref.startswith(prefix):
            return ref[len(prefix) :]
        return None

    def remote_exists(self, repo_path: Path, remote: str) -> bool:
        """Check whether a remote is configured."""
        result = run_git_command(
            repo_path,
            ["remote", "get-url", remote],
            operation_context=f"check remote '{remote}'",
            check=False,
            timeout=self._timeout,
        )
        return result.ok

    def fetch_branch(self, repo_path: Path, remote: str, branch: str) -> None:
        """Fetch a specific branch from a remote."""
        run_git_command(
            repo_path,
            ["fetch", remote, branch],
            operation_context=f"fetch {remote}/{branch}",
            timeout=self._timeout,
            extra_env=_FETCH_ENV,
        )

    def stash_push(self, repo_path: Path, message: str) -> bool:
        """Stash all changes including untracked files."""
        result = run_git_command(
            repo_path,
            ["stash", "push", "--include-untracked", "-m", message],
            operation_context="stash changes",
            timeout=self._mutating_timeout,
        )
        return "No local changes to save" not in result.combined_output

    def stash_pop(self, repo_path: Path) -> None:
        """Pop the most recent stash entry."""
        run_git_command(
            repo_path,
            ["stash", "pop"],
            operation_context="pop stash",
            timeout=self._mutating_timeout,
        )

    def list_stashes(self, repo_path: Path) -> list[str]:
        """List stash entries, most recent first."""
        result = run_git_command(
            repo_path,
            ["stash", "list"],
            operation_context="list stashes",
            timeout=self._timeout,
        )
        return [line for line in result.stdout.splitlines() if line.strip()]

    def rebase(self, repo_path: Path, upstream: str) -> None:
        """Rebase the current branch onto `upstream`."""
        run_git_command(
            repo_path,
            ["rebase", upstream],
            operation_context=f"rebase onto {upstream}",
            timeout=self._mutating_timeout,
            extra_env=GIT_NON_INTERACTIVE_ENV,
        )

    def rebase_continue(self, repo_path: Path) -> None:
        """Continue an in-progress rebase, keeping original commit messages."""
        run_git_command(
            repo_path,
            ["rebase", "--continue"],
            operation_context="continue rebase",
            timeout=self._mutating_timeout,
            extra_env=GIT_NON_INTERACTIVE_ENV,
        )

    def rebase_abort(self, repo_path: Path) -> None:
        """Abort an in-progress rebase."""
        run_git_command(
            repo_path,
            ["rebase", "--abort"],
            operation_context="abort rebase",
            timeout=self._mutating_timeout,
            extra_env=GIT_NON_INTERACTIVE_ENV,
        )

    def merge_ff_only(self, repo_path: Path, ref: str) -> None:
        """Fast-forward the current branch to `ref`."""
        run_git_command(
            repo_path,
            ["merge", "--ff-only", ref],
            operation_context=f"fast-forward to {ref}",
            timeout=self._mutating_timeout,
            extra_env=GIT_NON_INTERACTIVE_ENV,
        )
