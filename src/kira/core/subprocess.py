"""Git subprocess execution with timeouts and rich error context.

Every git invocation made by kira goes through `run_git_command`, so the
timeout policy and the shape of failures live in one place. Commands always run
as `git -C <repo_path> ...`; nothing depends on the process working directory.
"""

import logging
import os
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

GIT_COMMAND_TIMEOUT_SECONDS = 30.0

# Stash, rebase and fast-forward rewrite the working tree and may run hooks;
# killing them midway leaves index.lock behind.
GIT_MUTATING_TIMEOUT_SECONDS = 600.0

# Keep git from opening an editor or pager in non-interactive runs.
GIT_NON_INTERACTIVE_ENV: Mapping[str, str] = {"GIT_EDITOR": "true", "GIT_PAGER": "cat"}


@dataclass(frozen=True)
class GitCommandResult:
    """Outcome of a git command that was allowed to fail."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def combined_output(self) -> str:
        return "\n".join(part for part in (self.stdout.strip(), self.stderr.strip()) if part)


class GitCommandError(RuntimeError):
    """A git command exited non-zero (or could not be started).

    The message follows the `Failed to <operation>` / `Command:` / `Exit code:`
    layout so it can be shown to users unchanged.
    """

    def __init__(
        self,
        operation_context: str,
        args: Sequence[str],
        returncode: int | None,
        stdout: str = "",
        stderr: str = "",
        reason: str | None = None,
    ) -> None:
        self.operation_context = operation_context
        self.command = tuple(args)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr

        cmd_str = " ".join(str(arg) for arg in args)
        error_msg = f"Failed to {operation_context}"
        if reason is not None:
            error_msg += f": {reason}"
        error_msg += f"\nCommand: {cmd_str}"
        if returncode is not None:
            error_msg += f"\nExit code: {returncode}"
        stdout_stripped = stdout.strip()
        if stdout_stripped:
            error_msg += f"\nstdout: {stdout_stripped}"
        stderr_stripped = stderr.strip()
        if stderr_stripped:
            error_msg += f"\nstderr: {stderr_stripped}"
        super().__init__(error_msg)

    @property
    def output(self) -> str:
        """Combined stdout and stderr, for pattern-based classification."""
        return "\n".join(part for part in (self.stdout.strip(), self.stderr.strip()) if part)


class GitTimeoutError(GitCommandError):
    """A git command did not finish within its timeout."""

    def __init__(self, operation_context: str, args: Sequence[str], timeout: float) -> None:
        self.timeout = timeout
        super().__init__(
            operation_context,
            args,
            returncode=None,
            reason=f"timeout after {timeout:g}s",
        )


def run_git_command(
    repo_path: Path,
    args: Sequence[str],
    operation_context: str,
    *,
    check: bool = True,
    timeout: float = GIT_COMMAND_TIMEOUT_SECONDS,
    extra_env: Mapping[str, str] | None = None,
) -> GitCommandResult:
    """Run `git -C <repo_path> <args>` and capture its output.

    Args:
        repo_path: Repository the command operates on
        args: Git arguments (without the leading `git`)
        operation_context: Human-readable description used in error messages
        check: Raise GitCommandError on non-zero exit (default: True)
        timeout: Seconds before the process is killed
        extra_env: Additional environment variables for the git process

    Returns:
        GitCommandResult with exit status and decoded output

    Raises:
        GitCommandError: If `check` is set and git exits non-zero, or git is missing
        GitTimeoutError: If the command exceeds `timeout`
    """
    cmd = ["git", "-C", str(repo_path), *args]
    env = None
    if extra_env:
        env = {**os.environ, **extra_env}

    logger.debug("Running %s (timeout=%ss)", " ".join(cmd), timeout)
    try:
        completed = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            check=False,
            timeout=timeout,
            env=env,
        )
    except subprocess.TimeoutExpired as e:
        raise GitTimeoutError(operation_context, cmd, timeout) from e
    except FileNotFoundError as e:
        raise GitCommandError(
            operation_context, cmd, returncode=None, reason="git executable not found"
        ) from e

    result = GitCommandResult(
        args=tuple(cmd),
        returncode=completed.returncode,
        stdout=completed.stdout or "",
        stderr=completed.stderr or "",
    )
    if check and not result.ok:
        raise GitCommandError(
            operation_context,
            cmd,
            returncode=result.returncode,
            stdout=result.stdout,
            stderr=result.stderr,
        )
    return result
