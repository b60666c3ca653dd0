"""Repository state classification.

Maps one repository's git state to exactly one `RepositoryState`. Git
failures degrade to `RepositoryState.ERROR` for that repository and are never
raised, so one broken repository cannot abort a batch.
"""

import logging
from collections.abc import Sequence

from kira.core.git.abc import Git
from kira.core.latest.errors import ClassifierError
from kira.core.latest.types import RepositoryInfo, RepositoryState, RepositoryStateInfo
from kira.core.subprocess import GitCommandError

logger = logging.getLogger(__name__)

# Porcelain XY codes git uses for unmerged paths.
CONFLICT_STATUS_CODES = frozenset({"UU", "AA", "DU", "DD", "AU", "UA", "UD"})


def _porcelain_path(entry: str) -> str:
    # Renames are reported as "old -> new"
    if " -> " in entry:
        entry = entry.split(" -> ", 1)[1]
    if len(entry) >= 2 and entry.startswith('"') and entry.endswith('"'):
        entry = entry[1:-1]
    return entry


def extract_conflicting_files(status_output: str) -> list[str]:
    """Extract unmerged file paths from `git status --porcelain` output.

    Only the two-letter unmerged codes count; staged, modified and untracked
    entries are ignored.
    """
    conflicting: list[str] = []
    for line in status_output.splitlines():
        if len(line) < 4:
            continue
        if line[:2] in CONFLICT_STATUS_CODES:
            conflicting.append(_porcelain_path(line[3:].strip()))
    return conflicting


def check_repository_state(git: Git, repo: RepositoryInfo) -> RepositoryStateInfo:
    """Detect the current state of a repository.

    Checks, in priority order: in-progress rebase, in-progress merge, unmerged
    paths, other uncommitted changes. A rebase or merge that still has unmerged
    paths is reported as CONFLICTS_EXIST so the conflicts get displayed.
    """
    try:
        if git.is_rebase_in_progress(repo.path):
            return _classify_operation(git, repo, RepositoryState.IN_REBASE, "rebase")
        if git.is_merge_in_progress(repo.path):
            return _classify_operation(git, repo, RepositoryState.IN_MERGE, "merge")

        status_output = git.get_status_porcelain(repo.path)
    except GitCommandError as e:
        error = ClassifierError(f"failed to check git status: {e}")
        logger.debug("Classifier error for %s: %s", repo.name, e)
        return RepositoryStateInfo(
            repo=repo,
            state=RepositoryState.ERROR,
            details=f"error checking state: {error}",
            error=error,
        )

    conflicting_files = extract_conflicting_files(status_output)
    if conflicting_files:
        return RepositoryStateInfo(
            repo=repo,
            state=RepositoryState.CONFLICTS_EXIST,
            details=f"conflicts in: {', '.join(conflicting_files)}",
        )

    if status_output.strip():
        return RepositoryStateInfo(
            repo=repo,
            state=RepositoryState.DIRTY_WORKING_DIR,
            details="uncommitted changes detected",
        )

    return RepositoryStateInfo(
        repo=repo,
        state=RepositoryState.READY_FOR_UPDATE,
        details="repository is clean and ready for update",
    )


def _classify_operation(
    git: Git,
    repo: RepositoryInfo,
    state: RepositoryState,
    operation: str,
) -> RepositoryStateInfo:
    status_output = git.get_status_porcelain(repo.path)
    if extract_conflicting_files(status_output):
        return RepositoryStateInfo(
            repo=repo,
            state=RepositoryState.CONFLICTS_EXIST,
            details=f"conflicts detected during {operation} operation",
        )
    return RepositoryStateInfo(
        repo=repo,
        state=state,
        details=f"repository is in the middle of a {operation} operation",
    )


def check_all_repository_states(
    git: Git, repos: Sequence[RepositoryInfo]
) -> list[RepositoryStateInfo]:
    """Classify every repository; errors stay local to their repository."""
    return [check_repository_state(git, repo) for repo in repos]
