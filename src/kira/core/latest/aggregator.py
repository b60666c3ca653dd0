"""State aggregation and the pre-flight gate.

The gate is the last check before any repository is mutated. Everything it
rejects is reported together so one run shows every repository that needs
attention.
"""

import logging
from collections.abc import Sequence
from pathlib import Path

from kira.core.git.abc import Git
from kira.core.latest.classifier import check_repository_state
from kira.core.latest.errors import PreflightBlockedError
from kira.core.latest.orchestrator import STASH_MESSAGE_PREFIX
from kira.core.latest.reporting import ProgressReporter
from kira.core.latest.types import AggregatedState, RepositoryState, RepositoryStateInfo
from kira.core.subprocess import GitCommandError

logger = logging.getLogger(__name__)


def aggregate_repository_states(states: Sequence[RepositoryStateInfo]) -> AggregatedState:
    """Combine per-repository states into the worst-case overall state.

    Priority: conflicts > in rebase/merge (rebase first) > error > dirty > ready.
    """
    ready: list[str] = []
    dirty: list[str] = []
    conflicting: list[str] = []
    in_operation: list[str] = []
    errors: list[str] = []
    has_rebase = False

    for info in states:
        name = info.repo.name
        match info.state:
            case RepositoryState.CONFLICTS_EXIST:
                conflicting.append(name)
            case RepositoryState.IN_REBASE:
                in_operation.append(name)
                has_rebase = True
            case RepositoryState.IN_MERGE:
                in_operation.append(name)
            case RepositoryState.ERROR:
                errors.append(name)
            case RepositoryState.DIRTY_WORKING_DIR:
                dirty.append(name)
            case RepositoryState.READY_FOR_UPDATE:
                ready.append(name)

    if conflicting:
        overall = RepositoryState.CONFLICTS_EXIST
    elif in_operation:
        overall = RepositoryState.IN_REBASE if has_rebase else RepositoryState.IN_MERGE
    elif errors:
        overall = RepositoryState.ERROR
    elif dirty:
        overall = RepositoryState.DIRTY_WORKING_DIR
    else:
        overall = RepositoryState.READY_FOR_UPDATE

    return AggregatedState(
        overall_state=overall,
        state_infos=tuple(states),
        ready_repos=tuple(ready),
        dirty_repos=tuple(dirty),
        conflicting_repos=tuple(conflicting),
        in_operation_repos=tuple(in_operation),
        error_repos=tuple(errors),
    )


def validate_all_repos_clean_or_dirty_for_update(aggregated: AggregatedState) -> None:
    """Allow the update only when every repository is ready or merely dirty.

    Raises:
        PreflightBlockedError: Naming every blocking repository with recovery instructions
    """
    blocking: list[tuple[str, str]] = []
    blocking.extend((name, "merge conflicts detected") for name in aggregated.conflicting_repos)
    blocking.extend(
        (name, "in-progress rebase or merge operation") for name in aggregated.in_operation_repos
    )
    blocking.extend((name, "error state detected") for name in aggregated.error_repos)

    if not blocking:
        return

    lines = ["cannot proceed with update: repositories have blocking states:"]
    lines.extend(f"  - {name}: {reason}" for name, reason in blocking)
    lines.append("")
    lines.append("To resolve:")
    for name in aggregated.conflicting_repos:
        lines.append(
            f"  - Resolve merge conflicts in {name}, stage them with 'git add', "
            "then run 'git rebase --continue'"
        )
    for name in aggregated.in_operation_repos:
        lines.append(
            f"  - Complete or abort the in-progress operation in {name}: "
            "run 'git rebase --abort' or 'git merge --abort'"
        )
    for name in aggregated.error_repos:
        lines.append(f"  - Fix git errors in {name}")

    raise PreflightBlockedError("\n".join(lines), [name for name, _ in blocking])


def handle_in_progress_rebases(
    git: Git,
    state_infos: Sequence[RepositoryStateInfo],
    progress: ProgressReporter,
) -> list[RepositoryStateInfo]:
    """Try `git rebase --continue` for repositories left mid-rebase by an earlier run.

    Only IN_REBASE repositories (rebase running, no unmerged paths) are touched.
    A repository that continues cleanly is re-classified; one that fails keeps
    its state so the gate still blocks it, and git is left as-is for inspection.

    Returns:
        State infos in the same order, with continued repositories re-classified
    """
    in_rebase = [info for info in state_infos if info.state is RepositoryState.IN_REBASE]
    if not in_rebase:
        return list(state_infos)

    progress.message("")
    progress.message(
        "Repositories with in-progress rebases detected. "
        "Attempting to continue rebase operations..."
    )

    updated: list[RepositoryStateInfo] = []
    for info in state_infos:
        if info.state is not RepositoryState.IN_REBASE:
            updated.append(info)
            continue

        repo = info.repo
        progress.display_operation_progress(repo.name, "rebase-continue")
        try:
            git.rebase_continue(repo.path)
        except GitCommandError as e:
            logger.debug("rebase --continue failed in %s: %s", repo.name, e)
            progress.message(f"  ✗ {repo.name}: rebase --continue failed: {e}")
            progress.message(
                f"    Resolve any reported issues or conflicts in {repo.path}, "
                "then run 'kira latest' again."
            )
            updated.append(check_repository_state(git, repo))
            continue

        progress.message(f"  ✓ {repo.name}: rebase continue completed")
        if _has_kira_stash(git, repo.path):
            progress.message(
                f"    Changes stashed by an earlier 'kira latest' are still in the stash; "
                f"run 'git stash pop' in {repo.path} to restore them."
            )
        updated.append(check_repository_state(git, repo))

    return updated


def _has_kira_stash(git: Git, repo_path: Path) -> bool:
    try:
        stashes = git.list_stashes(repo_path)
    except GitCommandError:
        return False
    return any(STASH_MESSAGE_PREFIX in entry for entry in stashes)
