"""Progress and result reporting for `kira latest`.

All functions here are output-only: they receive an `emit` callable and never
touch a repository, except `display_discovered_repositories` which reads the
current branch for display.
"""

import threading
from collections.abc import Callable, Sequence

from kira.core.git.abc import Git
from kira.core.latest.types import (
    AggregatedState,
    RepositoryInfo,
    RepositoryOperationResult,
    RepositoryState,
    RepositoryStateInfo,
)
from kira.core.subprocess import GitCommandError

Emit = Callable[[str], None]

RULE = "─" * 63


class ProgressReporter:
    """Cross-repository progress shared by concurrent workers.

    The lock guards the emitted line order and the counters. Callers must not
    run git while holding it, so every critical section is format + emit only.
    """

    def __init__(self, emit: Emit) -> None:
        self._emit = emit
        self._lock = threading.Lock()
        self._started: list[str] = []
        self._finished: list[str] = []

    @property
    def started(self) -> list[str]:
        with self._lock:
            return list(self._started)

    @property
    def finished(self) -> list[str]:
        with self._lock:
            return list(self._finished)

    def display_operation_progress(self, repo_name: str, step: str) -> None:
        """Emit `  Updating <repo>: <step>...` as a step starts."""
        with self._lock:
            if repo_name not in self._started:
                self._started.append(repo_name)
            self._emit(f"  Updating {repo_name}: {step}...")

    def mark_finished(self, repo_name: str) -> None:
        with self._lock:
            self._finished.append(repo_name)

    def message(self, text: str) -> None:
        """Emit a free-form line in order with progress lines."""
        with self._lock:
            self._emit(text)


def get_state_symbol(state: RepositoryState) -> str:
    match state:
        case RepositoryState.READY_FOR_UPDATE:
            return "✓"
        case RepositoryState.CONFLICTS_EXIST:
            return "✗"
        case RepositoryState.DIRTY_WORKING_DIR:
            return "!"
        case RepositoryState.IN_REBASE | RepositoryState.IN_MERGE:
            return "⟳"
        case RepositoryState.ERROR:
            return "⚠"


def display_discovered_repositories(
    git: Git,
    repos: Sequence[RepositoryInfo],
    emit: Emit,
    work_item_id: str | None = None,
) -> None:
    header = f"Discovered {len(repos)} repository(ies) for current work item"
    if work_item_id:
        header += f" {work_item_id}"
    emit(f"{header}:")
    for repo in repos:
        branch_note = ""
        try:
            current = git.get_current_branch(repo.path)
        except GitCommandError:
            current = None
        else:
            branch_note = " [on trunk]" if current == repo.trunk_branch else " [on feature branch]"
        emit(
            f"  - {repo.name}: {repo.path} "
            f"(trunk: {repo.trunk_branch}, remote: {repo.remote}){branch_note}"
        )


def display_repository_state(state_info: RepositoryStateInfo, emit: Emit) -> None:
    line = (
        f"  {get_state_symbol(state_info.state)} {state_info.repo.name}: "
        f"{state_info.state.value}"
    )
    if state_info.details:
        line += f" ({state_info.details})"
    if state_info.error is not None and str(state_info.error) not in state_info.details:
        line += f" - Error: {state_info.error}"
    emit(line)


def display_state_summary(
    state_infos: Sequence[RepositoryStateInfo],
    aggregated: AggregatedState,
    emit: Emit,
) -> None:
    emit("")
    emit("Repository State Summary:")
    for state_info in state_infos:
        display_repository_state(state_info, emit)

    emit("")
    emit(f"Overall State: {aggregated.overall_state.value}")
    partitions = (
        ("Repositories with conflicts", aggregated.conflicting_repos),
        ("Repositories in operation", aggregated.in_operation_repos),
        ("Repositories with uncommitted changes", aggregated.dirty_repos),
        ("Repositories with errors", aggregated.error_repos),
        ("Repositories ready for update", aggregated.ready_repos),
    )
    for label, names in partitions:
        if names:
            emit(f"  {label}: {', '.join(names)}")


def display_update_message(dirty_repos: Sequence[str], no_pop_stash: bool, emit: Emit) -> None:
    emit("")
    if dirty_repos:
        emit("Some repositories have uncommitted changes. They will be stashed before rebase.")
        if no_pop_stash:
            emit("Changes will remain stashed (--no-pop-stash was specified).")
        else:
            emit("Changes will be automatically popped after successful rebase.")
    else:
        emit("All repositories are ready for update. Proceeding with fetch and rebase...")
    emit("")


def get_recovery_steps(result: RepositoryOperationResult) -> list[str]:
    """Concrete commands that finish or undo a failed repository update."""
    path = result.repo.path
    steps: list[str] = []

    if result.rebase_attempted:
        if "trunk-update (failed)" in result.steps and not result.rebase_had_conflicts:
            steps.append(
                f"Local trunk in {path} could not be fast-forwarded to "
                f"{result.repo.remote_trunk_ref}. Reconcile it manually, for example with "
                f"'git rebase {result.repo.remote_trunk_ref}', then re-run 'kira latest'."
            )
        elif result.rebase_had_conflicts and not result.rebase_aborted:
            steps.append(
                f"Resolve merge conflicts in {path}, stage changes with 'git add', then either "
                "run 'git rebase --continue' or 'kira latest' again in that repository"
            )
        elif result.rebase_aborted:
            steps.append(
                f"Rebase was aborted for {path}. Inspect the error above, fix the issue, and "
                "start a new rebase or re-run 'kira latest' when ready."
            )
        elif "rebase (failed)" in result.steps:
            steps.append(
                f"Check rebase state in {path} with 'git status'. If a rebase is still in "
                "progress and you do not want to keep it, run 'git rebase --abort'."
            )

    if result.had_stash and not result.stash_popped:
        if result.rebase_had_conflicts and not result.rebase_aborted:
            steps.append(
                "Your uncommitted changes were stashed and kept while the rebase is in "
                f"progress. After the rebase completes, run 'git stash pop' in {path} to "
                "restore them."
            )
        else:
            steps.append(f"Run 'git stash pop' in {path} to restore stashed changes")

    return steps


def display_failed_result(result: RepositoryOperationResult, emit: Emit) -> None:
    emit(f"  ✗ {result.repo.name}: FAILED")
    emit(f"    Error: {result.error}")
    if result.steps:
        emit(f"    Completed steps: {', '.join(result.steps)}")

    recovery_steps = get_recovery_steps(result)
    if recovery_steps:
        emit("    Recovery steps:")
        for step in recovery_steps:
            emit(f"      - {step}")


def display_successful_result(result: RepositoryOperationResult, emit: Emit) -> None:
    emit(f"  ✓ {result.repo.name}: SUCCESS")
    if result.steps:
        emit(f"    Completed: {', '.join(result.steps)}")
    if result.had_stash and not result.stash_popped:
        emit("    Note: Changes were stashed and remain in stash (use 'git stash pop' to restore)")


def display_failed_repos_guidance(
    failed: Sequence[RepositoryOperationResult], emit: Emit
) -> None:
    if not failed:
        return

    emit("")
    emit("Next steps for failed repositories:")
    for result in failed:
        emit(f"  {result.repo.name}:")
        step_num = 1
        for step in get_recovery_steps(result):
            emit(f"    {step_num}. {step}")
            step_num += 1
        emit(f"    {step_num}. Fix the issue described above and run 'kira latest' again")


def display_operation_results(results: Sequence[RepositoryOperationResult], emit: Emit) -> None:
    """Per-repository SUCCESS/FAILED summary followed by recovery guidance."""
    emit("")
    emit("Operation Results:")
    emit(RULE)

    failed: list[RepositoryOperationResult] = []
    for result in results:
        if result.succeeded:
            display_successful_result(result, emit)
        else:
            failed.append(result)
            display_failed_result(result, emit)

    emit(RULE)
    emit(f"Summary: {len(results) - len(failed)} succeeded, {len(failed)} failed")
    display_failed_repos_guidance(failed, emit)
