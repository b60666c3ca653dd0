"""Per-repository update pipeline and the concurrent batch driver.

Each repository goes through: stash -> fetch -> trunk update or rebase ->
stash restore. Failures are recorded on the repository's
`RepositoryOperationResult` and followed by best-effort restoration; they never
stop other repositories.

Concurrency:
- Repositories sharing a `repo_root` run sequentially on one worker
- So do repositories that resolve to the same working tree
- Every other repository runs on its own worker, at most MAX_PARALLEL_GROUPS at once
- Workers share only the `ProgressReporter`; results come back through futures
"""

import logging
import threading
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import replace

from kira.core.git.abc import Git
from kira.core.latest.classifier import extract_conflicting_files
from kira.core.latest.errors import (
    FetchError,
    FetchErrorKind,
    OperationCancelledError,
    RebaseConflictError,
    RebaseError,
    StashError,
    TrunkUpdateError,
)
from kira.core.latest.reporting import ProgressReporter
from kira.core.latest.resolver import group_indices_by_root
from kira.core.latest.types import RepositoryInfo, RepositoryOperationResult
from kira.core.subprocess import GitCommandError, GitTimeoutError

logger = logging.getLogger(__name__)

STASH_MESSAGE_PREFIX = "kira latest"

MAX_PARALLEL_GROUPS = 8

NETWORK_ERROR_PATTERNS = (
    "could not resolve host",
    "unable to access",
    "connection refused",
    "network",
    "timeout",
    "connection timed out",
)

PERMISSION_ERROR_PATTERNS = (
    "permission denied",
    "authentication failed",
    "403",
    "401",
    "could not read from remote",
    "access denied",
    "auth failed",
    "unauthorized",
    "forbidden",
)

MISSING_REF_PATTERNS = (
    "couldn't find remote ref",
    "doesn't exist",
    "unknown revision",
    "invalid upstream",
    "not something we can merge",
)


def stash_message(repo: RepositoryInfo) -> str:
    return f"{STASH_MESSAGE_PREFIX}: auto-stash before rebase on {repo.name}"


def classify_fetch_error(error: GitCommandError, repo: RepositoryInfo) -> FetchError:
    """Turn a failed `git fetch` into a FetchError with actionable guidance."""
    ref = repo.remote_trunk_ref
    text = error.output.lower()

    if isinstance(error, GitTimeoutError) or any(p in text for p in NETWORK_ERROR_PATTERNS):
        return FetchError(
            f"failed to fetch from {ref}: network error occurred. "
            f"Check network connection and try again: {error}",
            FetchErrorKind.NETWORK,
        )

    if any(p in text for p in PERMISSION_ERROR_PATTERNS):
        return FetchError(
            f"failed to fetch from {ref}: authentication or permission error. "
            f"Check your credentials and access to remote '{repo.remote}': {error}",
            FetchErrorKind.PERMISSION,
        )

    if "couldn't find remote ref" in text or ("fatal:" in text and "doesn't exist" in text):
        return FetchError(
            f"failed to fetch from {ref}: branch '{repo.trunk_branch}' does not exist on "
            f"remote '{repo.remote}'. Check the trunk branch configuration: {error}",
            FetchErrorKind.MISSING_BRANCH,
        )

    return FetchError(f"failed to fetch from {ref}: {error}", FetchErrorKind.OTHER)


def fetch_from_remote(git: Git, repo: RepositoryInfo) -> None:
    """Fetch the trunk branch from the repository's remote.

    Raises:
        FetchError: Classified as network, permission, missing branch, missing remote or other
    """
    try:
        exists = git.remote_exists(repo.path, repo.remote)
    except GitCommandError as e:
        raise FetchError(
            f"failed to check remote '{repo.remote}': {e}", FetchErrorKind.OTHER
        ) from e
    if not exists:
        raise FetchError(
            f"remote '{repo.remote}' does not exist for repository {repo.name}. "
            f"Add it with 'git remote add {repo.remote} <url>' or configure a different remote",
            FetchErrorKind.MISSING_REMOTE,
        )

    try:
        git.fetch_branch(repo.path, repo.remote, repo.trunk_branch)
    except GitCommandError as e:
        raise classify_fetch_error(e, repo) from e


def stash_changes(git: Git, repo: RepositoryInfo) -> bool:
    """Stash uncommitted changes including untracked files.

    Returns:
        True if a stash entry was created
    """
    try:
        return git.stash_push(repo.path, stash_message(repo))
    except GitCommandError as e:
        raise StashError(f"failed to stash changes: {e}") from e


def pop_stash(git: Git, repo: RepositoryInfo) -> None:
    try:
        git.stash_pop(repo.path)
    except GitCommandError as e:
        if "conflict" in e.output.lower():
            raise StashError(
                f"failed to pop stash due to conflicts with the updated branch. "
                f"Resolve them in {repo.path}; the stash entry is kept until you run "
                f"'git stash drop': {e}"
            ) from e
        raise StashError(
            f"failed to pop stash: {e}. Use 'git stash pop' in {repo.path} to restore "
            "your changes manually"
        ) from e


def is_on_trunk_branch(git: Git, repo: RepositoryInfo) -> bool:
    try:
        current = git.get_current_branch(repo.path)
    except GitCommandError as e:
        raise RebaseError(f"failed to determine current branch: {e}") from e
    return current == repo.trunk_branch


def _is_missing_ref(error: GitCommandError) -> bool:
    text = error.output.lower()
    return any(p in text for p in MISSING_REF_PATTERNS)


def update_trunk_from_remote(git: Git, repo: RepositoryInfo) -> None:
    """Fast-forward the checked-out trunk to `<remote>/<trunk>`.

    Raises:
        TrunkUpdateError: If the remote ref is missing or local trunk has diverged
    """
    ref = repo.remote_trunk_ref
    try:
        git.merge_ff_only(repo.path, ref)
    except GitCommandError as e:
        if _is_missing_ref(e):
            raise TrunkUpdateError(
                f"remote reference {ref} does not exist. Ensure fetch completed successfully: {e}"
            ) from e
        text = e.output.lower()
        if "not possible to fast-forward" in text or "diverg" in text:
            raise TrunkUpdateError(
                f"local '{repo.trunk_branch}' has diverged from {ref} and cannot be "
                f"fast-forwarded. Reconcile it manually in {repo.path}: {e}"
            ) from e
        raise TrunkUpdateError(f"failed to fast-forward to {ref}: {e}") from e


def _stopped_on_conflicts(git: Git, repo: RepositoryInfo, error: GitCommandError) -> bool:
    if "conflict" in error.output.lower():
        return True
    try:
        return bool(extract_conflicting_files(git.get_status_porcelain(repo.path)))
    except GitCommandError:
        return False


def rebase_onto_trunk(git: Git, repo: RepositoryInfo) -> None:
    """Rebase the current feature branch onto `<remote>/<trunk>`.

    Raises:
        RebaseConflictError: If the rebase stopped on conflicts
        RebaseError: If already on trunk, or the rebase failed for another reason
    """
    ref = repo.remote_trunk_ref
    if is_on_trunk_branch(git, repo):
        raise RebaseError(
            f"already on trunk branch '{repo.trunk_branch}', cannot rebase onto itself"
        )

    try:
        git.rebase(repo.path, ref)
    except GitCommandError as e:
        if _stopped_on_conflicts(git, repo, e):
            raise RebaseConflictError(
                "rebase failed due to conflicts. Resolve conflicts and run 'kira latest' "
                f"again: {e}"
            ) from e
        if _is_missing_ref(e):
            raise RebaseError(
                f"remote reference {ref} does not exist. Ensure fetch completed successfully: {e}"
            ) from e
        raise RebaseError(f"rebase onto {ref} failed: {e}") from e


def abort_rebase(git: Git, repo: RepositoryInfo) -> None:
    try:
        git.rebase_abort(repo.path)
    except GitCommandError as e:
        raise RebaseError(f"failed to abort rebase: {e}") from e


def process_repository_update(
    git: Git,
    repo: RepositoryInfo,
    *,
    abort_on_conflict: bool,
    no_pop_stash: bool,
    progress: ProgressReporter,
) -> RepositoryOperationResult:
    """Run the full update pipeline for one repository.

    Never raises for git failures: the first failing step is recorded on the
    returned result, and restoration (rebase abort, stash pop) is attempted
    according to the flags.
    """
    result = RepositoryOperationResult(repo=repo)

    try:
        has_changes = git.has_uncommitted_changes(repo.path)
    except GitCommandError as e:
        result = replace(
            result,
            steps=("status (failed)",),
            error=StashError(f"failed to check for uncommitted changes: {e}"),
        )
        progress.mark_finished(repo.name)
        return result

    if has_changes:
        progress.display_operation_progress(repo.name, "stashing changes")
        try:
            created = stash_changes(git, repo)
        except StashError as e:
            progress.mark_finished(repo.name)
            return replace(result, steps=("stash (failed)",), error=e)
        if created:
            result = replace(result, steps=("stash",), had_stash=True)

    progress.display_operation_progress(repo.name, "fetching")
    try:
        fetch_from_remote(git, repo)
    except FetchError as e:
        result = replace(
            result,
            steps=(*result.steps, "fetch (failed)"),
            error=FetchError(f"fetch failed: {e}", e.kind),
        )
        return _restore_after_failure(
            git, result, abort_on_conflict=abort_on_conflict, no_pop_stash=no_pop_stash,
            progress=progress,
        )
    result = replace(result, steps=(*result.steps, "fetch"))

    try:
        on_trunk = is_on_trunk_branch(git, repo)
    except RebaseError as e:
        result = replace(result, steps=(*result.steps, "branch-check (failed)"), error=e)
        return _restore_after_failure(
            git, result, abort_on_conflict=abort_on_conflict, no_pop_stash=no_pop_stash,
            progress=progress,
        )

    step = "trunk-update" if on_trunk else "rebase"
    progress.display_operation_progress(repo.name, "updating trunk" if on_trunk else "rebasing")
    result = replace(result, rebase_attempted=True)
    try:
        if on_trunk:
            update_trunk_from_remote(git, repo)
        else:
            rebase_onto_trunk(git, repo)
    except RebaseConflictError as e:
        logger.debug("Conflicts while updating %s: %s", repo.name, e)
        result = replace(
            result,
            steps=(*result.steps, f"{step} (failed)"),
            rebase_had_conflicts=True,
            error=e,
        )
        return _restore_after_failure(
            git, result, abort_on_conflict=abort_on_conflict, no_pop_stash=no_pop_stash,
            progress=progress,
        )
    except (RebaseError, TrunkUpdateError) as e:
        prefix = "trunk update failed" if on_trunk else "rebase failed"
        error_type = TrunkUpdateError if on_trunk else RebaseError
        result = replace(
            result,
            steps=(*result.steps, f"{step} (failed)"),
            error=error_type(f"{prefix}: {e}"),
        )
        return _restore_after_failure(
            git, result, abort_on_conflict=abort_on_conflict, no_pop_stash=no_pop_stash,
            progress=progress,
        )
    result = replace(result, steps=(*result.steps, step))

    if result.had_stash:
        if no_pop_stash:
            result = replace(result, steps=(*result.steps, "stash (kept)"))
        else:
            progress.display_operation_progress(repo.name, "popping stash")
            try:
                pop_stash(git, repo)
            except StashError as e:
                result = replace(result, steps=(*result.steps, "stash-pop (failed)"), error=e)
            else:
                result = replace(result, steps=(*result.steps, "stash-pop"), stash_popped=True)

    if result.succeeded:
        progress.display_operation_progress(repo.name, "complete")
    progress.mark_finished(repo.name)
    return result


def _restore_after_failure(
    git: Git,
    result: RepositoryOperationResult,
    *,
    abort_on_conflict: bool,
    no_pop_stash: bool,
    progress: ProgressReporter,
) -> RepositoryOperationResult:
    """Best-effort cleanup after a failed step; the original error is kept.

    A conflicted rebase is left in place for the user unless `abort_on_conflict`
    is set; any other rebase still running is aborted. The stash is popped only
    once no rebase is in progress.
    """
    repo = result.repo
    rebase_in_progress = False
    if result.rebase_attempted:
        try:
            rebase_in_progress = git.is_rebase_in_progress(repo.path)
        except GitCommandError as e:
            logger.debug("Could not check rebase state of %s: %s", repo.name, e)
            rebase_in_progress = True

    if rebase_in_progress and (abort_on_conflict or not result.rebase_had_conflicts):
        progress.display_operation_progress(repo.name, "aborting rebase")
        try:
            abort_rebase(git, repo)
        except RebaseError as e:
            logger.debug("Rebase abort failed for %s: %s", repo.name, e)
            result = replace(result, steps=(*result.steps, "rebase-abort (failed)"))
        else:
            rebase_in_progress = False
            result = replace(result, steps=(*result.steps, "rebase-abort"), rebase_aborted=True)

    if result.had_stash:
        if rebase_in_progress or no_pop_stash:
            result = replace(result, steps=(*result.steps, "stash (kept)"))
        else:
            progress.display_operation_progress(repo.name, "restoring stash")
            try:
                pop_stash(git, repo)
            except StashError as e:
                logger.debug("Stash restore failed for %s: %s", repo.name, e)
                result = replace(result, steps=(*result.steps, "stash-pop (failed)"))
            else:
                result = replace(result, steps=(*result.steps, "stash-pop"), stash_popped=True)

    progress.mark_finished(repo.name)
    return result


def _cancelled_result(repo: RepositoryInfo) -> RepositoryOperationResult:
    return RepositoryOperationResult(
        repo=repo,
        error=OperationCancelledError(f"update of {repo.name} was cancelled before it started"),
    )


def perform_fetch_and_rebase_for_all_repos(
    git: Git,
    repos: Sequence[RepositoryInfo],
    *,
    abort_on_conflict: bool,
    no_pop_stash: bool,
    progress: ProgressReporter,
    cancel_event: threading.Event | None = None,
) -> list[RepositoryOperationResult]:
    """Update every repository, concurrently where their roots allow.

    Ctrl-C while waiting sets the cancellation event: repositories already in
    flight finish, the rest are reported as cancelled.

    Returns:
        Exactly one result per input repository, in input order
    """
    if not repos:
        return []

    cancel = cancel_event if cancel_event is not None else threading.Event()
    groups = group_indices_by_root(repos)
    results: list[RepositoryOperationResult | None] = [None] * len(repos)

    def run_group(indices: list[int]) -> list[tuple[int, RepositoryOperationResult]]:
        group_results: list[tuple[int, RepositoryOperationResult]] = []
        for index in indices:
            repo = repos[index]
            if cancel.is_set():
                group_results.append((index, _cancelled_result(repo)))
                continue
            group_results.append(
                (
                    index,
                    process_repository_update(
                        git,
                        repo,
                        abort_on_conflict=abort_on_conflict,
                        no_pop_stash=no_pop_stash,
                        progress=progress,
                    ),
                )
            )
        return group_results

    logger.debug("Updating %d repositories in %d groups", len(repos), len(groups))
    with ThreadPoolExecutor(max_workers=min(len(groups), MAX_PARALLEL_GROUPS)) as executor:
        pending = {executor.submit(run_group, group) for group in groups}
        while pending:
            try:
                for future in as_completed(pending):
                    pending.discard(future)
                    for index, result in future.result():
                        results[index] = result
            except KeyboardInterrupt:
                logger.debug("Interrupted with %d groups pending", len(pending))
                cancel.set()
                progress.message(
                    "Interrupted: finishing repositories in progress, skipping the rest..."
                )

    return [
        result if result is not None else _cancelled_result(repos[index])
        for index, result in enumerate(results)
    ]
