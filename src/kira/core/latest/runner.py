"""Entry point of the `kira latest` engine.

Runs the phases in order: discover -> classify -> aggregate -> gate -> update
-> report. Nothing is mutated before the gate passes, apart from continuing a
rebase that an earlier run left without conflicts.
"""

import logging
import threading

from kira.core.context import KiraContext
from kira.core.errors import KiraError
from kira.core.latest.aggregator import (
    aggregate_repository_states,
    handle_in_progress_rebases,
    validate_all_repos_clean_or_dirty_for_update,
)
from kira.core.latest.classifier import check_all_repository_states
from kira.core.latest.conflicts import display_all_conflicts
from kira.core.latest.errors import PreflightBlockedError
from kira.core.latest.orchestrator import perform_fetch_and_rebase_for_all_repos
from kira.core.latest.reporting import (
    Emit,
    ProgressReporter,
    display_discovered_repositories,
    display_operation_results,
    display_state_summary,
    display_update_message,
)
from kira.core.latest.resolver import discover_repositories, order_repositories_by_dependencies
from kira.core.latest.types import ExitCondition, LatestOutcome, RepositoryState
from kira.core.work_item import ensure_work_dir

logger = logging.getLogger(__name__)


def run_latest(
    ctx: KiraContext,
    *,
    abort_on_conflict: bool = False,
    no_pop_stash: bool = False,
    emit: Emit,
    cancel_event: threading.Event | None = None,
) -> LatestOutcome:
    """Bring every repository of the current work item up to date with its trunk.

    Args:
        ctx: Kira context
        abort_on_conflict: Abort a conflicted rebase and restore the stash
        no_pop_stash: Leave stashed changes in the stash after a successful update
        emit: Sink for user-facing lines
        cancel_event: When set, repositories not yet started are skipped

    Returns:
        LatestOutcome; PREFLIGHT_BLOCKED carries the gate message and no results

    Raises:
        KiraError: Workspace, work item, configuration or validation failures,
            all raised before any repository is touched
    """
    ensure_work_dir(ctx.config)

    work_item_id, repos = discover_repositories(ctx)
    if not repos:
        raise KiraError("no repositories found for current work item")

    display_discovered_repositories(ctx.git, repos, emit, work_item_id=work_item_id or None)

    progress = ProgressReporter(emit)
    state_infos = check_all_repository_states(ctx.git, repos)
    aggregated = aggregate_repository_states(state_infos)
    display_state_summary(state_infos, aggregated, emit)

    if any(info.state is RepositoryState.IN_REBASE for info in state_infos):
        state_infos = handle_in_progress_rebases(ctx.git, state_infos, progress)
        aggregated = aggregate_repository_states(state_infos)
        display_state_summary(state_infos, aggregated, emit)

    if aggregated.conflicting_repos:
        display_all_conflicts(ctx.git, state_infos, emit)

    try:
        validate_all_repos_clean_or_dirty_for_update(aggregated)
    except PreflightBlockedError as e:
        logger.debug("Pre-flight gate blocked: %s", e.blocking_repos)
        return LatestOutcome(condition=ExitCondition.PREFLIGHT_BLOCKED, message=str(e))

    display_update_message(aggregated.dirty_repos, no_pop_stash, emit)

    ordered = order_repositories_by_dependencies(repos)
    results = perform_fetch_and_rebase_for_all_repos(
        ctx.git,
        ordered,
        abort_on_conflict=abort_on_conflict,
        no_pop_stash=no_pop_stash,
        progress=progress,
        cancel_event=cancel_event,
    )
    display_operation_results(results, emit)

    failed = [result for result in results if not result.succeeded]
    if failed:
        return LatestOutcome(
            condition=ExitCondition.PARTIAL_FAILURE,
            results=tuple(results),
            message=f"{len(failed)} of {len(results)} repositories failed to update",
        )
    return LatestOutcome(condition=ExitCondition.SUCCESS, results=tuple(results))
