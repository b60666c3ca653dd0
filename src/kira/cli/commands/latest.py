"""`kira latest`: rebase every repository of the current work item onto its trunk."""

import logging

import click
from rich.console import Console

from kira.cli.output import format_latest_summary, user_output
from kira.core.context import KiraContext
from kira.core.errors import KiraError
from kira.core.latest.runner import run_latest
from kira.core.latest.types import ExitCondition

logger = logging.getLogger(__name__)


@click.command("latest")
@click.option(
    "--abort-on-conflict",
    is_flag=True,
    help="Abort a rebase that hits conflicts and restore stashed changes.",
)
@click.option(
    "--no-pop-stash",
    is_flag=True,
    help="Keep stashed changes in the stash after a successful update.",
)
@click.pass_obj
def latest_cmd(ctx: KiraContext, abort_on_conflict: bool, no_pop_stash: bool) -> None:
    """Fetch trunk and rebase every repository of the current work item onto it.

    Steps per repository:
    1. Stash uncommitted changes (including untracked files)
    2. Fetch the trunk branch from the remote
    3. Fast-forward trunk, or rebase the feature branch onto the remote trunk
    4. Pop the stash (unless --no-pop-stash)

    Nothing is changed if any repository has conflicts, an unfinished
    rebase or merge, or cannot be inspected.
    """
    try:
        outcome = run_latest(
            ctx,
            abort_on_conflict=abort_on_conflict,
            no_pop_stash=no_pop_stash,
            emit=user_output,
        )
    except KiraError as e:
        user_output(f"Error: {e}")
        raise SystemExit(1) from e

    if outcome.condition is ExitCondition.PREFLIGHT_BLOCKED:
        user_output("")
        user_output(f"Error: {outcome.message}")
        raise SystemExit(1)

    user_output("")
    Console(stderr=True).print(format_latest_summary(outcome.results))

    if outcome.condition is not ExitCondition.SUCCESS:
        logger.debug("kira latest finished with %s", outcome.condition.value)
        raise SystemExit(1)
