"""Output utilities for CLI commands.

`user_output` sends human-readable text to stderr. `format_latest_summary`
builds the final rich panel shown after `kira latest`.
"""

from collections.abc import Sequence

import click
from rich.panel import Panel
from rich.text import Text

from kira.core.latest.types import RepositoryOperationResult


def user_output(message: str = "") -> None:
    """Emit a line of user-facing text to stderr."""
    click.echo(message, err=True)


def format_latest_summary(results: Sequence[RepositoryOperationResult]) -> Panel:
    """Format the final summary box with status, counts and per-repository errors.

    Args:
        results: One result per updated repository

    Returns:
        Rich Panel with formatted summary
    """
    failed = [r for r in results if not r.succeeded]
    overall_success = not failed

    lines: list[Text] = []
    if overall_success:
        lines.append(Text("✅ Status: Success", style="green"))
    else:
        lines.append(Text("❌ Status: Failed", style="red"))

    lines.append(Text(f"Repositories: {len(results) - len(failed)} updated, {len(failed)} failed"))

    stashed = [r.repo.name for r in results if r.had_stash and not r.stash_popped]
    if stashed:
        lines.append(Text(f"Changes left in stash: {', '.join(stashed)}", style="yellow"))

    for result in failed:
        lines.append(Text(""))
        lines.append(Text(f"Error in {result.repo.name}:", style="red bold"))
        lines.append(Text(str(result.error), style="red"))

    content = Text("\n").join(lines)
    title = "Update Complete" if overall_success else "Update Failed"
    return Panel(
        content, title=title, border_style="green" if overall_success else "red", padding=(1, 2)
    )
