import logging
import os

import click

from kira.cli.commands.latest import latest_cmd
from kira.core.context import create_context

CONTEXT_SETTINGS = dict(help_option_names=["-h", "--help"])  # terse help flags

# Enable debug logging if KIRA_DEBUG environment variable is set
if os.getenv("KIRA_DEBUG"):
    logging.basicConfig(level=logging.DEBUG, format="[DEBUG %(name)s:%(lineno)d] %(message)s")


@click.group(context_settings=CONTEXT_SETTINGS)
@click.version_option(package_name="kira")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Keep the repositories of a kira workspace in sync with their trunk."""
    # Only create context if not already provided (e.g., by tests)
    if ctx.obj is None:
        ctx.obj = create_context()


cli.add_command(latest_cmd)


def main() -> None:
    """CLI entry point used by the `kira` console script."""
    cli()
