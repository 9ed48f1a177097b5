import logging
import os
from pathlib import Path

import click

from palletkit.cli.commands.add import add_cmd
from palletkit.cli.commands.registry import registry_group
from palletkit.cli.commands.remove import remove_cmd
from palletkit.cli.error_boundary import cli_error_boundary
from palletkit.core.context import create_context

CONTEXT_SETTINGS = dict(help_option_names=["-h", "--help"])  # terse help flags

DEBUG_ENV_VAR = "PALLETKIT_DEBUG"


def configure_logging(debug: bool) -> None:
    """Enable debug logging for --debug or PALLETKIT_DEBUG=1."""
    if debug or os.getenv(DEBUG_ENV_VAR):
        logging.basicConfig(level=logging.DEBUG, format="[DEBUG %(name)s:%(lineno)d] %(message)s")


@click.group(context_settings=CONTEXT_SETTINGS)
@click.version_option(package_name="palletkit")
@click.option("--debug", is_flag=True, help="Show debug logging.")
@click.option(
    "--project",
    "project_root",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    help="Runtime project root (default: discovered from the current directory).",
)
@click.pass_context
@cli_error_boundary
def cli(ctx: click.Context, debug: bool, project_root: Path | None) -> None:
    """Integrate pallets into a Substrate runtime project."""
    configure_logging(debug)
    # Only create context if not already provided (e.g., by tests)
    if ctx.obj is None:
        ctx.obj = create_context(project_root=project_root)


cli.add_command(add_cmd)
cli.add_command(remove_cmd)
cli.add_command(registry_group)


def main() -> None:
    """CLI entry point used by the `palletkit` console script."""
    cli()
