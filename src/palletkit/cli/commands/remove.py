import click

from palletkit.cli.commands.add import render_report, report_to_dict
from palletkit.cli.ensure import Ensure
from palletkit.cli.error_boundary import cli_error_boundary
from palletkit.cli.output import emit_json
from palletkit.core.context import PalletKitContext
from palletkit.core.integration import disintegrate
from palletkit.core.naming import validate_crate_name


@click.command("remove")
@click.argument("pallets", nargs=-1, required=True)
@click.option(
    "--no-composition",
    is_flag=True,
    help="Only edit Cargo.toml; leave construct_runtime! untouched.",
)
@click.option("--json", "json_output", is_flag=True, help="Print a machine-readable report to stdout.")
@click.pass_obj
@cli_error_boundary
def remove_cmd(ctx: PalletKitContext, pallets: tuple[str, ...], no_composition: bool, json_output: bool) -> None:
    """Remove pallets from the runtime.

    Each pallet's construct_runtime! entry and Config impl are removed before
    its Cargo.toml dependency. Freed pallet indices are never reused.
    """
    project = Ensure.in_project(ctx)
    for name in pallets:
        validate_crate_name(name)

    reports = disintegrate(project, pallets, time=ctx.time, composition_needed=not no_composition)

    if json_output:
        emit_json({"pallets": [report_to_dict(report, project.root) for report in reports]})
        return
    for report in reports:
        render_report(report, project.root, verb="Removed")
