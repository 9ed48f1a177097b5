import click

from palletkit.cli.error_boundary import cli_error_boundary
from palletkit.cli.output import machine_output, user_output
from palletkit.core.context import PalletKitContext
from palletkit.core.global_config import RegistryConfig, remove_registry, save_registry


@click.group("registry")
def registry_group() -> None:
    """Manage custom pallet registries."""


@registry_group.command("add")
@click.argument("name")
@click.argument("api")
@click.option("--token", help="Authorization token sent to the registry.")
@click.pass_obj
@cli_error_boundary
def add_registry_cmd(ctx: PalletKitContext, name: str, api: str, token: str | None) -> None:
    """Register a crates.io-compatible registry NAME served at API."""
    save_registry(RegistryConfig(name=name, api=api, token=token), ctx.global_config_path)
    user_output(f"Registry {click.style(name, fg='cyan', bold=True)} saved to {ctx.global_config_path}")


@registry_group.command("remove")
@click.argument("name")
@click.pass_obj
@cli_error_boundary
def remove_registry_cmd(ctx: PalletKitContext, name: str) -> None:
    """Forget the registry NAME."""
    if not remove_registry(name, ctx.global_config_path):
        user_output(click.style("Error: ", fg="red") + f"Registry '{name}' is not configured")
        raise SystemExit(1)
    user_output(f"Registry {click.style(name, fg='cyan', bold=True)} removed")


@registry_group.command("list")
@click.pass_obj
def list_registries_cmd(ctx: PalletKitContext) -> None:
    """List configured registries."""
    registries = ctx.global_config.registries
    if not registries:
        user_output("No custom registries configured")
        return
    for name, entry in sorted(registries.items()):
        machine_output(f"{name}\t{entry.api}")
