from pathlib import Path

import click

from palletkit.cli.ensure import Ensure
from palletkit.cli.error_boundary import cli_error_boundary
from palletkit.cli.output import emit_json, user_output
from palletkit.core.context import PalletKitContext
from palletkit.core.descriptors import PalletSourceDescriptor, SourceKind
from palletkit.core.integration import integrate
from palletkit.core.resolver import read_package
from palletkit.core.transaction import CommitReport


def parse_pallet_spec(spec: str) -> tuple[str, str | None]:
    """Split `name[@constraint]` into its parts.

    >>> parse_pallet_spec("balances@^4.0.0")
    ('balances', '^4.0.0')
    """
    name, sep, constraint = spec.partition("@")
    if sep and not constraint:
        raise click.BadParameter(f"Missing version constraint after '@' in {spec!r}")
    return name, constraint if sep else None


def _split_features(values: tuple[str, ...]) -> frozenset[str]:
    features: set[str] = set()
    for value in values:
        features.update(part.strip() for part in value.split(",") if part.strip())
    return frozenset(features)


def build_descriptors(
    pallets: tuple[str, ...],
    *,
    git: str | None,
    ref: str | None,
    path: Path | None,
    registry: str | None,
    features: frozenset[str],
) -> list[PalletSourceDescriptor]:
    """Turn command-line arguments into source descriptors.

    Raises:
        click.UsageError: If the source options are combined incorrectly
        ValueError: If a descriptor is invalid
    """
    sources = [option for option, value in (("--git", git), ("--path", path), ("--registry", registry)) if value]
    if len(sources) > 1:
        raise click.UsageError(f"Options {' and '.join(sources)} are mutually exclusive")
    if ref is not None and git is None:
        raise click.UsageError("--ref requires --git")

    if git is not None:
        if len(pallets) != 1:
            raise click.UsageError("--git takes exactly one pallet name")
        name, constraint = parse_pallet_spec(pallets[0])
        return [
            PalletSourceDescriptor(
                kind=SourceKind.GIT,
                identifier=git,
                version_constraint=constraint,
                features=features,
                git_ref=ref,
                crate_name=name,
            )
        ]

    if path is not None:
        if len(pallets) > 1:
            raise click.UsageError("--path takes at most one pallet name")
        if pallets:
            name, constraint = parse_pallet_spec(pallets[0])
        else:
            name, constraint = read_package(path.resolve())[0], None
        return [
            PalletSourceDescriptor(
                kind=SourceKind.PATH,
                identifier=str(path.resolve()),
                version_constraint=constraint,
                features=features,
                crate_name=name,
            )
        ]

    if not pallets:
        raise click.UsageError("Specify at least one pallet")

    descriptors: list[PalletSourceDescriptor] = []
    for spec in pallets:
        name, constraint = parse_pallet_spec(spec)
        if registry is not None:
            descriptors.append(
                PalletSourceDescriptor(
                    kind=SourceKind.CUSTOM_REGISTRY,
                    identifier=name,
                    version_constraint=constraint,
                    features=features,
                    crate_name=name,
                    registry=registry,
                )
            )
        else:
            descriptors.append(
                PalletSourceDescriptor(
                    kind=SourceKind.REGISTRY,
                    identifier=name,
                    version_constraint=constraint,
                    features=features,
                )
            )
    return descriptors


def report_to_dict(report: CommitReport, root: Path) -> dict[str, object]:
    return {
        "pallet": report.pallet,
        "version": report.version,
        "modified": report.modified,
        "files": [
            {"path": _display_path(change.path, root), "modified": change.modified} for change in report.changes
        ],
        "assigned_index": report.assigned_index,
        "config_stub_line": report.config_stub_line,
    }


def _display_path(path: Path, root: Path) -> str:
    if path.is_relative_to(root):
        return str(path.relative_to(root))
    return str(path)


def render_report(report: CommitReport, root: Path, *, verb: str) -> None:
    """Print one CommitReport for humans."""
    if not report.modified:
        user_output(f"{click.style(report.pallet, fg='cyan', bold=True)} is already up to date; nothing changed")
        return

    version = f" {report.version}" if report.version else ""
    user_output(f"{click.style('✓', fg='green')} {verb} {click.style(report.pallet, fg='cyan', bold=True)}{version}")
    for change in report.changes:
        status = click.style("modified", fg="yellow") if change.modified else click.style("unchanged", dim=True)
        user_output(f"  {_display_path(change.path, root)}: {status}")
    if report.assigned_index is not None:
        user_output(f"  Pallet index: {report.assigned_index}")
    if report.config_stub_line is not None:
        composition = next((c.path for c in report.changes if c.path.suffix == ".rs"), None)
        location = f"{_display_path(composition, root)}:" if composition is not None else "line "
        user_output(f"  Configure the pallet's Config trait at {location}{report.config_stub_line}")


@click.command("add")
@click.argument("pallets", nargs=-1)
@click.option("--git", "git", metavar="URL", help="Fetch the pallet from a git repository.")
@click.option("--ref", metavar="REF", help="Branch, tag or commit to pin (with --git; default HEAD).")
@click.option(
    "--path",
    "path",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    help="Use a pallet crate from a local directory.",
)
@click.option("--registry", metavar="NAME", help="Fetch from a registry configured with `palletkit registry add`.")
@click.option(
    "-F",
    "--features",
    multiple=True,
    metavar="FEATURES",
    help="Crate features to enable (comma-separated, repeatable).",
)
@click.option("--override", is_flag=True, help="Replace an existing dependency that comes from a different source kind.")
@click.option(
    "--no-composition",
    is_flag=True,
    help="Only edit Cargo.toml; do not add the pallet to construct_runtime!.",
)
@click.option("--json", "json_output", is_flag=True, help="Print a machine-readable report to stdout.")
@click.pass_obj
@cli_error_boundary
def add_cmd(
    ctx: PalletKitContext,
    pallets: tuple[str, ...],
    git: str | None,
    ref: str | None,
    path: Path | None,
    registry: str | None,
    features: tuple[str, ...],
    override: bool,
    no_composition: bool,
    json_output: bool,
) -> None:
    """Add pallets to the runtime.

    PALLETS are crate names with an optional version constraint, e.g.
    `balances@^4.0.0`. Each pallet is added to runtime/Cargo.toml and to the
    construct_runtime! block in runtime/src/lib.rs, with a Config trait stub
    to fill in.
    """
    project = Ensure.in_project(ctx)
    descriptors = build_descriptors(
        pallets,
        git=git,
        ref=ref,
        path=path,
        registry=registry,
        features=_split_features(features),
    )

    reports = integrate(
        project,
        descriptors,
        resolver=ctx.resolver,
        time=ctx.time,
        override=override,
        composition_needed=not no_composition,
    )

    if json_output:
        emit_json({"pallets": [report_to_dict(report, project.root) for report in reports]})
        return
    for report in reports:
        render_report(report, project.root, verb="Added")
