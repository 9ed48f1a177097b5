"""CLI invariant checks with styled output.

Every failed check prints a red "Error:" line and exits with code 1.
"""

from typing import TYPE_CHECKING

import click

from palletkit.cli.output import user_output
from palletkit.core.project import NoProjectSentinel, ProjectContext

if TYPE_CHECKING:
    from palletkit.core.context import PalletKitContext


class Ensure:
    """Helper class for asserting invariants with consistent error handling."""

    @staticmethod
    def invariant(condition: bool, error_message: str) -> None:
        """Ensure condition is true, otherwise output styled error and exit.

        Raises:
            SystemExit: If condition is false (with exit code 1)
        """
        if not condition:
            user_output(click.style("Error: ", fg="red") + error_message)
            raise SystemExit(1)

    @staticmethod
    def in_project(ctx: "PalletKitContext") -> ProjectContext:
        """Ensure the command runs inside a runtime project and return it.

        Raises:
            SystemExit: If no project was discovered (with exit code 1)
        """
        if isinstance(ctx.project, NoProjectSentinel):
            user_output(click.style("Error: ", fg="red") + ctx.project.message)
            user_output("Run from a directory containing Substrate.toml or runtime/Cargo.toml, or pass --project.")
            raise SystemExit(1)
        return ctx.project
