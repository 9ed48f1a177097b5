"""Error boundary handling for CLI commands.

This module provides a decorator to catch palletkit's expected exceptions at
CLI entry points and display clean error messages without stack traces.
"""

import functools
import logging
from collections.abc import Callable
from typing import Any, TypeVar

import click

from palletkit.cli.output import user_output
from palletkit.core.errors import PalletKitError, RollbackFailed

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

ROLLBACK_FAILED_EXIT_CODE = 2


def cli_error_boundary(func: F) -> F:
    """Decorator that catches expected exceptions and displays clean error messages.

    Catches:
        - RollbackFailed: exit code 2, with the manual recovery instructions
        - PalletKitError: any other expected failure, exit code 1
        - ValueError: invalid input (e.g. a malformed descriptor), exit code 1

    All other exceptions bubble up normally with full stack traces.

    Example:
        @click.command()
        @cli_error_boundary
        def my_command():
            ...
    """

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except RollbackFailed as e:
            logger.debug("Fatal rollback failure", exc_info=True)
            user_output(click.style("Error: ", fg="red", bold=True) + str(e))
            raise SystemExit(ROLLBACK_FAILED_EXIT_CODE) from None
        except PalletKitError as e:
            logger.debug("Command failed", exc_info=True)
            user_output(click.style("Error: ", fg="red") + str(e))
            raise SystemExit(1) from None
        except ValueError as e:
            user_output(click.style("Error: ", fg="red") + str(e))
            raise SystemExit(1) from None

    return wrapper  # type: ignore[return-value]
