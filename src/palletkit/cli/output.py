"""Output utilities for CLI commands with clear intent.

Human-readable messages go to stderr through user_output; data meant for
other programs goes to stdout through machine_output, so `--json` output
can be piped without filtering.
"""

import json
from dataclasses import asdict, is_dataclass
from enum import Enum
from pathlib import Path
from typing import Any

import click


def user_output(message: str = "", nl: bool = True) -> None:
    """Print a message for the user (stderr)."""
    click.echo(message, err=True, nl=nl)


def machine_output(message: str = "", nl: bool = True) -> None:
    """Print machine-readable output (stdout)."""
    click.echo(message, nl=nl)


def _serialize_for_json(obj: Any) -> Any:
    """Recursively serialize Path, Enum and dataclass values for JSON."""
    if isinstance(obj, Path):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    if is_dataclass(obj) and not isinstance(obj, type):
        return _serialize_for_json(asdict(obj))
    if isinstance(obj, dict):
        return {key: _serialize_for_json(value) for key, value in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_serialize_for_json(item) for item in obj]
    return obj


def emit_json(data: dict[str, Any]) -> None:
    """Output JSON data to stdout for machine consumption."""
    machine_output(json.dumps(_serialize_for_json(data), indent=2))
